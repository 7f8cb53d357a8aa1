"""
Shared test fixtures for the SurveyLogic test suite.

Loads the household survey definition once per session; tests that need
a different structure build their own with the model constructors.
"""

from pathlib import Path

import pytest

from surveylogic.core.loader import SurveyDefinition, load_definition

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(scope="session")
def household_definition() -> SurveyDefinition:
    """The household survey with its three authored rules."""
    return load_definition(FIXTURES_DIR / "household.yaml")


@pytest.fixture(scope="session")
def household_survey(household_definition):
    return household_definition.survey


@pytest.fixture(scope="session")
def household_rules(household_definition):
    return list(household_definition.rules)
