"""
Loader for survey definitions stored as YAML or JSON documents.

A definition document holds the survey structure and its rules:

    survey:
      id: household
      pages:
        - id: p1
          questions:
            - id: country
              type: radio
              options: [France, Spain]
    rules:
      - id: r1
        source_question_id: country
        operator: equals
        compare_value: France
        target_id: visa
        action: hide

JSON is a subset of YAML, so both formats go through yaml.safe_load.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from surveylogic.core.schema import ConditionalRule, Survey

logger = logging.getLogger(__name__)


class SurveyDefinition(BaseModel):
    """A survey structure together with the rules authored for it."""

    survey: Survey
    rules: list[ConditionalRule] = Field(default_factory=list)


def parse_definition(content: str) -> SurveyDefinition:
    """Parse a YAML or JSON definition document.

    Rules without a survey_id inherit the survey's ID.

    Raises:
        ValueError: If the document is not a mapping or cannot be parsed.
        pydantic.ValidationError: If the structure or a rule is invalid.
    """
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid definition document: {e}")

    if not isinstance(document, dict):
        raise ValueError("Definition document must be a mapping with 'survey' and 'rules'")

    survey_data: Any = document.get("survey")
    survey_id = survey_data.get("id") if isinstance(survey_data, dict) else None
    rules_data = document.get("rules") or []
    for rule in rules_data:
        if isinstance(rule, dict) and rule.get("survey_id") is None:
            rule["survey_id"] = survey_id

    definition = SurveyDefinition.model_validate({"survey": survey_data, "rules": rules_data})
    logger.debug(
        "Loaded definition for survey '%s' with %d rules",
        definition.survey.id,
        len(definition.rules),
    )
    return definition


def load_definition(path: str | Path) -> SurveyDefinition:
    """Read and parse a definition file (.yaml, .yml or .json)."""
    return parse_definition(Path(path).read_text(encoding="utf-8"))
