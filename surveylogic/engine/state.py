"""
Page evaluation pass state definition.

Defines the typed state that flows through the LangGraph nodes of one
page pass. A fresh state is created for every pass; nothing in it
survives into the next one.
"""

from typing import Any, TypedDict

from surveylogic.core.answers import AnswerContext, AnswerStore
from surveylogic.core.results import EvaluationResult, PagePassOutcome, VisibilityMap
from surveylogic.core.schema import ConditionalRule, Survey, SurveyPage


class PageEvaluationState(TypedDict, total=False):
    """Complete state for one page evaluation pass.

    Split into sections:
    - Input:        Set by the caller (rules, answer snapshot, page)
    - Intermediate: Built by the context node, consumed downstream
    - Output:       Results, the resolved map and the final outcome
    """

    # --- Input (set per pass) ---
    survey: Survey
    rules: list[Any]  # ConditionalRule instances or raw dicts
    answers: AnswerStore
    page_id: str
    loop_counts: dict[str, int] | None

    # --- Intermediate ---
    context: AnswerContext
    page: SurveyPage
    page_rules: list[ConditionalRule]
    iteration_counts: dict[str, int]
    skipped_rules: list[str]
    # Non-matching results for rules that could not be parsed at all
    failed_results: list[EvaluationResult]

    # --- Output ---
    results: list[EvaluationResult]
    visibility: VisibilityMap
    outcome: PagePassOutcome
