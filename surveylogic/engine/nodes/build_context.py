"""
Context build node: parses rules and builds the Answer Context.

Malformed rules are isolated here: each one is skipped with a warning,
and when its target can still be read it is recorded as a non-matching
result so a broken show rule keeps its target hidden.
"""

import logging
from typing import Any

from pydantic import ValidationError

from surveylogic.core.answers import AnswerContext, AnswerStore
from surveylogic.core.errors import PageNotFoundError
from surveylogic.core.results import EvaluationResult
from surveylogic.core.rules import failed_results, targets_page
from surveylogic.core.schema import ConditionalRule, RuleAction, TargetType
from surveylogic.engine.state import PageEvaluationState

logger = logging.getLogger(__name__)


def build_context_node(state: PageEvaluationState) -> dict:
    """Build the Answer Context and select the rules aimed at the page.

    Returns:
        Partial state with the context, the page, its rules and the
        iteration count of every loop group on it.

    Raises:
        PageNotFoundError: If page_id is not a page of the survey.
    """
    survey = state["survey"]
    page_id = state["page_id"]
    page = survey.get_page(page_id)
    if page is None:
        raise PageNotFoundError(page_id)

    answers = state.get("answers")
    if not isinstance(answers, AnswerStore):
        answers = AnswerStore.model_validate(answers or {})
    context = AnswerContext.build(answers, survey, state.get("loop_counts"))

    page_rules: list[ConditionalRule] = []
    skipped: list[str] = []
    salvaged: list[EvaluationResult] = []
    for position, raw in enumerate(state.get("rules") or []):
        rule, error = _parse_rule(raw)
        if rule is None:
            label = _rule_label(raw, position)
            logger.warning("Skipping malformed rule %s: %s", label, error)
            skipped.append(label)
            stub = _salvage_target(raw, label)
            if stub is not None and targets_page(stub, context, page):
                salvaged.extend(failed_results(stub, context, f"malformed rule: {error}"))
            continue
        if not (survey.has_page(rule.target_id) or survey.has_question(rule.target_id)):
            logger.warning("Rule '%s' targets unknown %s '%s'", rule.id, rule.target_type.value, rule.target_id)
            continue
        if targets_page(rule, context, page):
            page_rules.append(rule)

    iteration_counts = {
        question.id: context.iteration_count(question.id)
        for question in page.questions
        if question.is_loop_group
    }

    return {
        "context": context,
        "page": page,
        "page_rules": page_rules,
        "iteration_counts": iteration_counts,
        "skipped_rules": skipped,
        "failed_results": salvaged,
    }


def _parse_rule(raw: Any) -> tuple[ConditionalRule | None, str | None]:
    if isinstance(raw, ConditionalRule):
        return raw, None
    try:
        return ConditionalRule.model_validate(raw), None
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "rule" for err in e.errors()})
        return None, f"invalid field(s): {', '.join(fields)}"


def _rule_label(raw: Any, position: int) -> str:
    if isinstance(raw, dict) and raw.get("id"):
        return str(raw["id"])
    return f"#{position}"


def _salvage_target(raw: Any, label: str) -> ConditionalRule | None:
    """Read just the target and action of an unparseable rule, if possible."""
    if not isinstance(raw, dict):
        return None
    try:
        action = RuleAction(str(raw.get("action", "")).strip().lower())
        target_type = TargetType(str(raw.get("target_type", "question")).strip().lower())
    except ValueError:
        return None
    target_id = raw.get("target_id")
    if not isinstance(target_id, str) or not target_id:
        return None
    return ConditionalRule.model_construct(
        id=label,
        target_type=target_type,
        target_id=target_id,
        action=action,
    )
