"""
Visibility resolver.

Folds every EvaluationResult aimed at the same entity into one decision
using a fixed precedence, so the conflict policy lives in one place:

    NO_RULE < SHOW_UNMET < SHOW_MET < HIDE_MET

A firing hide rule always wins. Without one, an entity is visible if it
has no show rules or at least one of its show rules fired. The fold is a
max over verdicts, so result order never matters.
"""

import logging
from collections import defaultdict
from enum import IntEnum
from functools import reduce
from typing import Iterable, Mapping

from surveylogic.core.answers import AnswerStore, coerce_answer, is_unanswered
from surveylogic.core.results import (
    LOOP_KEY_SEPARATOR,
    EvaluationResult,
    VisibilityDelta,
    VisibilityMap,
)
from surveylogic.core.schema import RuleAction, SurveyPage, TargetType

logger = logging.getLogger(__name__)


class Verdict(IntEnum):
    """Contribution of one or more rules to an entity's visibility."""

    NO_RULE = 0
    SHOW_UNMET = 1
    SHOW_MET = 2
    HIDE_MET = 3

    @property
    def visible(self) -> bool:
        return self in (Verdict.NO_RULE, Verdict.SHOW_MET)


def verdict_of(result: EvaluationResult) -> Verdict:
    """Map one rule outcome onto the precedence scale."""
    if result.action == RuleAction.HIDE:
        # A hide rule that did not fire has no say
        return Verdict.HIDE_MET if result.outcome else Verdict.NO_RULE
    return Verdict.SHOW_MET if result.outcome else Verdict.SHOW_UNMET


def fold_verdicts(results: Iterable[EvaluationResult]) -> Verdict:
    return reduce(max, (verdict_of(r) for r in results), Verdict.NO_RULE)


def group_results(
    results: Iterable[EvaluationResult],
) -> dict[tuple[TargetType, str, int | None], Verdict]:
    """Fold results per (target_type, target_id, loop_index)."""
    grouped: dict[tuple[TargetType, str, int | None], list[EvaluationResult]] = defaultdict(list)
    for result in results:
        grouped[result.target_key].append(result)
    return {key: fold_verdicts(group) for key, group in grouped.items()}


def resolve_visibility(
    results: Iterable[EvaluationResult],
    page: SurveyPage,
    loop_counts: Mapping[str, int] | None = None,
) -> VisibilityMap:
    """Resolve a page's visibility from all results of one pass.

    Args:
        results: Every EvaluationResult produced by the pass.
        page: The page being rendered.
        loop_counts: Iterations currently rendered per loop group on the page.

    Returns:
        A new VisibilityMap covering the page, its questions and every
        rendered loop subquestion instance.
    """
    verdicts = group_results(results)
    loop_counts = loop_counts or {}

    def _visible(target_type: TargetType, target_id: str, loop_index: int | None = None) -> bool:
        return verdicts.get((target_type, target_id, loop_index), Verdict.NO_RULE).visible

    questions: dict[str, bool] = {}
    loop_questions: dict[str, dict[int, bool]] = {}
    for question in page.questions:
        questions[question.id] = _visible(TargetType.QUESTION, question.id)
        if not question.is_loop_group:
            continue
        for sub in question.subquestions:
            loop_questions[sub.id] = {
                index: _visible(TargetType.QUESTION, sub.id, index)
                for index in range(loop_counts.get(question.id, 0))
            }

    # A page with at least one visible question is never auto-hidden
    explicitly_hidden = not _visible(TargetType.PAGE, page.id)
    auto_hidden = bool(questions) and not any(questions.values())
    if auto_hidden:
        logger.debug("Page '%s' auto-hidden: all %d questions hidden", page.id, len(questions))

    return VisibilityMap(
        questions=questions,
        pages={page.id: not (explicitly_hidden or auto_hidden)},
        loop_questions=loop_questions,
    )


# ---------------------------------------------------------------------
# Visibility delta
# ---------------------------------------------------------------------


def _has_stored_answer(key: str, answers: AnswerStore) -> bool:
    if key in answers.answers:
        return not is_unanswered(coerce_answer(answers.answers[key]))
    sub_id, sep, index_text = key.rpartition(LOOP_KEY_SEPARATOR)
    if not sep or not index_text.isdigit():
        return False
    index = int(index_text)
    for iterations in answers.loops.values():
        iteration = iterations.get(index)
        if iteration and sub_id in iteration:
            return not is_unanswered(coerce_answer(iteration[sub_id]))
    return False


def compute_visibility_delta(
    previous: VisibilityMap,
    current: VisibilityMap,
    answers: AnswerStore | None = None,
) -> VisibilityDelta:
    """Diff two maps of the same page.

    - now_visible: entities hidden before and visible now
    - now_hidden: entities visible before (or absent) and hidden now
    - retained_answers: subset of now_hidden holding a stored answer; the
      runtime keeps those values so re-showing restores them
    - pages_now_visible / pages_now_hidden: the same diff over page IDs
    """
    now_visible, now_hidden = _diff(previous.flatten(), current.flatten())
    pages_now_visible, pages_now_hidden = _diff(previous.pages, current.pages)

    retained = [key for key in now_hidden if answers is not None and _has_stored_answer(key, answers)]
    return VisibilityDelta(
        now_visible=now_visible,
        now_hidden=now_hidden,
        retained_answers=retained,
        pages_now_visible=pages_now_visible,
        pages_now_hidden=pages_now_hidden,
    )


def _diff(before: Mapping[str, bool], after: Mapping[str, bool]) -> tuple[list[str], list[str]]:
    """Keys that turned visible and keys that turned hidden; absent keys are visible."""
    now_visible: list[str] = []
    now_hidden: list[str] = []
    for key in sorted(set(before) | set(after)):
        was_visible = before.get(key, True)
        is_visible = after.get(key, True)
        if is_visible and not was_visible:
            now_visible.append(key)
        elif was_visible and not is_visible:
            now_hidden.append(key)
    return now_visible, now_hidden
