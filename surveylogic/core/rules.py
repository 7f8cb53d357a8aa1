"""
Rule evaluator: from one ConditionalRule to EvaluationResults.

A rule's loop scope is taken from its source questions. A rule sourced
inside a loop group is evaluated once per iteration, each iteration
reading only its own answers; a top-level rule targeting a loop
subquestion is broadcast to every iteration of that loop.
"""

import logging
from dataclasses import dataclass

from surveylogic.core.answers import AnswerContext
from surveylogic.core.conditions import evaluate
from surveylogic.core.errors import (
    RuleEvaluationError,
    RuleReferenceError,
    ScopeViolationError,
)
from surveylogic.core.results import EvaluationResult
from surveylogic.core.schema import ConditionalRule, RuleLogic, SurveyPage, TargetType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleScope:
    """Where a rule reads its answers from and where its target lives.

    Attributes:
        source_loop: Loop group the rule's sources live in, or None.
        target_loop: Loop group the target subquestion lives in, or None.
    """

    source_loop: str | None
    target_loop: str | None


def resolve_scope(rule: ConditionalRule, context: AnswerContext) -> RuleScope:
    """Check a rule's references against the survey and derive its scope.

    Raises:
        RuleReferenceError: If a source or the target does not exist, or
            the rule belongs to a different survey.
        ScopeViolationError: If a loop-scoped rule targets an entity outside
            its loop group (or any page).
    """
    survey = context.survey
    if rule.survey_id is not None and rule.survey_id != survey.id:
        raise RuleReferenceError(rule.id, f"belongs to survey '{rule.survey_id}', not '{survey.id}'")

    source_loops: set[str] = set()
    for source_id in rule.source_question_ids():
        if not context.knows(source_id):
            raise RuleReferenceError(rule.id, f"source question '{source_id}' does not exist")
        loop_id = context.loop_group_of(source_id)
        if loop_id is not None:
            source_loops.add(loop_id)

    if len(source_loops) > 1:
        raise ScopeViolationError(
            rule.id, f"conditions read from several loop groups: {sorted(source_loops)}"
        )
    source_loop = next(iter(source_loops), None)

    if rule.loop_scope is not None and rule.loop_scope != source_loop:
        raise ScopeViolationError(
            rule.id,
            f"declared loop scope '{rule.loop_scope}' does not match its source "
            f"(loop '{source_loop}')",
        )

    if rule.target_type == TargetType.PAGE:
        if not survey.has_page(rule.target_id):
            raise RuleReferenceError(rule.id, f"target page '{rule.target_id}' does not exist")
        if source_loop is not None:
            raise ScopeViolationError(rule.id, "loop-scoped rules cannot target pages")
        return RuleScope(source_loop=None, target_loop=None)

    if not survey.has_question(rule.target_id):
        raise RuleReferenceError(rule.id, f"target question '{rule.target_id}' does not exist")
    target_loop = survey.loop_group_of(rule.target_id)

    if source_loop is not None and target_loop != source_loop:
        if target_loop is not None:
            raise ScopeViolationError(
                rule.id,
                f"source in loop '{source_loop}' cannot target subquestion of loop '{target_loop}'",
            )
        if survey.page_of(rule.target_id) != survey.page_of(source_loop):
            raise ScopeViolationError(
                rule.id,
                f"source in loop '{source_loop}' can only target questions on the loop's page",
            )

    return RuleScope(source_loop=source_loop, target_loop=target_loop)


def evaluate_rule(
    rule: ConditionalRule,
    context: AnswerContext,
    loop_index: int | None = None,
) -> EvaluationResult:
    """Evaluate one rule, for one loop iteration when scoped.

    Sources are read at `loop_index` only when they live in a loop group;
    the result carries `loop_index` only when the target does.

    Raises:
        RuleEvaluationError: For dangling references, scope violations or
            unknown operators.
    """
    scope = resolve_scope(rule, context)
    lookup_index = loop_index if scope.source_loop is not None else None

    try:
        # Every condition is evaluated so a broken one fails the rule under "any" too
        outcomes = [
            evaluate(condition, context.lookup(condition.source_question_id, lookup_index))
            for condition in rule.all_conditions()
        ]
        outcome = all(outcomes) if rule.logic == RuleLogic.ALL else any(outcomes)
    except RuleEvaluationError as e:
        # Re-raise with the rule ID attached
        raise type(e)(rule.id, e.message)

    return EvaluationResult(
        rule_id=rule.id,
        target_type=rule.target_type,
        target_id=rule.target_id,
        loop_index=loop_index if scope.target_loop is not None else None,
        outcome=outcome,
        action=rule.action,
    )


def rule_iterations(rule: ConditionalRule, context: AnswerContext) -> list[int | None]:
    """Loop indexes a rule must be evaluated at during one pass.

    A loop-sourced rule targeting a question outside the loop with no
    iterations yet is still evaluated once, against unanswered sources.
    """
    scope = resolve_scope(rule, context)
    if scope.source_loop is not None:
        iterations: list[int | None] = list(range(context.iteration_count(scope.source_loop)))
        if not iterations and scope.target_loop is None:
            return [None]
        return iterations
    if scope.target_loop is not None:
        return list(range(context.iteration_count(scope.target_loop)))
    return [None]


def evaluate_rule_instances(rule: ConditionalRule, context: AnswerContext) -> list[EvaluationResult]:
    """Evaluate a rule at every iteration it applies to.

    Never raises: a rule that cannot be evaluated yields non-matching
    results (its action's negation) carrying the error message.
    """
    try:
        return [evaluate_rule(rule, context, index) for index in rule_iterations(rule, context)]
    except RuleEvaluationError as e:
        logger.warning("Rule '%s' treated as non-matching (%s): %s", rule.id, e.code, e.message)
        return failed_results(rule, context, str(e))


def failed_results(rule: ConditionalRule, context: AnswerContext, error: str) -> list[EvaluationResult]:
    """Non-matching results for a broken rule, one per rendered iteration of its target."""
    indexes: list[int | None] = [None]
    if rule.target_type == TargetType.QUESTION:
        target_loop = context.loop_group_of(rule.target_id)
        if target_loop is not None:
            indexes = list(range(context.iteration_count(target_loop)))
    return [
        EvaluationResult(
            rule_id=rule.id,
            target_type=rule.target_type,
            target_id=rule.target_id,
            loop_index=index,
            outcome=False,
            action=rule.action,
            error=error,
        )
        for index in indexes
    ]


def targets_page(rule: ConditionalRule, context: AnswerContext, page: SurveyPage) -> bool:
    """True if the rule's target is the page itself or an entity on it."""
    if rule.target_type == TargetType.PAGE:
        return rule.target_id == page.id
    return context.survey.page_of(rule.target_id) == page.id
