"""
Authoring-time rule validation.

The rule-storage collaborator runs these checks before rules are saved,
so the engine only ever has to tolerate bad data, not repair it:

- Source and target references exist in the same survey
- Loop-scoped rules stay inside their loop group and never target pages
- Operators fit the source question's type
- Compare values have the right shape (sequence for one_of/none_of, etc)
- No rule depends on its own target, directly or through a cycle
"""

import logging
from typing import Iterable, Literal

from pydantic import BaseModel, Field

from surveylogic.core.answers import AnswerContext, AnswerStore
from surveylogic.core.errors import RuleEvaluationError, RuleValidationError
from surveylogic.core.rules import resolve_scope
from surveylogic.core.schema import (
    Condition,
    ConditionalRule,
    ConditionOperator,
    QuestionType,
    Survey,
    TargetType,
)
from surveylogic.core.utils import fold_text, parse_bool, parse_date, parse_number

logger = logging.getLogger(__name__)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)

_PRESENCE_OPERATORS = {ConditionOperator.IS_ANSWERED, ConditionOperator.IS_NOT_ANSWERED}
_SET_OPERATORS = {ConditionOperator.ONE_OF, ConditionOperator.NONE_OF}

# Question types each operator may be applied to (presence operators fit all)
_OPERATOR_TYPES: dict[ConditionOperator, set[QuestionType]] = {
    ConditionOperator.GREATER_THAN: {QuestionType.NUMBER, QuestionType.DATE_TIME},
    ConditionOperator.LESS_THAN: {QuestionType.NUMBER, QuestionType.DATE_TIME},
    ConditionOperator.CONTAINS: {
        QuestionType.SHORT_TEXT,
        QuestionType.LONG_TEXT,
        QuestionType.MULTIPLE_CHOICE,
    },
    ConditionOperator.NOT_CONTAINS: {
        QuestionType.SHORT_TEXT,
        QuestionType.LONG_TEXT,
        QuestionType.MULTIPLE_CHOICE,
    },
}
_COMPARABLE_TYPES = set(QuestionType) - {QuestionType.FILE_UPLOAD, QuestionType.LOOP_GROUP}


class RuleIssue(BaseModel):
    """One problem found in a rule."""

    rule_id: str | None = None
    code: str
    message: str
    severity: Literal["error", "warning"] = "error"


class RuleValidationReport(BaseModel):
    """Outcome of validating a survey's rules."""

    issues: list[RuleIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def errors(self) -> list[RuleIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[RuleIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def for_rule(self, rule_id: str) -> list[RuleIssue]:
        return [i for i in self.issues if i.rule_id == rule_id]


def validate_rules(survey: Survey, rules: Iterable[ConditionalRule]) -> RuleValidationReport:
    """Validate every rule of a survey.

    Args:
        survey: The survey structure the rules belong to.
        rules: The rules to check.

    Returns:
        A report listing every issue found; `report.valid` is False if any
        issue is an error.
    """
    rules = list(rules)
    context = AnswerContext.build(AnswerStore(), survey)
    issues: list[RuleIssue] = []

    seen_ids: set[str] = set()
    for rule in rules:
        if rule.id in seen_ids:
            issues.append(RuleIssue(rule_id=rule.id, code="duplicate_rule_id", message=f"Duplicate rule ID '{rule.id}'"))
        seen_ids.add(rule.id)
        issues.extend(_validate_rule(rule, survey, context))

    issues.extend(_circular_dependency_issues(rules))

    if issues:
        logger.info(
            "Validated %d rules for survey '%s': %d issue(s)", len(rules), survey.id, len(issues)
        )
    return RuleValidationReport(issues=issues)


def ensure_valid_rules(survey: Survey, rules: Iterable[ConditionalRule]) -> RuleValidationReport:
    """Validate rules and raise if any error-level issue is found.

    Raises:
        RuleValidationError: Carrying the full report.
    """
    report = validate_rules(survey, rules)
    if not report.valid:
        raise RuleValidationError(report)
    return report


# ---------------------------------------------------------------------
# Per-rule checks
# ---------------------------------------------------------------------


def _validate_rule(rule: ConditionalRule, survey: Survey, context: AnswerContext) -> list[RuleIssue]:
    issues: list[RuleIssue] = []

    try:
        resolve_scope(rule, context)
    except RuleEvaluationError as e:
        issues.append(RuleIssue(rule_id=rule.id, code=e.code, message=str(e)))

    if rule.target_type == TargetType.QUESTION and rule.target_id in rule.source_question_ids():
        issues.append(RuleIssue(
            rule_id=rule.id,
            code="self_reference",
            message=f"Rule '{rule.id}' makes question '{rule.target_id}' depend on itself",
        ))

    for condition in rule.all_conditions():
        issues.extend(_validate_condition(rule.id, condition, survey))

    return issues


def _validate_condition(rule_id: str, condition: Condition, survey: Survey) -> list[RuleIssue]:
    if not isinstance(condition.operator, ConditionOperator):
        return [RuleIssue(
            rule_id=rule_id,
            code="unknown_operator",
            message=f"Rule '{rule_id}' uses unknown operator '{condition.operator}'",
        )]
    operator = condition.operator
    compare_value = condition.compare_value
    source_type = survey.question_type_of(condition.source_question_id)

    if operator in _PRESENCE_OPERATORS:
        if compare_value is not None:
            return [RuleIssue(
                rule_id=rule_id,
                code="ignored_compare_value",
                message=f"Rule '{rule_id}': {operator.value} ignores its compare value",
                severity="warning",
            )]
        return []

    if compare_value is None or (isinstance(compare_value, str) and not compare_value.strip()):
        return [RuleIssue(
            rule_id=rule_id,
            code="missing_compare_value",
            message=f"Rule '{rule_id}': {operator.value} needs a compare value",
        )]

    issues: list[RuleIssue] = []
    is_sequence = isinstance(compare_value, _SEQUENCE_TYPES)
    if operator in _SET_OPERATORS and not is_sequence:
        issues.append(RuleIssue(
            rule_id=rule_id,
            code="scalar_compare_value",
            message=f"Rule '{rule_id}': {operator.value} expects a list; the scalar is read as a one-item list",
            severity="warning",
        ))
    if is_sequence and operator not in _SET_OPERATORS and source_type != QuestionType.MULTIPLE_CHOICE:
        issues.append(RuleIssue(
            rule_id=rule_id,
            code="invalid_compare_value",
            message=f"Rule '{rule_id}': {operator.value} expects a single compare value",
        ))

    if source_type is None:
        # Dangling source already reported by the scope check
        return issues

    allowed = _OPERATOR_TYPES.get(operator, _COMPARABLE_TYPES)
    if source_type not in allowed:
        issues.append(RuleIssue(
            rule_id=rule_id,
            code="operator_type_mismatch",
            message=(
                f"Rule '{rule_id}': {operator.value} cannot be applied to "
                f"'{condition.source_question_id}' ({source_type.value})"
            ),
        ))
        return issues

    values = list(compare_value) if is_sequence else [compare_value]
    issues.extend(_compare_value_issues(rule_id, condition.source_question_id, source_type, values, survey))
    return issues


def _compare_value_issues(
    rule_id: str,
    source_id: str,
    source_type: QuestionType,
    values: list,
    survey: Survey,
) -> list[RuleIssue]:
    """Check compare values can ever match answers of the source's type."""
    issues: list[RuleIssue] = []

    def _invalid(value, expected: str) -> RuleIssue:
        return RuleIssue(
            rule_id=rule_id,
            code="invalid_compare_value",
            message=f"Rule '{rule_id}': compare value {value!r} is not {expected} (source '{source_id}')",
        )

    if source_type == QuestionType.NUMBER:
        issues.extend(_invalid(v, "a number") for v in values if parse_number(v) is None)
    elif source_type == QuestionType.DATE_TIME:
        issues.extend(_invalid(v, "a date") for v in values if parse_date(v) is None)
    elif source_type == QuestionType.YES_NO:
        issues.extend(_invalid(v, "yes/no") for v in values if parse_bool(v) is None)
    elif source_type in (QuestionType.RADIO, QuestionType.MULTIPLE_CHOICE):
        question = survey.get_question(source_id) or survey.get_subquestion(source_id)
        options = {fold_text(o) for o in (question.options or [])}
        for value in values:
            if fold_text(str(value)) not in options:
                issues.append(RuleIssue(
                    rule_id=rule_id,
                    code="unknown_option",
                    message=f"Rule '{rule_id}': {value!r} is not an option of '{source_id}'",
                    severity="warning",
                ))
    return issues


# ---------------------------------------------------------------------
# Circular dependencies
# ---------------------------------------------------------------------


def find_circular_questions(rules: Iterable[ConditionalRule]) -> list[str]:
    """Return question IDs that sit on a dependency cycle between rules.

    Edges run from each source question to the question a rule targets.
    """
    graph: dict[str, set[str]] = {}
    for rule in rules:
        if rule.target_type != TargetType.QUESTION:
            continue
        for source_id in rule.source_question_ids():
            graph.setdefault(source_id, set()).add(rule.target_id)

    visited: set[str] = set()
    on_stack: set[str] = set()
    circular: list[str] = []

    def _visit(node: str, path: list[str]) -> None:
        visited.add(node)
        on_stack.add(node)
        path.append(node)
        for neighbor in sorted(graph.get(node, ())):
            if neighbor in on_stack:
                # Everything on the path from the neighbor onward is a cycle
                for member in path[path.index(neighbor):]:
                    if member not in circular:
                        circular.append(member)
            elif neighbor not in visited:
                _visit(neighbor, path)
        path.pop()
        on_stack.discard(node)

    for node in sorted(graph):
        if node not in visited:
            _visit(node, [])

    return circular


def _circular_dependency_issues(rules: list[ConditionalRule]) -> list[RuleIssue]:
    circular = set(find_circular_questions(rules))
    issues: list[RuleIssue] = []
    for rule in rules:
        if rule.target_type != TargetType.QUESTION or rule.target_id not in circular:
            continue
        if rule.target_id in rule.source_question_ids():
            # Reported as self_reference
            continue
        if any(source_id in circular for source_id in rule.source_question_ids()):
            issues.append(RuleIssue(
                rule_id=rule.id,
                code="circular_dependency",
                message=f"Rule '{rule.id}' is part of a circular dependency through '{rule.target_id}'",
            ))
    return issues
