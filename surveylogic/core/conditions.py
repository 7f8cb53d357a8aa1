"""
Deterministic condition evaluator.

Evaluates one atomic condition (operator + compare value) against the
typed answer of its source question. Pure functions only: no I/O, no
state, no dependence on evaluation order.

Fail-closed: every operator except is_answered / is_not_answered is False
against an unanswered value, and an operator applied to an incompatible
type is False rather than an error.
"""

import logging
from datetime import date
from typing import Any, Callable

from surveylogic.core.answers import (
    AnswerValue,
    BoolValue,
    DateValue,
    NumberValue,
    OpaqueValue,
    TextListValue,
    TextValue,
    is_unanswered,
)
from surveylogic.core.errors import TypeMismatchError, UnknownOperatorError
from surveylogic.core.schema import Condition, ConditionOperator
from surveylogic.core.utils import fold_text, parse_bool, parse_date, parse_number

logger = logging.getLogger(__name__)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def resolve_operator(operator: Any) -> ConditionOperator:
    """Map a rule's operator onto ConditionOperator.

    Raises:
        UnknownOperatorError: If the operator is not supported.
    """
    if isinstance(operator, ConditionOperator):
        return operator
    try:
        return ConditionOperator(str(operator).strip().lower())
    except ValueError:
        raise UnknownOperatorError(None, f"Unknown operator '{operator}'")


def evaluate(condition: Condition, value: AnswerValue | None) -> bool:
    """Evaluate a single condition against the source question's answer.

    Args:
        condition: The condition (operator and compare value) to apply.
        value: The typed answer from the Answer Context, or None.

    Returns:
        True if the condition holds, False otherwise.

    Raises:
        UnknownOperatorError: If the condition's operator is not supported.
    """
    operator = resolve_operator(condition.operator)

    match operator:
        case ConditionOperator.IS_ANSWERED:
            return not is_unanswered(value)
        case ConditionOperator.IS_NOT_ANSWERED:
            return is_unanswered(value)

    # Fail-closed: nothing but the presence operators can match a missing value
    if is_unanswered(value):
        return False

    handler = _HANDLERS[operator]
    try:
        return handler(value, condition.compare_value)
    except TypeMismatchError as e:
        logger.debug(
            "Condition on '%s' (%s) evaluated False: %s",
            condition.source_question_id,
            operator.value,
            e.message,
        )
        return False


# ---------------------------------------------------------------------
# Operator handlers
# ---------------------------------------------------------------------


def _equals(value: AnswerValue, compare_value: Any) -> bool:
    if isinstance(value, TextListValue):
        options = _compare_items(compare_value)
        return _folded_set(value.value) == _folded_set(options)
    if isinstance(compare_value, _SEQUENCE_TYPES):
        raise TypeMismatchError(None, "equals on a single answer needs a scalar compare value")
    return _scalar_equals(_plain(value), compare_value)


def _not_equals(value: AnswerValue, compare_value: Any) -> bool:
    return not _equals(value, compare_value)


def _contains(value: AnswerValue, compare_value: Any) -> bool:
    needles = _compare_items(compare_value)
    if isinstance(value, TextListValue):
        # Every needle must be among the selected options
        selected = _folded_set(value.value)
        return all(fold_text(_as_text(n)) in selected for n in needles)
    if isinstance(value, TextValue):
        if isinstance(compare_value, _SEQUENCE_TYPES):
            raise TypeMismatchError(None, "contains on text needs a scalar compare value")
        return fold_text(_as_text(compare_value)) in fold_text(value.value)
    raise TypeMismatchError(None, f"contains is not defined for {value.kind} answers")


def _not_contains(value: AnswerValue, compare_value: Any) -> bool:
    return not _contains(value, compare_value)


def _greater_than(value: AnswerValue, compare_value: Any) -> bool:
    return _compare(value, compare_value) > 0


def _less_than(value: AnswerValue, compare_value: Any) -> bool:
    return _compare(value, compare_value) < 0


def _one_of(value: AnswerValue, compare_value: Any) -> bool:
    options = _compare_items(compare_value)
    if isinstance(value, OpaqueValue):
        raise TypeMismatchError(None, "one_of is not defined for opaque answers")
    answers = value.value if isinstance(value, TextListValue) else (_plain(value),)
    return any(_loose_equals(a, o) for a in answers for o in options)


def _none_of(value: AnswerValue, compare_value: Any) -> bool:
    return not _one_of(value, compare_value)


_HANDLERS: dict[ConditionOperator, Callable[[AnswerValue, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _not_equals,
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: _not_contains,
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.LESS_THAN: _less_than,
    ConditionOperator.ONE_OF: _one_of,
    ConditionOperator.NONE_OF: _none_of,
}


# ---------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------


def _plain(value: AnswerValue) -> Any:
    """Unwrap a scalar variant into its Python value."""
    if isinstance(value, OpaqueValue):
        raise TypeMismatchError(None, "opaque answers cannot be compared")
    if isinstance(value, TextListValue):
        raise TypeMismatchError(None, "multi-select answer used where a scalar is required")
    return value.value


def _as_text(item: Any) -> str:
    if isinstance(item, bool):
        return "true" if item else "false"
    return str(item)


def _compare_items(compare_value: Any) -> list[Any]:
    """Compare value as a non-empty list of scalars."""
    if compare_value is None:
        raise TypeMismatchError(None, "missing compare value")
    items = list(compare_value) if isinstance(compare_value, _SEQUENCE_TYPES) else [compare_value]
    items = [item for item in items if item is not None and _as_text(item).strip()]
    if not items:
        raise TypeMismatchError(None, "empty compare value")
    for item in items:
        if isinstance(item, (dict, *_SEQUENCE_TYPES)):
            raise TypeMismatchError(None, "compare values must be scalars")
    return items


def _folded_set(items) -> frozenset[str]:
    return frozenset(fold_text(_as_text(item)) for item in items)


def _scalar_equals(left: Any, right: Any) -> bool:
    """Equality across the mixed textual/boolean/numeric forms answers take.

    Raises:
        TypeMismatchError: If one side is a real boolean, number or date
            and the other side cannot be read as the same kind.
    """
    if right is None:
        raise TypeMismatchError(None, "missing compare value")

    left_bool, right_bool = parse_bool(left), parse_bool(right)
    if left_bool is not None and right_bool is not None:
        return left_bool == right_bool
    if isinstance(left, bool) or isinstance(right, bool):
        raise TypeMismatchError(None, f"cannot compare {left!r} with boolean {right!r}")

    left_num, right_num = parse_number(left), parse_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(left, date) or isinstance(right, date):
        left_date, right_date = parse_date(left), parse_date(right)
        if left_date is None or right_date is None:
            raise TypeMismatchError(None, f"cannot compare {left!r} with date {right!r}")
        return left_date == right_date

    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        raise TypeMismatchError(None, f"cannot compare {left!r} with number {right!r}")

    return fold_text(str(left)) == fold_text(str(right))


def _loose_equals(left: Any, right: Any) -> bool:
    """Scalar equality where a type mismatch simply means "not equal"."""
    try:
        return _scalar_equals(left, right)
    except TypeMismatchError:
        return False


def _compare(value: AnswerValue, compare_value: Any) -> int:
    """Three-way numeric or date comparison of answer against compare value.

    Raises:
        TypeMismatchError: If both sides do not coerce to the same
            comparable type.
    """
    if isinstance(value, (BoolValue, TextListValue, OpaqueValue)):
        raise TypeMismatchError(None, f"ordering is not defined for {value.kind} answers")
    if compare_value is None or isinstance(compare_value, (bool, dict, *_SEQUENCE_TYPES)):
        raise TypeMismatchError(None, f"cannot order against {compare_value!r}")

    left = value.value
    if not isinstance(value, DateValue):
        left_num, right_num = parse_number(left), parse_number(compare_value)
        if left_num is not None and right_num is not None:
            return (left_num > right_num) - (left_num < right_num)
        if isinstance(value, NumberValue):
            raise TypeMismatchError(None, f"cannot order number against {compare_value!r}")

    left_date, right_date = parse_date(left), parse_date(compare_value)
    if left_date is not None and right_date is not None:
        return (left_date > right_date) - (left_date < right_date)
    raise TypeMismatchError(None, f"cannot order {left!r} against {compare_value!r}")
