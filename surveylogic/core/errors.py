"""
Error taxonomy for conditional-logic evaluation.

Rule-level errors are raised inside the evaluators and absorbed by the
page pass: a broken rule degrades to a non-matching outcome, it never
aborts evaluation of the remaining rules.
"""


class RuleEvaluationError(Exception):
    """Base class for errors raised while evaluating a single rule."""

    code = "rule_error"

    def __init__(self, rule_id: str | None, message: str):
        self.rule_id = rule_id
        self.message = message
        prefix = f"Rule '{rule_id}': " if rule_id else ""
        super().__init__(f"{prefix}{message}")


class RuleReferenceError(RuleEvaluationError):
    """Rule points at a question or page that does not exist."""

    code = "dangling_reference"


class TypeMismatchError(RuleEvaluationError):
    """Operator applied to an answer or compare value of an incompatible type."""

    code = "type_mismatch"


class ScopeViolationError(RuleEvaluationError):
    """Loop-scoped rule targets an entity outside its own loop group."""

    code = "scope_violation"


class UnknownOperatorError(RuleEvaluationError):
    """Rule uses an operator the evaluator does not implement."""

    code = "unknown_operator"


class PageNotFoundError(LookupError):
    """The requested page does not exist in the survey."""

    def __init__(self, page_id: str):
        self.page_id = page_id
        super().__init__(f"Page '{page_id}' does not exist in the survey")


class RuleValidationError(ValueError):
    """Raised when authoring-time validation finds blocking issues."""

    def __init__(self, report):
        self.report = report
        errors = [issue.message for issue in report.errors]
        super().__init__("; ".join(errors) or "Rule validation failed")
