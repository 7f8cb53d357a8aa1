"""
Evaluation output models.

Defines what a page pass hands back to the survey runtime: one
EvaluationResult per rule (per loop iteration when scoped), the resolved
VisibilityMap, and the delta between two maps.
"""

from pydantic import BaseModel, ConfigDict, Field

from surveylogic.core.schema import RuleAction, TargetType

LOOP_KEY_SEPARATOR = "#"


def entity_key(entity_id: str, loop_index: int | None = None) -> str:
    """Flat key for a question, or for a subquestion in one loop iteration."""
    if loop_index is None:
        return entity_id
    return f"{entity_id}{LOOP_KEY_SEPARATOR}{loop_index}"


class EvaluationResult(BaseModel):
    """Outcome of one rule evaluation (for one loop iteration if scoped)."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    target_type: TargetType
    target_id: str
    loop_index: int | None = None
    outcome: bool
    action: RuleAction
    error: str | None = Field(
        default=None,
        description="Why the rule was forced to a non-match, if it was",
    )

    @property
    def target_key(self) -> tuple[TargetType, str, int | None]:
        return (self.target_type, self.target_id, self.loop_index)


class VisibilityMap(BaseModel):
    """Visibility of every entity on the evaluated page.

    Top-level questions and pages are keyed by ID; loop subquestions are
    keyed by subquestion ID and then loop index. Entities absent from the
    map are visible.
    """

    model_config = ConfigDict(frozen=True)

    questions: dict[str, bool] = Field(default_factory=dict)
    pages: dict[str, bool] = Field(default_factory=dict)
    loop_questions: dict[str, dict[int, bool]] = Field(default_factory=dict)

    def is_visible(self, question_id: str, loop_index: int | None = None) -> bool:
        if loop_index is None:
            return self.questions.get(question_id, True)
        return self.loop_questions.get(question_id, {}).get(loop_index, True)

    def is_page_visible(self, page_id: str) -> bool:
        return self.pages.get(page_id, True)

    def flatten(self) -> dict[str, bool]:
        """Questions and loop subquestions as one `entity_key -> visible` dict."""
        flat = dict(self.questions)
        for sub_id, iterations in self.loop_questions.items():
            for loop_index, visible in iterations.items():
                flat[entity_key(sub_id, loop_index)] = visible
        return flat


class VisibilityDelta(BaseModel):
    """Difference between two visibility maps of the same page."""

    now_visible: list[str] = Field(default_factory=list)
    now_hidden: list[str] = Field(default_factory=list)
    retained_answers: list[str] = Field(
        default_factory=list,
        description="Newly hidden entities whose answers are kept, not cleared",
    )
    pages_now_visible: list[str] = Field(default_factory=list)
    pages_now_hidden: list[str] = Field(default_factory=list)


class PagePassOutcome(BaseModel):
    """Everything one page pass produced."""

    visibility: VisibilityMap
    results: list[EvaluationResult] = Field(default_factory=list)
    skipped_rules: list[str] = Field(
        default_factory=list,
        description="IDs (or positions) of rules that could not be parsed",
    )
