"""
Survey structure and conditional rule models.

These Pydantic models define the contract between the survey runtime
and the logic engine. The survey structure is the single source of truth
for which questions, loop-group subquestions and pages exist; rules
reference them by ID.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, field_validator, model_validator


# --- Enums ---


class QuestionType(str, Enum):
    """Supported question types."""

    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    MULTIPLE_CHOICE = "multiple_choice"
    RADIO = "radio"
    YES_NO = "yes_no"
    DATE_TIME = "date_time"
    NUMBER = "number"
    FILE_UPLOAD = "file_upload"
    LOOP_GROUP = "loop_group"


class ConditionOperator(str, Enum):
    """Operators a rule condition can apply to the source answer.

    All operators are evaluated deterministically in
    `surveylogic.core.conditions`.
    """

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_ANSWERED = "is_answered"
    IS_NOT_ANSWERED = "is_not_answered"
    ONE_OF = "one_of"
    NONE_OF = "none_of"


class RuleAction(str, Enum):
    """What happens to the target when the rule's condition holds."""

    SHOW = "show"
    HIDE = "hide"


class TargetType(str, Enum):
    """Kind of entity a rule targets."""

    QUESTION = "question"
    PAGE = "page"


class RuleLogic(str, Enum):
    """How multiple conditions of one rule are combined."""

    ALL = "all"
    ANY = "any"


_TYPES_REQUIRING_OPTIONS = {QuestionType.MULTIPLE_CHOICE, QuestionType.RADIO}


def _check_options(entity_id: str, question_type: QuestionType, options: list[str] | None) -> None:
    if question_type in _TYPES_REQUIRING_OPTIONS and not options:
        raise ValueError(
            f"Question '{entity_id}' of type '{question_type.value}' must have non-empty 'options'"
        )


# --- Survey structure ---


class LoopConfig(BaseModel):
    """Iteration bounds of a loop group."""

    min_iterations: int = Field(default=0, ge=0)
    max_iterations: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_bounds(self) -> "LoopConfig":
        if self.max_iterations is not None and self.max_iterations < self.min_iterations:
            raise ValueError("'max_iterations' must not be lower than 'min_iterations'")
        return self


class LoopSubquestion(BaseModel):
    """A question answered once per iteration of its loop group."""

    id: str = Field(..., min_length=1)
    type: QuestionType
    title: str = ""
    required: bool = False
    options: list[str] | None = None
    order: int = 0

    @model_validator(mode="after")
    def validate_type(self) -> "LoopSubquestion":
        if self.type == QuestionType.LOOP_GROUP:
            raise ValueError(f"Subquestion '{self.id}' cannot itself be a loop group")
        _check_options(self.id, self.type, self.options)
        return self


class Question(BaseModel):
    """A top-level question on a survey page.

    Loop-group questions carry their subquestion definitions and an
    optional iteration configuration.
    """

    id: str = Field(..., min_length=1)
    type: QuestionType
    title: str = ""
    required: bool = False
    options: list[str] | None = None
    order: int = 0
    subquestions: list[LoopSubquestion] = Field(default_factory=list)
    loop_config: LoopConfig | None = None

    @model_validator(mode="after")
    def validate_loop_fields(self) -> "Question":
        _check_options(self.id, self.type, self.options)
        if self.type == QuestionType.LOOP_GROUP:
            if not self.subquestions:
                raise ValueError(f"Loop group '{self.id}' must define at least one subquestion")
        elif self.subquestions or self.loop_config is not None:
            raise ValueError(
                f"Question '{self.id}' of type '{self.type.value}' cannot have subquestions"
            )
        return self

    @property
    def is_loop_group(self) -> bool:
        return self.type == QuestionType.LOOP_GROUP


class SurveyPage(BaseModel):
    """A page of questions rendered together."""

    id: str = Field(..., min_length=1)
    title: str = ""
    order: int = 0
    questions: list[Question] = Field(default_factory=list)


class Survey(BaseModel):
    """Structure of one survey: pages, questions and loop subquestions.

    Validates that every page, question and subquestion ID is unique,
    then indexes them for the lookups the engine performs per pass.
    """

    id: str = Field(..., min_length=1)
    title: str = ""
    pages: list[SurveyPage] = Field(..., min_length=1)

    _questions: dict[str, Question] = PrivateAttr(default_factory=dict)
    _subquestions: dict[str, tuple[Question, LoopSubquestion]] = PrivateAttr(default_factory=dict)
    _question_pages: dict[str, str] = PrivateAttr(default_factory=dict)
    _pages: dict[str, SurveyPage] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "Survey":
        """Page, question and subquestion IDs share one namespace."""
        seen: set[str] = set()

        def _claim(entity_id: str) -> None:
            if entity_id in seen:
                raise ValueError(f"Duplicate ID in survey: '{entity_id}'")
            seen.add(entity_id)

        for page in self.pages:
            _claim(page.id)
            for question in page.questions:
                _claim(question.id)
                for sub in question.subquestions:
                    _claim(sub.id)
        return self

    def model_post_init(self, __context: Any) -> None:
        for page in self.pages:
            self._pages[page.id] = page
            for question in page.questions:
                self._questions[question.id] = question
                self._question_pages[question.id] = page.id
                for sub in question.subquestions:
                    self._subquestions[sub.id] = (question, sub)
                    self._question_pages[sub.id] = page.id

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------

    def get_page(self, page_id: str) -> SurveyPage | None:
        return self._pages.get(page_id)

    def get_question(self, question_id: str) -> Question | None:
        """Return a top-level question, or None for subquestions/unknown IDs."""
        return self._questions.get(question_id)

    def get_subquestion(self, subquestion_id: str) -> LoopSubquestion | None:
        entry = self._subquestions.get(subquestion_id)
        return entry[1] if entry else None

    def loop_group_of(self, question_id: str) -> str | None:
        """Return the owning loop group ID for a subquestion, else None."""
        entry = self._subquestions.get(question_id)
        return entry[0].id if entry else None

    def page_of(self, entity_id: str) -> str | None:
        """Return the page ID holding a question or subquestion."""
        return self._question_pages.get(entity_id)

    def question_type_of(self, question_id: str) -> QuestionType | None:
        question = self._questions.get(question_id)
        if question is not None:
            return question.type
        sub = self.get_subquestion(question_id)
        return sub.type if sub is not None else None

    def has_question(self, question_id: str) -> bool:
        return question_id in self._questions or question_id in self._subquestions

    def has_page(self, page_id: str) -> bool:
        return page_id in self._pages

    def loop_groups(self) -> list[Question]:
        return [q for q in self._questions.values() if q.is_loop_group]


# --- Rules ---


class Condition(BaseModel):
    """One atomic test applied to the answer of a source question.

    Operators outside ConditionOperator are kept as plain strings so a
    malformed rule can still be loaded and fail in isolation at evaluation.
    """

    source_question_id: str = Field(..., min_length=1)
    operator: ConditionOperator | str = Field(..., description="One of ConditionOperator values")
    compare_value: Any = Field(
        default=None,
        description="Scalar operand, or a sequence for one_of/none_of",
    )

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, ConditionOperator):
            return value
        if isinstance(value, str):
            token = value.strip().lower()
            try:
                return ConditionOperator(token)
            except ValueError:
                return token
        return value


class ConditionalRule(Condition):
    """Author-defined condition-action pair controlling visibility.

    The primary condition lives on the rule itself; `conditions` adds
    further conditions combined with `logic`.
    """

    id: str = Field(..., min_length=1)
    survey_id: str | None = None
    target_type: TargetType = TargetType.QUESTION
    target_id: str = Field(..., min_length=1)
    action: RuleAction
    loop_scope: str | None = Field(
        default=None,
        description="Loop group the source lives in (inferred when absent)",
    )
    conditions: list[Condition] = Field(default_factory=list)
    logic: RuleLogic = RuleLogic.ALL

    def all_conditions(self) -> list[Condition]:
        """Primary condition first, followed by the extra conditions."""
        primary = Condition(
            source_question_id=self.source_question_id,
            operator=self.operator,
            compare_value=self.compare_value,
        )
        return [primary, *self.conditions]

    def source_question_ids(self) -> list[str]:
        return [c.source_question_id for c in self.all_conditions()]
