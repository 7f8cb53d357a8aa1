"""
Answer store normalization and the per-pass Answer Context.

Raw answers arrive as untyped JSON: a flat `question_id -> value` map plus
loop-group iterations keyed `loop_question_id -> loop_index ->
subquestion_id -> value`. The Answer Context coerces every value once into
a closed set of typed variants and exposes a single lookup function.
"""

import logging
from datetime import date, datetime
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from surveylogic.core.schema import Survey
from surveylogic.core.utils import parse_number

logger = logging.getLogger(__name__)


# --- Typed answer variants ---


class BoolValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["bool"] = "bool"
    value: bool


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class NumberValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["number"] = "number"
    value: float


class DateValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["date"] = "date"
    value: date


class TextListValue(BaseModel):
    """Multi-select answer: the selected option labels, in selection order."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text_list"] = "text_list"
    value: tuple[str, ...]


class OpaqueValue(BaseModel):
    """An answered value with no comparable shape (e.g. file upload metadata).

    It counts as answered; every comparison operator treats it as a
    type mismatch.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["opaque"] = "opaque"
    value: str


AnswerValue = Annotated[
    Union[BoolValue, TextValue, NumberValue, DateValue, TextListValue, OpaqueValue],
    Field(discriminator="kind"),
]


def _list_item_text(item: Any) -> str | None:
    if item is None:
        return None
    if isinstance(item, bool):
        return "true" if item else "false"
    if isinstance(item, (str, int, float)):
        text = str(item)
        return text if text.strip() else None
    return None


def coerce_answer(raw: Any) -> AnswerValue | None:
    """Coerce a raw stored answer into its typed variant.

    Returns None for unanswered values: None, blank strings and empty
    sequences. Never raises; shapes outside the closed set become
    OpaqueValue.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return BoolValue(value=raw)
    if isinstance(raw, (int, float)):
        number = parse_number(raw)
        return NumberValue(value=number) if number is not None else None
    if isinstance(raw, str):
        return TextValue(value=raw) if raw.strip() else None
    if isinstance(raw, datetime):
        return DateValue(value=raw.date())
    if isinstance(raw, date):
        return DateValue(value=raw)
    if isinstance(raw, (list, tuple)):
        if not raw:
            return None
        items = [_list_item_text(item) for item in raw]
        if all(isinstance(item, (str, int, float, bool)) or item is None for item in raw):
            texts = tuple(t for t in items if t is not None)
            return TextListValue(value=texts) if texts else None
        return OpaqueValue(value=repr(raw))
    if isinstance(raw, dict):
        return OpaqueValue(value=repr(raw)) if raw else None
    return OpaqueValue(value=repr(raw))


def is_unanswered(value: AnswerValue | None) -> bool:
    """True for values the evaluator must treat as "not answered yet"."""
    if value is None:
        return True
    if isinstance(value, TextValue):
        return not value.value.strip()
    if isinstance(value, TextListValue):
        return len(value.value) == 0
    return False


# --- Raw answer store ---


class AnswerRow(BaseModel):
    """One persisted answer, as stored by the response service."""

    question_id: str
    subquestion_id: str | None = None
    loop_index: int | None = None
    value: Any = None


class AnswerStore(BaseModel):
    """Raw answers owned by the survey runtime.

    `answers` holds top-level values; `loops` holds loop-group iterations
    keyed by loop question ID, then loop index, then subquestion ID.
    """

    answers: dict[str, Any] = Field(default_factory=dict)
    loops: dict[str, dict[int, dict[str, Any]]] = Field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: Iterable[AnswerRow | dict]) -> "AnswerStore":
        """Build a store from persisted answer rows.

        Subquestion rows without a loop index belong to iteration 0; the
        response service persists index 0 as null.
        """
        answers: dict[str, Any] = {}
        loops: dict[str, dict[int, dict[str, Any]]] = {}
        for row in rows:
            if not isinstance(row, AnswerRow):
                row = AnswerRow.model_validate(row)
            if row.subquestion_id:
                iteration = loops.setdefault(row.question_id, {}).setdefault(row.loop_index or 0, {})
                iteration[row.subquestion_id] = row.value
            else:
                answers[row.question_id] = row.value
        return cls(answers=answers, loops=loops)


# --- Answer Context ---


class LoopInstance(BaseModel):
    """Answers given in one iteration of a loop group."""

    model_config = ConfigDict(frozen=True)

    index: int
    answers: dict[str, AnswerValue] = Field(default_factory=dict)


class AnswerContext:
    """Typed, read-only view over one answer snapshot.

    Built fresh for each evaluation pass so no lookup can observe a stale
    answer after a mutation.

    Args:
        survey: The survey structure (resolves subquestions to loop groups).
        answers: Coerced top-level answers.
        loops: Loop instances per loop group, sorted by index.
        loop_counts: Current iteration count per loop group, as reported by
            the runtime. Overrides the count derived from stored answers.
    """

    def __init__(
        self,
        survey: Survey,
        answers: dict[str, AnswerValue],
        loops: dict[str, list[LoopInstance]],
        loop_counts: dict[str, int] | None = None,
    ):
        self.survey = survey
        self._answers = answers
        self._loops = loops
        self._loop_counts = dict(loop_counts or {})
        self._by_index = {
            loop_id: {instance.index: instance for instance in instances}
            for loop_id, instances in loops.items()
        }

    @classmethod
    def build(
        cls,
        store: AnswerStore,
        survey: Survey,
        loop_counts: dict[str, int] | None = None,
    ) -> "AnswerContext":
        """Coerce a raw answer store into a context for one pass."""
        answers: dict[str, AnswerValue] = {}
        for question_id, raw in store.answers.items():
            value = coerce_answer(raw)
            if value is not None:
                answers[question_id] = value

        loops: dict[str, list[LoopInstance]] = {}
        for loop_id, iterations in store.loops.items():
            instances: list[LoopInstance] = []
            for index in sorted(iterations):
                if index < 0:
                    logger.warning("Ignoring negative loop index %d for loop '%s'", index, loop_id)
                    continue
                coerced = {}
                for sub_id, raw in iterations[index].items():
                    value = coerce_answer(raw)
                    if value is not None:
                        coerced[sub_id] = value
                instances.append(LoopInstance(index=index, answers=coerced))
            loops[loop_id] = instances

        return cls(survey, answers, loops, loop_counts)

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def lookup(self, question_id: str, loop_index: int | None = None) -> AnswerValue | None:
        """Return the typed answer for a question, or None if unanswered.

        For a loop subquestion, `loop_index` selects the iteration; a
        missing iteration (or a missing index) reads as unanswered.
        """
        loop_id = self.survey.loop_group_of(question_id)
        if loop_id is None:
            return self._answers.get(question_id)
        if loop_index is None:
            return None
        instance = self._by_index.get(loop_id, {}).get(loop_index)
        if instance is None:
            return None
        return instance.answers.get(question_id)

    def stored_iteration_count(self, loop_id: str) -> int:
        """Number of iterations present in the store (highest index + 1)."""
        instances = self._loops.get(loop_id)
        if not instances:
            return 0
        return instances[-1].index + 1

    def iteration_count(self, loop_id: str) -> int:
        """Number of iterations the loop group currently renders.

        The runtime-reported count wins; otherwise the stored count, raised
        to the loop's configured minimum.
        """
        if loop_id in self._loop_counts:
            return max(0, self._loop_counts[loop_id])
        count = self.stored_iteration_count(loop_id)
        question = self.survey.get_question(loop_id)
        if question is not None and question.loop_config is not None:
            count = max(count, question.loop_config.min_iterations)
        return count

    def loop_instances(self, loop_id: str) -> list[LoopInstance]:
        return list(self._loops.get(loop_id, []))

    def loop_group_of(self, question_id: str) -> str | None:
        return self.survey.loop_group_of(question_id)

    def knows(self, question_id: str) -> bool:
        """True if the question or subquestion exists in the survey."""
        return self.survey.has_question(question_id)
