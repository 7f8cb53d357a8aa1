"""
LangGraph definition for the page evaluation pass.

Models one pass as an explicit, inspectable state machine. The compiled
graph holds no state between invocations, so passes for different pages
(or different respondents) may run concurrently.

Flow:
    START (idle) -> build_context -> {fan_out, resolve} (conditional)
    fan_out      -> resolve
    resolve      -> emit
    emit         -> END (idle)
"""

import logging
import threading
from typing import Any, Iterable

from langgraph.graph import END, START, StateGraph

from surveylogic.core.answers import AnswerStore
from surveylogic.core.results import PagePassOutcome, VisibilityMap
from surveylogic.core.schema import ConditionalRule, Survey
from surveylogic.engine.nodes import build_context_node, emit_node, fan_out_node, resolve_node
from surveylogic.engine.state import PageEvaluationState

logger = logging.getLogger(__name__)

_compiled_graph = None
_compile_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Routing functions
# ---------------------------------------------------------------------------


def route_after_context(state: PageEvaluationState) -> str:
    """Skip the fan-out when no rule targets the current page."""
    if state.get("page_rules"):
        return "fan_out"
    return "resolve"


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


def build_graph() -> StateGraph:
    """Build the page evaluation state graph (uncompiled).

    Returns:
        A StateGraph instance ready to be compiled.
    """
    graph = StateGraph(PageEvaluationState)

    graph.add_node("build_context", build_context_node)
    graph.add_node("fan_out", fan_out_node)
    graph.add_node("resolve", resolve_node)
    graph.add_node("emit", emit_node)

    graph.add_edge(START, "build_context")
    graph.add_conditional_edges("build_context", route_after_context, {
        "fan_out": "fan_out",
        "resolve": "resolve",
    })
    graph.add_edge("fan_out", "resolve")
    graph.add_edge("resolve", "emit")
    graph.add_edge("emit", END)

    return graph


def compile_graph():
    """Build and compile the page evaluation graph.

    Returns:
        A compiled graph ready for invocation via invoke().
    """
    return build_graph().compile()


def get_compiled_graph():
    """Return the process-wide compiled graph, compiling it on first use."""
    global _compiled_graph
    with _compile_lock:
        if _compiled_graph is None:
            _compiled_graph = compile_graph()
            logger.debug("Page evaluation graph compiled")
    return _compiled_graph


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def create_pass_input(
    survey: Survey,
    rules: Iterable[ConditionalRule | dict[str, Any]],
    answers: AnswerStore | dict[str, Any] | None,
    page_id: str,
    loop_counts: dict[str, int] | None = None,
) -> PageEvaluationState:
    """Create the input state for one pass.

    Args:
        survey: Structure of the survey being answered.
        rules: The survey's rules; raw dicts are parsed one by one so a
            malformed rule cannot fail the others.
        answers: The full answer snapshot.
        page_id: The page currently displayed.
        loop_counts: Iterations currently rendered per loop group.

    Returns:
        A PageEvaluationState holding only the input section.
    """
    if not isinstance(answers, AnswerStore):
        answers = AnswerStore.model_validate(answers or {})
    return PageEvaluationState(
        survey=survey,
        rules=list(rules),
        answers=answers,
        page_id=page_id,
        loop_counts=dict(loop_counts) if loop_counts else None,
    )


def run_page_pass(
    survey: Survey,
    rules: Iterable[ConditionalRule | dict[str, Any]],
    answers: AnswerStore | dict[str, Any] | None,
    page_id: str,
    loop_counts: dict[str, int] | None = None,
    graph=None,
) -> PagePassOutcome:
    """Run a full evaluation pass for one page.

    Re-run from scratch after every answer mutation; there is no
    incremental evaluation.

    Raises:
        PageNotFoundError: If page_id is not a page of the survey.
    """
    graph = graph or get_compiled_graph()
    final_state = graph.invoke(create_pass_input(survey, rules, answers, page_id, loop_counts))
    return final_state["outcome"]


async def arun_page_pass(
    survey: Survey,
    rules: Iterable[ConditionalRule | dict[str, Any]],
    answers: AnswerStore | dict[str, Any] | None,
    page_id: str,
    loop_counts: dict[str, int] | None = None,
    graph=None,
) -> PagePassOutcome:
    """Async variant of run_page_pass, for callers running on an event loop."""
    graph = graph or get_compiled_graph()
    final_state = await graph.ainvoke(create_pass_input(survey, rules, answers, page_id, loop_counts))
    return final_state["outcome"]


def evaluate_page(
    survey: Survey,
    rules: Iterable[ConditionalRule | dict[str, Any]],
    answers: AnswerStore | dict[str, Any] | None,
    page_id: str,
    loop_counts: dict[str, int] | None = None,
) -> VisibilityMap:
    """Return the VisibilityMap for the page currently displayed."""
    return run_page_pass(survey, rules, answers, page_id, loop_counts).visibility
