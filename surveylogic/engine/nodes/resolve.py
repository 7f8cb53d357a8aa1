"""
Resolve node: folds the pass results into a VisibilityMap.
"""

from surveylogic.core.resolver import resolve_visibility
from surveylogic.engine.state import PageEvaluationState


def resolve_node(state: PageEvaluationState) -> dict:
    """Apply hide precedence and page auto-hide to the pass results."""
    results = state.get("results")
    if results is None:
        # Fan-out was skipped: only unparseable rules can have produced results
        results = list(state.get("failed_results") or [])

    visibility = resolve_visibility(results, state["page"], state.get("iteration_counts"))
    return {"results": results, "visibility": visibility}
