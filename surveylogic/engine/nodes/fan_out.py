"""
Rule fan-out node: evaluates every page rule, per loop iteration if scoped.

Each rule is isolated: a rule that fails (dangling reference, scope
violation, unknown operator) contributes non-matching results and is
logged once, the remaining rules are still evaluated.
"""

import logging

from surveylogic.core.results import EvaluationResult
from surveylogic.core.rules import evaluate_rule_instances
from surveylogic.engine.state import PageEvaluationState

logger = logging.getLogger(__name__)


def fan_out_node(state: PageEvaluationState) -> dict:
    """Evaluate all rules targeting the current page.

    Returns:
        Partial state with one EvaluationResult per rule instance.
    """
    context = state["context"]
    results: list[EvaluationResult] = list(state.get("failed_results") or [])

    for rule in state.get("page_rules") or []:
        results.extend(evaluate_rule_instances(rule, context))

    failed = sum(1 for r in results if r.error is not None)
    logger.debug(
        "Fan-out on page '%s': %d rules, %d results (%d non-matching due to errors)",
        state["page_id"],
        len(state.get("page_rules") or []),
        len(results),
        failed,
    )
    return {"results": results}
