"""
Emit node: packages the pass output for the survey runtime.
"""

import logging

from surveylogic.core.results import PagePassOutcome
from surveylogic.engine.state import PageEvaluationState

logger = logging.getLogger(__name__)


def emit_node(state: PageEvaluationState) -> dict:
    """Assemble the PagePassOutcome returned to the caller."""
    visibility = state["visibility"]
    hidden = [qid for qid, visible in visibility.questions.items() if not visible]

    logger.info(
        "Evaluated page '%s': %d question(s), %d hidden, page visible=%s",
        state["page_id"],
        len(visibility.questions),
        len(hidden),
        visibility.is_page_visible(state["page_id"]),
    )

    return {
        "outcome": PagePassOutcome(
            visibility=visibility,
            results=list(state.get("results") or []),
            skipped_rules=list(state.get("skipped_rules") or []),
        )
    }
