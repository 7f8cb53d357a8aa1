"""
Graph nodes for the page evaluation pass.

Each node is a focused function that takes PageEvaluationState and
returns a partial state update dict. Nodes communicate through the
shared state.
"""

from surveylogic.engine.nodes.build_context import build_context_node
from surveylogic.engine.nodes.emit import emit_node
from surveylogic.engine.nodes.fan_out import fan_out_node
from surveylogic.engine.nodes.resolve import resolve_node

__all__ = [
    "build_context_node",
    "fan_out_node",
    "resolve_node",
    "emit_node",
]
