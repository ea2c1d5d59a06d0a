"""State graph construction and validation."""

from tickfsm.graph.builder import (
    Edge,
    GraphFrozenError,
    StateGraph,
    StateNode,
    build_graph,
)
from tickfsm.graph.validator import GraphValidator, ValidationReport, validate_graph

__all__ = [
    # Graph
    "StateGraph",
    "StateNode",
    "Edge",
    "GraphFrozenError",
    "build_graph",
    # Validation
    "GraphValidator",
    "ValidationReport",
    "validate_graph",
]
