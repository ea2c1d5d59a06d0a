"""Directed state graph and the builder that resolves a model into one."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from tickfsm.models.diagnostics import (
    UNKNOWN_LOCATION,
    Diagnostic,
    DiagnosticCode,
    Phase,
    SourceLocation,
)
from tickfsm.models.machine import GuardSpec, MachineModel, StateDecl, TransitionDecl
from tickfsm.utils.logging import get_logger
from tickfsm.utils.result import Err, Ok, Result, collect_results

logger = get_logger("graph.builder")


class GraphFrozenError(Exception):
    """Raised when a frozen graph is modified."""

    pass


class Edge:
    """An outgoing transition of a state node."""

    __slots__ = ("transition",)

    def __init__(self, transition: TransitionDecl) -> None:
        self.transition = transition

    @property
    def id(self) -> str:
        return self.transition.id

    @property
    def source(self) -> str:
        return self.transition.source

    @property
    def target(self) -> str:
        return self.transition.target

    @property
    def guard(self) -> GuardSpec:
        return self.transition.guard

    @property
    def priority(self) -> int:
        return self.transition.priority

    def __repr__(self) -> str:
        return f"Edge({self.id!r}, priority={self.priority}, guard={self.guard.text!r})"


class StateNode:
    """A state and its outgoing edges, kept in evaluation order."""

    __slots__ = ("state", "_outgoing")

    def __init__(self, state: StateDecl) -> None:
        self.state = state
        self._outgoing: list[Edge] | tuple[Edge, ...] = []

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def outgoing(self) -> tuple[Edge, ...]:
        """Outgoing edges sorted by (priority, declaration order)."""
        return tuple(self._outgoing)

    def __repr__(self) -> str:
        return f"StateNode({self.name!r}, outgoing={len(self._outgoing)})"


class StateGraph:
    """
    Directed graph of a machine's states keyed by state id.

    The graph is mutable while it is being built. Validation freezes it,
    after which it is read-only and may be shared by any number of runtime
    instances.
    """

    def __init__(
        self,
        name: str,
        host: Optional[type] = None,
        host_ref: str = "",
        location: SourceLocation = UNKNOWN_LOCATION,
    ) -> None:
        self.name = name
        self.host = host
        self.host_ref = host_ref
        self.location = location
        self._nodes: dict[str, StateNode] = {}
        self._edge_ids: set[str] = set()
        self._frozen = False

    # Construction

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphFrozenError(f"state graph {self.name} is frozen")

    def add_state(self, state: StateDecl) -> StateNode:
        """
        Add a state node.

        Raises:
            GraphFrozenError: If the graph is frozen
            ValueError: If a state with the same name exists
        """
        self._check_mutable()
        if state.name in self._nodes:
            raise ValueError(f"duplicate state: {state.name}")
        node = StateNode(state)
        self._nodes[state.name] = node
        return node

    def add_transition(self, transition: TransitionDecl) -> Edge:
        """
        Add an edge from its source state.

        The target is not checked here; the validator reports dangling
        targets.

        Raises:
            GraphFrozenError: If the graph is frozen
            KeyError: If the source state does not exist
            ValueError: If a transition with the same id exists
        """
        self._check_mutable()
        if transition.source not in self._nodes:
            raise KeyError(transition.source)
        if transition.id in self._edge_ids:
            raise ValueError(f"duplicate transition: {transition.id}")

        edge = Edge(transition)
        node = self._nodes[transition.source]
        node._outgoing.append(edge)
        node._outgoing.sort(key=lambda e: e.transition.sort_key)
        self._edge_ids.add(transition.id)
        return edge

    def freeze(self) -> StateGraph:
        """Make the graph immutable. Idempotent."""
        if not self._frozen:
            for node in self._nodes.values():
                node._outgoing = tuple(node._outgoing)
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Queries

    @property
    def nodes(self) -> Mapping[str, StateNode]:
        return MappingProxyType(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[StateNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, name: str) -> StateNode:
        return self._nodes[name]

    def outgoing(self, name: str) -> tuple[Edge, ...]:
        return self._nodes[name].outgoing

    def edges(self) -> list[Edge]:
        """All edges, grouped by source in state declaration order."""
        return [edge for node in self._nodes.values() for edge in node.outgoing]

    def states(self) -> list[StateDecl]:
        return [node.state for node in self._nodes.values()]

    def initial_states(self) -> list[StateDecl]:
        return [s for s in self.states() if s.initial]

    def terminal_states(self) -> list[StateDecl]:
        return [s for s in self.states() if s.terminal]

    @property
    def initial_state(self) -> StateDecl:
        """
        The single initial state of a valid graph.

        Raises:
            ValueError: If there is not exactly one initial state
        """
        initials = self.initial_states()
        if len(initials) != 1:
            raise ValueError(f"state graph {self.name} has {len(initials)} initial states")
        return initials[0]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "host": self.host_ref,
            "frozen": self._frozen,
            "states": [
                {
                    **node.state.to_dict(),
                    "outgoing": [edge.transition.to_dict() for edge in node.outgoing],
                }
                for node in self._nodes.values()
            ],
        }


def build_graph(model: MachineModel) -> Result[StateGraph, list[Diagnostic]]:
    """
    Resolve a machine model into a state graph.

    Performs no semantic validation. Transitions naming undeclared states
    are resolution errors, all reported together.

    Args:
        model: Extracted machine model

    Returns:
        Ok(StateGraph) with edges sorted by priority, or Err with every
        dangling transition
    """
    graph = StateGraph(
        name=model.name,
        host=model.host,
        host_ref=model.host_ref,
        location=model.location,
    )
    for decl in model.states:
        graph.add_state(decl)

    resolved = collect_results([_resolve_endpoints(graph, decl) for decl in model.transitions])
    if resolved.is_err():
        diagnostics = resolved.unwrap_err()
        logger.debug("graph_resolution_failed", machine=model.name, errors=len(diagnostics))
        return Err(diagnostics)

    for decl in resolved.unwrap():
        graph.add_transition(decl)

    logger.debug(
        "graph_built",
        machine=model.name,
        states=len(graph),
        edges=len(graph.edges()),
    )
    return Ok(graph)


def _resolve_endpoints(
    graph: StateGraph,
    decl: TransitionDecl,
) -> Result[TransitionDecl, list[Diagnostic]]:
    missing = [end for end in (decl.source, decl.target) if end not in graph]
    if not missing:
        return Ok(decl)

    names = ", ".join(f"'{m}'" for m in dict.fromkeys(missing))
    return Err([
        Diagnostic(
            code=DiagnosticCode.DANGLING_TRANSITION,
            message=f"dangling transition: {decl.id} references unknown state {names}",
            location=decl.location,
            phase=Phase.RESOLUTION,
        )
    ])
