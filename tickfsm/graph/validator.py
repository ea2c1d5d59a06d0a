"""Structural validation of a state graph."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from tickfsm.graph.builder import StateGraph
from tickfsm.models.diagnostics import (
    Diagnostic,
    DiagnosticCode,
    Phase,
    Severity,
    sort_diagnostics,
)
from tickfsm.models.machine import StateDecl
from tickfsm.utils.logging import get_logger
from tickfsm.utils.result import Err, Ok, Result

logger = get_logger("graph.validator")


@dataclass
class ValidationReport:
    """Result of validating a state graph."""

    errors: list[Diagnostic] = field(default_factory=list)
    warnings: list[Diagnostic] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def diagnostics(self) -> list[Diagnostic]:
        """Errors and warnings together, sorted by source location."""
        return sort_diagnostics([*self.errors, *self.warnings])

    def codes(self) -> set[DiagnosticCode]:
        return {d.code for d in self.errors}


class GraphValidator:
    """
    Checks the invariants a state graph must satisfy before emission.

    Performs:
    - Initial state check (exactly one)
    - Reachability from the initial state (breadth-first)
    - Terminal states have no outgoing transitions
    - No ambiguous transitions (same source, priority and guard)
    - No dangling transition targets

    Every violation is collected; nothing is auto-corrected. A valid graph
    is frozen before it is returned.
    """

    def __init__(
        self,
        warnings_as_errors: bool = False,
        warn_dead_ends: bool = True,
        warn_shadowed: bool = True,
    ) -> None:
        """
        Initialize the validator.

        Args:
            warnings_as_errors: Treat warnings as fatal
            warn_dead_ends: Warn about non-terminal states without transitions
            warn_shadowed: Warn about transitions that can never fire
        """
        self.warnings_as_errors = warnings_as_errors
        self.warn_dead_ends = warn_dead_ends
        self.warn_shadowed = warn_shadowed

    def validate(self, graph: StateGraph) -> ValidationReport:
        """
        Validate a graph, freezing it when it passes.

        Args:
            graph: Graph produced by the builder

        Returns:
            ValidationReport with any errors and warnings found
        """
        report = ValidationReport()

        initial = self._check_initial(graph, report)
        if initial is not None:
            self._check_reachability(graph, initial, report)
        self._check_terminals(graph, report)
        self._check_ambiguity(graph, report)
        self._check_dangling(graph, report)

        if self.warn_shadowed:
            self._check_shadowed(graph, report)
        if self.warn_dead_ends:
            self._check_dead_ends(graph, report)

        if self.warnings_as_errors and report.warnings:
            report.errors.extend(
                Diagnostic(
                    code=w.code,
                    message=w.message,
                    location=w.location,
                    phase=w.phase,
                    severity=Severity.ERROR,
                )
                for w in report.warnings
            )
            report.warnings = []

        report.errors = sort_diagnostics(report.errors)
        report.warnings = sort_diagnostics(report.warnings)

        if report.valid:
            graph.freeze()
            logger.debug("validation_passed", machine=graph.name, warnings=len(report.warnings))
        else:
            logger.warning(
                "validation_failed",
                machine=graph.name,
                errors=len(report.errors),
                codes=sorted(c.value for c in report.codes()),
            )

        return report

    def _error(
        self,
        report: ValidationReport,
        code: DiagnosticCode,
        message: str,
        location,
        phase: Phase = Phase.VALIDATION,
    ) -> None:
        report.errors.append(Diagnostic(code=code, message=message, location=location, phase=phase))

    def _warn(self, report: ValidationReport, code: DiagnosticCode, message: str, location) -> None:
        report.warnings.append(
            Diagnostic(
                code=code,
                message=message,
                location=location,
                phase=Phase.VALIDATION,
                severity=Severity.WARNING,
            )
        )

    def _check_initial(self, graph: StateGraph, report: ValidationReport) -> StateDecl | None:
        initials = graph.initial_states()
        if len(initials) == 1:
            return initials[0]

        if not initials:
            self._error(report, DiagnosticCode.NO_INITIAL_STATE, "no initial state", graph.location)
        else:
            names = ", ".join(s.name for s in initials)
            self._error(
                report,
                DiagnosticCode.MULTIPLE_INITIAL_STATES,
                f"multiple initial states: {names}",
                initials[1].location,
            )
        return None

    def _check_reachability(self, graph: StateGraph, initial: StateDecl, report: ValidationReport) -> None:
        visited = {initial.name}
        queue = deque([initial.name])

        while queue:
            current = queue.popleft()
            for edge in graph.outgoing(current):
                if edge.target in graph and edge.target not in visited:
                    visited.add(edge.target)
                    queue.append(edge.target)

        for state in graph.states():
            if state.name not in visited:
                self._error(
                    report,
                    DiagnosticCode.UNREACHABLE_STATE,
                    f"unreachable state: {state.name}",
                    state.location,
                )

    def _check_terminals(self, graph: StateGraph, report: ValidationReport) -> None:
        for state in graph.terminal_states():
            if graph.outgoing(state.name):
                self._error(
                    report,
                    DiagnosticCode.TERMINAL_HAS_TRANSITIONS,
                    f"terminal state has transitions: {state.name}",
                    state.location,
                )

    def _check_ambiguity(self, graph: StateGraph, report: ValidationReport) -> None:
        for node in graph:
            first_seen: dict[tuple[int, str], str] = {}
            for edge in node.outgoing:
                key = (edge.priority, edge.guard.key)
                if key in first_seen:
                    self._error(
                        report,
                        DiagnosticCode.AMBIGUOUS_TRANSITION,
                        f"ambiguous transition: {edge.id} and {first_seen[key]} leave "
                        f"{node.name} with priority {edge.priority} and guard '{edge.guard.text}'",
                        edge.transition.location,
                    )
                else:
                    first_seen[key] = edge.id

    def _check_dangling(self, graph: StateGraph, report: ValidationReport) -> None:
        for edge in graph.edges():
            if edge.target not in graph:
                self._error(
                    report,
                    DiagnosticCode.DANGLING_TRANSITION,
                    f"dangling transition: {edge.id} references unknown state '{edge.target}'",
                    edge.transition.location,
                    phase=Phase.RESOLUTION,
                )

    def _check_shadowed(self, graph: StateGraph, report: ValidationReport) -> None:
        for node in graph:
            if node.state.terminal:
                continue
            earlier: dict[str, tuple[int, str]] = {}
            blocker = None
            for edge in node.outgoing:
                if blocker is not None:
                    self._warn(
                        report,
                        DiagnosticCode.SHADOWED_TRANSITION,
                        f"shadowed transition: {edge.id} can never fire, "
                        f"{blocker} always fires first",
                        edge.transition.location,
                    )
                    continue

                seen = earlier.get(edge.guard.key)
                if seen is not None and seen[0] != edge.priority:
                    self._warn(
                        report,
                        DiagnosticCode.SHADOWED_TRANSITION,
                        f"shadowed transition: {edge.id} can never fire, "
                        f"{seen[1]} has the same guard and fires first",
                        edge.transition.location,
                    )
                earlier.setdefault(edge.guard.key, (edge.priority, edge.id))

                if edge.guard.is_always:
                    blocker = edge.id

    def _check_dead_ends(self, graph: StateGraph, report: ValidationReport) -> None:
        for node in graph:
            if not node.state.terminal and not node.outgoing:
                self._warn(
                    report,
                    DiagnosticCode.DEAD_END_STATE,
                    f"dead-end state: {node.name} is not terminal and has no transitions",
                    node.state.location,
                )


def validate_graph(
    graph: StateGraph,
    validator: GraphValidator | None = None,
) -> Result[StateGraph, list[Diagnostic]]:
    """
    Validate a graph with the given (or a default) validator.

    Returns:
        Ok(frozen graph), or Err with every fatal diagnostic
    """
    report = (validator or GraphValidator()).validate(graph)
    if report.valid:
        return Ok(graph)
    return Err(report.errors)
