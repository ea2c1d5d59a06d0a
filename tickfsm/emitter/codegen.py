"""Code emitter: renders a validated state graph into a Python module."""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from tickfsm import __version__
from tickfsm.graph.builder import Edge, StateGraph
from tickfsm.models.machine import GuardKind
from tickfsm.utils.atomic import atomic_write_text, get_content_hash
from tickfsm.utils.logging import get_logger

logger = get_logger("emitter.codegen")

TEMPLATES_DIR = Path(__file__).parent / "templates"
MACHINE_TEMPLATE = "machine.py.j2"


class EmitterError(Exception):
    """Raised when source cannot be emitted for a graph."""

    pass


@dataclass(frozen=True)
class EmittedUnit:
    """Generated source for one machine."""

    machine: str
    module_name: str
    class_name: str
    source: str

    @property
    def filename(self) -> str:
        return f"{self.module_name}.py"

    @property
    def content_hash(self) -> str:
        return get_content_hash(self.source)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "machine": self.machine,
            "module": self.module_name,
            "class": self.class_name,
            "file": self.filename,
            "sha256": self.content_hash,
        }


@dataclass
class WriteResult:
    """Where a unit was written and whether the file changed."""

    unit: EmittedUnit
    path: Path
    written: bool

    def to_dict(self) -> dict:
        return {**self.unit.to_dict(), "path": str(self.path), "written": self.written}


def snake_case(name: str) -> str:
    """DriveBase -> drive_base, HTTPState -> http_state."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return re.sub(r"\W+", "_", name).strip("_").lower()


def _doc_text(value: Any) -> str:
    """Make text safe inside a triple-quoted docstring."""
    text = str(value).replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
    return " ".join(text.splitlines())


@dataclass
class _BranchView:
    id: str
    target: str
    priority: int
    guard_text: str
    always: bool
    condition: str
    fail_loudly: bool
    failure: str
    action: Optional[str] = None


@dataclass
class _StateView:
    name: str
    suffix: str
    initial: bool
    terminal: bool
    entry: Optional[str]
    periodic: Optional[str]
    exit: Optional[str]
    branches: list[_BranchView] = field(default_factory=list)

    @property
    def requestable(self) -> list[_BranchView]:
        """First branch by priority to each distinct target."""
        first: dict[str, _BranchView] = {}
        for branch in self.branches:
            first.setdefault(branch.target, branch)
        return list(first.values())

    @property
    def live_branches(self) -> list[_BranchView]:
        """Branches up to the first unconditional one; nothing after it can run."""
        live = []
        for branch in self.branches:
            live.append(branch)
            if branch.always:
                break
        return live


class CodeEmitter:
    """
    Synthesizes the dispatcher module for a validated state graph.

    Output is a pure function of the graph and emitter settings, so
    re-running on an unchanged specification yields byte-identical source.
    """

    def __init__(
        self,
        class_suffix: str = "StateMachine",
        module_suffix: str = "_state_machine",
    ) -> None:
        """
        Initialize the emitter.

        Args:
            class_suffix: Appended to the machine name to name the class
            module_suffix: Appended to the snake_case machine name to name the module
        """
        self.class_suffix = class_suffix
        self.module_suffix = module_suffix
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )
        self.env.filters["py"] = repr
        self.env.filters["doc"] = _doc_text

    def names_for(self, machine: str) -> tuple[str, str]:
        """Module and class names for a machine."""
        return f"{snake_case(machine)}{self.module_suffix}", f"{machine}{self.class_suffix}"

    def emit(self, graph: StateGraph) -> EmittedUnit:
        """
        Render the dispatcher module for a graph.

        Args:
            graph: Validated, frozen state graph

        Returns:
            EmittedUnit with the generated source

        Raises:
            EmitterError: If the graph was not validated or the rendered
                source does not compile
        """
        if not graph.frozen:
            raise EmitterError(f"state graph {graph.name} must be validated before emission")

        module_name, class_name = self.names_for(graph.name)
        states = self._state_views(graph)

        context = {
            "version": __version__,
            "origin": graph.host_ref or Path(graph.location.file).name,
            "machine": graph.name,
            "class_name": class_name,
            "states": states,
            "state_names": tuple(s.name for s in states),
            "initial": graph.initial_state.name,
            "terminals": sorted(s.name for s in graph.terminal_states()),
            "transition_count": sum(len(s.branches) for s in states),
        }

        source = self.env.get_template(MACHINE_TEMPLATE).render(**context)
        self._check_source(f"{module_name}.py", source)

        unit = EmittedUnit(
            machine=graph.name,
            module_name=module_name,
            class_name=class_name,
            source=source,
        )
        logger.debug(
            "source_emitted",
            machine=graph.name,
            module=module_name,
            lines=source.count("\n"),
            sha256=unit.content_hash[:12],
        )
        return unit

    def _state_views(self, graph: StateGraph) -> list[_StateView]:
        used: set[str] = set()
        views = []
        for node in graph:
            state = node.state
            views.append(
                _StateView(
                    name=state.name,
                    suffix=_unique_suffix(state.name, used),
                    initial=state.initial,
                    terminal=state.terminal,
                    entry=state.entry,
                    periodic=state.periodic,
                    exit=state.exit,
                    branches=self._branch_views(graph, node.outgoing),
                )
            )
        return views

    def _branch_views(self, graph: StateGraph, edges: tuple[Edge, ...]) -> list[_BranchView]:
        branches = []
        for edge in edges:
            guard = edge.guard
            if guard.kind is GuardKind.REFERENCE:
                condition = f"host.{guard.method_name}()"
            elif guard.kind is GuardKind.EXPRESSION:
                condition = ast.unparse(ast.parse(guard.text, mode="eval").body)
            else:
                condition = "True"

            branches.append(
                _BranchView(
                    id=edge.id,
                    target=edge.target,
                    priority=edge.priority,
                    guard_text=guard.text,
                    always=guard.is_always,
                    condition=condition,
                    fail_loudly=edge.transition.fail_loudly,
                    failure=f"{graph.name}: transition {edge.id} is marked fail_loudly",
                    action=edge.transition.action,
                )
            )
        return branches

    def _check_source(self, filename: str, source: str) -> None:
        try:
            compile(ast.parse(source, filename=filename), filename, "exec")
        except SyntaxError as e:
            logger.error("emitted_source_invalid", file=filename, line=e.lineno, error=e.msg)
            raise EmitterError(f"{filename}:{e.lineno}: generated source does not compile: {e.msg}") from e


def _unique_suffix(name: str, used: set[str]) -> str:
    base = re.sub(r"\W+", "_", snake_case(name)).strip("_") or "state"
    if base[0].isdigit():
        base = f"s{base}"
    if not base.isidentifier():
        base = "state"
    suffix = base
    counter = 2
    while suffix in used:
        suffix = f"{base}_{counter}"
        counter += 1
    used.add(suffix)
    return suffix


def write_unit(unit: EmittedUnit, output_dir: Path) -> WriteResult:
    """
    Write an emitted unit into a directory atomically.

    Files whose content is already identical are left untouched.

    Returns:
        WriteResult with the target path and whether it was written
    """
    path = Path(output_dir) / unit.filename
    written = atomic_write_text(path, unit.source)
    logger.info(
        "unit_written" if written else "unit_unchanged",
        machine=unit.machine,
        path=str(path),
    )
    return WriteResult(unit=unit, path=path, written=written)
