"""Intermediate model produced by the extractor.

These are plain records: nothing here checks that references resolve or
that the machine is well formed. That is the job of the graph builder and
the validator.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from tickfsm.models.diagnostics import UNKNOWN_LOCATION, SourceLocation


class GuardKind(Enum):
    """How a guard is written."""

    ALWAYS = "always"
    REFERENCE = "reference"
    EXPRESSION = "expression"


@dataclass(frozen=True)
class GuardSpec:
    """
    A transition guard.

    Attributes:
        kind: Always-true, a named condition on the host, or an expression
        text: Condition name or expression source ("always" for ALWAYS)
        key: Structural identity used for ambiguity checks
        member: Host method a reference resolves to, when it differs
            from the written name
    """

    kind: GuardKind
    text: str
    key: str
    member: str = ""

    @classmethod
    def always(cls) -> GuardSpec:
        return cls(kind=GuardKind.ALWAYS, text="always", key="always")

    @classmethod
    def reference(cls, name: str, member: str = "") -> GuardSpec:
        return cls(kind=GuardKind.REFERENCE, text=name, key=f"ref:{name}", member=member)

    @property
    def method_name(self) -> str:
        """Host method called for a reference guard."""
        return self.member or self.text

    @classmethod
    def expression(cls, source: str) -> GuardSpec:
        """
        Build an expression guard.

        Raises:
            SyntaxError: If the source is not a single Python expression
        """
        tree = ast.parse(source.strip(), mode="eval")
        return cls(
            kind=GuardKind.EXPRESSION,
            text=source.strip(),
            key=f"expr:{ast.dump(tree.body)}",
        )

    @property
    def is_always(self) -> bool:
        return self.kind is GuardKind.ALWAYS

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class StateDecl:
    """A declared state, before validation."""

    name: str
    initial: bool = False
    terminal: bool = False
    entry: Optional[str] = None
    periodic: Optional[str] = None
    exit: Optional[str] = None
    location: SourceLocation = UNKNOWN_LOCATION

    def actions(self) -> dict[str, Optional[str]]:
        """Action references keyed by slot name."""
        return {"entry": self.entry, "periodic": self.periodic, "exit": self.exit}

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "initial": self.initial,
            "terminal": self.terminal,
            **self.actions(),
            "location": self.location.to_dict(),
        }


@dataclass(frozen=True)
class TransitionDecl:
    """A declared transition, before its endpoints are resolved."""

    id: str
    source: str
    target: str
    guard: GuardSpec = field(default_factory=GuardSpec.always)
    priority: int = 0
    order: int = 0
    fail_loudly: bool = False
    action: Optional[str] = None
    location: SourceLocation = UNKNOWN_LOCATION

    @property
    def sort_key(self) -> tuple[int, int]:
        """Evaluation order among transitions sharing a source."""
        return (self.priority, self.order)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "guard": self.guard.text,
            "guard_kind": self.guard.kind.value,
            "priority": self.priority,
            "fail_loudly": self.fail_loudly,
            "action": self.action,
            "location": self.location.to_dict(),
        }


@dataclass(frozen=True)
class MachineModel:
    """
    Everything extracted for one machine.

    Attributes:
        name: Machine name, used to name the emitted module and class
        states: States in declaration order
        transitions: Transitions in declaration order
        host: Host class, when the machine was declared on one
        host_ref: "module:QualName" of the host, for generated headers
        location: Where the machine itself was declared
    """

    name: str
    states: tuple[StateDecl, ...] = ()
    transitions: tuple[TransitionDecl, ...] = ()
    host: Optional[type] = None
    host_ref: str = ""
    location: SourceLocation = UNKNOWN_LOCATION

    def state_names(self) -> list[str]:
        return [s.name for s in self.states]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "host": self.host_ref,
            "states": [s.to_dict() for s in self.states],
            "transitions": [t.to_dict() for t in self.transitions],
        }
