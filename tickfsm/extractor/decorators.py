"""Decorators that attach state machine metadata to a host class.

The decorators only record what was written and where. They never raise for
malformed input, so that the extractor can report every problem in one pass.

Example:
    @state_machine()
    @state("Idle", initial=True)
    @state("Moving", periodic="drive")
    @state("Done", terminal=True)
    @transition("Idle", "Moving")
    @transition("Moving", "Done", guard="distanceReached")
    class Drive:
        def drive(self): ...
        def distanceReached(self): ...
"""

from __future__ import annotations

import itertools
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from tickfsm.models.diagnostics import SourceLocation

METADATA_ATTR = "__tickfsm_machine__"
ACTIONS_ATTR = "__tickfsm_actions__"
CONDITION_ATTR = "__tickfsm_condition__"

C = TypeVar("C", bound=type)
F = TypeVar("F", bound=Callable[..., Any])

# Tie-breaker for declarations that share a source line
_sequence = itertools.count()


class _Always:
    """Sentinel guard that is always true."""

    _instance: Optional[_Always] = None

    def __new__(cls) -> _Always:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ALWAYS"


ALWAYS = _Always()


@dataclass
class RawDeclaration:
    """One decorator application, exactly as written."""

    kind: str
    fields: dict[str, Any]
    location: SourceLocation
    seq: int = field(default_factory=lambda: next(_sequence))

    @property
    def order_key(self) -> tuple[str, int, int]:
        return (self.location.file, self.location.line, self.seq)


@dataclass
class HostMetadata:
    """Metadata collected on one host class."""

    marked: bool = False
    name: Optional[str] = None
    location: Optional[SourceLocation] = None
    states: list[RawDeclaration] = field(default_factory=list)
    transitions: list[RawDeclaration] = field(default_factory=list)


def _caller_location(element: str, depth: int = 2) -> SourceLocation:
    frame = sys._getframe(depth)
    return SourceLocation(
        file=frame.f_code.co_filename,
        line=frame.f_lineno,
        element=element,
    )


def get_host_metadata(cls: type) -> Optional[HostMetadata]:
    """Metadata declared directly on cls, ignoring base classes."""
    return cls.__dict__.get(METADATA_ATTR)


def _metadata_for(cls: type) -> HostMetadata:
    meta = get_host_metadata(cls)
    if meta is None:
        meta = HostMetadata()
        setattr(cls, METADATA_ATTR, meta)
    return meta


def state_machine(name: Any = None) -> Any:
    """
    Mark a class as a state machine host.

    Usable bare (``@state_machine``) or called (``@state_machine("Drive")``).

    Args:
        name: Machine name (defaults to the class name)
    """
    location = _caller_location("state_machine")

    def decorator(cls: C) -> C:
        meta = _metadata_for(cls)
        meta.marked = True
        meta.name = None if isinstance(name, type) else name
        meta.location = SourceLocation(location.file, location.line, cls.__qualname__)
        return cls

    if isinstance(name, type):
        return decorator(name)
    return decorator


def state(
    name: Any,
    *,
    initial: Any = False,
    terminal: Any = False,
    entry: Any = None,
    periodic: Any = None,
    exit: Any = None,
) -> Callable[[C], C]:
    """
    Declare a state on the decorated class.

    Args:
        name: State identifier, unique within the machine
        initial: Whether the machine starts here
        terminal: Whether reaching this state finishes the machine
        entry: Name of the host method run when the state is entered
        periodic: Name of the host method run on every tick in this state
        exit: Name of the host method run when the state is left
    """
    location = _caller_location(f"state[{name}]")
    declaration = RawDeclaration(
        kind="state",
        fields={
            "name": name,
            "initial": initial,
            "terminal": terminal,
            "entry": entry,
            "periodic": periodic,
            "exit": exit,
        },
        location=location,
    )

    def decorator(cls: C) -> C:
        _metadata_for(cls).states.append(declaration)
        return cls

    return decorator


def transition(
    source: Any,
    target: Any,
    *,
    guard: Any = ALWAYS,
    priority: Any = None,
    name: Any = None,
    fail_loudly: Any = False,
    action: Any = None,
) -> Callable[[C], C]:
    """
    Declare a guarded transition on the decorated class.

    Args:
        source: Source state name
        target: Target state name
        guard: ALWAYS, a condition name, or an expression over ``host``
        priority: Evaluation order among transitions from the same source
            (lower first, defaults to declaration order)
        name: Transition identifier (defaults to "source->target")
        fail_loudly: Raise instead of transitioning when the guard fires
        action: Name of the host method run between the source state's exit
            action and the target state's entry action
    """
    location = _caller_location(f"transition[{source}->{target}]")
    declaration = RawDeclaration(
        kind="transition",
        fields={
            "source": source,
            "target": target,
            "guard": guard,
            "priority": priority,
            "name": name,
            "fail_loudly": fail_loudly,
            "action": action,
        },
        location=location,
    )

    def decorator(cls: C) -> C:
        _metadata_for(cls).transitions.append(declaration)
        return cls

    return decorator


def _action_binder(slot: str) -> Callable[[str], Callable[[F], F]]:
    def binder(state_name: str) -> Callable[[F], F]:
        location = _caller_location(f"{slot}[{state_name}]")

        def decorator(fn: F) -> F:
            bindings = list(getattr(fn, ACTIONS_ATTR, ()))
            bindings.append((slot, state_name, location))
            setattr(fn, ACTIONS_ATTR, tuple(bindings))
            return fn

        return decorator

    binder.__name__ = f"on_{slot}"
    binder.__doc__ = f"Bind the decorated method as the {slot} action of a state."
    return binder


on_entry = _action_binder("entry")
on_tick = _action_binder("periodic")
on_exit = _action_binder("exit")


def condition(arg: Any = None) -> Any:
    """
    Mark a method as a named guard condition.

    Usable bare (``@condition``) to register the method under its own name,
    or with a name (``@condition("distanceReached")``).
    """
    if callable(arg):
        location = _caller_location(f"condition[{arg.__name__}]")
        setattr(arg, CONDITION_ATTR, (arg.__name__, location))
        return arg

    location = _caller_location(f"condition[{arg}]")

    def decorator(fn: F) -> F:
        setattr(fn, CONDITION_ATTR, (arg if arg is not None else fn.__name__, location))
        return fn

    return decorator
