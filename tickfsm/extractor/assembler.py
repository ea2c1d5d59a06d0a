"""Turns raw declarations into the intermediate MachineModel.

Shared by the decorator and document front ends. Every problem is recorded
as a diagnostic and assembly keeps going, so one pass reports everything.
"""

from __future__ import annotations

import ast
import builtins
import importlib
import inspect
import keyword
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from tickfsm.extractor.decorators import ALWAYS, ACTIONS_ATTR, CONDITION_ATTR, RawDeclaration
from tickfsm.models.diagnostics import (
    Diagnostic,
    DiagnosticCode,
    Phase,
    SourceLocation,
    sort_diagnostics,
)
from tickfsm.models.machine import GuardSpec, MachineModel, StateDecl, TransitionDecl
from tickfsm.utils.result import Err, Ok, Result

ACTION_SLOTS = ("entry", "periodic", "exit")
GUARD_LOCALS = frozenset({"host"})
_BUILTIN_NAMES = frozenset(dir(builtins))


class HostResolutionError(Exception):
    """Raised when a "module:Class" host reference cannot be imported."""

    pass


def resolve_host(ref: str) -> type:
    """
    Import a host class from a "module:QualName" reference.

    Raises:
        HostResolutionError: If the module or class cannot be found
    """
    module_name, sep, qualname = ref.partition(":")
    if not sep or not module_name or not qualname:
        raise HostResolutionError(f"host reference must look like 'module:Class', got {ref!r}")

    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise HostResolutionError(f"cannot import module {module_name!r}: {e}") from e

    for part in qualname.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise HostResolutionError(f"module {module_name!r} has no attribute {qualname!r}") from e

    if not isinstance(obj, type):
        raise HostResolutionError(f"{ref!r} is not a class")
    return obj


def host_ref(host: type) -> str:
    """The "module:QualName" reference of a host class."""
    return f"{host.__module__}:{host.__qualname__}"


def host_location(host: type) -> SourceLocation:
    """Best-effort location of a class definition."""
    try:
        file = inspect.getsourcefile(host) or "<unknown>"
        _, line = inspect.getsourcelines(host)
    except (OSError, TypeError):
        return SourceLocation(file=f"<{host.__module__}>", element=host.__qualname__)
    return SourceLocation(file=file, line=line, element=host.__qualname__)


def is_identifier(value: Any) -> bool:
    return isinstance(value, str) and value.isidentifier() and not keyword.iskeyword(value)


@dataclass
class _StateDraft:
    name: str
    initial: bool
    terminal: bool
    actions: dict[str, Optional[str]]
    location: SourceLocation


@dataclass
class ModelAssembler:
    """
    Assembles one machine from raw declarations.

    Attributes:
        name: Machine name
        host: Host class used to resolve action and guard references, if any
        location: Where the machine was declared
    """

    name: str
    host: Optional[type] = None
    location: Optional[SourceLocation] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    _conditions: dict[str, str] = field(default_factory=dict)

    def error(
        self,
        code: DiagnosticCode,
        message: str,
        location: Optional[SourceLocation],
    ) -> None:
        self.diagnostics.append(
            Diagnostic(
                code=code,
                message=message,
                location=location or self.location or SourceLocation(file="<unknown>"),
                phase=Phase.EXTRACTION,
            )
        )

    def assemble(
        self,
        states: Iterable[RawDeclaration],
        transitions: Iterable[RawDeclaration],
    ) -> Result[MachineModel, list[Diagnostic]]:
        """
        Build the intermediate model.

        Returns:
            Ok(MachineModel), or Err with every extraction diagnostic sorted
            by source location
        """
        state_decls = sorted(states, key=lambda d: d.order_key)
        transition_decls = sorted(transitions, key=lambda d: d.order_key)

        if self.host is not None:
            self._collect_conditions()

        drafts = self._build_states(state_decls)
        if self.host is not None:
            self._bind_member_actions(drafts)
        built_states = tuple(self._finish_state(d) for d in drafts.values())
        built_transitions = self._build_transitions(transition_decls)

        if not built_states and not self.diagnostics:
            self.error(
                DiagnosticCode.EMPTY_MACHINE,
                f"state machine {self.name} declares no states",
                self.location,
            )

        if self.diagnostics:
            return Err(sort_diagnostics(self.diagnostics))

        return Ok(
            MachineModel(
                name=self.name,
                states=built_states,
                transitions=built_transitions,
                host=self.host,
                host_ref=host_ref(self.host) if self.host is not None else "",
                location=self.location or SourceLocation(file="<unknown>"),
            )
        )

    # States

    def _build_states(self, declarations: list[RawDeclaration]) -> dict[str, _StateDraft]:
        drafts: dict[str, _StateDraft] = {}

        for decl in declarations:
            fields = decl.fields
            name = fields.get("name")
            if name is None or name == "":
                self.error(DiagnosticCode.MISSING_FIELD, "state is missing a name", decl.location)
                continue
            if not isinstance(name, str):
                self.error(
                    DiagnosticCode.INVALID_FIELD,
                    f"state name must be a string, got {type(name).__name__}",
                    decl.location,
                )
                continue
            if name in drafts:
                self.error(
                    DiagnosticCode.DUPLICATE_STATE,
                    f"duplicate state: {name}",
                    decl.location,
                )
                continue

            flags = {}
            for flag in ("initial", "terminal"):
                value = fields.get(flag, False)
                if not isinstance(value, bool):
                    self.error(
                        DiagnosticCode.INVALID_FIELD,
                        f"state {name}: '{flag}' must be a boolean, got {value!r}",
                        decl.location,
                    )
                    value = False
                flags[flag] = value

            actions: dict[str, Optional[str]] = {}
            for slot in ACTION_SLOTS:
                actions[slot] = self._check_action(f"state {name}", slot, fields.get(slot), decl.location)

            drafts[name] = _StateDraft(
                name=name,
                initial=flags["initial"],
                terminal=flags["terminal"],
                actions=actions,
                location=decl.location,
            )

        return drafts

    def _check_action(
        self,
        owner: str,
        slot: str,
        value: Any,
        location: SourceLocation,
    ) -> Optional[str]:
        if value is None:
            return None
        if not is_identifier(value):
            self.error(
                DiagnosticCode.INVALID_FIELD,
                f"{owner}: {slot} action must be a method name, got {value!r}",
                location,
            )
            return None
        if self.host is not None and not callable(getattr(self.host, value, None)):
            self.error(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                f"{owner}: {slot} action '{value}' is not a method of {self.host.__qualname__}",
                location,
            )
            return None
        return value

    def _bind_member_actions(self, drafts: dict[str, _StateDraft]) -> None:
        for attr, member in self._host_members():
            for slot, state_name, location in getattr(member, ACTIONS_ATTR, ()):
                draft = drafts.get(state_name)
                if draft is None:
                    self.error(
                        DiagnosticCode.UNKNOWN_STATE_BINDING,
                        f"method {attr} is bound to unknown state {state_name!r}",
                        location,
                    )
                    continue
                if draft.actions[slot] is not None:
                    self.error(
                        DiagnosticCode.DUPLICATE_ACTION,
                        f"state {state_name} already has a {slot} action "
                        f"'{draft.actions[slot]}', cannot bind {attr}",
                        location,
                    )
                    continue
                draft.actions[slot] = attr

    def _finish_state(self, draft: _StateDraft) -> StateDecl:
        return StateDecl(
            name=draft.name,
            initial=draft.initial,
            terminal=draft.terminal,
            entry=draft.actions["entry"],
            periodic=draft.actions["periodic"],
            exit=draft.actions["exit"],
            location=draft.location,
        )

    # Conditions

    def _host_members(self) -> list[tuple[str, Any]]:
        """Functions of the host and its bases, most derived last overriding."""
        members: dict[str, Any] = {}
        for klass in reversed(self.host.__mro__):
            for attr, value in vars(klass).items():
                if inspect.isfunction(value):
                    members[attr] = value
        return sorted(members.items(), key=lambda item: _definition_line(item[1]))

    def _collect_conditions(self) -> None:
        for attr, member in self._host_members():
            marker = getattr(member, CONDITION_ATTR, None)
            if marker is None:
                continue
            cond_name, location = marker
            if not is_identifier(cond_name):
                self.error(
                    DiagnosticCode.INVALID_FIELD,
                    f"condition name must be an identifier, got {cond_name!r}",
                    location,
                )
                continue
            if cond_name in self._conditions:
                self.error(
                    DiagnosticCode.DUPLICATE_CONDITION,
                    f"duplicate condition: {cond_name}",
                    location,
                )
                continue
            self._conditions[cond_name] = attr

    # Transitions

    def _build_transitions(self, declarations: list[RawDeclaration]) -> tuple[TransitionDecl, ...]:
        explicit_ids: set[str] = set()
        for decl in declarations:
            name = decl.fields.get("name")
            if isinstance(name, str) and name:
                explicit_ids.add(name)

        seen_ids: set[str] = set()
        built: list[TransitionDecl] = []

        for order, decl in enumerate(declarations):
            fields = decl.fields
            ok = True

            endpoints = {}
            for end in ("source", "target"):
                value = fields.get(end)
                if value is None or value == "":
                    self.error(DiagnosticCode.MISSING_FIELD, f"transition is missing a {end}", decl.location)
                    ok = False
                elif not isinstance(value, str):
                    self.error(
                        DiagnosticCode.INVALID_FIELD,
                        f"transition {end} must be a state name, got {value!r}",
                        decl.location,
                    )
                    ok = False
                endpoints[end] = value

            label = f"{endpoints['source']}->{endpoints['target']}"

            guard = self._parse_guard(label, fields.get("guard", ALWAYS), decl.location)
            ok = ok and guard is not None

            priority = fields.get("priority")
            if priority is None:
                priority = order
            elif isinstance(priority, bool) or not isinstance(priority, int):
                self.error(
                    DiagnosticCode.INVALID_FIELD,
                    f"transition {label}: priority must be an integer, got {priority!r}",
                    decl.location,
                )
                ok = False

            fail_loudly = fields.get("fail_loudly", False)
            if not isinstance(fail_loudly, bool):
                self.error(
                    DiagnosticCode.INVALID_FIELD,
                    f"transition {label}: 'fail_loudly' must be a boolean, got {fail_loudly!r}",
                    decl.location,
                )
                ok = False

            action = fields.get("action")
            if action is not None:
                action = self._check_action(f"transition {label}", "transition", action, decl.location)
                ok = ok and action is not None

            transition_id = self._transition_id(label, fields.get("name"), explicit_ids, seen_ids, decl)
            if transition_id is None:
                ok = False

            if not ok:
                continue

            built.append(
                TransitionDecl(
                    id=transition_id,
                    source=endpoints["source"],
                    target=endpoints["target"],
                    guard=guard,
                    priority=priority,
                    order=order,
                    fail_loudly=fail_loudly,
                    action=action,
                    location=decl.location,
                )
            )

        return tuple(built)

    def _transition_id(
        self,
        label: str,
        name: Any,
        explicit_ids: set[str],
        seen_ids: set[str],
        decl: RawDeclaration,
    ) -> Optional[str]:
        if name is not None:
            if not isinstance(name, str) or not name:
                self.error(
                    DiagnosticCode.INVALID_FIELD,
                    f"transition {label}: name must be a non-empty string, got {name!r}",
                    decl.location,
                )
                return None
            if name in seen_ids:
                self.error(
                    DiagnosticCode.DUPLICATE_TRANSITION,
                    f"duplicate transition: {name}",
                    decl.location,
                )
                return None
            seen_ids.add(name)
            return name

        candidate = label
        suffix = 2
        while candidate in seen_ids or candidate in explicit_ids:
            candidate = f"{label}#{suffix}"
            suffix += 1
        seen_ids.add(candidate)
        return candidate

    def _parse_guard(
        self,
        label: str,
        raw: Any,
        location: SourceLocation,
    ) -> Optional[GuardSpec]:
        if raw is ALWAYS or raw is True or raw == "always":
            return GuardSpec.always()

        if not isinstance(raw, str) or not raw.strip():
            self.error(
                DiagnosticCode.INVALID_FIELD,
                f"transition {label}: guard must be ALWAYS, a condition name or an "
                f"expression string, got {raw!r}",
                location,
            )
            return None

        text = raw.strip()
        if is_identifier(text):
            return self._resolve_condition(label, text, location)

        try:
            guard = GuardSpec.expression(text)
        except SyntaxError as e:
            self.error(
                DiagnosticCode.UNPARSABLE_GUARD,
                f"transition {label}: cannot parse guard {text!r}: {e.msg}",
                location,
            )
            return None

        unknown = _free_names(text) - GUARD_LOCALS - _BUILTIN_NAMES
        if unknown:
            names = ", ".join(sorted(unknown))
            self.error(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                f"transition {label}: guard {text!r} uses unknown name(s) {names}; "
                f"only 'host' and builtins are in scope",
                location,
            )
            return None
        return guard

    def _resolve_condition(
        self,
        label: str,
        name: str,
        location: SourceLocation,
    ) -> Optional[GuardSpec]:
        if self.host is None:
            return GuardSpec.reference(name)

        member = self._conditions.get(name)
        if member is None and callable(getattr(self.host, name, None)):
            member = name
        if member is None:
            self.error(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                f"transition {label}: guard '{name}' is not a condition of {self.host.__qualname__}",
                location,
            )
            return None
        return GuardSpec.reference(name, member=member)


def _definition_line(fn: Any) -> int:
    code = getattr(fn, "__code__", None)
    return code.co_firstlineno if code is not None else 0


_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.GeneratorExp, ast.DictComp)


def _free_names(source: str) -> set[str]:
    """Names an expression reads from the enclosing scope."""
    tree = ast.parse(source, mode="eval")
    # Walrus targets bind in the enclosing scope, even inside a comprehension
    walrus = {
        node.target.id
        for node in ast.walk(tree)
        if isinstance(node, ast.NamedExpr) and isinstance(node.target, ast.Name)
    }
    return _scoped_free(tree.body) - walrus


def _scoped_free(node: ast.AST) -> set[str]:
    if isinstance(node, ast.Name):
        return {node.id} if isinstance(node.ctx, ast.Load) else set()

    if isinstance(node, ast.Lambda):
        args = node.args
        params = {a.arg for a in [*args.posonlyargs, *args.args, *args.kwonlyargs]}
        params.update(a.arg for a in (args.vararg, args.kwarg) if a is not None)
        free: set[str] = set()
        for default in [*args.defaults, *(d for d in args.kw_defaults if d is not None)]:
            free |= _scoped_free(default)
        return free | (_scoped_free(node.body) - params)

    if isinstance(node, _COMPREHENSIONS):
        free = set()
        bound: set[str] = set()
        for generator in node.generators:
            free |= _scoped_free(generator.iter) - bound
            bound |= {n.id for n in ast.walk(generator.target) if isinstance(n, ast.Name)}
            for test in generator.ifs:
                free |= _scoped_free(test) - bound
        results = [node.key, node.value] if isinstance(node, ast.DictComp) else [node.elt]
        for result in results:
            free |= _scoped_free(result) - bound
        return free

    free = set()
    for child in ast.iter_child_nodes(node):
        free |= _scoped_free(child)
    return free
