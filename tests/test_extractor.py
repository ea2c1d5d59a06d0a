"""Tests for decorator and document extraction."""

from __future__ import annotations

from pathlib import Path

import pytest

from tickfsm import condition, on_entry, on_tick, state, state_machine, transition
from tickfsm.extractor import (
    HostResolutionError,
    extract_document,
    extract_document_text,
    extract_machine,
    resolve_host,
)
from tickfsm.models import DiagnosticCode, GuardKind, GuardSpec, Phase
from tests.machines import DoorController, DriveActions, DriveDistance, NotAMachine


def _codes(result) -> set[DiagnosticCode]:
    return {d.code for d in result.unwrap_err()}


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


class TestDecoratorExtraction:
    def test_states_in_declaration_order(self) -> None:
        model = extract_machine(DriveDistance).unwrap()
        assert model.name == "DriveDistance"
        assert model.state_names() == ["Idle", "Moving", "Done"]

        idle, moving, done = model.states
        assert idle.initial and idle.entry == "reset"
        assert moving.periodic == "drive"
        assert done.terminal

    def test_priority_defaults_to_declaration_index(self) -> None:
        model = extract_machine(DriveDistance).unwrap()
        assert [t.priority for t in model.transitions] == [0, 1]
        assert [t.id for t in model.transitions] == ["Idle->Moving", "Moving->Done"]

    def test_guard_kinds(self) -> None:
        model = extract_machine(DriveDistance).unwrap()
        always, reference = model.transitions
        assert always.guard.is_always
        assert reference.guard.kind is GuardKind.REFERENCE
        assert reference.guard.method_name == "distanceReached"

    def test_member_decorators_bind_actions(self) -> None:
        model = extract_machine(DoorController).unwrap()
        states = {s.name: s for s in model.states}
        assert states["Opening"].entry == "start_motor"
        assert states["Opening"].periodic == "advance"
        assert states["Opening"].exit == "stop_motor"
        assert states["Open"].entry == "announce"

    def test_named_condition_resolves_to_method(self) -> None:
        model = extract_machine(DoorController).unwrap()
        jam = next(t for t in model.transitions if t.target == "Jammed")
        assert jam.guard.text == "motorStalled"
        assert jam.guard.method_name == "is_stalled"

    def test_machine_name_override(self) -> None:
        model = extract_machine(DoorController).unwrap()
        assert model.name == "Door"
        assert model.host is DoorController
        assert model.host_ref == "tests.machines:DoorController"

    def test_locations_point_at_declarations(self) -> None:
        model = extract_machine(DriveDistance).unwrap()
        idle = model.states[0]
        assert idle.location.file.endswith("machines.py")
        assert idle.location.line > 0
        assert idle.location.element == "state[Idle]"

    def test_decorators_leave_class_behavior_alone(self) -> None:
        host = DriveDistance(target=1)
        host.drive()
        assert host.distanceReached() is True

    def test_unmarked_class(self) -> None:
        result = extract_machine(NotAMachine)
        assert result.is_err()
        (diagnostic,) = result.unwrap_err()
        assert diagnostic.code is DiagnosticCode.NOT_A_MACHINE
        assert diagnostic.phase is Phase.EXTRACTION

    def test_subclass_is_not_a_machine(self) -> None:
        class Faster(DriveDistance):
            pass

        assert _codes(extract_machine(Faster)) == {DiagnosticCode.NOT_A_MACHINE}

    def test_collects_every_error(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("A")
        @state("B", entry="missing")
        @transition("A", "B", guard="host.x >")
        @transition("A", "B", priority="high")
        class Broken:
            pass

        result = extract_machine(Broken)
        assert result.is_err()
        assert _codes(result) == {
            DiagnosticCode.DUPLICATE_STATE,
            DiagnosticCode.UNRESOLVED_REFERENCE,
            DiagnosticCode.UNPARSABLE_GUARD,
            DiagnosticCode.INVALID_FIELD,
        }

    def test_errors_sorted_by_location(self) -> None:
        @state_machine()
        @state("A", initial=True, terminal="yes")
        @state("A")
        class Broken:
            pass

        lines = [d.location.line for d in extract_machine(Broken).unwrap_err()]
        assert lines == sorted(lines)

    def test_duplicate_transition_name(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard="host.x", name="go")
        @transition("A", "B", guard="host.y", name="go")
        class Twice:
            pass

        assert _codes(extract_machine(Twice)) == {DiagnosticCode.DUPLICATE_TRANSITION}

    def test_generated_ids_are_unique(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard="host.x")
        @transition("A", "B", guard="host.y")
        class Parallel:
            pass

        model = extract_machine(Parallel).unwrap()
        assert [t.id for t in model.transitions] == ["A->B", "A->B#2"]

    def test_action_given_twice(self) -> None:
        @state_machine()
        @state("A", initial=True, terminal=True, entry="begin")
        class Doubled:
            def begin(self) -> None:
                pass

            @on_entry("A")
            def also_begin(self) -> None:
                pass

        assert _codes(extract_machine(Doubled)) == {DiagnosticCode.DUPLICATE_ACTION}

    def test_action_bound_to_unknown_state(self) -> None:
        @state_machine()
        @state("A", initial=True, terminal=True)
        class Orphan:
            @on_tick("Missing")
            def work(self) -> None:
                pass

        assert _codes(extract_machine(Orphan)) == {DiagnosticCode.UNKNOWN_STATE_BINDING}

    def test_duplicate_condition_names(self) -> None:
        @state_machine()
        @state("A", initial=True, terminal=True)
        class Conditions:
            @condition("ready")
            def first(self) -> bool:
                return True

            @condition("ready")
            def second(self) -> bool:
                return False

        assert _codes(extract_machine(Conditions)) == {DiagnosticCode.DUPLICATE_CONDITION}

    def test_unknown_condition_reference(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard="nowhere")
        class Unresolved:
            pass

        assert _codes(extract_machine(Unresolved)) == {DiagnosticCode.UNRESOLVED_REFERENCE}

    def test_expression_may_only_read_host_and_builtins(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard="host.distance > limit")
        @transition("A", "B", guard="abs(host.error) < 0.5", priority=5)
        class Scoped:
            pass

        diagnostics = extract_machine(Scoped).unwrap_err()
        assert len(diagnostics) == 1
        assert diagnostics[0].code is DiagnosticCode.UNRESOLVED_REFERENCE
        assert "limit" in diagnostics[0].message

    def test_comprehension_variables_stay_in_their_scope(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard="[y for y in host.items] and y")
        @transition("A", "B", guard="any(v > 0 for v in host.items)", priority=5)
        @transition("A", "B", guard="(n := len(host.items)) > 2 and n < 9", priority=6)
        @transition("A", "B", guard="(lambda k: k + 1)(host.count) > 3", priority=7)
        class Leaky:
            pass

        diagnostics = extract_machine(Leaky).unwrap_err()
        assert len(diagnostics) == 1
        assert diagnostics[0].code is DiagnosticCode.UNRESOLVED_REFERENCE
        assert "unknown name(s) y" in diagnostics[0].message

    def test_guard_must_be_text(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", guard=3)
        class Numeric:
            pass

        assert _codes(extract_machine(Numeric)) == {DiagnosticCode.INVALID_FIELD}

    def test_fail_loudly_must_be_boolean(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", fail_loudly="sometimes")
        class Loud:
            pass

        assert _codes(extract_machine(Loud)) == {DiagnosticCode.INVALID_FIELD}

    def test_empty_machine(self) -> None:
        @state_machine()
        class Empty:
            pass

        assert _codes(extract_machine(Empty)) == {DiagnosticCode.EMPTY_MACHINE}

    def test_transition_action(self) -> None:
        model = extract_machine(DriveDistance).unwrap()
        assert all(t.action is None for t in model.transitions)

        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", action="drive")
        class WithAction(DriveActions):
            pass

        (decl,) = extract_machine(WithAction).unwrap().transitions
        assert decl.action == "drive"
        assert decl.to_dict()["action"] == "drive"

    @pytest.mark.parametrize("action", ["missing", "not valid", 3])
    def test_transition_action_must_be_host_method(self, action) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B", terminal=True)
        @transition("A", "B", action=action)
        class BadAction:
            pass

        diagnostics = extract_machine(BadAction).unwrap_err()
        assert len(diagnostics) == 1
        assert diagnostics[0].message.startswith("transition A->B: transition action")

    def test_bare_state_machine_decorator(self) -> None:
        @state_machine
        @state("A", initial=True, terminal=True)
        class Bare:
            pass

        assert isinstance(Bare, type)
        assert extract_machine(Bare).unwrap().name == "Bare"

    def test_machine_name_must_be_identifier(self) -> None:
        @state_machine(name="not valid")
        @state("A", initial=True, terminal=True)
        class Named:
            pass

        assert _codes(extract_machine(Named)) == {DiagnosticCode.INVALID_FIELD}


class TestGuardSpec:
    def test_expression_keys_ignore_whitespace(self) -> None:
        assert GuardSpec.expression("host.x  >  1").key == GuardSpec.expression("host.x > 1").key

    def test_different_expressions_differ(self) -> None:
        assert GuardSpec.expression("host.x > 1").key != GuardSpec.expression("1 < host.x").key

    def test_reference_and_always_keys(self) -> None:
        assert GuardSpec.always().key == "always"
        assert GuardSpec.reference("ready").key == "ref:ready"

    def test_unparsable_expression(self) -> None:
        with pytest.raises(SyntaxError):
            GuardSpec.expression("host.x >")


class TestResolveHost:
    def test_resolves_class(self) -> None:
        assert resolve_host("tests.machines:DriveActions") is DriveActions

    @pytest.mark.parametrize(
        "ref",
        ["tests.machines", "tests.machines:Missing", "no_such_module_xyz:Thing", "tests.machines:ALWAYS"],
    )
    def test_rejects_bad_references(self, ref: str) -> None:
        with pytest.raises(HostResolutionError):
            resolve_host(ref)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocumentExtraction:
    def test_valid_document(self, drive_document: Path) -> None:
        model = extract_document(drive_document).unwrap()
        assert model.name == "DriveDocument"
        assert model.host is DriveActions
        assert model.state_names() == ["Idle", "Moving", "Done"]
        assert model.transitions[1].guard.method_name == "distanceReached"

    def test_locations_carry_file_and_line(self, drive_document: Path) -> None:
        model = extract_document(drive_document).unwrap()
        idle = model.states[0]
        assert idle.location.file == str(drive_document)
        assert idle.location.line == 4

    def test_missing_guard(self) -> None:
        text = """\
machine: M
states:
  - name: A
    initial: true
  - name: B
    terminal: true
transitions:
  - source: A
    target: B
"""
        result = extract_document_text(text)
        assert _codes(result) == {DiagnosticCode.MISSING_FIELD}
        assert result.unwrap_err()[0].location.line == 8

    def test_unknown_keys(self) -> None:
        text = """\
machine: M
color: blue
states:
  - name: A
    initial: true
    terminal: true
    colour: red
"""
        diagnostics = extract_document_text(text).unwrap_err()
        assert {d.code for d in diagnostics} == {DiagnosticCode.INVALID_FIELD}
        assert len(diagnostics) == 2

    def test_invalid_yaml(self) -> None:
        result = extract_document_text("machine: [unclosed\n", filename="bad.yaml")
        (diagnostic,) = result.unwrap_err()
        assert diagnostic.code is DiagnosticCode.INVALID_FIELD
        assert diagnostic.location.file == "bad.yaml"

    def test_document_must_be_mapping(self) -> None:
        assert _codes(extract_document_text("- just\n- a list\n")) == {DiagnosticCode.INVALID_FIELD}

    def test_unresolvable_host(self) -> None:
        text = """\
machine: M
host: no_such_module_xyz:Host
states:
  - name: A
    initial: true
    terminal: true
"""
        assert _codes(extract_document_text(text)) == {DiagnosticCode.UNRESOLVED_REFERENCE}

    def test_without_host_only_syntax_is_checked(self) -> None:
        text = """\
machine: M
states:
  - name: A
    initial: true
    periodic: anything
  - name: B
    terminal: true
transitions:
  - source: A
    target: B
    guard: whenever
"""
        model = extract_document_text(text).unwrap()
        assert model.host is None
        assert model.states[0].periodic == "anything"
        assert model.transitions[0].guard.kind is GuardKind.REFERENCE

    def test_host_argument_resolves_references(self) -> None:
        text = """\
machine: M
states:
  - name: A
    initial: true
    periodic: fly
  - name: B
    terminal: true
transitions:
  - source: A
    target: B
    guard: distanceReached
"""
        diagnostics = extract_document_text(text, host=DriveActions).unwrap_err()
        assert [d.code for d in diagnostics] == [DiagnosticCode.UNRESOLVED_REFERENCE]
        assert "fly" in diagnostics[0].message

    def test_transition_action(self) -> None:
        text = """\
machine: M
states:
  - name: A
    initial: true
  - name: B
    terminal: true
transitions:
  - source: A
    target: B
    guard: distanceReached
    action: drive
  - source: A
    target: B
    guard: host.distance > 9
    action: teleport
"""
        diagnostics = extract_document_text(text, host=DriveActions).unwrap_err()
        assert [d.code for d in diagnostics] == [DiagnosticCode.UNRESOLVED_REFERENCE]
        assert "transition action 'teleport'" in diagnostics[0].message

    def test_missing_machine_name(self) -> None:
        text = """\
states:
  - name: A
    initial: true
    terminal: true
"""
        assert _codes(extract_document_text(text)) == {DiagnosticCode.MISSING_FIELD}

    def test_unreadable_file(self, tmp_path: Path) -> None:
        result = extract_document(tmp_path / "missing.yaml")
        assert result.is_err()
