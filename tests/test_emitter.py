"""Tests for the code emitter and the behavior of emitted dispatchers."""

from __future__ import annotations

from pathlib import Path

import pytest

from tickfsm import check_machine, state, state_machine, transition
from tickfsm.emitter import CodeEmitter, EmitterError, snake_case, write_unit
from tickfsm.extractor import extract_document_text, extract_machine
from tickfsm.graph import build_graph
from tickfsm.runtime import Lifecycle, load_module_file, load_unit, machine_class
from tests.machines import (
    DoorController,
    DriveDistance,
    FlakySensor,
    Intake,
    OneShot,
    SafetyInterlock,
)


def _emit(source, emitter: CodeEmitter | None = None):
    graph = check_machine(source).graph
    return (emitter or CodeEmitter()).emit(graph)


def _dispatcher(host):
    """Compile the host's class and wrap the host instance."""
    unit = _emit(type(host))
    return machine_class(unit)(host)


class TestEmittedSource:
    def test_names(self) -> None:
        unit = _emit(DriveDistance)
        assert unit.module_name == "drive_distance_state_machine"
        assert unit.class_name == "DriveDistanceStateMachine"
        assert unit.filename == "drive_distance_state_machine.py"

    def test_custom_suffixes(self) -> None:
        unit = _emit(DoorController, CodeEmitter(class_suffix="Command", module_suffix="_command"))
        assert unit.module_name == "door_command"
        assert unit.class_name == "DoorCommand"

    def test_header_names_origin(self) -> None:
        source = _emit(DriveDistance).source
        assert source.startswith("# Generated by tickfsm ")
        assert "from tests.machines:DriveDistance. Do not edit." in source.splitlines()[0]

    def test_self_contained(self) -> None:
        source = _emit(DoorController).source
        assert "import tickfsm" not in source
        assert "from tickfsm" not in source

    def test_emission_is_deterministic(self) -> None:
        first = _emit(DoorController)
        second = _emit(DoorController)
        assert first.source == second.source
        assert first.content_hash == second.content_hash

    def test_transition_table_in_priority_order(self) -> None:
        module = load_unit(_emit(DoorController))
        assert module.TRANSITIONS == (
            ("Closed->Opening", "Closed", "Opening", 0),
            ("Opening->Jammed", "Opening", "Jammed", 0),
            ("Opening->Open", "Opening", "Open", 1),
        )
        assert module.INITIAL_STATE == "Closed"
        assert module.TERMINAL_STATES == frozenset({"Open", "Jammed"})

    def test_unvalidated_graph_rejected(self) -> None:
        @state_machine()
        @state("A", initial=True, terminal=True)
        class Plain:
            pass

        graph = build_graph(extract_machine(Plain).unwrap()).unwrap()
        with pytest.raises(EmitterError):
            CodeEmitter().emit(graph)

    def test_state_names_need_not_be_identifiers(self) -> None:
        text = """\
machine: Lift
states:
  - name: Ground floor
    initial: true
  - name: 3rd
  - name: ground-floor
    terminal: true
transitions:
  - source: Ground floor
    target: 3rd
    guard: always
  - source: 3rd
    target: ground-floor
    guard: always
"""
        model = extract_document_text(text).unwrap()
        dispatcher = machine_class(_emit(model))(object())
        dispatcher.initialize()
        dispatcher.execute()
        assert dispatcher.current_state == "3rd"
        dispatcher.execute()
        assert dispatcher.isFinished()

    def test_write_unit(self, tmp_path: Path) -> None:
        unit = _emit(DriveDistance)
        result = write_unit(unit, tmp_path / "out")
        assert result.written
        assert result.path == tmp_path / "out" / unit.filename
        assert result.path.read_text(encoding="utf-8") == unit.source

        again = write_unit(unit, tmp_path / "out")
        assert not again.written

        module = load_module_file(result.path)
        assert hasattr(module, unit.class_name)


class TestSnakeCase:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("DriveBase", "drive_base"),
            ("HTTPState", "http_state"),
            ("door", "door"),
            ("Arm2Joint", "arm2_joint"),
        ],
    )
    def test_snake_case(self, name: str, expected: str) -> None:
        assert snake_case(name) == expected


class TestDispatcher:
    def test_satisfies_lifecycle_contract(self) -> None:
        assert isinstance(_dispatcher(DriveDistance()), Lifecycle)

    def test_drive_until_distance_reached(self) -> None:
        host = DriveDistance(target=3)
        machine = _dispatcher(host)

        machine.initialize()
        assert machine.current_state == "Idle"
        assert host.calls == ["reset"]
        assert not machine.isFinished()

        machine.execute()
        assert machine.in_state("Moving")

        for _ in range(2):
            machine.execute()
            assert not machine.isFinished()
        assert host.distance == 2

        machine.execute()
        assert machine.current_state == "Done"
        assert machine.isFinished()
        assert host.calls == ["reset", "drive", "drive", "drive"]

    def test_actions_run_in_order(self) -> None:
        host = DoorController()
        machine = _dispatcher(host)
        machine.initialize()

        machine.execute()
        assert machine.current_state == "Closed"

        host.requested = True
        machine.execute()
        assert machine.current_state == "Opening"

        while not machine.isFinished():
            machine.execute()

        assert machine.current_state == "Open"
        assert host.events == ["start", "advance:1", "advance:2", "advance:3", "stop", "open"]

    def test_lower_priority_number_wins(self) -> None:
        host = DoorController()
        machine = _dispatcher(host)
        machine.initialize()
        host.requested = True
        machine.execute()

        host.position = 10
        host.stalled = True
        machine.execute()
        assert machine.current_state == "Jammed"

    def test_at_most_one_transition_per_tick(self) -> None:
        @state_machine()
        @state("A", initial=True)
        @state("B")
        @state("C", terminal=True)
        @transition("A", "B")
        @transition("B", "C")
        class Chain:
            pass

        machine = _dispatcher(Chain())
        machine.initialize()
        machine.execute()
        assert machine.current_state == "B"
        machine.execute()
        assert machine.current_state == "C"

    def test_single_terminal_state_finishes_immediately(self) -> None:
        machine = _dispatcher(OneShot())
        machine.initialize()
        assert machine.current_state == "Only"
        assert machine.isFinished()
        machine.end(False)

    def test_fail_loudly_raises(self) -> None:
        host = SafetyInterlock()
        unit = _emit(SafetyInterlock)
        module = load_unit(unit)
        machine = getattr(module, unit.class_name)(host)
        machine.initialize()

        machine.execute()
        assert machine.current_state == "Armed"

        host.fault = True
        with pytest.raises(module.FailLoudlyError, match="Armed->Tripped"):
            machine.execute()
        assert machine.current_state == "Armed"

    def test_fail_loudly_only_when_guard_fires(self) -> None:
        host = SafetyInterlock()
        machine = _dispatcher(host)
        machine.initialize()
        host.disarmed = True
        machine.execute()
        assert machine.current_state == "Disarmed"

    def test_guard_exceptions_propagate(self) -> None:
        host = FlakySensor(fail_on=1)
        machine = _dispatcher(host)
        machine.initialize()

        with pytest.raises(OSError, match="sensor disconnected"):
            machine.execute()
        assert machine.current_state == "Waiting"

        # The failed tick must not leave the dispatcher marked as running
        machine.execute()
        assert host.reads == 2

    def test_execute_before_initialize(self) -> None:
        machine = _dispatcher(DriveDistance())
        assert machine.current_state is None
        with pytest.raises(RuntimeError):
            machine.execute()

    def test_execute_after_end(self) -> None:
        machine = _dispatcher(DriveDistance())
        machine.initialize()
        machine.end(True)
        with pytest.raises(RuntimeError):
            machine.execute()

    def test_end_runs_exit_once(self) -> None:
        host = DoorController()
        machine = _dispatcher(host)
        machine.initialize()
        host.requested = True
        machine.execute()

        machine.end(True)
        machine.end(True)
        assert host.events == ["start", "stop"]
        assert machine.current_state == "Opening"

    def test_reinitialize_after_end(self) -> None:
        host = DriveDistance(target=1)
        machine = _dispatcher(host)
        machine.initialize()
        machine.execute()
        machine.end(True)

        machine.initialize()
        assert machine.current_state == "Idle"
        machine.execute()
        assert machine.current_state == "Moving"

    def test_reentrant_execute_rejected(self) -> None:
        @state_machine()
        @state("Loop", initial=True, periodic="poke")
        @state("Done", terminal=True)
        @transition("Loop", "Done", guard="host.finished")
        class Reentrant:
            def __init__(self) -> None:
                self.machine = None
                self.finished = False

            def poke(self) -> None:
                self.machine.execute()

        host = Reentrant()
        machine = _dispatcher(host)
        host.machine = machine
        machine.initialize()
        with pytest.raises(RuntimeError, match="re-entrantly"):
            machine.execute()

    def test_instances_share_nothing(self) -> None:
        first_host, second_host = DriveDistance(target=1), DriveDistance(target=1)
        dispatcher_class = machine_class(_emit(DriveDistance))
        first, second = dispatcher_class(first_host), dispatcher_class(second_host)
        first.initialize()
        second.initialize()
        first.execute()
        assert first.current_state == "Moving"
        assert second.current_state == "Idle"

    def test_in_state_follows_transitions(self) -> None:
        machine = _dispatcher(DriveDistance(target=1))
        assert not machine.in_state("Idle")

        machine.initialize()
        assert machine.in_state("Idle")
        assert not machine.in_state("Moving")

        machine.execute()
        assert machine.in_state("Moving")
        assert not machine.in_state("Idle")


class TestTransitionRequests:
    @pytest.fixture
    def intake(self):
        """Loaded Intake module, its dispatcher and host, initialized."""
        unit = _emit(Intake)
        module = load_unit(unit)
        host = Intake()
        machine = getattr(module, unit.class_name)(host)
        machine.initialize()
        return module, machine, host

    def test_transition_action_runs_between_exit_and_entry(self, intake) -> None:
        _, machine, host = intake
        host.deploy = True
        machine.execute()
        assert machine.current_state == "Deployed"
        assert host.events == ["exit:Stowed", "extend", "enter:Deployed"]

    def test_request_is_taken_on_next_tick(self, intake) -> None:
        _, machine, host = intake
        machine.request_transition("Deployed")
        assert machine.current_state == "Stowed"

        machine.execute()
        assert machine.current_state == "Deployed"
        assert host.events == ["exit:Stowed", "extend", "enter:Deployed"]

        machine.execute()
        assert machine.current_state == "Deployed"

    def test_request_replaces_guard_evaluation(self, intake) -> None:
        _, machine, host = intake
        machine.request_transition("Deployed")
        machine.execute()

        host.start = True
        machine.request_transition("Stowed")
        machine.execute()
        assert machine.current_state == "Stowed"
        assert host.events[-1] == "retract"

    def test_one_transition_per_tick_with_request(self, intake) -> None:
        _, machine, host = intake
        host.deploy = True
        machine.request_transition("Deployed")
        machine.execute()
        assert machine.current_state == "Deployed"
        assert host.events.count("extend") == 1

    def test_periodic_action_runs_before_request(self, intake) -> None:
        _, machine, host = intake
        host.deploy = host.start = True
        machine.execute()
        machine.execute()
        assert machine.current_state == "Running"

        machine.request_transition("Done")
        machine.execute()
        assert machine.current_state == "Done"
        assert host.events[-1] == "spin"

    def test_undeclared_request_rejected(self, intake) -> None:
        module, machine, _ = intake
        assert machine.can_transition_to("Deployed")
        assert not machine.can_transition_to("Running")

        with pytest.raises(module.InvalidStateTransition, match="no transition from Stowed to Running"):
            machine.request_transition("Running")
        machine.execute()
        assert machine.current_state == "Stowed"

    def test_terminal_state_accepts_no_requests(self, intake) -> None:
        module, machine, host = intake
        host.deploy = host.start = host.finished = True
        for _ in range(3):
            machine.execute()
        assert machine.isFinished()
        assert not machine.can_transition_to("Stowed")
        with pytest.raises(module.InvalidStateTransition):
            machine.request_transition("Stowed")

    def test_requested_fail_loudly_transition_raises(self, intake) -> None:
        module, machine, host = intake
        host.deploy = host.start = True
        machine.execute()
        machine.execute()

        machine.request_transition("Faulted")
        with pytest.raises(module.FailLoudlyError, match="Running->Faulted"):
            machine.execute()
        assert machine.current_state == "Running"

    def test_request_before_initialize(self) -> None:
        machine = _dispatcher(Intake())
        assert not machine.can_transition_to("Deployed")
        with pytest.raises(RuntimeError, match="before initialize"):
            machine.request_transition("Deployed")

    def test_end_discards_pending_request(self, intake) -> None:
        _, machine, _ = intake
        machine.request_transition("Deployed")
        machine.end(True)

        machine.initialize()
        machine.execute()
        assert machine.current_state == "Stowed"

    def test_successor_table(self, intake) -> None:
        module, _, _ = intake
        assert module.SUCCESSORS["Stowed"] == {"Deployed": ("Stowed->Deployed", "extend", False)}
        assert module.SUCCESSORS["Running"]["Faulted"] == ("Running->Faulted", None, True)
        assert module.SUCCESSORS["Done"] == {}
