"""The four-method lifecycle contract and a minimal scheduler that drives it.

Generated units do not import this module; they satisfy ``Lifecycle``
structurally. ``TickScheduler`` is a reference driver for tests and the
``tickfsm run`` command, not a replacement for a host scheduling framework.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from tickfsm.utils.logging import get_logger

logger = get_logger("runtime.lifecycle")


@runtime_checkable
class Lifecycle(Protocol):
    """Contract between a scheduled unit and the scheduler polling it."""

    def initialize(self) -> None:
        """Called once when the unit is scheduled."""
        ...

    def execute(self) -> None:
        """Called once per tick while the unit is scheduled."""
        ...

    def isFinished(self) -> bool:
        """Polled after every tick; True retires the unit."""
        ...

    def end(self, interrupted: bool) -> None:
        """Called once when the unit is retired or cancelled."""
        ...


class TickScheduler:
    """
    Cooperative scheduler that ticks every scheduled unit in turn.

    Mirrors the usual command-scheduler ordering: ``schedule`` calls
    ``initialize`` immediately, each ``run`` calls ``execute`` then
    ``isFinished``, and a finished unit gets ``end(False)``.
    """

    def __init__(self) -> None:
        self._units: list[Lifecycle] = []
        self.ticks = 0

    @property
    def scheduled(self) -> tuple[Lifecycle, ...]:
        return tuple(self._units)

    def is_scheduled(self, unit: Lifecycle) -> bool:
        return any(u is unit for u in self._units)

    def schedule(self, unit: Lifecycle) -> None:
        """
        Initialize a unit and add it to the tick loop.

        Raises:
            TypeError: If the unit does not implement the lifecycle
        """
        if not isinstance(unit, Lifecycle):
            raise TypeError(f"{type(unit).__name__} does not implement the lifecycle contract")
        if self.is_scheduled(unit):
            return

        unit.initialize()
        self._units.append(unit)
        logger.debug("unit_scheduled", unit=type(unit).__name__)

    def cancel(self, unit: Lifecycle) -> None:
        """Retire a unit early with end(True)."""
        if not self.is_scheduled(unit):
            return
        self._units = [u for u in self._units if u is not unit]
        unit.end(True)
        logger.debug("unit_cancelled", unit=type(unit).__name__)

    def run(self) -> None:
        """Run one tick for every scheduled unit."""
        self.ticks += 1
        for unit in list(self._units):
            unit.execute()
            if unit.isFinished():
                self._units = [u for u in self._units if u is not unit]
                unit.end(False)
                logger.debug("unit_finished", unit=type(unit).__name__, tick=self.ticks)

    def run_until_idle(self, max_ticks: int = 1000) -> int:
        """
        Tick until nothing is scheduled or ``max_ticks`` is reached.

        Returns:
            Number of ticks run
        """
        start = self.ticks
        while self._units and self.ticks - start < max_ticks:
            self.run()
        return self.ticks - start

    def cancel_all(self) -> None:
        for unit in list(self._units):
            self.cancel(unit)
