"""Runtime support for emitted units: contract, scheduler and loader."""

from tickfsm.runtime.lifecycle import Lifecycle, TickScheduler
from tickfsm.runtime.loader import load_module_file, load_unit, machine_class

__all__ = [
    "Lifecycle",
    "TickScheduler",
    "load_unit",
    "load_module_file",
    "machine_class",
]
