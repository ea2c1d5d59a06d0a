"""Loads emitted dispatcher source as an importable module."""

from __future__ import annotations

import importlib.util
import sys
import types
from pathlib import Path

from tickfsm.emitter.codegen import EmittedUnit


def load_unit(unit: EmittedUnit, register: bool = False) -> types.ModuleType:
    """
    Execute an emitted unit's source into a fresh module.

    Args:
        unit: Unit returned by the emitter
        register: Also publish the module in sys.modules

    Returns:
        The module holding the dispatcher class
    """
    module = types.ModuleType(unit.module_name)
    module.__file__ = unit.filename
    code = compile(unit.source, unit.filename, "exec")
    exec(code, module.__dict__)
    if register:
        sys.modules[unit.module_name] = module
    return module


def machine_class(unit: EmittedUnit) -> type:
    """The dispatcher class of an emitted unit."""
    return getattr(load_unit(unit), unit.class_name)


def load_module_file(path: Path) -> types.ModuleType:
    """
    Import a generated module from disk without touching sys.path.

    Raises:
        ImportError: If the file cannot be loaded
    """
    path = Path(path)
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load generated module from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module
