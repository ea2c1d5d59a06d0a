"""Configuration file for pytest containing fixtures and configuration.

This module provides fixtures that can be used across multiple test files:
- compiler: Compiler writing into a temporary output directory
- output_dir: Temporary directory for generated modules
- write_document: Writes a YAML machine document to a temporary file
- drive_document: A valid document for the DriveActions host
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from tickfsm.compiler import Compiler
from tickfsm.config.settings import CompilerConfig
from tickfsm.utils.logging import configure_logging

DRIVE_DOCUMENT = """\
machine: DriveDocument
host: tests.machines:DriveActions
states:
  - name: Idle
    initial: true
    entry: reset
  - name: Moving
    periodic: drive
  - name: Done
    terminal: true
transitions:
  - source: Idle
    target: Moving
    guard: always
  - source: Moving
    target: Done
    guard: distanceReached
"""


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Directory generated modules are written to."""
    return tmp_path / "generated"


@pytest.fixture
def config(output_dir: Path) -> CompilerConfig:
    """Default configuration writing to the temporary output directory."""
    return CompilerConfig().with_output_dir(output_dir)


@pytest.fixture
def compiler(config: CompilerConfig) -> Compiler:
    return Compiler(config)


@pytest.fixture
def write_document(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write dedented YAML text to a file and return its path."""

    def _write(text: str, name: str = "machine.yaml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def drive_document(write_document: Callable[[str, str], Path]) -> Path:
    return write_document(DRIVE_DOCUMENT, "drive.yaml")


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI invocations point logging at their own streams; restore the default."""
    yield
    configure_logging()
