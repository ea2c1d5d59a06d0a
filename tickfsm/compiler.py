"""Compilation pipeline: extract, build, validate, emit, write.

Every stage returns a ``Result``; the first stage that fails stops the
pipeline and its diagnostics are raised as a ``CompilationError``. Nothing is
emitted or written for a machine that fails any stage.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from tickfsm.config.settings import CompilerConfig
from tickfsm.emitter.codegen import CodeEmitter, EmittedUnit, WriteResult, write_unit
from tickfsm.extractor.document import extract_document
from tickfsm.extractor.metadata import extract_machine
from tickfsm.graph.builder import StateGraph, build_graph
from tickfsm.graph.validator import GraphValidator
from tickfsm.models.diagnostics import CompilationError, Diagnostic
from tickfsm.models.machine import MachineModel
from tickfsm.utils.logging import (
    get_logger,
    log_stage_timing,
    new_compilation_id,
    set_machine_context,
    set_stage,
)
from tickfsm.utils.result import Result

logger = get_logger("compiler")

Source = Union[type, MachineModel, str, Path]

DOCUMENT_SUFFIXES = (".yaml", ".yml")


@dataclass
class CheckResult:
    """A machine that passed extraction, resolution and validation."""

    machine: str
    graph: StateGraph
    warnings: list[Diagnostic] = field(default_factory=list)
    compilation_id: str = ""

    def to_dict(self) -> dict:
        return {
            "machine": self.machine,
            "compilation_id": self.compilation_id,
            "states": len(self.graph),
            "transitions": len(self.graph.edges()),
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class CompilationResult(CheckResult):
    """A compiled machine and, when written, where it went."""

    unit: Optional[EmittedUnit] = None
    output: Optional[WriteResult] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.unit is not None:
            data["unit"] = self.unit.to_dict()
        if self.output is not None:
            data["path"] = str(self.output.path)
            data["written"] = self.output.written
        return data


def is_document(source: object) -> bool:
    """Check if a source refers to a YAML document."""
    return isinstance(source, (str, Path)) and Path(source).suffix.lower() in DOCUMENT_SUFFIXES


class Compiler:
    """
    Runs the compilation stages for one machine at a time.

    Stages are logged with the current compilation id and machine in context,
    and each stage's duration is logged at debug level.
    """

    def __init__(self, config: Optional[CompilerConfig] = None) -> None:
        """
        Initialize the compiler.

        Args:
            config: Compiler configuration (defaults if omitted)
        """
        self.config = config or CompilerConfig()
        self.validator = GraphValidator(
            warnings_as_errors=self.config.validation.warnings_as_errors,
            warn_dead_ends=self.config.validation.warn_dead_ends,
            warn_shadowed=self.config.validation.warn_shadowed,
        )
        self.emitter = CodeEmitter(
            class_suffix=self.config.output.class_suffix,
            module_suffix=self.config.output.module_suffix,
        )

    def extract(self, source: Source, host: Optional[type] = None) -> MachineModel:
        """
        Produce the intermediate model for a host class or YAML document.

        Raises:
            CompilationError: On any extraction diagnostic
        """
        if isinstance(source, MachineModel):
            return source

        set_stage("extraction")
        if is_document(source):
            set_machine_context(Path(source).stem)
            result = self._timed("extraction", extract_document, Path(source), host)
        elif isinstance(source, type):
            set_machine_context(source.__name__)
            result = self._timed("extraction", extract_machine, source)
        else:
            raise TypeError(f"cannot compile {source!r}: expected a class or a .yaml document")

        return self._unwrap(result, None)

    def check(self, source: Source, host: Optional[type] = None) -> CheckResult:
        """
        Run every stage up to and including validation.

        Args:
            source: Host class, YAML document path or intermediate model
            host: Host class for a document without a ``host`` key

        Returns:
            CheckResult holding the frozen graph and any warnings

        Raises:
            CompilationError: If extraction, resolution or validation fails
        """
        compilation_id = new_compilation_id()
        model = self.extract(source, host)
        set_machine_context(model.name)

        set_stage("resolution")
        graph = self._unwrap(self._timed("resolution", build_graph, model), model.name)

        set_stage("validation")
        start = time.monotonic()
        report = self.validator.validate(graph)
        log_stage_timing("validation", time.monotonic() - start)
        if not report.valid:
            raise CompilationError(report.errors, machine=model.name)

        for warning in report.warnings:
            logger.warning("validation_warning", code=warning.code.value, detail=warning.message)

        return CheckResult(
            machine=model.name,
            graph=graph,
            warnings=report.warnings,
            compilation_id=compilation_id,
        )

    def compile(
        self,
        source: Source,
        host: Optional[type] = None,
        write: bool = True,
        output_dir: Optional[Path] = None,
    ) -> CompilationResult:
        """
        Compile a machine and optionally write the emitted module.

        Args:
            source: Host class, YAML document path or intermediate model
            host: Host class for a document without a ``host`` key
            write: Write the module to the output directory
            output_dir: Overrides the configured output directory

        Returns:
            CompilationResult with the emitted unit

        Raises:
            CompilationError: If any stage before emission fails
            EmitterError: If the emitted source is not valid Python
            AtomicWriteError: If the module cannot be written
        """
        return self.emit(self.check(source, host), write=write, output_dir=output_dir)

    def emit(
        self,
        checked: CheckResult,
        write: bool = False,
        output_dir: Optional[Path] = None,
    ) -> CompilationResult:
        """
        Generate the dispatcher module for a machine that passed ``check``.

        Raises:
            EmitterError: If the emitted source is not valid Python
            AtomicWriteError: If ``write`` is set and the module cannot be written
        """
        set_machine_context(checked.machine, stage="emission")
        start = time.monotonic()
        unit = self.emitter.emit(checked.graph)
        log_stage_timing("emission", time.monotonic() - start)

        result = CompilationResult(
            machine=checked.machine,
            graph=checked.graph,
            warnings=checked.warnings,
            compilation_id=checked.compilation_id,
            unit=unit,
        )
        if write:
            self.write(result, output_dir)

        logger.info(
            "compilation_completed",
            module=unit.module_name,
            written=result.output.written if result.output else False,
            warnings=len(checked.warnings),
        )
        return result

    def write(self, result: CompilationResult, output_dir: Optional[Path] = None) -> WriteResult:
        """
        Write an emitted unit to ``output_dir`` or the configured directory.

        Raises:
            AtomicWriteError: If the module cannot be written
        """
        if result.unit is None:
            raise ValueError(f"{result.machine} has no emitted unit to write")
        set_machine_context(result.machine, stage="write")
        directory = Path(output_dir) if output_dir else self.config.output.directory
        result.output = write_unit(result.unit, directory)
        return result.output

    def _timed(self, stage: str, fn, *args) -> Result:
        start = time.monotonic()
        result = fn(*args)
        log_stage_timing(stage, time.monotonic() - start)
        return result

    def _unwrap(self, result: Result, machine: Optional[str]):
        if result.is_ok():
            return result.unwrap()
        error = CompilationError(result.unwrap_err(), machine=machine)
        logger.warning(
            "compilation_failed",
            phase=error.phase.value if error.phase else None,
            errors=len(error.diagnostics),
        )
        raise error


def check_machine(
    source: Source,
    config: Optional[CompilerConfig] = None,
    host: Optional[type] = None,
) -> CheckResult:
    """Validate a machine without emitting anything."""
    return Compiler(config).check(source, host)


def compile_machine(
    source: Source,
    config: Optional[CompilerConfig] = None,
    host: Optional[type] = None,
    write: bool = False,
    output_dir: Optional[Path] = None,
) -> CompilationResult:
    """
    Compile a host class or YAML document into a dispatcher module.

    The source is only written to disk when ``write`` is set; the emitted
    unit is always returned.

    Raises:
        CompilationError: If the machine fails extraction, resolution or validation
    """
    return Compiler(config).compile(source, host=host, write=write, output_dir=output_dir)
