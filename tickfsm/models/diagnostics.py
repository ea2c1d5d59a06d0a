"""Build diagnostics reported by the compiler stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class Phase(Enum):
    """Compilation phase that produced a diagnostic."""

    EXTRACTION = "extraction"
    RESOLUTION = "resolution"
    VALIDATION = "validation"


class Severity(Enum):
    """How a diagnostic affects the build."""

    ERROR = "error"
    WARNING = "warning"


class DiagnosticCode(Enum):
    """Stable identifiers for every diagnostic the compiler emits."""

    # Extraction
    NOT_A_MACHINE = "not-a-machine"
    MISSING_FIELD = "missing-field"
    INVALID_FIELD = "invalid-field"
    DUPLICATE_STATE = "duplicate-state"
    DUPLICATE_TRANSITION = "duplicate-transition"
    DUPLICATE_ACTION = "duplicate-action"
    DUPLICATE_CONDITION = "duplicate-condition"
    UNPARSABLE_GUARD = "unparsable-guard"
    UNRESOLVED_REFERENCE = "unresolved-reference"
    UNKNOWN_STATE_BINDING = "unknown-state-binding"
    EMPTY_MACHINE = "empty-machine"

    # Resolution
    DANGLING_TRANSITION = "dangling-transition"

    # Validation
    NO_INITIAL_STATE = "no-initial-state"
    MULTIPLE_INITIAL_STATES = "multiple-initial-states"
    UNREACHABLE_STATE = "unreachable-state"
    TERMINAL_HAS_TRANSITIONS = "terminal-has-transitions"
    AMBIGUOUS_TRANSITION = "ambiguous-transition"
    SHADOWED_TRANSITION = "shadowed-transition"
    DEAD_END_STATE = "dead-end-state"


@dataclass(frozen=True, order=True)
class SourceLocation:
    """
    Where a declaration was written.

    Attributes:
        file: Source file (Python module or YAML document)
        line: 1-based line number, 0 when unknown
        element: Dotted name of the declaring element, e.g. "Drive.state[Idle]"
    """

    file: str
    line: int = 0
    element: str = ""

    def __str__(self) -> str:
        where = f"{self.file}:{self.line}" if self.line else self.file
        if self.element:
            return f"{where} ({self.element})"
        return where

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {"file": self.file, "line": self.line, "element": self.element}


UNKNOWN_LOCATION = SourceLocation(file="<unknown>")


@dataclass(frozen=True)
class Diagnostic:
    """A single problem found while compiling a machine."""

    code: DiagnosticCode
    message: str
    location: SourceLocation = UNKNOWN_LOCATION
    phase: Phase = Phase.VALIDATION
    severity: Severity = Severity.ERROR

    @property
    def is_fatal(self) -> bool:
        """Check if this diagnostic fails the build."""
        return self.severity is Severity.ERROR

    def sort_key(self) -> tuple:
        return (self.location.file, self.location.line, self.location.element, self.message)

    def __str__(self) -> str:
        return f"{self.location}: {self.severity.value}: {self.message} [{self.code.value}]"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "severity": self.severity.value,
            "phase": self.phase.value,
            "location": self.location.to_dict(),
        }


def sort_diagnostics(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Order diagnostics by source location, dropping exact duplicates."""
    unique = list(dict.fromkeys(diagnostics))
    return sorted(unique, key=Diagnostic.sort_key)


class CompilationError(Exception):
    """Raised when a machine fails to compile. No source is emitted."""

    def __init__(
        self,
        diagnostics: Iterable[Diagnostic],
        machine: Optional[str] = None,
    ) -> None:
        self.diagnostics = sort_diagnostics(diagnostics)
        self.machine = machine
        self.phase = self.diagnostics[0].phase if self.diagnostics else None
        name = machine or "state machine"
        lines = "\n".join(f"  {d}" for d in self.diagnostics)
        super().__init__(
            f"{name} failed to compile with {len(self.diagnostics)} error(s):\n{lines}"
        )

    @property
    def messages(self) -> list[str]:
        """Plain diagnostic messages in reporting order."""
        return [d.message for d in self.diagnostics]
