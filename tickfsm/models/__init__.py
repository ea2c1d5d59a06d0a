"""Data models for tickfsm."""

from tickfsm.models.diagnostics import (
    UNKNOWN_LOCATION,
    CompilationError,
    Diagnostic,
    DiagnosticCode,
    Phase,
    Severity,
    SourceLocation,
    sort_diagnostics,
)
from tickfsm.models.machine import (
    GuardKind,
    GuardSpec,
    MachineModel,
    StateDecl,
    TransitionDecl,
)

__all__ = [
    # Diagnostics
    "Phase",
    "Severity",
    "DiagnosticCode",
    "SourceLocation",
    "UNKNOWN_LOCATION",
    "Diagnostic",
    "CompilationError",
    "sort_diagnostics",
    # Intermediate model
    "GuardKind",
    "GuardSpec",
    "StateDecl",
    "TransitionDecl",
    "MachineModel",
]
