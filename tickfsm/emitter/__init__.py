"""Source emission for validated state graphs."""

from tickfsm.emitter.codegen import (
    CodeEmitter,
    EmittedUnit,
    EmitterError,
    WriteResult,
    snake_case,
    write_unit,
)

__all__ = [
    "CodeEmitter",
    "EmittedUnit",
    "EmitterError",
    "WriteResult",
    "snake_case",
    "write_unit",
]
