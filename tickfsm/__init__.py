"""tickfsm - compiles declarative state machines into tick-driven dispatchers."""

__version__ = "0.1.0"

from tickfsm.compiler import (  # noqa: E402
    CheckResult,
    CompilationResult,
    Compiler,
    check_machine,
    compile_machine,
)
from tickfsm.extractor import (  # noqa: E402
    ALWAYS,
    condition,
    on_entry,
    on_exit,
    on_tick,
    state,
    state_machine,
    transition,
)
from tickfsm.models import CompilationError, Diagnostic  # noqa: E402

__all__ = [
    "__version__",
    # Declarations
    "ALWAYS",
    "state_machine",
    "state",
    "transition",
    "on_entry",
    "on_tick",
    "on_exit",
    "condition",
    # Compilation
    "Compiler",
    "CheckResult",
    "CompilationResult",
    "check_machine",
    "compile_machine",
    "CompilationError",
    "Diagnostic",
]
