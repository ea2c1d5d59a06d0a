"""Utility modules for tickfsm."""

from tickfsm.utils.atomic import (
    AtomicWriteError,
    atomic_write,
    atomic_write_text,
    get_content_hash,
)
from tickfsm.utils.logging import (
    configure_logging,
    get_logger,
    log_stage_timing,
    new_compilation_id,
    set_machine_context,
    set_stage,
)
from tickfsm.utils.result import (
    ConfigError,
    Err,
    ExitCode,
    Ok,
    Result,
    ResultError,
    collect_results,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "new_compilation_id",
    "set_machine_context",
    "set_stage",
    "log_stage_timing",
    # Atomic writes
    "AtomicWriteError",
    "atomic_write",
    "atomic_write_text",
    "get_content_hash",
    # Results
    "Ok",
    "Err",
    "Result",
    "ResultError",
    "ConfigError",
    "ExitCode",
    "collect_results",
]
