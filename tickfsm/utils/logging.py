"""Structured logging utility with compilation context support."""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

import structlog

# Context variables for the compilation currently in progress
compilation_id_var: ContextVar[str] = ContextVar("compilation_id", default="")
machine_var: ContextVar[str] = ContextVar("machine", default="")
stage_var: ContextVar[str] = ContextVar("stage", default="")


def new_compilation_id() -> str:
    """Start a new compilation context and return its id."""
    cid = str(uuid.uuid4())[:8]
    compilation_id_var.set(cid)
    return cid


def set_machine_context(machine: str, stage: str = "") -> None:
    """Set the machine being compiled for logging."""
    machine_var.set(machine)
    if stage:
        stage_var.set(stage)


def set_stage(stage: str) -> None:
    """Set the current compilation stage."""
    stage_var.set(stage)


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add compilation id, machine and stage to log events."""
    cid = compilation_id_var.get()
    if cid:
        event_dict["compilation_id"] = cid

    machine = machine_var.get()
    if machine:
        event_dict["machine"] = machine

    stage = stage_var.get()
    if stage:
        event_dict["stage"] = stage

    return event_dict


def add_timestamp(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(
    level: str = "warning",
    format_type: str = "text",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for the compiler.

    Args:
        level: Log level (debug, info, warn, error)
        format_type: Output format ('json' or 'text')
        stream: Output stream (default: sys.stderr)
    """
    if stream is None:
        stream = sys.stderr

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    log_level = level_map.get(level.lower(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=log_level,
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        add_context_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name for context

    Returns:
        Configured structlog logger
    """
    # Lazy proxy: configuration is looked up on every call, not at import
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def log_stage_timing(stage: str, duration_seconds: float) -> None:
    """Log timing information for a compilation stage."""
    logger = get_logger("timing")
    logger.debug(
        "stage_completed",
        stage=stage,
        duration_seconds=round(duration_seconds, 4),
    )


# Initialize with defaults on import
configure_logging()
