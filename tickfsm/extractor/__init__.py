"""Specification extraction: decorators, YAML documents and the shared assembler."""

from tickfsm.extractor.assembler import (
    HostResolutionError,
    ModelAssembler,
    host_ref,
    resolve_host,
)
from tickfsm.extractor.decorators import (
    ALWAYS,
    condition,
    on_entry,
    on_exit,
    on_tick,
    state,
    state_machine,
    transition,
)
from tickfsm.extractor.document import extract_document, extract_document_text
from tickfsm.extractor.metadata import extract_machine

__all__ = [
    # Decorators
    "ALWAYS",
    "state_machine",
    "state",
    "transition",
    "on_entry",
    "on_tick",
    "on_exit",
    "condition",
    # Extraction
    "extract_machine",
    "extract_document",
    "extract_document_text",
    "ModelAssembler",
    # Hosts
    "resolve_host",
    "host_ref",
    "HostResolutionError",
]
