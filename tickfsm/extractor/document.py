"""Extracts a machine model from a YAML specification document.

Document format:

    machine: Drive
    host: robot.drive:Drive        # optional, resolves action/guard names
    states:
      - name: Idle
        initial: true
        entry: reset_encoders
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
        priority: 0
        action: log_arrival          # optional, runs between exit and entry
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml

from tickfsm.extractor.assembler import HostResolutionError, ModelAssembler, resolve_host
from tickfsm.extractor.decorators import RawDeclaration
from tickfsm.models.diagnostics import Diagnostic, DiagnosticCode, Phase, SourceLocation
from tickfsm.models.machine import MachineModel
from tickfsm.utils.logging import get_logger
from tickfsm.utils.result import Err, Result

logger = get_logger("extractor.document")

LINE_KEY = "__line__"

DOCUMENT_KEYS = frozenset({"machine", "host", "states", "transitions"})
STATE_KEYS = frozenset({"name", "initial", "terminal", "entry", "periodic", "exit"})
TRANSITION_KEYS = frozenset({"source", "target", "guard", "priority", "name", "fail_loudly", "action"})


class _LineLoader(yaml.SafeLoader):
    """SafeLoader that records the line of every mapping."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict:
        mapping = super().construct_mapping(node, deep=deep)
        mapping[LINE_KEY] = node.start_mark.line + 1
        return mapping


def _error(code: DiagnosticCode, message: str, location: SourceLocation) -> Diagnostic:
    return Diagnostic(code=code, message=message, location=location, phase=Phase.EXTRACTION)


def extract_document(
    path: Path,
    host: Optional[type] = None,
) -> Result[MachineModel, list[Diagnostic]]:
    """
    Extract the intermediate model from a YAML file.

    Args:
        path: Path to the YAML document
        host: Host class overriding the document's ``host`` key

    Returns:
        Ok(MachineModel), or Err with all extraction diagnostics
    """
    path = Path(path)
    file_location = SourceLocation(file=str(path))

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err([_error(DiagnosticCode.MISSING_FIELD, f"cannot read document: {e}", file_location)])

    return extract_document_text(text, filename=str(path), host=host)


def extract_document_text(
    text: str,
    filename: str = "<document>",
    host: Optional[type] = None,
) -> Result[MachineModel, list[Diagnostic]]:
    """Extract the intermediate model from YAML source text."""
    file_location = SourceLocation(file=filename)

    try:
        data = yaml.load(text, Loader=_LineLoader)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        location = SourceLocation(file=filename, line=mark.line + 1) if mark else file_location
        problem = getattr(e, "problem", None) or str(e)
        return Err([_error(DiagnosticCode.INVALID_FIELD, f"invalid YAML: {problem}", location)])

    if not isinstance(data, dict):
        return Err([
            _error(
                DiagnosticCode.INVALID_FIELD,
                "document must be a mapping with 'machine', 'states' and 'transitions'",
                file_location,
            )
        ])

    doc_location = SourceLocation(file=filename, line=data.get(LINE_KEY, 0), element="machine")
    diagnostics: list[Diagnostic] = []

    name = data.get("machine")
    if name is None:
        diagnostics.append(_error(DiagnosticCode.MISSING_FIELD, "document is missing 'machine'", doc_location))
        name = Path(filename).stem
    elif not isinstance(name, str) or not name.isidentifier():
        diagnostics.append(
            _error(DiagnosticCode.INVALID_FIELD, f"machine name must be an identifier, got {name!r}", doc_location)
        )

    doc_location = SourceLocation(file=filename, line=doc_location.line, element=str(name))
    diagnostics.extend(_unknown_keys(data, DOCUMENT_KEYS, "document", doc_location))

    if host is None and data.get("host") is not None:
        ref = data["host"]
        if not isinstance(ref, str):
            diagnostics.append(
                _error(DiagnosticCode.INVALID_FIELD, f"host must be 'module:Class', got {ref!r}", doc_location)
            )
        else:
            try:
                host = resolve_host(ref)
            except HostResolutionError as e:
                diagnostics.append(_error(DiagnosticCode.UNRESOLVED_REFERENCE, str(e), doc_location))

    states = _declarations(data, "states", "state", STATE_KEYS, filename, doc_location, diagnostics)
    transitions = _declarations(
        data, "transitions", "transition", TRANSITION_KEYS, filename, doc_location, diagnostics
    )

    for decl in transitions:
        if "guard" not in decl.fields:
            diagnostics.append(
                _error(DiagnosticCode.MISSING_FIELD, "transition is missing a guard", decl.location)
            )
            decl.fields["guard"] = "always"

    assembler = ModelAssembler(name=str(name), host=host, location=doc_location)
    assembler.diagnostics.extend(diagnostics)
    result = assembler.assemble(states, transitions)

    if result.is_ok():
        logger.debug("document_extracted", file=filename, machine=name)
    else:
        logger.debug("document_extraction_failed", file=filename, errors=len(result.unwrap_err()))
    return result


def _unknown_keys(
    mapping: dict[str, Any],
    allowed: frozenset[str],
    what: str,
    location: SourceLocation,
) -> list[Diagnostic]:
    return [
        _error(DiagnosticCode.INVALID_FIELD, f"unknown {what} field '{key}'", location)
        for key in mapping
        if key != LINE_KEY and key not in allowed
    ]


def _declarations(
    data: dict[str, Any],
    section: str,
    kind: str,
    allowed: frozenset[str],
    filename: str,
    doc_location: SourceLocation,
    diagnostics: list[Diagnostic],
) -> list[RawDeclaration]:
    entries = data.get(section, [])
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        diagnostics.append(
            _error(DiagnosticCode.INVALID_FIELD, f"'{section}' must be a list", doc_location)
        )
        return []

    declarations = []
    for entry in entries:
        if not isinstance(entry, dict):
            diagnostics.append(
                _error(DiagnosticCode.INVALID_FIELD, f"each {kind} must be a mapping, got {entry!r}", doc_location)
            )
            continue

        if kind == "state":
            element = f"state[{entry.get('name')}]"
        else:
            element = f"transition[{entry.get('source')}->{entry.get('target')}]"
        location = SourceLocation(file=filename, line=entry.get(LINE_KEY, 0), element=element)

        diagnostics.extend(_unknown_keys(entry, allowed, kind, location))
        fields = {key: value for key, value in entry.items() if key in allowed}
        declarations.append(RawDeclaration(kind=kind, fields=fields, location=location))

    return declarations
