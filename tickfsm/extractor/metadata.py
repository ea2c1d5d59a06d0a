"""Extracts a machine model from a decorated host class."""

from __future__ import annotations

from tickfsm.extractor.assembler import ModelAssembler, host_location
from tickfsm.extractor.decorators import get_host_metadata
from tickfsm.models.diagnostics import Diagnostic, DiagnosticCode, Phase
from tickfsm.models.machine import MachineModel
from tickfsm.utils.logging import get_logger
from tickfsm.utils.result import Err, Result

logger = get_logger("extractor.metadata")


def extract_machine(host: type) -> Result[MachineModel, list[Diagnostic]]:
    """
    Extract the intermediate model declared on a host class.

    Args:
        host: Class decorated with @state_machine, @state and @transition

    Returns:
        Ok(MachineModel), or Err with all extraction diagnostics
    """
    meta = get_host_metadata(host)

    if meta is None or not meta.marked:
        location = host_location(host)
        logger.warning("not_a_state_machine", host=host.__qualname__)
        return Err([
            Diagnostic(
                code=DiagnosticCode.NOT_A_MACHINE,
                message=f"{host.__qualname__} is not decorated with @state_machine",
                location=location,
                phase=Phase.EXTRACTION,
            )
        ])

    name = meta.name if meta.name is not None else host.__name__
    assembler = ModelAssembler(
        name=name,
        host=host,
        location=meta.location or host_location(host),
    )

    if not isinstance(name, str) or not name.isidentifier():
        assembler.error(
            DiagnosticCode.INVALID_FIELD,
            f"machine name must be an identifier, got {name!r}",
            meta.location,
        )

    result = assembler.assemble(meta.states, meta.transitions)

    if result.is_ok():
        model = result.unwrap()
        logger.debug(
            "extraction_completed",
            host=host.__qualname__,
            states=len(model.states),
            transitions=len(model.transitions),
        )
    else:
        logger.debug("extraction_failed", host=host.__qualname__, errors=len(result.unwrap_err()))

    return result
