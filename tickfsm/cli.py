"""CLI entry point for tickfsm."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Optional

import click

from tickfsm import __version__
from tickfsm.compiler import CheckResult, Compiler, is_document
from tickfsm.config.settings import CompilerConfig, load_config
from tickfsm.emitter.codegen import EmitterError
from tickfsm.extractor.assembler import HostResolutionError, resolve_host
from tickfsm.graph.builder import StateGraph
from tickfsm.models.diagnostics import (
    CompilationError,
    Diagnostic,
    DiagnosticCode,
    Phase,
    SourceLocation,
    sort_diagnostics,
)
from tickfsm.runtime.lifecycle import TickScheduler
from tickfsm.runtime.loader import machine_class
from tickfsm.utils.atomic import AtomicWriteError
from tickfsm.utils.logging import configure_logging, get_logger
from tickfsm.utils.result import ExitCode

PHASE_EXIT_CODES = {
    Phase.EXTRACTION: ExitCode.EXTRACTION_FAILED,
    Phase.RESOLUTION: ExitCode.RESOLUTION_FAILED,
    Phase.VALIDATION: ExitCode.VALIDATION_FAILED,
}

# Pipeline order, earliest first
PHASE_ORDER = list(Phase)


class Context:
    """CLI context for sharing state between commands."""

    def __init__(
        self,
        config: CompilerConfig,
        log_level: str,
        log_format: str,
        dry_run: bool,
    ) -> None:
        self.config = config
        self.log_level = log_level
        self.log_format = log_format
        self.dry_run = dry_run
        self.logger = get_logger("cli")

    def compiler(self) -> Compiler:
        return Compiler(self.config)


pass_context = click.make_pass_decorator(Context)


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


def report_diagnostics(diagnostics: list[Diagnostic]) -> None:
    """Print diagnostics to stderr, one per line."""
    for diagnostic in diagnostics:
        click.echo(str(diagnostic), err=True)


def resolve_target(target: str, host: Optional[str]) -> tuple[object, Optional[type]]:
    """
    Turn a command-line target into a compiler source.

    Targets are YAML documents (``machines/drive.yaml``) or host class
    references (``robot.drive:DriveBase``).

    Returns:
        (source, host class override for documents)
    """
    host_class = resolve_host(host) if host else None
    if is_document(target):
        path = Path(target)
        if not path.exists():
            raise click.BadParameter(f"document not found: {target}", param_hint="TARGET")
        return path, host_class
    if host:
        raise click.BadParameter("--host only applies to YAML documents", param_hint="--host")
    return resolve_host(target), None


def fail(ctx: Context, error: Exception) -> None:
    """Report a failed target and exit with the matching code."""
    if isinstance(error, CompilationError):
        report_diagnostics(error.diagnostics)
        code = PHASE_EXIT_CODES.get(error.phase, ExitCode.GENERAL_ERROR)
        output_json({
            "status": "failed",
            "machine": error.machine,
            "phase": error.phase.value if error.phase else None,
            "errors": [d.to_dict() for d in error.diagnostics],
        })
    elif isinstance(error, (EmitterError, AtomicWriteError)):
        click.echo(f"error: {error}", err=True)
        code = ExitCode.EMISSION_FAILED
        output_json({"status": "error", "message": str(error)})
    elif isinstance(error, HostResolutionError):
        click.echo(f"error: {error}", err=True)
        code = ExitCode.EXTRACTION_FAILED
        output_json({"status": "error", "message": str(error)})
    else:
        ctx.logger.error("command_failed", error=str(error))
        code = ExitCode.GENERAL_ERROR
        output_json({"status": "error", "message": str(error)})
    sys.exit(code)


def check_targets(
    ctx: Context,
    compiler: Compiler,
    targets: tuple[str, ...],
    host: Optional[str],
) -> list[CheckResult]:
    """
    Check every target, reporting all failures together.

    Exits with the code of the earliest failing phase when any target
    fails, after printing every diagnostic of every failed target.
    """
    checked: list[CheckResult] = []
    failures: list[CompilationError] = []

    for target in targets:
        try:
            source, host_class = resolve_target(target, host)
            result = compiler.check(source, host=host_class)
        except click.BadParameter:
            raise
        except HostResolutionError as e:
            failures.append(CompilationError([
                Diagnostic(
                    code=DiagnosticCode.UNRESOLVED_REFERENCE,
                    message=str(e),
                    location=SourceLocation(file=target),
                    phase=Phase.EXTRACTION,
                )
            ], machine=target))
            continue
        except CompilationError as e:
            failures.append(e)
            continue
        except Exception as e:
            fail(ctx, e)
        report_diagnostics(result.warnings)
        checked.append(result)

    if failures:
        report_diagnostics(sort_diagnostics(d for f in failures for d in f.diagnostics))
        phases = [f.phase for f in failures if f.phase is not None]
        phase = min(phases, key=PHASE_ORDER.index) if phases else None
        ctx.logger.warning("build_failed", failed=len(failures), targets=len(targets))
        output_json({
            "status": "failed",
            "message": f"{len(failures)} of {len(targets)} machine(s) failed",
            "phase": phase.value if phase else None,
            "failures": [
                {
                    "machine": f.machine,
                    "phase": f.phase.value if f.phase else None,
                    "errors": [d.to_dict() for d in f.diagnostics],
                }
                for f in failures
            ],
        })
        sys.exit(PHASE_EXIT_CODES.get(phase, ExitCode.GENERAL_ERROR))

    return checked


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: ./tickfsm.yaml if present)",
)
@click.option(
    "--output",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Directory for generated modules",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "warning", "error"], case_sensitive=False),
    default=None,
    help="Logging level (default: from config)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default=None,
    help="Log format (default: from config)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Compile and report without writing files",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    output: Optional[Path],
    log_level: Optional[str],
    log_format: Optional[str],
    dry_run: bool,
) -> None:
    """
    tickfsm - State machine compiler for tick-driven schedulers.

    Reads state machines declared with decorators on a host class or in a
    YAML document, validates the state graph, and generates a dispatcher
    class with initialize/execute/isFinished/end.
    """
    result = load_config(config)
    if result.is_err():
        click.echo(str(result.unwrap_err()), err=True)
        sys.exit(ExitCode.CONFIG_ERROR)
    settings = result.unwrap()

    if output is not None:
        settings = settings.with_output_dir(output)

    # Command-line options override the config file
    log_level = log_level or settings.logging.level
    log_format = log_format or settings.logging.format
    configure_logging(level=log_level, format_type=log_format)

    # Host modules are imported relative to the working directory
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    ctx.obj = Context(
        config=settings,
        log_level=log_level,
        log_format=log_format,
        dry_run=dry_run,
    )


@cli.command("compile")
@click.argument("targets", nargs=-1, required=True)
@click.option("--host", default=None, help="Host class (module:Class) for YAML documents")
@pass_context
def compile_command(ctx: Context, targets: tuple[str, ...], host: Optional[str]) -> None:
    """Compile machines and write their dispatcher modules.

    Every target is checked before anything is generated; if any fails,
    all failures are reported and no module is written.
    """
    ctx.logger.info("compile_started", targets=list(targets), dry_run=ctx.dry_run)
    compiler = ctx.compiler()
    checked = check_targets(ctx, compiler, targets, host)

    try:
        compiled = [compiler.emit(result) for result in checked]
        if not ctx.dry_run:
            for result in compiled:
                compiler.write(result)
    except Exception as e:
        fail(ctx, e)

    output_json({
        "status": "dry_run" if ctx.dry_run else "success",
        "message": f"Compiled {len(compiled)} machine(s)",
        "output_dir": str(ctx.config.output.directory),
        "machines": [result.to_dict() for result in compiled],
    })


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@click.option("--host", default=None, help="Host class (module:Class) for YAML documents")
@pass_context
def check(ctx: Context, targets: tuple[str, ...], host: Optional[str]) -> None:
    """Validate machines without generating code."""
    checked = check_targets(ctx, ctx.compiler(), targets, host)

    output_json({
        "status": "success",
        "message": f"Checked {len(checked)} machine(s)",
        "machines": [result.to_dict() for result in checked],
    })


def graph_to_dot(graph: StateGraph) -> str:
    """Render a state graph in Graphviz DOT syntax."""
    lines = [f"digraph {graph.name} {{", "    rankdir=LR;"]
    for node in graph:
        attrs = []
        if node.state.terminal:
            attrs.append("shape=doublecircle")
        if node.state.initial:
            attrs.append("style=bold")
        suffix = f" [{', '.join(attrs)}]" if attrs else ""
        lines.append(f"    {json.dumps(node.name)}{suffix};")
    for edge in graph.edges():
        text = f"{edge.priority}: {edge.guard.text}"
        if edge.transition.action:
            text += f" / {edge.transition.action}"
        label = json.dumps(text)
        lines.append(f"    {json.dumps(edge.source)} -> {json.dumps(edge.target)} [label={label}];")
    lines.append("}")
    return "\n".join(lines)


@cli.command()
@click.argument("target")
@click.option("--host", default=None, help="Host class (module:Class) for YAML documents")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "dot"], case_sensitive=False),
    default="json",
    help="Output format",
)
@pass_context
def graph(ctx: Context, target: str, host: Optional[str], fmt: str) -> None:
    """Print the validated state graph."""
    try:
        source, host_class = resolve_target(target, host)
        result = ctx.compiler().check(source, host=host_class)
    except click.BadParameter:
        raise
    except Exception as e:
        fail(ctx, e)

    if fmt == "dot":
        click.echo(graph_to_dot(result.graph))
    else:
        output_json(result.graph.to_dict())


@cli.command()
@click.argument("target")
@click.option("--host", default=None, help="Host class (module:Class) for YAML documents")
@click.option("--max-ticks", type=int, default=100, help="Stop after this many ticks")
@pass_context
def run(ctx: Context, target: str, host: Optional[str], max_ticks: int) -> None:
    """Compile a machine in memory and tick it until it finishes."""
    try:
        source, host_class = resolve_target(target, host)
        result = ctx.compiler().compile(source, host=host_class, write=False)
    except click.BadParameter:
        raise
    except Exception as e:
        fail(ctx, e)

    host_type = result.graph.host
    if host_type is None:
        raise click.UsageError("running a machine requires a host class")

    dispatcher_class = machine_class(result.unit)
    dispatcher = dispatcher_class(host_type())
    scheduler = TickScheduler()
    trace = []

    try:
        scheduler.schedule(dispatcher)
        trace.append({"tick": 0, "state": dispatcher.current_state})
        while scheduler.scheduled and scheduler.ticks < max_ticks:
            scheduler.run()
            trace.append({"tick": scheduler.ticks, "state": dispatcher.current_state})
        finished = not scheduler.scheduled
        if not finished:
            scheduler.cancel(dispatcher)
    except Exception as e:
        ctx.logger.error("run_failed", machine=result.machine, tick=scheduler.ticks, error=str(e))
        output_json({
            "status": "error",
            "machine": result.machine,
            "message": f"{type(e).__name__}: {e}",
            "trace": trace,
        })
        sys.exit(ExitCode.GENERAL_ERROR)

    output_json({
        "status": "finished" if finished else "interrupted",
        "machine": result.machine,
        "ticks": scheduler.ticks,
        "final_state": dispatcher.current_state,
        "trace": trace,
    })


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        logger = get_logger("cli")
        logger.error("cli_error", error=str(e))
        sys.exit(ExitCode.GENERAL_ERROR)


if __name__ == "__main__":
    main()
