from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from tracemark import __version__
from tracemark.analysis.marker_check import check_files, render_marker_check
from tracemark.analysis.reporting import (
    EXIT_FATAL,
    render_detailed,
    render_record,
    render_summary,
)
from tracemark.config import VALIDATION_MODES, VerifyConfig, resolve_verify_config
from tracemark.exceptions import RegistryLoadError
from tracemark.runtime.json_io import dump_json_pretty, parse_path_list
from tracemark.verify_run import VerifyRequest, load_registry, run_verify

app = typer.Typer(add_completion=False)

OUTPUT_FORMATS = ("summary", "detailed", "record")
_STDIO_ALIAS = "-"
_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tracemark {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Print the version and exit.",
    ),
) -> None:
    """Check requirement markers in source against the specification registry."""


def _resolve_config(
    *,
    root: Path,
    config: Optional[Path],
    mode: Optional[str],
    fail_on_warnings: bool,
) -> VerifyConfig:
    if mode is not None and mode not in VALIDATION_MODES:
        raise typer.BadParameter(
            f"--mode must be one of: {', '.join(VALIDATION_MODES)}"
        )
    if config is not None and not config.is_file():
        raise typer.BadParameter(f"config file not found: {config}")
    return resolve_verify_config(
        root=root,
        config_path=config,
        overrides={
            "mode": mode,
            "fail_on_warnings": True if fail_on_warnings else None,
        },
    )


def _read_changed_files(since: str) -> tuple[str, ...]:
    if since == _STDIO_ALIAS:
        return tuple(parse_path_list(sys.stdin.read()))
    path = Path(since)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise typer.BadParameter(f"cannot read --since file {since}: {exc}") from exc
    return tuple(parse_path_list(text))


def _emit(payload: str, output: Optional[str]) -> None:
    if output is None or output == _STDIO_ALIAS:
        typer.echo(payload, nl=not payload.endswith("\n"))
        return
    Path(output).write_text(payload, encoding="utf-8")
    typer.echo(f"Wrote report: {output}", err=True)


def _fatal(exc: RegistryLoadError) -> typer.Exit:
    typer.secho(f"error: {exc}", err=True, fg=typer.colors.RED)
    return typer.Exit(code=EXIT_FATAL)


@app.command()
def verify(
    root: Path = typer.Option(Path("."), "--root", help="Project root."),
    scope: str = typer.Option(".", "--scope", help="Path under root to scan."),
    spec_path: Optional[str] = typer.Option(
        None,
        "--spec-path",
        help="Report only requirements declared under this path.",
    ),
    output_format: str = typer.Option(
        "summary", "--output-format", help="summary|detailed|record"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", help="Write the report to a file ('-' for stdout)."
    ),
    incremental: bool = typer.Option(
        False, "--incremental", help="Scan only the files listed by --since."
    ),
    since: Optional[str] = typer.Option(
        None, "--since", help="Newline separated changed-file list ('-' for stdin)."
    ),
    mode: Optional[str] = typer.Option(None, "--mode", help="error|warning"),
    fail_on_warnings: bool = typer.Option(False, "--fail-on-warnings"),
    config: Optional[Path] = typer.Option(None, "--config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Build the compliance matrix for the project and report gaps."""
    _configure_logging(verbose)
    if output_format not in OUTPUT_FORMATS:
        raise typer.BadParameter(
            f"--output-format must be one of: {', '.join(OUTPUT_FORMATS)}"
        )
    if incremental and since is None:
        raise typer.BadParameter("--incremental requires --since")
    if since is not None and not incremental:
        raise typer.BadParameter("--since is only valid with --incremental")
    resolved = _resolve_config(
        root=root, config=config, mode=mode, fail_on_warnings=fail_on_warnings
    )
    request = VerifyRequest(
        root=root,
        scope=scope,
        spec_path=spec_path,
        incremental=incremental,
        changed_files=_read_changed_files(since) if since is not None else (),
    )
    try:
        outcome = run_verify(request, resolved)
    except RegistryLoadError as exc:
        raise _fatal(exc) from exc
    report = outcome.report
    if output_format == "record":
        payload = dump_json_pretty(render_record(report)) + "\n"
    elif output_format == "detailed":
        payload = render_detailed(report)
    else:
        payload = render_summary(report)
    _emit(payload, output)
    raise typer.Exit(code=outcome.exit_code)


@app.command()
def markers(
    files: List[Path] = typer.Argument(..., help="Files to check."),
    root: Path = typer.Option(Path("."), "--root", help="Project root."),
    mode: Optional[str] = typer.Option(None, "--mode", help="error|warning"),
    config: Optional[Path] = typer.Option(None, "--config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Validate the markers in the listed files against the registry."""
    _configure_logging(verbose)
    resolved = _resolve_config(
        root=root, config=config, mode=mode, fail_on_warnings=False
    )
    try:
        registry = load_registry(root, resolved)
    except RegistryLoadError as exc:
        raise _fatal(exc) from exc
    check = check_files(
        files,
        registry,
        root=root,
        extensions=resolved.extensions,
        test_path_patterns=resolved.test_path_patterns,
        strict=resolved.strict,
    )
    typer.echo(render_marker_check(check), nl=False)
    raise typer.Exit(code=check.exit_code)
