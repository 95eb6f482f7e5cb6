"""Typer-powered command line for ``quorumctl``.

Exactly one mode flag is accepted per invocation: ``--apply``, ``--dry-run``,
``--restore PATH``, ``--repair`` or ``--list-backups``. Mutating modes need
root. Every invocation appends one record to the operations log.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import RecoveryError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .orchestrator import Orchestrator
from .verify import CheckStatus, VerificationReport

console = Console()
err_console = Console(stderr=True)

USAGE = (
    "Usage: quorumctl [--apply | --dry-run | --restore PATH | --repair | --list-backups]\n"
    "                 [--config-file PATH] [--version]"
)

QUORUM_SAFETY_NOTICE = (
    "Quorum safety is now disabled. Do not let the other nodes rejoin while this node "
    "runs alone, or the cluster may split-brain."
)
SINGLE_NODE_NOTICE = (
    "This node now runs a SINGLE-NODE cluster. Add nodes later with 'pvecm add'."
)

STATUS_STYLES = {
    CheckStatus.GREEN: "green",
    CheckStatus.YELLOW: "yellow",
    CheckStatus.RED: "red",
}

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to quorumctl's YAML config file.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Restore write access to /etc/pve on a Proxmox VE node that lost
        corosync quorum.

        --apply relaxes quorum to a single vote, --dry-run previews that change,
        --restore copies a backup back into place and --repair rebuilds a
        single-node corosync.conf while pmxcfs runs in local mode.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by the mode handlers."""

    config: AppConfig
    logger: StructuredLogger
    orchestrator: Orchestrator


def _build_runtime(config_file: Path | None) -> RuntimeContext:
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    return RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        orchestrator=Orchestrator(config),
    )


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]", highlight=False, soft_wrap=True)
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _recovery_error(op: OperationScope, exc: RecoveryError) -> NoReturn:
    """Print *exc* with its hints and exit with the error's code."""
    console.print(
        f"[bold red]ERROR:[/bold red] {escape(exc.message)}", soft_wrap=True, highlight=False
    )
    for hint in exc.hints:
        console.print(f"  {hint}", markup=False, soft_wrap=True, highlight=False)
    op.error(exc.message, errors=[exc.message, *exc.hints], rc=int(exc.exit_code))
    raise typer.Exit(code=int(exc.exit_code))


def _print_block(title: str, text: str) -> None:
    console.print(f"[bold]{title}[/bold]", highlight=False, soft_wrap=True)
    console.print(text.rstrip("\n"), markup=False, highlight=False, soft_wrap=True)


def _render_verification(report: VerificationReport) -> None:
    console.print("[bold]Verification[/bold]")
    for check in report.checks:
        style = STATUS_STYLES[check.status]
        console.print(
            f"[{style}]{check.status.value.upper():<6}[/{style}] "
            f"{check.id}: {escape(check.message)}",
            highlight=False,
            soft_wrap=True,
        )
        if check.output and check.status is not CheckStatus.GREEN:
            console.print(
                textwrap.indent(check.output, "    "),
                markup=False,
                highlight=False,
                soft_wrap=True,
            )


def _finish_with_report(
    op: OperationScope,
    message: str,
    report: VerificationReport | None,
    *,
    changed: int,
    backups: Sequence[str],
    context: Mapping[str, object],
    notices: Sequence[str] = (),
) -> None:
    payload = dict(context)
    if report is not None:
        _render_verification(report)
        payload["verification"] = report.to_dict()
    for notice in notices:
        console.print(f"[yellow]WARNING:[/yellow] {notice}", highlight=False, soft_wrap=True)
    problems: list[str] = []
    if report is not None and not report.healthy:
        console.print(
            "[yellow]Verification reported problems; review the checks above.[/yellow]"
        )
        problems = [check.message for check in report.checks if check.status.is_failure]
    if notices or problems:
        payload["notices"] = list(notices)
        op.warning(
            message,
            warnings=[*notices, *problems],
            changed=changed,
            backups=backups,
            context=payload,
        )
        return
    op.success(message, changed=changed, backups=backups, context=payload)


# ----------------------------------------------------------------------
# Mode handlers
# ----------------------------------------------------------------------
def _run_apply(runtime: RuntimeContext) -> None:
    path = runtime.config.corosync_conf
    with runtime.logger.operation(
        "apply",
        args={"mode": "apply"},
        target={"kind": "corosync", "path": str(path)},
    ) as op:
        try:
            result = runtime.orchestrator.apply(op)
        except RecoveryError as exc:
            _recovery_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Apply failed: {exc}", rc=ExitCode.ENVIRONMENT)

        if result.already_applied:
            console.print(
                f"[green]Already applied:[/green] {path} sets expected_votes: 1 and two_node: 1.",
                highlight=False,
                soft_wrap=True,
            )
            op.success("Quorum patch already applied.", changed=0)
            return

        console.print(f"Backup : {result.backup}", highlight=False, soft_wrap=True)
        if result.validator == "skipped":
            console.print("[yellow]corosync validator not found; syntax check skipped.[/yellow]")
        console.print(
            f"[green]Applied single-node quorum to {path}.[/green]",
            highlight=False,
            soft_wrap=True,
        )
        _finish_with_report(
            op,
            "Quorum patch applied.",
            result.verification,
            changed=1,
            backups=[str(result.backup)],
            context={"validator": result.validator},
            notices=[QUORUM_SAFETY_NOTICE],
        )


def _run_dry_run(runtime: RuntimeContext) -> None:
    path = runtime.config.corosync_conf
    with runtime.logger.operation(
        "dry-run",
        args={"mode": "dry-run"},
        target={"kind": "corosync", "path": str(path)},
    ) as op:
        try:
            preview = runtime.orchestrator.dry_run(op)
        except RecoveryError as exc:
            _recovery_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Dry run failed: {exc}", rc=ExitCode.ENVIRONMENT)

        if not preview.exists:
            console.print(
                f"[yellow]{path} not found.[/yellow] The quorum block that would be applied:",
                highlight=False,
                soft_wrap=True,
            )
            _print_block("--- quorum", preview.preview)
        elif preview.already_applied:
            console.print(
                f"[green]Already applied:[/green] {path} sets expected_votes: 1 and two_node: 1.",
                highlight=False,
                soft_wrap=True,
            )
        else:
            _print_block(f"--- current ({path})", preview.current or "")
            _print_block("--- proposed", preview.preview)
        console.print("[yellow]Dry run[/yellow]: no changes were made.")
        op.success(
            "Dry run complete.",
            changed=0,
            context={"exists": preview.exists, "already_applied": preview.already_applied},
        )


def _run_restore(runtime: RuntimeContext, source: Path) -> None:
    path = runtime.config.corosync_conf
    with runtime.logger.operation(
        "restore",
        args={"mode": "restore", "backup": str(source)},
        target={"kind": "corosync", "path": str(path)},
    ) as op:
        try:
            result = runtime.orchestrator.restore(source, op)
        except RecoveryError as exc:
            _recovery_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Restore failed: {exc}", rc=ExitCode.ENVIRONMENT)

        backups = [str(source)]
        if result.pre_restore_backup is not None:
            console.print(
                f"Backup : {result.pre_restore_backup}", highlight=False, soft_wrap=True
            )
            backups.append(str(result.pre_restore_backup))
        console.print(
            f"[green]Restored {path} from {source}.[/green]", highlight=False, soft_wrap=True
        )
        _finish_with_report(
            op,
            "Configuration restored.",
            result.verification,
            changed=1,
            backups=backups,
            context={"source": str(source)},
        )


def _run_repair(runtime: RuntimeContext) -> None:
    path = runtime.config.corosync_conf
    with runtime.logger.operation(
        "repair",
        args={"mode": "repair"},
        target={"kind": "corosync", "path": str(path)},
    ) as op:
        try:
            result = runtime.orchestrator.repair(op)
        except RecoveryError as exc:
            _recovery_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Repair failed: {exc}", rc=ExitCode.ENVIRONMENT)

        identity = result.discovered.identity
        console.print(
            f"Node   : {identity.node_name} (id {identity.node_id}, ring0 {identity.ring_address})",
            highlight=False,
            soft_wrap=True,
        )
        console.print(f"Cluster: {identity.cluster_name}", highlight=False, soft_wrap=True)
        for warning in result.warnings:
            console.print(
                f"[yellow]Warning:[/yellow] {escape(warning)}", highlight=False, soft_wrap=True
            )
        if result.backup is not None:
            console.print(f"Backup : {result.backup}", highlight=False, soft_wrap=True)
        if result.validator == "skipped":
            console.print("[yellow]corosync validator not found; syntax check skipped.[/yellow]")
        console.print(
            f"[green]Rebuilt {path} for single-node operation.[/green]",
            highlight=False,
            soft_wrap=True,
        )
        _finish_with_report(
            op,
            "Single-node configuration repaired.",
            result.verification,
            changed=1,
            backups=[str(result.backup)] if result.backup is not None else [],
            context={
                "identity": identity.to_dict(),
                "sources": result.discovered.sources,
                "states": [state.value for state in result.states],
            },
            notices=[SINGLE_NODE_NOTICE],
        )


def _run_list_backups(runtime: RuntimeContext) -> None:
    path = runtime.config.corosync_conf
    manager = runtime.orchestrator.backups
    with runtime.logger.operation(
        "list-backups",
        args={"mode": "list-backups"},
        target={"kind": "backups", "path": str(manager.backup_dir)},
    ) as op:
        try:
            entries = manager.list_snapshots(path)
        except OSError as exc:
            _command_error(op, f"Failed to list backups: {exc}", rc=ExitCode.ENVIRONMENT)
        if not entries:
            console.print(
                f"No backups of {path.name} in {manager.backup_dir}.",
                highlight=False,
                soft_wrap=True,
            )
            op.success("No backups found.", changed=0)
            return
        table = Table(title=f"Backups of {path.name}")
        table.add_column("Timestamp")
        table.add_column("Size", justify="right")
        table.add_column("Path", overflow="fold")
        for entry in entries:
            table.add_row(entry.timestamp, str(entry.size), str(entry.path))
        console.print(table)
        op.success(
            f"Listed {len(entries)} backup(s).",
            changed=0,
            context={"backups": [entry.to_dict() for entry in entries]},
        )


@app.command()
def run(
    apply: bool = typer.Option(
        False, "--apply", help="Set expected_votes: 1 and two_node: 1 (root)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show the change --apply would make without writing."
    ),
    restore: Path | None = typer.Option(
        None,
        "--restore",
        dir_okay=False,
        help="Copy a backup over the live corosync.conf and restart corosync (root).",
    ),
    repair: bool = typer.Option(
        False,
        "--repair",
        help="Rebuild a single-node corosync.conf with pmxcfs in local mode (root).",
    ),
    list_backups: bool = typer.Option(
        False, "--list-backups", help="List corosync.conf backups."
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the quorumctl version and exit.",
    ),
) -> None:
    """Recover /etc/pve write access on a node that lost quorum."""
    if version:
        console.print(f"quorumctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    selected = [
        flag
        for flag, chosen in (
            ("--apply", apply),
            ("--dry-run", dry_run),
            ("--restore", restore is not None),
            ("--repair", repair),
            ("--list-backups", list_backups),
        )
        if chosen
    ]
    if len(selected) != 1:
        if selected:
            err_console.print(
                f"[red]Choose one mode; got {' '.join(selected)}.[/red]", highlight=False
            )
        else:
            err_console.print("[red]No mode selected.[/red]")
        err_console.print(USAGE, markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(code=ExitCode.VALIDATION)

    runtime = _build_runtime(config_file)
    if apply:
        _run_apply(runtime)
    elif dry_run:
        _run_dry_run(runtime)
    elif restore is not None:
        _run_restore(runtime, restore)
    elif repair:
        _run_repair(runtime)
    else:
        _run_list_backups(runtime)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
