"""Sequence the recovery components into apply, dry-run, restore and repair.

Each operation records its progress as steps on an
:class:`~quorumctl.logging.OperationScope` and raises a
:class:`~quorumctl.errors.RecoveryError` subclass on the first failure.
Nothing is rolled back: once services have been restarted the operator gets
the backup path and decides what to do next.
"""
from __future__ import annotations

import os
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .backups import BackupManager
from .config import AppConfig
from .corosync import (
    canonical_preview,
    is_quorum_patched,
    parse,
    render_quorum_patch,
    render_single_node,
    validate_rendered,
)
from .errors import (
    InvalidGeneratedConfigError,
    MalformedConfigError,
    RecoveryError,
    ServiceTransitionError,
)
from .identity import DiscoveredIdentity, HostProbe, discover_identity
from .logging import OperationScope
from .preflight import PreflightGate
from .providers.pmxcfs import PmxcfsProvider
from .providers.process import CommandResult, CommandRunner
from .providers.quorum import QuorumProvider
from .providers.systemd import SystemdProvider
from .retry import RetryPolicy
from .services import ServiceState, ServiceStateController
from .verify import VerificationReport, Verifier

RESUME_HINT = "Resume: pkill -x pmxcfs; systemctl start pve-cluster corosync"


@dataclass(slots=True)
class ApplyResult:
    """Outcome of :meth:`Orchestrator.apply`."""

    config_path: Path
    already_applied: bool
    backup: Path | None = None
    validator: str = "skipped"
    runtime_override: CommandResult | None = None
    verification: VerificationReport | None = None


@dataclass(slots=True)
class DryRunPreview:
    """What :meth:`Orchestrator.apply` would write, without writing it."""

    config_path: Path
    exists: bool
    current: str | None
    preview: str
    already_applied: bool = False


@dataclass(slots=True)
class RestoreResult:
    """Outcome of :meth:`Orchestrator.restore`."""

    config_path: Path
    source: Path
    pre_restore_backup: Path | None = None
    verification: VerificationReport | None = None


@dataclass(slots=True)
class RepairResult:
    """Outcome of :meth:`Orchestrator.repair`."""

    config_path: Path
    discovered: DiscoveredIdentity
    backup: Path | None = None
    validator: str = "skipped"
    states: list[ServiceState] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    verification: VerificationReport | None = None


class Orchestrator:
    """Run one recovery operation end to end."""

    def __init__(
        self,
        config: AppConfig,
        *,
        runner: CommandRunner | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        geteuid: Callable[[], int] | None = None,
    ) -> None:
        """Wire providers and components from *config*."""
        self.config = config
        self.runner = runner or CommandRunner()
        self.sleep = sleep
        binaries = config.binaries
        self.systemd = SystemdProvider(self.runner, systemctl_bin=binaries.systemctl)
        self.pmxcfs = PmxcfsProvider(
            self.runner,
            pmxcfs_bin=binaries.pmxcfs,
            pkill_bin=binaries.pkill,
            findmnt_bin=binaries.findmnt,
            process_name=config.services.pmxcfs_process,
        )
        self.quorum = QuorumProvider(
            self.runner,
            pvecm_bin=binaries.pvecm,
            quorumtool_bin=binaries.corosync_quorumtool,
            corosync_bin=binaries.corosync,
        )
        self.gate = PreflightGate(
            self.pmxcfs,
            expected_fstype=config.cluster.expected_fstype,
            verify_mount=config.preflight.verify_mount,
            sleep=sleep,
        )
        if geteuid is not None:
            self.gate.geteuid = geteuid
        self.backups = BackupManager(config.backups.dir, clock=clock)
        self.poll = RetryPolicy.from_config(config.polling)
        self.verifier = Verifier(
            self.pmxcfs,
            self.quorum,
            mount_path=config.corosync_conf.parent,
            expected_fstype=config.cluster.expected_fstype,
        )
        self.host = HostProbe(self.runner, ip_bin=binaries.ip, hostname_bin=binaries.hostname)

    @property
    def config_path(self) -> Path:
        """Path of the corosync configuration being managed."""
        return self.config.corosync_conf

    def controller(self) -> ServiceStateController:
        """Return a fresh controller; services are assumed NORMAL."""
        return ServiceStateController(
            systemd=self.systemd,
            pmxcfs=self.pmxcfs,
            gate=self.gate,
            services=self.config.services,
            delays=self.config.delays,
            sleep=self.sleep,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def apply(self, op: OperationScope | None = None) -> ApplyResult:
        """Relax quorum to a single vote in the live configuration."""
        op = op or OperationScope("apply")
        path = self.config_path

        self.gate.require_root()
        op.add_step("preflight.root", status="success")
        self.gate.check_config_file(path)
        op.add_step("preflight.config", status="success", detail=str(path))
        self.gate.check_writable(path, poll=RetryPolicy.single())
        op.add_step(
            "preflight.writable",
            status="success",
            detail="mount+probe" if self.gate.verify_mount else "probe",
        )

        text = path.read_text(encoding="utf-8")
        if is_quorum_patched(text):
            op.add_step("quorum.check", status="skipped", detail="already applied")
            return ApplyResult(config_path=path, already_applied=True)
        op.add_step("quorum.check", status="success", detail="patch required")

        backup = self.backups.snapshot(path)
        op.add_step("backup.snapshot", status="success", detail=str(backup))

        rendered = render_quorum_patch(text)
        validator = self._install(rendered, path, op)

        override = self.quorum.set_expected_votes(1)
        if override is None:
            op.add_step("quorum.expected", status="skipped", detail="pvecm not available")
        else:
            op.add_step(
                "quorum.expected",
                status="success" if override.ok else "warning",
                detail=override.detail(),
            )

        self._restart_membership(self.controller(), op, backup=backup)
        verification = self._verify(op)
        return ApplyResult(
            config_path=path,
            already_applied=False,
            backup=backup,
            validator=validator,
            runtime_override=override,
            verification=verification,
        )

    def dry_run(self, op: OperationScope | None = None) -> DryRunPreview:
        """Return the current text and the patched preview; never mutates."""
        op = op or OperationScope("dry-run")
        path = self.config_path
        if not path.is_file():
            op.add_step("config.read", status="skipped", detail=f"{path} not found")
            return DryRunPreview(
                config_path=path,
                exists=False,
                current=None,
                preview=canonical_preview(),
            )
        text = path.read_text(encoding="utf-8")
        op.add_step("config.read", status="success", detail=str(path))
        if is_quorum_patched(text):
            op.add_step("quorum.check", status="skipped", detail="already applied")
            return DryRunPreview(
                config_path=path,
                exists=True,
                current=text,
                preview=text,
                already_applied=True,
            )
        preview = render_quorum_patch(text)
        validate_rendered(preview)
        op.add_step("render.preview", status="success")
        return DryRunPreview(config_path=path, exists=True, current=text, preview=preview)

    def restore(self, source: Path, op: OperationScope | None = None) -> RestoreResult:
        """Copy *source* over the live configuration and restart corosync."""
        op = op or OperationScope("restore")
        path = self.config_path

        self.gate.require_root()
        op.add_step("preflight.root", status="success")
        self.backups.require(source)
        op.add_step("backup.source", status="success", detail=str(source))

        pre_restore: Path | None = None
        if path.is_file():
            pre_restore = self.backups.snapshot(path)
            op.add_step("backup.snapshot", status="success", detail=str(pre_restore))
        else:
            op.add_step("backup.snapshot", status="skipped", detail=f"{path} not found")

        self.backups.restore(source, path)
        op.add_step("backup.restore", status="success", detail=f"{source}->{path}")

        self._restart_membership(self.controller(), op, backup=pre_restore)
        verification = self._verify(op)
        return RestoreResult(
            config_path=path,
            source=source,
            pre_restore_backup=pre_restore,
            verification=verification,
        )

    def repair(self, op: OperationScope | None = None) -> RepairResult:
        """Rebuild a single-node configuration while pmxcfs runs in local mode."""
        op = op or OperationScope("repair")
        path = self.config_path

        self.gate.require_root()
        op.add_step("preflight.root", status="success")

        existing_text = path.read_text(encoding="utf-8") if path.is_file() else None
        discovered = self._discover(existing_text, op, step="identity.discover")

        controller = self.controller()
        stop = controller.stop_services()
        op.add_step(
            "services.stop",
            status="success" if stop.ok else "warning",
            detail=stop.detail(),
        )

        backup: Path | None = None
        try:
            attempt = controller.enter_local_mode(path.parent, poll=self.poll)
            op.add_step(
                "services.local",
                status="success",
                detail=f"writable after {attempt} attempt(s)",
            )

            # /etc/pve may only be populated once pmxcfs runs in local mode.
            current_text = path.read_text(encoding="utf-8") if path.is_file() else None
            if current_text != existing_text:
                discovered = self._discover(current_text, op, step="identity.refresh")
            identity = discovered.identity
            warnings = list(discovered.warnings)
            if current_text is not None:
                try:
                    parse(current_text)
                except MalformedConfigError as exc:
                    warnings.append(f"Existing configuration not preserved: {exc.message}")
                    current_text = None

            if path.is_file():
                backup = self.backups.snapshot(path)
                op.add_step("backup.snapshot", status="success", detail=str(backup))
            else:
                op.add_step("backup.snapshot", status="skipped", detail=f"{path} not found")

            rendered = render_single_node(identity, current_text)
            validator = self._install(rendered, path, op)
        except RecoveryError as exc:
            exc.hints = (*exc.hints, RESUME_HINT)
            raise

        controller.resume_normal()
        op.add_step("services.resume", status="success")
        verification = self._verify(op)
        return RepairResult(
            config_path=path,
            discovered=discovered,
            backup=backup,
            validator=validator,
            states=list(controller.history),
            warnings=warnings,
            verification=verification,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _discover(
        self, text: str | None, op: OperationScope, *, step: str
    ) -> DiscoveredIdentity:
        discovered = discover_identity(
            text,
            self.host,
            default_cluster_name=self.config.cluster.name,
        )
        identity = discovered.identity
        op.add_step(
            step,
            status="warning" if discovered.warnings else "success",
            detail=(
                f"{identity.node_name} id={identity.node_id} "
                f"ring0={identity.ring_address} cluster={identity.cluster_name}"
            ),
        )
        return discovered

    def _install(self, rendered: str, path: Path, op: OperationScope) -> str:
        """Validate *rendered* and atomically replace *path* with it.

        Returns ``"passed"`` when ``corosync -t`` accepted the staged file and
        ``"skipped"`` when the validator is not installed.
        """
        validate_rendered(rendered)
        op.add_step("render.validate", status="success")

        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        staged = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            validator = self._check_syntax(staged, op)
            if path.exists():
                shutil.copymode(path, staged)
            os.replace(staged, path)
        finally:
            staged.unlink(missing_ok=True)
        op.add_step("config.install", status="success", detail=str(path))
        return validator

    def _check_syntax(self, staged: Path, op: OperationScope) -> str:
        if not self.quorum.validator_available():
            op.add_step("render.syntax", status="warning", detail="corosync validator not found")
            return "skipped"
        result = self.quorum.check_syntax(staged)
        if not result.ok:
            op.add_step("render.syntax", status="failed", detail=result.detail())
            raise InvalidGeneratedConfigError(
                f"corosync rejected the generated configuration: {result.output()}"
            )
        op.add_step("render.syntax", status="success")
        return "passed"

    def _restart_membership(
        self,
        controller: ServiceStateController,
        op: OperationScope,
        *,
        backup: Path | None,
    ) -> None:
        try:
            controller.restart_membership()
        except ServiceTransitionError as exc:
            op.add_step("services.restart", status="failed", detail=exc.message)
            if backup is None:
                raise
            raise ServiceTransitionError(
                f"{exc.message} Previous configuration saved at {backup}.",
                hints=(*exc.hints, f"Restore: quorumctl --restore {backup}"),
            ) from exc
        op.add_step("services.restart", status="success", detail=self.config.services.corosync_unit)

    def _verify(self, op: OperationScope) -> VerificationReport:
        report = self.verifier.run()
        op.add_step(
            "verify",
            status="success" if report.healthy else "warning",
            detail=", ".join(f"{check.id}={check.status.value}" for check in report.checks),
        )
        return report


__all__ = [
    "ApplyResult",
    "DryRunPreview",
    "Orchestrator",
    "RepairResult",
    "RestoreResult",
]
