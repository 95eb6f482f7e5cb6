"""Configuration loader for quorumctl.

Values are layered from several sources, later ones winning:

1. Built-in defaults (Proxmox VE paths and binaries).
2. ``/etc/quorumctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``QUORUMCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export QUORUMCTL_POLLING__ATTEMPTS=60
    export QUORUMCTL_PREFLIGHT__VERIFY_MOUNT=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load quorumctl configuration. Install with "
        "`pip install quorumctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "QUORUMCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class BackupConfig:
    """Where configuration snapshots are written."""

    dir: Path = Path("/root")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"dir": str(self.dir)}


@dataclass(frozen=True)
class ClusterDefaults:
    """Fallback identity values and the expected clustered filesystem type."""

    name: str = "ProxmoxCluster"
    expected_fstype: str = "fuse"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "expected_fstype": self.expected_fstype}


@dataclass(frozen=True)
class PreflightConfig:
    """Toggles for the preflight gate."""

    verify_mount: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"verify_mount": self.verify_mount}


@dataclass(frozen=True)
class ServicesConfig:
    """Systemd unit and process names of the managed daemons."""

    corosync_unit: str = "corosync"
    cluster_unit: str = "pve-cluster"
    pmxcfs_process: str = "pmxcfs"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "corosync_unit": self.corosync_unit,
            "cluster_unit": self.cluster_unit,
            "pmxcfs_process": self.pmxcfs_process,
        }


@dataclass(frozen=True)
class BinariesConfig:
    """External executables invoked by quorumctl."""

    systemctl: str = "systemctl"
    pmxcfs: str = "pmxcfs"
    pkill: str = "pkill"
    findmnt: str = "findmnt"
    pvecm: str = "pvecm"
    corosync: str = "corosync"
    corosync_quorumtool: str = "corosync-quorumtool"
    ip: str = "ip"
    hostname: str = "hostname"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl": self.systemctl,
            "pmxcfs": self.pmxcfs,
            "pkill": self.pkill,
            "findmnt": self.findmnt,
            "pvecm": self.pvecm,
            "corosync": self.corosync,
            "corosync_quorumtool": self.corosync_quorumtool,
            "ip": self.ip,
            "hostname": self.hostname,
        }


@dataclass(frozen=True)
class PollingConfig:
    """Write-access polling used while pmxcfs attaches in local mode."""

    attempts: int = 30
    interval: float = 0.5

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "interval": self.interval}


@dataclass(frozen=True)
class DelaysConfig:
    """Fixed pauses between service lifecycle steps (seconds)."""

    restart_settle: float = 2.0
    release_mount: float = 1.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "restart_settle": self.restart_settle,
            "release_mount": self.release_mount,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for quorumctl."""

    config_file: Path
    corosync_conf: Path
    logs_dir: Path
    backups: BackupConfig
    cluster: ClusterDefaults
    preflight: PreflightConfig
    services: ServicesConfig
    binaries: BinariesConfig
    polling: PollingConfig
    delays: DelaysConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "corosync_conf": str(self.corosync_conf),
            "logs_dir": str(self.logs_dir),
            "backups": self.backups.to_dict(),
            "cluster": self.cluster.to_dict(),
            "preflight": self.preflight.to_dict(),
            "services": self.services.to_dict(),
            "binaries": self.binaries.to_dict(),
            "polling": self.polling.to_dict(),
            "delays": self.delays.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/quorumctl/config.yml",
    "corosync_conf": "/etc/pve/corosync.conf",
    "logs_dir": "/var/log/quorumctl",
    "backups": {"dir": "/root"},
    "cluster": {"name": "ProxmoxCluster", "expected_fstype": "fuse"},
    "preflight": {"verify_mount": True},
    "services": {
        "corosync_unit": "corosync",
        "cluster_unit": "pve-cluster",
        "pmxcfs_process": "pmxcfs",
    },
    "binaries": BinariesConfig().to_dict(),
    "polling": {"attempts": 30, "interval": 0.5},
    "delays": {"restart_settle": 2.0, "release_mount": 1.0},
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(dir=_to_path(backups_mapping.get("dir", "/root")))

    cluster_mapping = _as_dict(raw.get("cluster"), "cluster")
    cluster = ClusterDefaults(
        name=_expect_non_empty_str(cluster_mapping.get("name"), "cluster.name"),
        expected_fstype=_expect_non_empty_str(
            cluster_mapping.get("expected_fstype"), "cluster.expected_fstype"
        ),
    )

    preflight_mapping = _as_dict(raw.get("preflight"), "preflight")
    preflight = PreflightConfig(
        verify_mount=_expect_bool(
            preflight_mapping.get("verify_mount"), "preflight.verify_mount", default=True
        ),
    )

    services_mapping = _as_dict(raw.get("services"), "services")
    services = ServicesConfig(
        corosync_unit=_expect_non_empty_str(
            services_mapping.get("corosync_unit"), "services.corosync_unit"
        ),
        cluster_unit=_expect_non_empty_str(
            services_mapping.get("cluster_unit"), "services.cluster_unit"
        ),
        pmxcfs_process=_expect_non_empty_str(
            services_mapping.get("pmxcfs_process"), "services.pmxcfs_process"
        ),
    )

    binaries_mapping = _as_dict(raw.get("binaries"), "binaries")
    binaries = BinariesConfig(
        **{
            key: _expect_non_empty_str(value, f"binaries.{key}")
            for key, value in binaries_mapping.items()
        }
    )

    polling_mapping = _as_dict(raw.get("polling"), "polling")
    attempts = _expect_int(polling_mapping.get("attempts"), "polling.attempts", default=30)
    if attempts < 1:
        raise ConfigError("polling.attempts must be at least 1.")
    polling = PollingConfig(
        attempts=attempts,
        interval=_expect_non_negative_float(
            polling_mapping.get("interval"), "polling.interval", default=0.5
        ),
    )

    delays_mapping = _as_dict(raw.get("delays"), "delays")
    delays = DelaysConfig(
        restart_settle=_expect_non_negative_float(
            delays_mapping.get("restart_settle"), "delays.restart_settle", default=2.0
        ),
        release_mount=_expect_non_negative_float(
            delays_mapping.get("release_mount"), "delays.release_mount", default=1.0
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        corosync_conf=_to_path(raw.get("corosync_conf")),
        logs_dir=_to_path(raw.get("logs_dir")),
        backups=backups,
        cluster=cluster,
        preflight=preflight,
        services=services,
        binaries=binaries,
        polling=polling,
        delays=delays,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string. Got {value!r}.")
    return value.strip()


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "BinariesConfig",
    "ClusterDefaults",
    "ConfigError",
    "DelaysConfig",
    "PollingConfig",
    "PreflightConfig",
    "ServicesConfig",
    "load_config",
]
