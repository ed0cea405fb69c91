"""
TamperGuard - Configuration loader.

Loads config.yml into an immutable MonitorConfig. A missing or unparsable
file, missing keys and invalid values never abort startup: each falls back
to its documented default with a warning.
SMTP credentials are loaded ONLY from environment variables (never from YAML).
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from tamperguard.core.alerts import LOG_FORMAT_JSON, LOG_FORMAT_PLAIN
from tamperguard.core.email_service import DEFAULT_SMTP_HOST, DEFAULT_SMTP_PORT, SMTPConfig
from tamperguard.core.hash_store import STORAGE_MODES, STORAGE_TEXT
from tamperguard.core.hashing import DEFAULT_ALGORITHM, is_supported_algorithm
from tamperguard.core.models import (
    AlertLevel,
    EventKind,
    FileOverride,
    ImportanceTier,
    WatchTarget,
)
from tamperguard.core.notifier import DEFAULT_SYSLOG_FACILITY, is_known_facility
from tamperguard.core.policy import AlertMatrix, PolicyResolver, is_under

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/tamperguard/config.yml")
DEFAULT_STATE_DIR = Path("/var/lib/tamperguard")
DEFAULT_CHECK_INTERVAL = 300
DEFAULT_AGGREGATION_INTERVAL = 5
DEFAULT_EMAIL_MIN_PRIORITY = AlertLevel.NOTICE
DEFAULT_LOG_LEVEL = "info"

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

MatrixTable = Mapping[ImportanceTier, Mapping[EventKind, AlertLevel]]


@dataclass(frozen=True)
class SyslogSettings:
    enabled: bool = True
    facility: str = DEFAULT_SYSLOG_FACILITY


@dataclass(frozen=True)
class EmailSettings:
    enabled: bool = False
    recipient: Optional[str] = None
    min_priority: AlertLevel = DEFAULT_EMAIL_MIN_PRIORITY
    aggregation_interval: int = DEFAULT_AGGREGATION_INTERVAL

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.recipient)


@dataclass(frozen=True)
class WebhookSettings:
    enabled: bool = False
    url: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.url)


@dataclass(frozen=True)
class MonitorConfig:
    """Fully resolved, immutable configuration."""

    check_interval: int = DEFAULT_CHECK_INTERVAL
    storage_mode: str = STORAGE_TEXT
    hash_algorithm: str = DEFAULT_ALGORITHM
    enable_alerts: bool = True
    state_dir: Path = DEFAULT_STATE_DIR
    alert_matrix: MatrixTable = field(default_factory=dict)
    directories: tuple[WatchTarget, ...] = ()
    files: tuple[FileOverride, ...] = ()
    syslog: SyslogSettings = SyslogSettings()
    email: EmailSettings = EmailSettings()
    webhook: WebhookSettings = WebhookSettings()
    smtp: SMTPConfig = SMTPConfig()
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = LOG_FORMAT_PLAIN

    def scoped_to(self, root: str) -> "MonitorConfig":
        """Keep only the directory and file rules relevant to one watched root."""
        directories = tuple(
            d for d in self.directories if is_under(root, d.path) or is_under(d.path, root)
        )
        files = tuple(f for f in self.files if is_under(f.path, root))
        return dataclasses.replace(self, directories=directories, files=files)

    def recursive_for(self, root: str) -> bool:
        for target in self.directories:
            if os.path.normpath(target.path) == os.path.normpath(root):
                return target.recursive
        return True

    def policy_resolver(self) -> PolicyResolver:
        return PolicyResolver(self.directories, self.files)

    def matrix(self) -> AlertMatrix:
        return AlertMatrix(self.alert_matrix)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on", "1"):
            return True
        if lowered in ("false", "no", "off", "0"):
            return False
    if isinstance(value, int):
        return value != 0
    logger.warning("Invalid boolean %r; using %s", value, default)
    return default


def _positive_int(value: Any, default: int, name: str) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r; using default %d", name, value, default)
        return default
    if number < 1:
        logger.warning("Non-positive %s %d; using default %d", name, number, default)
        return default
    return number


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if isinstance(value, Mapping):
        return value
    if value is not None:
        logger.warning("Config section %r is not a mapping; ignoring it", key)
    return {}


def _normalize_path(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def _parse_alert_matrix(raw: Any) -> dict[ImportanceTier, dict[EventKind, AlertLevel]]:
    table: dict[ImportanceTier, dict[EventKind, AlertLevel]] = {}
    if not isinstance(raw, Mapping):
        return table
    for tier_name, row in raw.items():
        try:
            tier = ImportanceTier(str(tier_name).lower())
        except ValueError:
            logger.warning("Unknown importance %r in alert_matrix; skipping", tier_name)
            continue
        if not isinstance(row, Mapping):
            continue
        for kind_name, level_name in row.items():
            try:
                kind = EventKind(str(kind_name).lower())
                level = AlertLevel(str(level_name).lower())
            except ValueError:
                logger.warning(
                    "Invalid alert_matrix entry %s.%s=%r; leaving it unmapped",
                    tier_name, kind_name, level_name,
                )
                continue
            table.setdefault(tier, {})[kind] = level
    return table


def _parse_directories(raw: Any) -> tuple[WatchTarget, ...]:
    targets: list[WatchTarget] = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, Mapping) or not entry.get("path"):
            continue
        importance_name = str(entry.get("default_importance", ImportanceTier.LOW.value)).lower()
        try:
            importance = ImportanceTier(importance_name)
        except ValueError:
            logger.warning("Unknown default_importance %r for %s; skipping", importance_name, entry["path"])
            continue
        targets.append(
            WatchTarget(
                path=_normalize_path(str(entry["path"])),
                recursive=_as_bool(entry.get("recursive"), True),
                default_importance=importance,
            )
        )
    return tuple(targets)


def _parse_files(raw: Any) -> tuple[FileOverride, ...]:
    overrides: list[FileOverride] = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, Mapping) or not entry.get("path"):
            continue
        importance_name = str(entry.get("importance", ImportanceTier.LOW.value)).lower()
        try:
            importance = ImportanceTier(importance_name)
        except ValueError:
            logger.warning("Unknown importance %r for %s; skipping", importance_name, entry["path"])
            continue
        overrides.append(FileOverride(path=_normalize_path(str(entry["path"])), importance=importance))
    return tuple(overrides)


def load_smtp_env(environ: Optional[Mapping[str, str]] = None) -> SMTPConfig:
    """Read SMTP transport parameters from the environment."""
    env = os.environ if environ is None else environ
    port_raw = env.get("TAMPERGUARD_SMTP_PORT", "").strip()
    port = DEFAULT_SMTP_PORT
    if port_raw:
        try:
            port = max(1, min(65535, int(port_raw)))
        except ValueError:
            logger.warning("Invalid TAMPERGUARD_SMTP_PORT %r; using %d", port_raw, DEFAULT_SMTP_PORT)
    return SMTPConfig(
        host=env.get("TAMPERGUARD_SMTP_HOST", "").strip() or DEFAULT_SMTP_HOST,
        port=port,
        user=env.get("TAMPERGUARD_SMTP_USER", "").strip() or None,
        password=env.get("TAMPERGUARD_SMTP_PASSWORD") or None,
        from_addr=env.get("TAMPERGUARD_SMTP_FROM", "").strip() or None,
    )


def _read_yaml(path: Path) -> Mapping[str, Any]:
    if not path.is_file():
        logger.warning("Config not found: %s; using defaults", path)
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load config %s: %s; using defaults", path, e)
        return {}
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Config %s is not a mapping; using defaults", path)
        return {}
    return raw


def build_config(raw: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None) -> MonitorConfig:
    """Resolve a parsed YAML document into a MonitorConfig."""
    general = _section(raw, "general")

    storage_mode = str(general.get("storage_mode", STORAGE_TEXT)).lower()
    if storage_mode not in STORAGE_MODES:
        logger.warning("Unknown storage_mode %r; using %s", storage_mode, STORAGE_TEXT)
        storage_mode = STORAGE_TEXT

    hash_algorithm = str(general.get("hash_algorithm", DEFAULT_ALGORITHM)).lower()
    if not is_supported_algorithm(hash_algorithm):
        logger.warning("Unsupported hash_algorithm %r; using %s", hash_algorithm, DEFAULT_ALGORITHM)
        hash_algorithm = DEFAULT_ALGORITHM

    notifications = _section(raw, "notifications")
    syslog_raw = _section(notifications, "syslog")
    email_raw = _section(notifications, "email")
    webhook_raw = _section(notifications, "webhook")

    facility = str(syslog_raw.get("facility", DEFAULT_SYSLOG_FACILITY)).lower()
    if not is_known_facility(facility):
        logger.warning("Unknown syslog facility %r; using %s", facility, DEFAULT_SYSLOG_FACILITY)
        facility = DEFAULT_SYSLOG_FACILITY

    min_priority_name = str(email_raw.get("min_priority", DEFAULT_EMAIL_MIN_PRIORITY.value)).lower()
    try:
        min_priority = AlertLevel(min_priority_name)
    except ValueError:
        logger.warning("Unknown email min_priority %r; using %s", min_priority_name, DEFAULT_EMAIL_MIN_PRIORITY.value)
        min_priority = DEFAULT_EMAIL_MIN_PRIORITY

    logging_raw = _section(raw, "logging")
    log_level = str(logging_raw.get("level", DEFAULT_LOG_LEVEL)).lower()
    if log_level not in _LOG_LEVELS:
        log_level = DEFAULT_LOG_LEVEL
    log_format = str(logging_raw.get("format", LOG_FORMAT_PLAIN)).lower()
    if log_format in ("structured", LOG_FORMAT_JSON):
        log_format = LOG_FORMAT_JSON
    else:
        log_format = LOG_FORMAT_PLAIN

    state_dir = general.get("state_dir")

    return MonitorConfig(
        check_interval=_positive_int(general.get("check_interval"), DEFAULT_CHECK_INTERVAL, "check_interval"),
        storage_mode=storage_mode,
        hash_algorithm=hash_algorithm,
        enable_alerts=_as_bool(general.get("enable_alerts"), True),
        state_dir=Path(state_dir) if state_dir else DEFAULT_STATE_DIR,
        alert_matrix=_parse_alert_matrix(raw.get("alert_matrix")),
        directories=_parse_directories(raw.get("directories")),
        files=_parse_files(raw.get("files")),
        syslog=SyslogSettings(
            enabled=_as_bool(syslog_raw.get("enabled"), True),
            facility=facility,
        ),
        email=EmailSettings(
            enabled=_as_bool(email_raw.get("enabled"), False),
            recipient=str(email_raw.get("recipient") or "").strip() or None,
            min_priority=min_priority,
            aggregation_interval=_positive_int(
                email_raw.get("aggregation_interval"),
                DEFAULT_AGGREGATION_INTERVAL,
                "aggregation_interval",
            ),
        ),
        webhook=WebhookSettings(
            enabled=_as_bool(webhook_raw.get("enabled"), False),
            url=str(webhook_raw.get("url") or "").strip() or None,
        ),
        smtp=load_smtp_env(environ),
        log_level=log_level,
        log_format=log_format,
    )


def load_config(
    config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> MonitorConfig:
    """
    Load YAML config and apply defaults.

    Args:
        config_path: Path to config.yml.
        environ: Environment for SMTP settings; defaults to os.environ.

    Returns:
        MonitorConfig with every value resolved.
    """
    path = Path(config_path).expanduser()
    return build_config(_read_yaml(path), environ)
