"""
Configuration management for Tally Sync.

Loads settings from environment variables with sensible defaults, then
overlays the JSON file written by the setup wizard (``config.json``).
"""
from __future__ import annotations
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from dotenv import load_dotenv
from loguru import logger

from .tables import TableKind

load_dotenv()

DEFAULT_CONFIG_FILE = "config.json"


def _parse_tables() -> list[str]:
    """Parse TALLY_SYNC_TABLES (comma separated) or default to the full catalog."""
    env_val = os.getenv("TALLY_SYNC_TABLES")
    if not env_val:
        return [kind.value for kind in TableKind]
    return [t.strip() for t in env_val.split(",") if t.strip()]


def _parse_optional_int(name: str) -> Optional[int]:
    env_val = os.getenv(name)
    if not env_val:
        return None
    try:
        return int(env_val.strip())
    except ValueError:
        return None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be an object, got {type(section).__name__}")
    return section


@dataclass
class SyncConfig:
    """Configuration settings for Tally Sync."""

    # Tally connection settings
    tally_server: str = field(default_factory=lambda: os.getenv("TALLY_SERVER", "localhost"))
    tally_port: int = field(default_factory=lambda: int(os.getenv("TALLY_PORT", "9000")))
    tally_company: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_COMPANY") or None
    )

    # Sync settings
    sync_interval_minutes: int = field(
        default_factory=lambda: int(os.getenv("TALLY_SYNC_INTERVAL_MINUTES", "15"))
    )
    # Window passed as SVFROMDATE/SVTODATE on every cycle
    sync_lookback_days: int = field(
        default_factory=lambda: int(os.getenv("TALLY_SYNC_LOOKBACK_DAYS", "30"))
    )
    tables: list[str] = field(default_factory=_parse_tables)
    export_path: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_SYNC_EXPORT_PATH", "./exports") or None
    )
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("TALLY_REQUEST_TIMEOUT", "300"))
    )

    # Backend settings
    backend_url: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_SYNC_BACKEND_URL") or None
    )
    backend_timeout: int = field(
        default_factory=lambda: int(os.getenv("TALLY_SYNC_BACKEND_TIMEOUT", "30"))
    )
    organisation_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int("TALLY_SYNC_ORGANISATION_ID")
    )

    # Private per-install directory holding auth-state.json
    data_dir: str = field(
        default_factory=lambda: os.getenv("TALLY_SYNC_DATA_DIR", "~/.tally-sync")
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_SYNC_LOG_FILE")
    )

    @property
    def tally_url(self) -> str:
        return f"http://{self.tally_server}:{self.tally_port}"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create config from environment variables."""
        return cls()

    @classmethod
    def load(cls, path: str | Path = DEFAULT_CONFIG_FILE) -> "SyncConfig":
        """
        Create config from environment, then overlay the JSON config file.

        A missing file is not an error; the environment defaults apply. So
        does a file that cannot be read or whose values have the wrong shape.
        """
        config = cls.from_env()
        path = Path(path)
        if not path.exists():
            return config

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")
            return config

        try:
            config.apply(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring invalid config file {path}: {e}")
            # apply may have stopped half way
            return cls.from_env()

        logger.debug(f"Loaded configuration from {path}")
        return config

    def apply(self, data: dict[str, Any]) -> None:
        """
        Overlay the sections written by the setup wizard.

        Raises:
            ValueError: If the document or a section is not an object, or a
                numeric setting is not a number
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        tally = _section(data, "tally")
        if tally.get("server"):
            self.tally_server = str(tally["server"])
        if tally.get("port"):
            self.tally_port = int(tally["port"])
        if "company" in tally:
            self.tally_company = tally["company"] or None

        sync = _section(data, "sync")
        if sync.get("intervalMinutes"):
            self.sync_interval_minutes = int(sync["intervalMinutes"])
        if sync.get("lookbackDays"):
            self.sync_lookback_days = int(sync["lookbackDays"])
        if sync.get("exportPath"):
            self.export_path = str(sync["exportPath"])
        if sync.get("tables"):
            self.tables = list(sync["tables"])

        backend = _section(data, "backend")
        if backend.get("url"):
            self.backend_url = str(backend["url"]).rstrip("/")
        if backend.get("organisationId") is not None:
            self.organisation_id = int(backend["organisationId"])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the config.json layout."""
        return {
            "tally": {
                "server": self.tally_server,
                "port": self.tally_port,
                "company": self.tally_company or "",
            },
            "sync": {
                "intervalMinutes": self.sync_interval_minutes,
                "lookbackDays": self.sync_lookback_days,
                "exportPath": self.export_path or "",
                "tables": self.tables,
            },
            "backend": {
                "url": self.backend_url or "",
                "organisationId": self.organisation_id,
            },
        }

    def save(self, path: str | Path = DEFAULT_CONFIG_FILE) -> Path:
        path = Path(path)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path

    def table_kinds(self) -> list[TableKind]:
        """Convert configured table names to catalog entries (raises UnknownTableError)."""
        return [TableKind.from_name(name) for name in self.tables]

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []
        if not self.tally_server:
            errors.append("TALLY_SERVER is required")
        if not 0 < self.tally_port < 65536:
            errors.append(f"TALLY_PORT must be between 1 and 65535, got {self.tally_port}")
        if self.sync_interval_minutes <= 0:
            errors.append("Sync interval must be a positive number of minutes")
        if self.sync_lookback_days < 0:
            errors.append("Lookback days cannot be negative")
        valid = {kind.value for kind in TableKind}
        unknown = [t for t in self.tables if t not in valid]
        if unknown:
            errors.append(f"Unknown tables: {unknown}. Valid: {sorted(valid)}")
        return errors
