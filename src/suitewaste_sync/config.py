"""Configuration management for SuiteWaste Sync."""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "ConnectivitySettings",
    "BackgroundRetrySettings",
    "ComplianceSettings",
    "ServerSettings",
    "setup_logging",
    "DEFAULT_API_URL",
    "QUEUE_SLOT_NAME",
]

logger = logging.getLogger(__name__)

APP_NAME = "SuiteWaste Sync"
APP_AUTHOR = "SuiteWaste"

# API endpoints
DEFAULT_API_URL = "http://127.0.0.1:8787/api"

# Name of the durable key-value slot holding both pending queues
QUEUE_SLOT_NAME = "suitewaste-offline-storage"

# Connectivity probe defaults
DEFAULT_PROBE_HOST = "1.1.1.1"
DEFAULT_PROBE_PORT = 443
DEFAULT_POLL_INTERVAL = 5  # seconds

# Background retry defaults
DEFAULT_RETENTION_MINUTES = 24 * 60
DEFAULT_REPLAY_INTERVAL = 300  # seconds

# Compliance fee per kg when no stream-specific rate is configured
DEFAULT_EPR_RATE_PER_KG = 0.1


@dataclass
class SyncSettings:
    """Sync transport configuration."""

    api_url: str = DEFAULT_API_URL
    timeout: int = 30  # seconds
    max_retries: int = 2  # in-request retries for transient failures


@dataclass
class ConnectivitySettings:
    """Network reachability probe settings."""

    enabled: bool = True
    probe_host: str = DEFAULT_PROBE_HOST
    probe_port: int = DEFAULT_PROBE_PORT
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL


@dataclass
class BackgroundRetrySettings:
    """Deferred replay of failed sync submissions."""

    enabled: bool = True
    retention_minutes: int = DEFAULT_RETENTION_MINUTES
    replay_interval_seconds: int = DEFAULT_REPLAY_INTERVAL


@dataclass
class ComplianceSettings:
    """EPR compliance fee configuration."""

    default_rate_per_kg: float = DEFAULT_EPR_RATE_PER_KG
    # Optional per-stream overrides, e.g. {"Metals": 0.15}
    stream_rates: dict[str, float] = field(default_factory=dict)
    currency: str = "ZAR"


@dataclass
class ServerSettings:
    """Reconciliation server settings."""

    host: str = "127.0.0.1"
    port: int = 8787
    db_path: Optional[str] = None


@dataclass
class Config:
    """Main configuration object."""

    device_id: Optional[str] = None
    operator_id: Optional[str] = None
    sync: SyncSettings = field(default_factory=SyncSettings)
    connectivity: ConnectivitySettings = field(default_factory=ConnectivitySettings)
    background_retry: BackgroundRetrySettings = field(default_factory=BackgroundRetrySettings)
    compliance: ComplianceSettings = field(default_factory=ComplianceSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for SQLite queue, etc.)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = path or cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                return cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sections = {
            "sync": SyncSettings,
            "connectivity": ConnectivitySettings,
            "background_retry": BackgroundRetrySettings,
            "compliance": ComplianceSettings,
            "server": ServerSettings,
        }
        nested = {}
        for name, settings_cls in sections.items():
            section = data.pop(name, None) or {}
            nested[name] = settings_cls(
                **{k: v for k, v in section.items() if k in settings_cls.__dataclass_fields__}
            )

        return cls(
            **nested,
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, path: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = path or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "suitewaste-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
