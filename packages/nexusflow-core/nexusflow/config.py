"""
Nexusflow Configuration

Loads settings from ~/.nexusflow/config.yaml with environment variable overrides.
Supports both PostgreSQL and SQLite database configurations.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import os
import logging

logger = logging.getLogger(__name__)

try:
    import yaml
    HAS_YAML = True
except ImportError:
    HAS_YAML = False

CONFIG_DIR = Path.home() / ".nexusflow"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

DEFAULT_TIMEZONE = "America/Sao_Paulo"


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    type: str = "sqlite"  # "sqlite" or "postgres"
    sqlite_path: str = "~/.nexusflow/nexusflow.db"
    postgres_url: Optional[str] = None


@dataclass
class RolloverConfig:
    """Daily rollover settings."""

    default_timezone: str = DEFAULT_TIMEZONE
    max_concurrency: int = 4


@dataclass
class NotificationConfig:
    """Digest delivery settings. No webhook URL means digests are only logged."""

    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class NexusflowConfig:
    """
    Complete Nexusflow configuration.

    Loaded from ~/.nexusflow/config.yaml with environment variable overrides.
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    rollover: RolloverConfig = field(default_factory=RolloverConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    # Convenience accessors
    @property
    def default_timezone(self) -> str:
        return self.rollover.default_timezone

    def to_dict(self) -> dict:
        """Convert to dictionary for display (masks secrets)."""
        result = asdict(self)

        # Mask database URL
        if result.get("database", {}).get("postgres_url"):
            url = result["database"]["postgres_url"]
            result["database"]["postgres_url"] = url[:30] + "..." if len(url) > 30 else "***"

        # Webhook URLs usually embed a bot token
        if result.get("notifications", {}).get("webhook_url"):
            url = result["notifications"]["webhook_url"]
            result["notifications"]["webhook_url"] = url[:20] + "..." if len(url) > 20 else "***"

        return result


def _parse_database_config(data: dict) -> DatabaseConfig:
    """Parse database configuration from YAML data."""
    db_data = data.get("database", {})

    db_type = db_data.get("type", "sqlite")

    # SQLite config
    sqlite_config = db_data.get("sqlite", {})
    sqlite_path = sqlite_config.get("path", "~/.nexusflow/nexusflow.db")

    # PostgreSQL config
    postgres_config = db_data.get("postgres", {})
    postgres_url = postgres_config.get("url")

    # Check for URL from environment variable reference
    url_env = postgres_config.get("url_env")
    if url_env and not postgres_url:
        postgres_url = os.environ.get(url_env)

    return DatabaseConfig(
        type=db_type,
        sqlite_path=sqlite_path,
        postgres_url=postgres_url,
    )


def _parse_rollover_config(data: dict) -> RolloverConfig:
    """Parse rollover configuration from YAML data."""
    rollover_data = data.get("rollover", {})

    return RolloverConfig(
        default_timezone=rollover_data.get("default_timezone", DEFAULT_TIMEZONE),
        max_concurrency=int(rollover_data.get("max_concurrency", 4)),
    )


def _parse_notification_config(data: dict) -> NotificationConfig:
    """Parse notification configuration from YAML data."""
    notifications_data = data.get("notifications", {})

    webhook_url = notifications_data.get("webhook_url")
    url_env = notifications_data.get("webhook_url_env")
    if url_env and not webhook_url:
        webhook_url = os.environ.get(url_env)

    return NotificationConfig(
        webhook_url=webhook_url,
        timeout_seconds=float(notifications_data.get("timeout_seconds", 10.0)),
    )


def load_config(config_path: Optional[Path] = None) -> NexusflowConfig:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Optional path to config file. Defaults to ~/.nexusflow/config.yaml

    Returns:
        NexusflowConfig instance
    """
    config_file = config_path or CONFIG_FILE
    config = NexusflowConfig()

    # Load from YAML if available
    if HAS_YAML and config_file.exists():
        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}

            config.database = _parse_database_config(data)
            config.rollover = _parse_rollover_config(data)
            config.notifications = _parse_notification_config(data)

        except yaml.YAMLError as e:
            logger.warning(f"Could not parse config file at {config_file}: {e}")
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid value in config file {config_file}: {e}")

    # Environment variable overrides
    if os.environ.get("NEXUSFLOW_DATABASE_URL"):
        config.database.type = "postgres"
        config.database.postgres_url = os.environ["NEXUSFLOW_DATABASE_URL"]

    if os.environ.get("NEXUSFLOW_DEFAULT_TIMEZONE"):
        config.rollover.default_timezone = os.environ["NEXUSFLOW_DEFAULT_TIMEZONE"]

    if os.environ.get("NEXUSFLOW_MAX_CONCURRENCY"):
        try:
            config.rollover.max_concurrency = int(os.environ["NEXUSFLOW_MAX_CONCURRENCY"])
        except ValueError:
            logger.warning("Ignoring non-integer NEXUSFLOW_MAX_CONCURRENCY")

    if os.environ.get("NEXUSFLOW_WEBHOOK_URL"):
        config.notifications.webhook_url = os.environ["NEXUSFLOW_WEBHOOK_URL"]

    if config.rollover.max_concurrency < 1:
        config.rollover.max_concurrency = 1

    return config


def save_config(config: NexusflowConfig, config_path: Optional[Path] = None) -> None:
    """
    Save configuration to file.

    Args:
        config: NexusflowConfig instance to save
        config_path: Optional path to config file. Defaults to ~/.nexusflow/config.yaml
    """
    if not HAS_YAML:
        raise RuntimeError("PyYAML not installed. Run: pip install pyyaml")

    config_file = config_path or CONFIG_FILE

    # Ensure config directory exists
    config_file.parent.mkdir(parents=True, exist_ok=True)

    # Build YAML structure
    data = {
        "database": {
            "type": config.database.type,
        },
        "rollover": {
            "default_timezone": config.rollover.default_timezone,
            "max_concurrency": config.rollover.max_concurrency,
        },
        "notifications": {
            "timeout_seconds": config.notifications.timeout_seconds,
        },
    }

    # Add database-specific config
    if config.database.type == "sqlite":
        data["database"]["sqlite"] = {"path": config.database.sqlite_path}
    elif config.database.postgres_url:
        data["database"]["postgres"] = {"url": config.database.postgres_url}

    if config.notifications.webhook_url:
        data["notifications"]["webhook_url"] = config.notifications.webhook_url

    # Write file
    with open(config_file, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    # Secure permissions (readable only by owner)
    config_file.chmod(0o600)

    logger.info(f"Configuration saved to {config_file}")


def ensure_config_dir() -> Path:
    """Ensure config directory exists and return its path."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return CONFIG_DIR


# Cached config instance
_config: Optional[NexusflowConfig] = None


def get_config() -> NexusflowConfig:
    """Get cached config instance, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> NexusflowConfig:
    """Force reload config from file."""
    global _config
    _config = load_config()
    return _config
