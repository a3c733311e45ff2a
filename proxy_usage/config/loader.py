"""
Configuration management and loading.

Handles application settings loaded from a YAML file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_DATA_DIR = "~/.config/proxy-usage"
DEFAULT_LOG_FILE = "~/.cli-proxy-api/logs/main.log"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class ProxyConfig:
    """Connection settings for the proxy's management API."""
    host: str = "127.0.0.1"
    port: int = 8317
    management_key: str = ""
    timeout: float = 5.0

    def __post_init__(self):
        """Validate connection values."""
        if not self.host:
            raise ValueError("proxy.host must not be empty")
        if not 0 < self.port < 65536:
            raise ValueError("proxy.port must be between 1 and 65535")
        if self.timeout <= 0:
            raise ValueError("proxy.timeout must be > 0")


@dataclass(frozen=True)
class WatcherConfig:
    """Log tailing settings."""
    poll_interval: float = 0.5
    attach_timeout: float = 15.0
    correlation_capacity: int = 1000

    def __post_init__(self):
        """Validate watcher values are positive."""
        if self.poll_interval <= 0:
            raise ValueError("watcher.poll_interval must be > 0")
        if self.attach_timeout < 0:
            raise ValueError("watcher.attach_timeout must be >= 0")
        if self.correlation_capacity < 2:
            raise ValueError("watcher.correlation_capacity must be >= 2")


@dataclass(frozen=True)
class SyncConfig:
    """Periodic authoritative sync settings."""
    enabled: bool = True
    interval: float = 60.0

    def __post_init__(self):
        """Validate the sync interval."""
        if self.interval <= 0:
            raise ValueError("sync.interval must be > 0")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    data_dir: Path = field(default_factory=lambda: Path(DEFAULT_DATA_DIR).expanduser())
    log_file: Path = field(default_factory=lambda: Path(DEFAULT_LOG_FILE).expanduser())
    log_level: str = "INFO"
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    def __post_init__(self):
        """Validate the log level name."""
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {sorted(LOG_LEVELS)}")

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


def default_config() -> AppConfig:
    """Configuration used when no file is given."""
    return AppConfig()


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Every key is optional; unknown keys are rejected so typos never pass
    silently.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return default_config()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'data_dir', 'log_file', 'log_level', 'proxy', 'watcher', 'sync'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    kwargs: Dict[str, Any] = {}
    for key in ('data_dir', 'log_file'):
        if key in raw_config:
            value = raw_config[key]
            if not isinstance(value, str) or not value:
                raise ValueError(f"'{key}' must be a non-empty string")
            kwargs[key] = Path(value).expanduser()

    if 'log_level' in raw_config:
        level = raw_config['log_level']
        if not isinstance(level, str):
            raise ValueError("'log_level' must be a string")
        kwargs['log_level'] = level.upper()

    proxy_data = _section(raw_config, 'proxy', {'host', 'port', 'management_key', 'timeout'})
    kwargs['proxy'] = ProxyConfig(
        host=str(proxy_data.get('host', ProxyConfig.host)),
        port=_number(proxy_data, 'port', ProxyConfig.port, 'proxy', int),
        management_key=str(proxy_data.get('management_key') or ''),
        timeout=_number(proxy_data, 'timeout', ProxyConfig.timeout, 'proxy'),
    )

    watcher_data = _section(
        raw_config, 'watcher', {'poll_interval', 'attach_timeout', 'correlation_capacity'}
    )
    kwargs['watcher'] = WatcherConfig(
        poll_interval=_number(watcher_data, 'poll_interval', WatcherConfig.poll_interval, 'watcher'),
        attach_timeout=_number(watcher_data, 'attach_timeout', WatcherConfig.attach_timeout, 'watcher'),
        correlation_capacity=_number(
            watcher_data, 'correlation_capacity', WatcherConfig.correlation_capacity, 'watcher', int
        ),
    )

    sync_data = _section(raw_config, 'sync', {'enabled', 'interval'})
    enabled = sync_data.get('enabled', SyncConfig.enabled)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' in sync must be a boolean")
    kwargs['sync'] = SyncConfig(
        enabled=enabled,
        interval=_number(sync_data, 'interval', SyncConfig.interval, 'sync'),
    )

    return AppConfig(**kwargs)


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Return a validated optional sub-section.

    Raises:
        ValueError: If the section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict, key: str, default, section: str, kind=float):
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {section} must be a number")
    if kind is int and not isinstance(value, int):
        raise ValueError(f"'{key}' in {section} must be an integer")
    return kind(value)
