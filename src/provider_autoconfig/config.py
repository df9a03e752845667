"""
Configuration dataclasses for the provider autoconfig system.

This module defines the runtime settings used throughout the system
(HTTP behaviour, retries, storage location, logging and analysis limits),
plus helpers to load them from JSON files and from the environment.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .enums import ProviderType
from .exceptions import ConfigurationError


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
    "Gecko/20100101 Firefox/121.0"
)

DEFAULT_TEST_QUERIES = ["One Piece", "Naruto", "Attack on Titan"]

DEFAULT_STORAGE_ROOT = Path.home() / ".config" / "provider-autoconfig"


@dataclass
class HttpConfig:
    """HTTP client behaviour shared by all network components."""

    timeout_seconds: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT
    follow_redirects: bool = True


@dataclass
class RetryConfig:
    """Retry behaviour for catalog requests (linear backoff)."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.2
    per_attempt_timeout_seconds: float = 6.0


@dataclass
class StorageConfig:
    """Provider store location."""

    root_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_ROOT)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class AnalysisConfig:
    """Limits and probe inputs for the analysis pipeline."""

    timeout_seconds: float = 60.0
    test_queries: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_QUERIES))


@dataclass
class AutoconfigSettings:
    """Main settings object combining all sub-configurations."""

    http: HttpConfig = field(default_factory=HttpConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)


@dataclass
class AutoconfigOptions:
    """Options for a single autoconfig run."""

    provider_name: Optional[str] = None
    force_type: Optional[ProviderType] = None
    test_query: Optional[str] = None
    skip_validation: bool = False
    dry_run: bool = False
    timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                code="invalid_config",
                message=f"timeout_seconds must be positive, got {self.timeout_seconds}",
                details={"timeout_seconds": self.timeout_seconds},
            )


def create_default_settings(storage_root: Optional[Path] = None) -> AutoconfigSettings:
    """
    Create default settings.

    Args:
        storage_root: Optional override for the provider store root directory

    Returns:
        AutoconfigSettings with default values
    """
    settings = AutoconfigSettings()
    if storage_root is not None:
        settings.storage.root_dir = Path(storage_root)
    return settings


def load_settings_from_file(config_path: Path) -> Optional[AutoconfigSettings]:
    """
    Load settings from a JSON file.

    Missing sections and keys fall back to their defaults.

    Args:
        config_path: Path to the settings file

    Returns:
        AutoconfigSettings if successful, None if the file is missing or invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError):
        return None

    if not isinstance(data, dict):
        return None

    try:
        http_data = data.get("http", {})
        http = HttpConfig(
            timeout_seconds=float(http_data.get("timeout_seconds", 15.0)),
            user_agent=http_data.get("user_agent", DEFAULT_USER_AGENT),
            follow_redirects=bool(http_data.get("follow_redirects", True)),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_attempts=int(retry_data.get("max_attempts", 3)),
            base_delay_seconds=float(retry_data.get("base_delay_seconds", 0.2)),
            per_attempt_timeout_seconds=float(
                retry_data.get("per_attempt_timeout_seconds", 6.0)
            ),
        )

        storage_data = data.get("storage", {})
        root_dir = storage_data.get("root_dir")
        storage = StorageConfig(
            root_dir=Path(root_dir).expanduser() if root_dir else DEFAULT_STORAGE_ROOT,
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        analysis_data = data.get("analysis", {})
        analysis = AnalysisConfig(
            timeout_seconds=float(analysis_data.get("timeout_seconds", 60.0)),
            test_queries=list(analysis_data.get("test_queries", DEFAULT_TEST_QUERIES)),
        )
    except (AttributeError, TypeError, ValueError):
        return None

    return AutoconfigSettings(
        http=http,
        retry=retry,
        storage=storage,
        logging=logging_config,
        analysis=analysis,
    )


def settings_to_dict(settings: AutoconfigSettings) -> dict:
    """Convert settings to a JSON-compatible dictionary."""
    return {
        "http": {
            "timeout_seconds": settings.http.timeout_seconds,
            "user_agent": settings.http.user_agent,
            "follow_redirects": settings.http.follow_redirects,
        },
        "retry": {
            "max_attempts": settings.retry.max_attempts,
            "base_delay_seconds": settings.retry.base_delay_seconds,
            "per_attempt_timeout_seconds": settings.retry.per_attempt_timeout_seconds,
        },
        "storage": {
            "root_dir": str(settings.storage.root_dir),
        },
        "logging": {
            "level": settings.logging.level,
            "output_format": settings.logging.output_format,
        },
        "analysis": {
            "timeout_seconds": settings.analysis.timeout_seconds,
            "test_queries": list(settings.analysis.test_queries),
        },
    }


def save_settings_to_file(settings: AutoconfigSettings, config_path: Path) -> bool:
    """
    Save settings to a JSON file.

    Args:
        settings: Settings to save
        config_path: Destination path

    Returns:
        True if the file was written, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(settings_to_dict(settings), f, indent=2)
        return True
    except OSError:
        return False


def load_settings_from_env(
    env_file: Optional[Path] = None,
    base: Optional[AutoconfigSettings] = None,
) -> AutoconfigSettings:
    """
    Apply environment overrides (optionally read from a .env file) to settings.

    Recognised variables: AUTOCONFIG_STORAGE_ROOT, AUTOCONFIG_LOG_LEVEL,
    AUTOCONFIG_LOG_FORMAT, AUTOCONFIG_HTTP_TIMEOUT, AUTOCONFIG_ANALYSIS_TIMEOUT,
    AUTOCONFIG_USER_AGENT.

    Args:
        env_file: Optional path to a .env file; the default dotenv lookup is used otherwise
        base: Settings to override; defaults are used when omitted

    Returns:
        The resulting settings

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    settings = base or create_default_settings()

    storage_root = os.getenv("AUTOCONFIG_STORAGE_ROOT")
    if storage_root:
        settings.storage.root_dir = Path(storage_root).expanduser()

    log_level = os.getenv("AUTOCONFIG_LOG_LEVEL")
    if log_level:
        settings.logging.level = log_level.lower()

    log_format = os.getenv("AUTOCONFIG_LOG_FORMAT")
    if log_format:
        settings.logging.output_format = log_format.lower()

    user_agent = os.getenv("AUTOCONFIG_USER_AGENT")
    if user_agent:
        settings.http.user_agent = user_agent

    settings.http.timeout_seconds = _float_from_env(
        "AUTOCONFIG_HTTP_TIMEOUT", settings.http.timeout_seconds
    )
    settings.analysis.timeout_seconds = _float_from_env(
        "AUTOCONFIG_ANALYSIS_TIMEOUT", settings.analysis.timeout_seconds
    )

    return settings


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            code="invalid_config",
            message=f"{name} must be a number, got {raw!r}",
            details={"variable": name},
        )
