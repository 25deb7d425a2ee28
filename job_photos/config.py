"""Configuration management for job_photos"""

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_PREFIX = "JOBPHOTOS_"

DEVICE_DESKTOP = "desktop"
DEVICE_MOBILE = "mobile"
DEVICE_CLASSES = (DEVICE_DESKTOP, DEVICE_MOBILE)

DEFAULTS: dict[str, Any] = {
    "aws_profile": "default",
    "aws_region": "eu-west-2",
    "s3_bucket": "",
    "s3_endpoint_url": "",
    "metadata_db_path": "job_photos.db",
    "log_directory": "logs",
    "display_name": "Job Photos",
    "device_class": DEVICE_DESKTOP,
    "desktop_concurrency": 3,
    "mobile_concurrency": 2,
    "max_additional_bytes": 10 * 1024 * 1024,
    "compression_threshold_bytes": 500 * 1024,
    "compression_max_dimension": 1920,
    "compression_quality": 80,
    "signed_url_ttl_seconds": 3600,
}

# Keys whose environment values must be parsed as integers
INT_KEYS = {
    "desktop_concurrency",
    "mobile_concurrency",
    "max_additional_bytes",
    "compression_threshold_bytes",
    "compression_max_dimension",
    "compression_quality",
    "signed_url_ttl_seconds",
}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        settings = dict(DEFAULTS)

        for path in (SETTINGS_DEFAULT_FILE, SETTINGS_FILE):
            if path.exists():
                with open(path, encoding="utf-8") as f:
                    settings.update(json.load(f))

        for key in DEFAULTS:
            value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
            if value is None:
                continue
            settings[key] = int(value) if key in INT_KEYS else value

        self._settings = settings

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def aws_profile(self) -> str:
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        return str(self._settings.get("aws_region", "eu-west-2"))

    @property
    def s3_bucket(self) -> str:
        return str(self._settings.get("s3_bucket", ""))

    @property
    def s3_endpoint_url(self) -> str | None:
        """Custom endpoint for S3-compatible stores, or None for AWS."""
        return self._settings.get("s3_endpoint_url") or None

    @property
    def metadata_db_path(self) -> Path:
        path = Path(self._settings.get("metadata_db_path", "job_photos.db"))
        return path if path.is_absolute() else BASE_DIR / path

    @property
    def log_directory(self) -> Path:
        path = Path(self._settings.get("log_directory", "logs"))
        return path if path.is_absolute() else BASE_DIR / path

    @property
    def display_name(self) -> str:
        return str(self._settings.get("display_name", "Job Photos"))

    @property
    def device_class(self) -> str:
        return str(self._settings.get("device_class", DEVICE_DESKTOP))

    @property
    def signed_url_ttl_seconds(self) -> int:
        return int(self._settings.get("signed_url_ttl_seconds", 3600))


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit knobs for one upload batch.

    The device class is supplied by the caller instead of being sniffed from
    the runtime, so mobile uploads run with a smaller worker budget and skip
    image recompression.
    """

    device_class: str = DEVICE_DESKTOP
    desktop_concurrency: int = 3
    mobile_concurrency: int = 2
    max_additional_bytes: int = 10 * 1024 * 1024
    compression_threshold_bytes: int = 500 * 1024
    compression_max_dimension: int = 1920
    compression_quality: int = 80

    def __post_init__(self) -> None:
        if self.device_class not in DEVICE_CLASSES:
            raise ValueError(
                f"Unknown device class '{self.device_class}', expected one of {DEVICE_CLASSES}"
            )
        if self.desktop_concurrency < 1 or self.mobile_concurrency < 1:
            raise ValueError("Concurrency limits must be at least 1")

    @property
    def is_mobile(self) -> bool:
        return self.device_class == DEVICE_MOBILE

    @property
    def concurrency_limit(self) -> int:
        """Worker budget for this device class, before capping by task count."""
        return self.mobile_concurrency if self.is_mobile else self.desktop_concurrency

    @property
    def compression_enabled(self) -> bool:
        return not self.is_mobile

    @classmethod
    def from_settings(
        cls, settings: Settings, device_class: str | None = None
    ) -> "PipelineConfig":
        """Build a config from saved settings, optionally overriding the device class."""
        return cls(
            device_class=device_class or settings.device_class,
            desktop_concurrency=int(settings.get("desktop_concurrency", 3)),
            mobile_concurrency=int(settings.get("mobile_concurrency", 2)),
            max_additional_bytes=int(settings.get("max_additional_bytes", 10 * 1024 * 1024)),
            compression_threshold_bytes=int(
                settings.get("compression_threshold_bytes", 500 * 1024)
            ),
            compression_max_dimension=int(settings.get("compression_max_dimension", 1920)),
            compression_quality=int(settings.get("compression_quality", 80)),
        )
