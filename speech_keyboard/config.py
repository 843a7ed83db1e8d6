"""Process configuration.

``Settings`` is read once at process start, either from environment
variables (``Settings.from_env()``) or from a YAML file
(``Settings.from_yaml()``), and handed to ``build_services()``.

Example YAML::

    provider: openai
    provider_options:
      rewrite_model: gpt-4o-mini
      language: en
    database_url: postgresql+asyncpg://app@db/speech_keyboard
    meter_usage: true
    log_level: DEBUG
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./speech_keyboard.db"

# Whisper API upload limit.
DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024

DEFAULT_ALLOWED_MIME_TYPES: tuple[str, ...] = (
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/m4a",
    "audio/mp4",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    """Runtime settings for a Speech Keyboard process.

    Attributes
    ----------
    provider:
        Name of the AI provider from ``speech_keyboard.providers.PROVIDERS``.
    provider_options:
        Keyword arguments passed to the provider constructor.
    database_url:
        Async SQLAlchemy database URL.
    meter_usage:
        Gate transcription on the balance ledger and debit minutes used.
    max_upload_bytes:
        Largest accepted audio upload.
    allowed_mime_types:
        Audio MIME types accepted at the HTTP boundary.
    log_level:
        Root log level name.
    expose_error_details:
        Include exception text in 500 responses (development only).
    """

    provider: str = "openai"
    provider_options: dict[str, Any] = field(default_factory=dict)
    database_url: str = DEFAULT_DATABASE_URL
    meter_usage: bool = False
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_mime_types: tuple[str, ...] = DEFAULT_ALLOWED_MIME_TYPES
    log_level: str = "INFO"
    expose_error_details: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Parameters
        ----------
        environ:
            Mapping to read from.  Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ

        provider_options: dict[str, Any] = {}
        for key, option in (
            ("OPENAI_API_KEY", "api_key"),
            ("OPENAI_TRANSCRIPTION_MODEL", "transcription_model"),
            ("OPENAI_REWRITE_MODEL", "rewrite_model"),
            ("OPENAI_TRANSCRIPTION_LANGUAGE", "language"),
        ):
            if env.get(key):
                provider_options[option] = env[key]

        return cls(
            provider=env.get("SPEECH_KEYBOARD_PROVIDER", "openai"),
            provider_options=provider_options,
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            meter_usage=_as_bool(env.get("SPEECH_KEYBOARD_METER_USAGE")),
            max_upload_bytes=int(
                env.get("SPEECH_KEYBOARD_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
            ),
            log_level=env.get("SPEECH_KEYBOARD_LOG_LEVEL", "INFO").upper(),
            expose_error_details=_as_bool(env.get("SPEECH_KEYBOARD_DEBUG")),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Build settings from a YAML file.

        Unknown keys are rejected so that typos surface at startup.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        ValueError
            If the file is not a mapping or contains unknown keys.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(
                f"Unknown settings in {path}: {', '.join(unknown)}"
            )

        if "allowed_mime_types" in data:
            data["allowed_mime_types"] = tuple(data["allowed_mime_types"])
        if "log_level" in data:
            data["log_level"] = str(data["log_level"]).upper()
        return cls(**data)


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; later calls only change the level.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
