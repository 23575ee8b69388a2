"""Configuration loading for the ingestion pipeline."""

from __future__ import annotations

import json
import os
from pathlib import Path

import keyring

from corpuslib.models import IngestConfig

SERVICE_NAME = "corpuslib-gemini"
KEY_NAME = "api_key"
API_KEY_ENV = "GEMINI_API_KEY"
DEFAULT_CONFIG_PATH = Path("config/ingest_config.json")


def stored_api_key() -> str | None:
    """The key saved by ``corpuslib config set-api-key``, if any."""
    return keyring.get_password(SERVICE_NAME, KEY_NAME)


def find_api_key() -> tuple[str, str] | None:
    """Return ``(key, where)`` for the first key found, or ``None``.

    The keyring entry is preferred over the environment variable.
    """
    key = stored_api_key()
    if key:
        return key, "system keyring"
    key = os.environ.get(API_KEY_ENV)
    if key:
        return key, f"${API_KEY_ENV}"
    return None


def get_api_key() -> str:
    """Return the Gemini API key used for embeddings and titles.

    Raises:
        RuntimeError: Neither the keyring nor the environment holds a key.
    """
    found = find_api_key()
    if found is None:
        raise RuntimeError(
            "Gemini API key not found. Store one with "
            f"`corpuslib config set-api-key KEY`, or export {API_KEY_ENV}."
        )
    return found[0]


def mask_api_key(key: str) -> str:
    """Keep the first and last four characters of long keys, star the rest."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}{'*' * (len(key) - 8)}{key[-4:]}"


def load_ingest_config(config_path: Path | None = None) -> IngestConfig:
    """Load ingestion configuration from JSON, falling back to defaults.

    Reads from ``config/ingest_config.json`` when *config_path* is ``None``.
    Unknown keys are ignored.  When the file sets no ``api_key``, it is
    filled from the keyring or ``GEMINI_API_KEY`` if either has one.

    Args:
        config_path: Optional explicit path to ingest_config.json.

    Returns:
        IngestConfig populated from file + keyring/env overrides.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    field_names = set(IngestConfig.__dataclass_fields__)
    kwargs = {k: v for k, v in data.items() if k in field_names}
    if "allowed_extensions" in kwargs:
        kwargs["allowed_extensions"] = set(kwargs["allowed_extensions"])

    config = IngestConfig(**kwargs)

    if config.api_key is None:
        try:
            config.api_key = get_api_key()
        except RuntimeError:
            config.api_key = None

    return config
