"""
config.py — Settings from the environment
==========================================

Everything tunable lives in environment variables (or a local .env file,
loaded with python-dotenv). API keys are NOT read here. Each model backend
resolves its own key, so a missing key only matters for the backend you
actually use.

  DOCQA_MODEL          preset name (see `docqa-chat --list-models`), default gemini
  DOCQA_CHUNK_SIZE     characters per chunk, default 1000
  DOCQA_CHUNK_OVERLAP  characters shared by neighbouring chunks, default 200
  DOCQA_TOP_K          chunks sent to the model per question, default 5
  DOCQA_LOG_LEVEL      logging level for the CLI, default WARNING

Usage:
  from docqa.config import load_settings
  settings = load_settings()
"""

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from docqa.errors import ConfigurationError


DEFAULT_PRESET = "gemini"


@dataclass(frozen=True)
class Settings:
    model_preset: str = DEFAULT_PRESET
    chunk_size: int = 1000
    chunk_overlap: int = 200
    top_k: int = 5
    log_level: str = "WARNING"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_settings(dotenv: bool = True) -> Settings:
    """Build Settings from the environment, reading .env first if present."""
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    settings = Settings(
        model_preset=os.environ.get("DOCQA_MODEL", DEFAULT_PRESET).strip() or DEFAULT_PRESET,
        chunk_size=_env_int("DOCQA_CHUNK_SIZE", 1000),
        chunk_overlap=_env_int("DOCQA_CHUNK_OVERLAP", 200),
        top_k=_env_int("DOCQA_TOP_K", 5),
        log_level=os.environ.get("DOCQA_LOG_LEVEL", "WARNING").upper(),
    )

    if settings.chunk_size <= 0:
        raise ConfigurationError("DOCQA_CHUNK_SIZE must be positive")
    if settings.chunk_overlap < 0:
        raise ConfigurationError("DOCQA_CHUNK_OVERLAP must not be negative")
    if settings.top_k <= 0:
        raise ConfigurationError("DOCQA_TOP_K must be positive")

    return settings
