"""Basic settings and directory management."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir, user_data_dir


def get_config_dir() -> Path:
    """Get the configuration directory."""
    return Path(os.environ.get("MEDIA_JOBS_CONFIG_DIR", user_config_dir("media-jobs")))


def get_data_dir() -> Path:
    """Get the data directory holding job, task and video records."""
    return Path(os.environ.get("MEDIA_JOBS_DATA_DIR", user_data_dir("media-jobs")))


def get_work_dir() -> Path:
    """Get the scratch directory for per-attempt temporary files."""
    default = get_data_dir() / "work"
    return Path(os.environ.get("MEDIA_JOBS_WORK_DIR", str(default)))


def get_objects_dir() -> Path:
    """Get the directory backing the local object store."""
    return get_data_dir() / "objects"


def get_config_file() -> Path:
    """Get the config file path."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from file."""
    config: dict[str, Any] = {}
    config_file = get_config_file()
    if config_file.exists():
        with open(config_file) as f:
            config = json.load(f)
    return config


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        json.dump(config, f, indent=2)


def ensure_dirs() -> None:
    """Ensure all required directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
    get_work_dir().mkdir(parents=True, exist_ok=True)
    get_objects_dir().mkdir(parents=True, exist_ok=True)


# Queue configuration
DEFAULT_QUEUE_CONFIG = {
    "concurrency": 2,
    "max_attempts": 3,
    "backoff_seconds": 1.0,  # doubled on every retry
    "poll_interval": 1.0,
    "stall_timeout": 300,
    "stall_check_interval": 60,
    "completed_retention_hours": 1,
    "failed_retention_hours": 24,
    "housekeeping_schedule": "*/15 * * * *",  # Every 15 minutes
}

# Speech-to-text / translation engine (OpenAI compatible)
DEFAULT_ENGINE_CONFIG = {
    "base_url": "https://api.openai.com/v1",
    "model": "whisper-1",
    "translation_model": "gpt-4",
    "language": "en",
    "timeout_seconds": 300,
    "max_attempts": 5,
    "retry_base_delay": 1.0,
}

# ffmpeg and size limits
DEFAULT_MEDIA_CONFIG = {
    "ffmpeg": "ffmpeg",
    "ffprobe": "ffprobe",
    "max_upload_bytes": 25 * 1024 * 1024,
    "target_bytes": 20 * 1024 * 1024,
    "assumed_max_duration_seconds": 600,  # Assume max 10 minutes
    "fetch_timeout_seconds": 120,
    "compress_timeout_seconds": 600,
    "render_timeout_seconds": 900,
}

# Local object store
DEFAULT_STORAGE_CONFIG = {
    "public_base_url": "http://localhost:8000/api/artifacts",
    "default_ttl_seconds": 24 * 60 * 60,
    "max_ttl_seconds": 7 * 24 * 60 * 60,
}

# Cleanup configuration
DEFAULT_CLEANUP_CONFIG = {
    "enabled": True,
    "retention_hours": 6,
    "schedule": "0 */6 * * *",  # Every 6 hours
}


def _section(name: str, defaults: dict[str, Any]) -> dict[str, Any]:
    config = load_config()
    return {**defaults, **config.get(name, {})}


def get_queue_config() -> dict[str, Any]:
    """Get queue configuration with defaults."""
    return _section("queue", DEFAULT_QUEUE_CONFIG)


def get_engine_config() -> dict[str, Any]:
    """Get engine configuration with defaults. The API key only comes from the environment."""
    engine = _section("engine", DEFAULT_ENGINE_CONFIG)
    engine["api_key"] = os.environ.get("OPENAI_API_KEY", engine.get("api_key", ""))
    return engine


def get_media_config() -> dict[str, Any]:
    """Get ffmpeg and size limit configuration with defaults."""
    return _section("media", DEFAULT_MEDIA_CONFIG)


def get_storage_config() -> dict[str, Any]:
    """Get object store configuration with defaults."""
    storage = _section("storage", DEFAULT_STORAGE_CONFIG)
    storage["signing_key"] = os.environ.get(
        "MEDIA_JOBS_SIGNING_KEY", storage.get("signing_key", "")
    )
    return storage


def get_cleanup_config() -> dict[str, Any]:
    """Get cleanup configuration with defaults."""
    return _section("cleanup", DEFAULT_CLEANUP_CONFIG)
