"""Tests for configuration."""

from __future__ import annotations

import json
from unittest.mock import patch

from media_jobs.config import (
    ensure_dirs,
    get_cleanup_config,
    get_config_file,
    get_data_dir,
    get_engine_config,
    get_media_config,
    get_objects_dir,
    get_queue_config,
    get_storage_config,
    get_work_dir,
    load_config,
    save_config,
)


def test_get_cleanup_config_defaults():
    """Test default configuration is returned when no config file exists."""
    with patch("media_jobs.config.settings.load_config", return_value={}):
        config = get_cleanup_config()

        assert config["enabled"] is True
        assert config["retention_hours"] == 6
        assert config["schedule"] == "0 */6 * * *"  # Every 6 hours


def test_get_cleanup_config_partial_custom():
    """Test partial custom configuration merges with defaults."""
    partial_config = {"cleanup": {"retention_hours": 0.5}}

    with patch("media_jobs.config.settings.load_config", return_value=partial_config):
        config = get_cleanup_config()

        assert config["retention_hours"] == 0.5
        assert config["enabled"] is True
        assert config["schedule"] == "0 */6 * * *"


def test_get_queue_config_defaults():
    with patch("media_jobs.config.settings.load_config", return_value={}):
        config = get_queue_config()

        assert config["concurrency"] == 2
        assert config["max_attempts"] == 3
        assert config["backoff_seconds"] == 1.0
        assert config["completed_retention_hours"] == 1
        assert config["failed_retention_hours"] == 24


def test_get_queue_config_custom():
    custom_config = {"queue": {"concurrency": 8, "housekeeping_schedule": "*/5 * * * *"}}

    with patch("media_jobs.config.settings.load_config", return_value=custom_config):
        config = get_queue_config()

        assert config["concurrency"] == 8
        assert config["housekeeping_schedule"] == "*/5 * * * *"
        assert config["max_attempts"] == 3


def test_get_media_config_limits():
    with patch("media_jobs.config.settings.load_config", return_value={}):
        config = get_media_config()

        assert config["max_upload_bytes"] == 25 * 1024 * 1024
        assert config["target_bytes"] == 20 * 1024 * 1024
        assert config["assumed_max_duration_seconds"] == 600


def test_engine_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    file_config = {"engine": {"api_key": "sk-file", "model": "whisper-large"}}

    with patch("media_jobs.config.settings.load_config", return_value=file_config):
        config = get_engine_config()

        assert config["api_key"] == "sk-env"
        assert config["model"] == "whisper-large"
        assert config["base_url"] == "https://api.openai.com/v1"


def test_engine_api_key_falls_back_to_file(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with patch("media_jobs.config.settings.load_config", return_value={"engine": {"api_key": "sk-file"}}):
        assert get_engine_config()["api_key"] == "sk-file"


def test_storage_signing_key_from_environment(monkeypatch):
    monkeypatch.setenv("MEDIA_JOBS_SIGNING_KEY", "env-key")

    with patch("media_jobs.config.settings.load_config", return_value={}):
        config = get_storage_config()

        assert config["signing_key"] == "env-key"
        assert config["max_ttl_seconds"] == 7 * 24 * 60 * 60


def test_directories_follow_environment(isolated_dirs):
    assert get_data_dir() == isolated_dirs["data_dir"]
    assert get_work_dir() == isolated_dirs["work_dir"]
    assert get_objects_dir() == isolated_dirs["data_dir"] / "objects"
    assert get_config_file() == isolated_dirs["config_dir"] / "config.json"

    ensure_dirs()

    assert isolated_dirs["work_dir"].is_dir()
    assert get_objects_dir().is_dir()


def test_work_dir_defaults_under_data_dir(isolated_dirs, monkeypatch):
    monkeypatch.delenv("MEDIA_JOBS_WORK_DIR")

    assert get_work_dir() == isolated_dirs["data_dir"] / "work"


def test_save_and_load_config(isolated_dirs):
    assert load_config() == {}

    save_config({"queue": {"concurrency": 4}})

    assert json.loads(get_config_file().read_text()) == {"queue": {"concurrency": 4}}
    assert get_queue_config()["concurrency"] == 4
