"""Configuration module for media-jobs."""

from .settings import (
    ensure_dirs,
    get_cleanup_config,
    get_config_dir,
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

__all__ = [
    "ensure_dirs",
    "get_cleanup_config",
    "get_config_dir",
    "get_config_file",
    "get_data_dir",
    "get_engine_config",
    "get_media_config",
    "get_objects_dir",
    "get_queue_config",
    "get_storage_config",
    "get_work_dir",
    "load_config",
    "save_config",
]
