"""
Configuration paths utilities for Islet.

Provides centralized path management for all application data.
"""

import os
from pathlib import Path


def get_user_data_dir() -> Path:
    """
    Get the user data directory for Islet.

    ``ISLET_DATA_DIR`` overrides the platform location.

    Returns:
        Path to the user data directory (AppData/Roaming/Islet on Windows)
    """
    override = os.environ.get('ISLET_DATA_DIR')
    if override:
        return Path(override)

    if os.name == 'nt':  # Windows
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "Islet"

    # Fallback for other platforms
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if xdg_data_home:
        return Path(xdg_data_home) / "islet"

    # Default XDG location
    return Path.home() / ".local" / "share" / "islet"


def get_configs_dir() -> Path:
    """Get the configs directory."""
    configs_dir = get_user_data_dir() / "configs"
    configs_dir.mkdir(parents=True, exist_ok=True)
    return configs_dir


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_user_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
