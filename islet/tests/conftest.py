"""Shared fixtures for Islet tests."""

import logging
import logging.handlers
import os
import tempfile
from datetime import datetime

import pytest

# Keep the module-level settings instance out of the real user data directory
os.environ.setdefault("ISLET_DATA_DIR", tempfile.mkdtemp(prefix="islet-tests-"))

from PyQt6.QtCore import QCoreApplication  # noqa: E402

from islet.src.domain.services.state_machine import SurfaceStateMachine  # noqa: E402
from islet.src.infrastructure.storage.settings_manager import SettingsManager  # noqa: E402

FIXED_TIME = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture(scope="session")
def qapp():
    """Qt core application shared by all tests that create QObjects."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def machine():
    """State machine with a fixed clock."""
    return SurfaceStateMachine(clock=lambda: FIXED_TIME)


@pytest.fixture
def settings_manager(tmp_path):
    return SettingsManager(settings_dir=tmp_path / "configs")


@pytest.fixture
def restore_root_logger():
    """Drop the handlers installed by setup_logging and restore levels."""
    root = logging.getLogger()
    level = root.level
    islet_level = logging.getLogger("islet").level
    yield
    for handler in list(root.handlers):
        if isinstance(handler, logging.handlers.TimedRotatingFileHandler) or type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.getLogger("islet").setLevel(islet_level)
