"""
Storage infrastructure for Islet.

Provides settings management.
"""

from .settings_manager import SettingsManager, settings

__all__ = [
    'SettingsManager',
    'settings',
]
