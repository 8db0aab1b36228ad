"""
Settings Manager for Islet.

Provides JSON-backed storage of application settings with dot notation
access, type validation against defaults and change notifications.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ...utils.config_paths import get_configs_dir

logger = logging.getLogger("islet.settings")


class SettingsManager:
    """
    Manages application settings.

    Features:
    - Dot notation access (settings.get('surface.history_limit'))
    - Loaded values validated against DEFAULT_SETTINGS types
    - Observer callbacks on change
    - Storage in the user data directory
    """

    DEFAULT_SETTINGS = {
        'surface': {
            'history_limit': 100,        # Transitions kept for debugging
            'default_agent_id': None,    # Agent preselected on open when none is chosen
            'retry_on_reopen': True,     # Consume a pending retry when the surface is summoned
        },
        'advanced': {
            'log_level': 'INFO',
            'log_location': '',
            'log_retention_days': 10,
        },
    }

    def __init__(self, settings_dir: Optional[Path] = None):
        self.settings_dir = Path(settings_dir) if settings_dir else get_configs_dir()
        self.settings_file = self.settings_dir / "settings.json"

        self._settings: Dict[str, Any] = {}
        self._change_callbacks = []  # Observer callbacks for settings changes

        self._ensure_settings_dir()
        self.load()

    # --- Observer pattern for settings changes ------------------------------------

    def on_change(self, callback) -> None:
        """Register a callback to be notified when settings change.

        Args:
            callback: Callable accepting one argument (the dot-notation key that changed).
        """
        if callback not in self._change_callbacks:
            self._change_callbacks.append(callback)

    def remove_change_callback(self, callback) -> None:
        """Remove a previously registered change callback."""
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def _notify_change(self, key_path: str) -> None:
        """Notify all registered callbacks that a setting changed."""
        for cb in self._change_callbacks:
            try:
                cb(key_path)
            except Exception as e:
                logger.warning(f"Settings change callback error for key '{key_path}': {e}")

    # --- Paths ---------------------------------------------------------------------

    def get_paths(self) -> Dict[str, str]:
        """Return important path locations (for external logging / UI)."""
        return {
            'settings_dir': str(self.settings_dir),
            'settings_file': str(self.settings_file),
        }

    def _ensure_settings_dir(self):
        """Ensure directory exists (idempotent)."""
        self.settings_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Settings directory: {self.settings_dir}")

    def _get_nested_dict(self, data: Dict, path: str, create_missing: bool = False) -> tuple:
        """Navigate nested dictionary structure using dot notation."""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                if create_missing:
                    current[key] = {}
                else:
                    return None, keys[-1]
            current = current[key]

        return current, keys[-1]

    # --- Validation ------------------------------------------------------------------

    def _validate_and_merge_settings(self, loaded_settings: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and merge loaded settings with defaults.

        Only keys that exist in DEFAULT_SETTINGS are kept.
        Values are validated for correct data types.
        Missing keys are filled with defaults.

        Args:
            loaded_settings: Settings loaded from file

        Returns:
            Validated and merged settings dictionary
        """

        def validate_value(value, default_value, key_path):
            """Validate a single value against its default."""
            # If default is None, allow any type
            if default_value is None:
                return value

            expected_type = type(default_value)

            # bool is an int subclass; keep them apart
            if expected_type is bool:
                if isinstance(value, bool):
                    return value
            elif expected_type == float and isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
            elif expected_type == int and isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
            elif isinstance(value, expected_type) and not isinstance(value, bool):
                return value

            logger.warning(
                f"Invalid type for '{key_path}': expected {expected_type.__name__}, "
                f"got {type(value).__name__}. Using default: {default_value}"
            )
            return default_value

        def merge_dict(loaded_dict, default_dict, path=""):
            """Recursively merge and validate nested dictionaries."""
            result = {}

            for key, default_value in default_dict.items():
                current_path = f"{path}.{key}" if path else key

                if key not in loaded_dict:
                    result[key] = copy.deepcopy(default_value)
                    logger.debug(f"Using default for missing key: {current_path}")
                elif isinstance(default_value, dict):
                    loaded_value = loaded_dict[key]
                    if isinstance(loaded_value, dict):
                        result[key] = merge_dict(loaded_value, default_value, current_path)
                    else:
                        logger.warning(
                            f"Invalid type for '{current_path}': expected dict, "
                            f"got {type(loaded_value).__name__}. Using default"
                        )
                        result[key] = copy.deepcopy(default_value)
                else:
                    result[key] = validate_value(loaded_dict[key], default_value, current_path)

            for key in loaded_dict.keys():
                if key not in default_dict:
                    current_path = f"{path}.{key}" if path else key
                    logger.debug(f"Ignoring unknown key from config file: {current_path}")

            return result

        return merge_dict(loaded_settings, self.DEFAULT_SETTINGS)

    # --- Load / save -----------------------------------------------------------------

    def load(self):
        """Load settings from file or create defaults."""
        try:
            if self.settings_file.exists():
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    loaded_settings = json.load(f)
                if not isinstance(loaded_settings, dict):
                    raise ValueError("settings root must be an object")

                self._settings = self._validate_and_merge_settings(loaded_settings)
                logger.info("Settings loaded and validated successfully")
            else:
                self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
                self.save()
                logger.info("Default settings created")
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Invalid settings file: {e}. Using defaults.")
            self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
        except OSError as e:
            logger.error(f"Failed to load settings: {e}")
            self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)

    def save(self):
        """Save all current settings to file."""
        try:
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=2, ensure_ascii=False)
            logger.debug(f"Settings saved successfully to {self.settings_file}")
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get setting value using dot notation.

        Args:
            key_path: Dot-separated path (e.g., 'surface.history_limit')
            default: Default value if key doesn't exist

        Returns:
            Setting value
        """
        parent_dict, final_key = self._get_nested_dict(self._settings, key_path)
        if parent_dict is None or final_key not in parent_dict:
            return default
        return parent_dict[final_key]

    def set(self, key_path: str, value: Any):
        """
        Set setting value using dot notation.

        Args:
            key_path: Dot-separated path (e.g., 'surface.retry_on_reopen')
            value: Value to set
        """
        parent_dict, final_key = self._get_nested_dict(self._settings, key_path, create_missing=True)
        parent_dict[final_key] = value
        self.save()
        logger.debug(f"Setting '{key_path}' updated")
        self._notify_change(key_path)

    def delete(self, key_path: str):
        """Delete a setting using dot notation."""
        parent_dict, final_key = self._get_nested_dict(self._settings, key_path)
        if parent_dict is not None and final_key in parent_dict:
            del parent_dict[final_key]
            self.save()
            logger.debug(f"Setting '{key_path}' deleted")
            self._notify_change(key_path)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of all settings."""
        return copy.deepcopy(self._settings)

    def reset_to_defaults(self):
        """Reset all settings to defaults."""
        self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
        self.save()
        logger.info("Settings reset to defaults")


# Global settings instance
settings = SettingsManager()
