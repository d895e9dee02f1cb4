import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from platformdirs import user_config_dir

logger = structlog.get_logger(__name__)

CONFIG_VERSION = "1.0.0"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "config_version": CONFIG_VERSION,
    "surface": {"width": 1600, "height": 1000},
    "node": {
        "default_width": 250,
        "default_height": 200,
        "min_width": 100,
        "min_height": 50,
    },
    "connection": {"hit_radius": 20},
    "load": {"max_retries": 5, "retry_delay_ms": 200},
    "ui": {"theme": "dark"},
}


def _merge_defaults(defaults: Dict[str, Any], values: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in values.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsManager:
    """
    Manages editor settings stored as a JSON file.

    Keys missing from an existing file fall back to the defaults.
    """
    def __init__(self, app_name: str, app_author: str, config_file: Optional[Path] = None):
        self.app_name = app_name
        if config_file:
            self.config_file = Path(config_file)
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path(user_config_dir(app_name, app_author))
            self.config_file = self.config_dir / "config.json"
        self.settings: Dict[str, Any] = {}
        self.load_settings()

    def load_settings(self):
        """Loads settings from the config file, writing the defaults on first run."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    stored = json.load(f)
            except (OSError, json.JSONDecodeError):
                logger.exception("settings_load_failed", path=str(self.config_file))
                stored = {}
            self.settings = _merge_defaults(DEFAULT_SETTINGS, stored if isinstance(stored, dict) else {})
        else:
            self.settings = copy.deepcopy(DEFAULT_SETTINGS)
            self.save_settings()

    def save_settings(self):
        """Saves the current settings to the config file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.settings, f, indent=2, ensure_ascii=False)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Gets a setting value using a dot-separated key.
        e.g., get('surface.width')
        """
        value = self.settings
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any):
        """
        Sets a setting value using a dot-separated key.
        e.g., set('ui.theme', 'light')
        """
        keys = key.split('.')
        d = self.settings
        for k in keys[:-1]:
            d = d.setdefault(k, {})
        d[keys[-1]] = value
        self.save_settings()


# グローバルインスタンスは使用側で初期化する
settings_manager: Optional[SettingsManager] = None


def init_settings(config_file: Optional[Path] = None) -> SettingsManager:
    """設定マネージャーを初期化"""
    global settings_manager
    settings_manager = SettingsManager(
        app_name="FBDEditor",
        app_author="FBDEditor",
        config_file=config_file
    )
    return settings_manager


def get_setting(key: str, default: Any = None) -> Any:
    """グローバル設定から値を取得（未初期化ならデフォルト値）"""
    if settings_manager is None:
        value = DEFAULT_SETTINGS
        for k in key.split('.'):
            if not isinstance(value, dict) or k not in value:
                return default
            value = value[k]
        return value
    return settings_manager.get(key, default)
