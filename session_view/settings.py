#!/usr/bin/env python3
"""Persisted display preferences.

Preferences live in a small JSON key-value file. Display settings are
stored under a single key as a camelCase object and read once when a view
is created.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .models import DisplaySettings

logger = logging.getLogger(__name__)

SETTINGS_KEY = "richOutputSettings"


def get_default_preferences_path() -> Path:
    """Preferences file path, honouring SESSION_VIEW_PREFERENCES."""
    env_path = os.getenv("SESSION_VIEW_PREFERENCES")
    if env_path:
        return Path(env_path)
    return Path.home() / ".session-view" / "preferences.json"


class PreferenceStore:
    """JSON file backed key-value store."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else get_default_preferences_path()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring preferences file %s: not an object", self.path)
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to save preferences to %s: %s", self.path, e)


def load_display_settings(store: PreferenceStore) -> DisplaySettings:
    """Read display settings, falling back to defaults when absent or invalid."""
    saved = store.get(SETTINGS_KEY)
    if saved is None:
        return DisplaySettings()
    try:
        return DisplaySettings.model_validate(saved)
    except ValidationError as e:
        logger.warning("Ignoring invalid display settings: %s", e.errors()[:1])
        return DisplaySettings()


def save_display_settings(store: PreferenceStore, settings: DisplaySettings) -> None:
    store.set(SETTINGS_KEY, settings.model_dump(by_alias=True))
