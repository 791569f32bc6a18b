import json
import logging
from pathlib import Path
from typing import Optional, Union

import click
from pydantic import ValidationError

from .models import Preferences

APP_NAME = "otf-cli"
PREFERENCES_FILE_NAME = "config.json"


def default_preferences_path() -> Path:
    return Path(click.get_app_dir(APP_NAME)) / PREFERENCES_FILE_NAME


class PreferencesStore:
    """Preferred studios and display timezone, kept as a flat JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else default_preferences_path()

    def load(self) -> Preferences:
        if not self.path.exists():
            return Preferences()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            return Preferences.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"failed to read preferences from {self.path}: {e}") from e

    def save(self, preferences: Preferences) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(preferences.model_dump_json(indent=2), encoding="utf-8")
        logging.info(f"Saved preferences to {self.path}")
