#!/usr/bin/env python3
"""
JSON settings persistence.

The store is the single place where dashboard state touches the disk. Writes
go to a temporary file beside the target and are moved into place, so a crash
mid-write never leaves a truncated settings file behind.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from config import config, get_logger
from models import Settings

logger = get_logger("store")


class SettingsStore:
    """Load and save Settings as camelCase JSON."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path or config.SETTINGS_PATH)

    def load(self) -> Optional[Settings]:
        """Return persisted settings merged over defaults, or None when nothing is stored."""
        if not self.path.exists():
            logger.info(f"No settings file at {self.path}; starting fresh")
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Settings file {self.path} is not valid JSON: {e}")
            return None
        except OSError as e:
            logger.error(f"Error reading settings file {self.path}: {e}")
            return None
        settings = Settings.from_dict(data)
        if settings is None:
            logger.warning(f"Settings file {self.path} does not hold a JSON object; ignoring it")
            return None
        logger.debug(f"Loaded {len(settings.feeds)} feeds from {self.path}")
        return settings

    def load_or_default(self) -> Settings:
        return self.load() or Settings.defaults()

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".settings-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(settings.to_dict(), f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Saved {len(settings.feeds)} feeds to {self.path}")
