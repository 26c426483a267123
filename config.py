#!/usr/bin/env python3
"""
Configuration management for the feed dashboard.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, the optional YAML secrets file and the
dashboard.yaml defaults file, and provides a clean interface for accessing
configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering. All modules should use
    get_logger() to create module-specific loggers that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # pytest swaps stdout for a capture object without reconfigure()
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)

    # aiohttp access noise is only useful when debugging the resolver
    getLogger("aiohttp").setLevel(WARNING if level > DEBUG else DEBUG)

    return getLogger("FeedDashboard")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Loggers are named "FeedDashboard.{name}" and inherit the global
    configuration set by _setup_global_logger().

    Example:
        logger = get_logger("parser")
        logger.info("This will appear as 'FeedDashboard.parser - INFO - ...'")
    """
    return getLogger(f"FeedDashboard.{name}")


logger = _setup_global_logger()

# Browser-like identity; several hosts refuse obvious bot user agents
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Feedbro/4.0"
)
# Page fetches (discovery, article pages, YouTube scraping) present as a plain browser
DEFAULT_DISCOVERY_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_ACCEPT = "application/rss+xml, application/xml, application/atom+xml, text/xml;q=0.9, */*;q=0.8"

DEFAULT_TAGS: List[Dict[str, str]] = [
    {"name": "Important", "color": "#e74c3c"},
    {"name": "Read Later", "color": "#3498db"},
    {"name": "Favorite", "color": "#f1c40f"},
    {"name": "YouTube", "color": "#ff0000"},
    {"name": "Podcast", "color": "#8e44ad"},
]

DEFAULT_ARTICLE_TEMPLATE = """---
title: "{{ title | yaml_quote }}"
date: {{ isoDate }}
tags: [{{ tags }}]
source: "{{ source | yaml_quote }}"
link: {{ link }}
author: "{{ author | yaml_quote }}"
feedTitle: "{{ feedTitle | yaml_quote }}"
guid: "{{ guid | yaml_quote }}"
---

# {{ title }}

{{ content }}

[Source]({{ link }})
"""


class Config:
    """Configuration manager for the feed dashboard.

    Sources, in increasing precedence:
    1. Environment variables
    2. .env file beside this module (if present)
    3. YAML secrets file (if SECRETS_FILE is set)

    Media, tag and article-saving defaults are read from dashboard.yaml
    (DASHBOARD_CONFIG_PATH) when present; every value has a built-in default.

    Example dashboard.yaml:
    ```yaml
    media:
      video_folder: "Videos"
      podcast_folder: "Podcasts"
      auto_detect: true
    tags:
      - name: "Important"
        color: "#e74c3c"
    article_saving:
      folder: "RSS Articles/"
      add_saved_tag: true
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_dashboard_defaults()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.0) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _env_flag(self, env_var: str, default: bool) -> bool:
        return environ.get(env_var, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        # HTTP identity
        self.USER_AGENT = environ.get("USER_AGENT", DEFAULT_USER_AGENT)
        self.DISCOVERY_USER_AGENT = environ.get("DISCOVERY_USER_AGENT", DEFAULT_DISCOVERY_USER_AGENT)
        self.FEED_ACCEPT_HEADER = environ.get("FEED_ACCEPT_HEADER", DEFAULT_ACCEPT)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 1)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 10, 0)

        # Refresh cadence and retention defaults
        self.REFRESH_INTERVAL_MINUTES = self._validate_positive_int("REFRESH_INTERVAL_MINUTES", 60, 1)
        self.DEFAULT_MAX_ITEMS = self._validate_positive_int("DEFAULT_MAX_ITEMS", 25, 0)

        # Background OPML import queue
        self.IMPORT_MAX_ITEMS = self._validate_positive_int("IMPORT_MAX_ITEMS", 50, 1)
        self.IMPORT_DELAY_SECONDS = self._validate_positive_float("IMPORT_DELAY_SECONDS", 0.1, 0.0)
        self.IMPORT_CHECKPOINT_EVERY = self._validate_positive_int("IMPORT_CHECKPOINT_EVERY", 5, 1)

        # Third-party CORS proxies are blocked on some platforms
        self.PROXIES_ENABLED = self._env_flag("PROXIES_ENABLED", True)
        self.PLATFORM = environ.get("PLATFORM", "desktop").strip().lower() or "desktop"

        # Persistence
        base_dir = path.dirname(path.abspath(__file__))
        self.DATA_PATH = environ.get("DATA_PATH", base_dir)
        self.SETTINGS_PATH = environ.get("SETTINGS_PATH", path.join(self.DATA_PATH, "settings.json"))
        self.VAULT_PATH = environ.get("VAULT_PATH", path.join(self.DATA_PATH, "vault"))
        self.DASHBOARD_CONFIG_PATH = environ.get("DASHBOARD_CONFIG_PATH", path.join(base_dir, "dashboard.yaml"))

        # Article saving
        self.ARTICLE_FETCH_TIMEOUT = self._validate_positive_int("ARTICLE_FETCH_TIMEOUT", 10, 1)

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Accepts either a top-level mapping or a mapping nested under
        ``environment``:

        ```yaml
        USER_AGENT: "MyReader/1.0"
        PROXIES_ENABLED: "false"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config
        loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}={value}")
        logger.info(f"Loaded {loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'dashboard')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.debug(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_dashboard_defaults(self) -> None:
        """Populate media, tag and article-saving defaults from dashboard.yaml.

        Any missing or malformed section keeps its built-in default.
        """
        self.AUTO_DETECT_MEDIA_TYPE = self._env_flag("AUTO_DETECT_MEDIA_TYPE", True)
        self.DEFAULT_VIDEO_FOLDER = environ.get("DEFAULT_VIDEO_FOLDER", "Videos")
        self.DEFAULT_VIDEO_TAG = "youtube"
        self.DEFAULT_PODCAST_FOLDER = environ.get("DEFAULT_PODCAST_FOLDER", "Podcasts")
        self.DEFAULT_PODCAST_TAG = "podcast"
        self.DEFAULT_TAGS = [dict(tag) for tag in DEFAULT_TAGS]
        self.ARTICLE_FOLDER = environ.get("ARTICLE_FOLDER", "RSS Articles/")
        self.ARTICLE_TEMPLATE = DEFAULT_ARTICLE_TEMPLATE
        self.ARTICLE_SAVE_FULL_CONTENT = self._env_flag("ARTICLE_SAVE_FULL_CONTENT", True)
        self.ARTICLE_ADD_SAVED_TAG = self._env_flag("ARTICLE_ADD_SAVED_TAG", True)

        data = self._safe_read_yaml(self.DASHBOARD_CONFIG_PATH, 1024 * 1024, 'dashboard')
        if not isinstance(data, dict):
            return

        media = data.get('media')
        if isinstance(media, dict):
            self.DEFAULT_VIDEO_FOLDER = str(media.get('video_folder', self.DEFAULT_VIDEO_FOLDER))
            self.DEFAULT_VIDEO_TAG = str(media.get('video_tag', self.DEFAULT_VIDEO_TAG))
            self.DEFAULT_PODCAST_FOLDER = str(media.get('podcast_folder', self.DEFAULT_PODCAST_FOLDER))
            self.DEFAULT_PODCAST_TAG = str(media.get('podcast_tag', self.DEFAULT_PODCAST_TAG))
            if 'auto_detect' in media:
                self.AUTO_DETECT_MEDIA_TYPE = bool(media['auto_detect'])
        elif media is not None:
            logger.warning(f"media section in {self.DASHBOARD_CONFIG_PATH} must be a mapping; ignoring")

        tags = data.get('tags')
        if isinstance(tags, list):
            parsed = [
                {"name": str(t['name']), "color": str(t.get('color', '#888888'))}
                for t in tags
                if isinstance(t, dict) and t.get('name')
            ]
            if parsed:
                self.DEFAULT_TAGS = parsed

        saving = data.get('article_saving')
        if isinstance(saving, dict):
            self.ARTICLE_FOLDER = str(saving.get('folder', self.ARTICLE_FOLDER))
            self.ARTICLE_TEMPLATE = str(saving.get('template', self.ARTICLE_TEMPLATE))
            self.ARTICLE_SAVE_FULL_CONTENT = bool(saving.get('full_content', self.ARTICLE_SAVE_FULL_CONTENT))
            self.ARTICLE_ADD_SAVED_TAG = bool(saving.get('add_saved_tag', self.ARTICLE_ADD_SAVED_TAG))
        logger.info(f"Loaded dashboard defaults from {self.DASHBOARD_CONFIG_PATH}")

    @property
    def proxies_allowed(self) -> bool:
        """Whether third-party CORS proxies may be contacted on this platform."""
        return self.PROXIES_ENABLED and self.PLATFORM != "android"

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "settings_path": self.SETTINGS_PATH,
            "vault_path": self.VAULT_PATH,
            "refresh_interval_minutes": self.REFRESH_INTERVAL_MINUTES,
            "default_max_items": self.DEFAULT_MAX_ITEMS,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_redirects": self.MAX_REDIRECTS,
            "platform": self.PLATFORM,
            "proxies_allowed": self.proxies_allowed,
            "import_checkpoint_every": self.IMPORT_CHECKPOINT_EVERY,
            "auto_detect_media_type": self.AUTO_DETECT_MEDIA_TYPE,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
