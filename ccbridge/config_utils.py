# config_utils.py - YAML Configuration System for ccbridge
"""
ccbridge configuration utilities with YAML file support.

Configuration Resolution Order (highest to lowest priority):
1. Environment variables (CCBRIDGE_ACCESS_TOKEN, CCBRIDGE_MAX_WORKERS, etc.)
2. ccbridge.yaml in the working directory
3. ~/.ccbridge/config.yaml (global defaults)

Usage:
    from ccbridge.config_utils import get_config, get_access_token

    config = get_config()
    print(config.root_folder_name)
    token = get_access_token(config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ccbridge.errors import ConfigurationError, missing_token_error
from ccbridge.security_utils import (
    CredentialError,
    DEFAULT_TIMEOUT,
    UPLOAD_TIMEOUT,
    load_token_file,
    mask_sensitive,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "ccbridge.yaml"
GLOBAL_CONFIG_PATH = Path.home() / ".ccbridge" / "config.yaml"


@dataclass
class CcBridgeConfig:
    """Complete ccbridge configuration"""
    # Google connection
    access_token: Optional[str] = None
    token_file: Optional[Path] = None
    forms_script_id: Optional[str] = None

    # Drive layout
    root_folder_name: str = "LMS Import"

    # Retry settings
    max_retries: int = 3
    initial_delay: float = 1.5
    backoff_factor: float = 2.0

    # Concurrency / transport
    max_workers: int = 4
    request_timeout: float = DEFAULT_TIMEOUT
    upload_timeout: float = UPLOAD_TIMEOUT
    rate_limit_per_minute: int = 100

    # Directory the project config was read from
    project_root: Optional[Path] = None

    # Extra settings from config file
    extra: Dict[str, Any] = field(default_factory=dict)

    # Track where values came from (for debugging)
    _sources: Dict[str, str] = field(default_factory=dict)


class ConfigLoader:
    """Load configuration from multiple sources"""

    def __init__(self, project_dir: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.config = CcBridgeConfig(project_root=self.project_dir)

    def load(self) -> CcBridgeConfig:
        """Load configuration from all sources in priority order"""
        # Load in reverse priority (lowest first, higher overwrites)
        self._load_global_config()
        self._load_yaml_config()
        self._load_env_vars()
        return self.config

    def _load_global_config(self):
        """Load ~/.ccbridge/config.yaml if it exists"""
        if GLOBAL_CONFIG_PATH.exists():
            self._load_yaml_file(GLOBAL_CONFIG_PATH, "global")

    def _load_yaml_config(self):
        """Load ccbridge.yaml from the project directory"""
        yaml_path = self.project_dir / CONFIG_FILENAME
        if yaml_path.exists():
            self._load_yaml_file(yaml_path, CONFIG_FILENAME)

    def _set(self, attr: str, value: Any, source: str):
        setattr(self.config, attr, value)
        self.config._sources[attr] = source

    def _load_yaml_file(self, path: Path, source_name: str):
        """Load settings from a YAML file"""
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                message=f"Failed to parse {path}",
                suggestion="Check the YAML indentation and quoting.",
                context={"file": str(path)},
                cause=e,
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                message=f"{path.name} must contain a mapping at the top level",
                context={"file": str(path)},
            )

        google = data.get("google") or {}
        if "access_token" in google:
            self._set("access_token", str(google["access_token"]), source_name)
        if "token_file" in google:
            self._set("token_file", Path(google["token_file"]).expanduser(), source_name)
        if "root_folder" in google:
            self._set("root_folder_name", str(google["root_folder"]), source_name)
        if "forms_script_id" in google:
            self._set("forms_script_id", str(google["forms_script_id"]), source_name)

        retry = data.get("retry") or {}
        if "max_retries" in retry:
            self._set("max_retries", _as_number(int, retry["max_retries"], "retry.max_retries"), source_name)
        if "initial_delay" in retry:
            self._set("initial_delay", _as_number(float, retry["initial_delay"], "retry.initial_delay"), source_name)
        if "backoff_factor" in retry:
            self._set("backoff_factor", _as_number(float, retry["backoff_factor"], "retry.backoff_factor"), source_name)

        concurrency = data.get("concurrency") or {}
        if "max_workers" in concurrency:
            self._set("max_workers", _as_number(int, concurrency["max_workers"], "concurrency.max_workers"), source_name)
        if "rate_limit_per_minute" in concurrency:
            self._set(
                "rate_limit_per_minute",
                _as_number(int, concurrency["rate_limit_per_minute"], "concurrency.rate_limit_per_minute"),
                source_name,
            )

        # Store any extra settings
        known_keys = {"google", "retry", "concurrency"}
        for key, value in data.items():
            if key not in known_keys:
                self.config.extra[key] = value

    def _load_env_vars(self):
        """Load from environment variables (highest priority)"""
        if os.environ.get("CCBRIDGE_ACCESS_TOKEN"):
            self._set("access_token", os.environ["CCBRIDGE_ACCESS_TOKEN"], "env:CCBRIDGE_ACCESS_TOKEN")

        if os.environ.get("CCBRIDGE_TOKEN_FILE"):
            self._set("token_file", Path(os.environ["CCBRIDGE_TOKEN_FILE"]).expanduser(), "env:CCBRIDGE_TOKEN_FILE")

        if os.environ.get("CCBRIDGE_ROOT_FOLDER"):
            self._set("root_folder_name", os.environ["CCBRIDGE_ROOT_FOLDER"], "env:CCBRIDGE_ROOT_FOLDER")

        if os.environ.get("CCBRIDGE_FORMS_SCRIPT_ID"):
            self._set("forms_script_id", os.environ["CCBRIDGE_FORMS_SCRIPT_ID"], "env:CCBRIDGE_FORMS_SCRIPT_ID")

        if os.environ.get("CCBRIDGE_MAX_WORKERS"):
            self._set(
                "max_workers",
                _as_number(int, os.environ["CCBRIDGE_MAX_WORKERS"], "CCBRIDGE_MAX_WORKERS"),
                "env:CCBRIDGE_MAX_WORKERS",
            )


def _as_number(kind, value: Any, key: str):
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            message=f"Invalid value for {key}: {value!r}",
            suggestion=f"{key} must be a {kind.__name__}.",
            cause=e,
        )
    if number < 0:
        raise ConfigurationError(message=f"{key} must not be negative: {value!r}")
    return number


# ============================================================================
# Public API
# ============================================================================

def get_config(project_dir: Optional[Path] = None) -> CcBridgeConfig:
    """
    Get complete ccbridge configuration.

    Args:
        project_dir: Directory holding ccbridge.yaml (defaults to cwd)
    """
    loader = ConfigLoader(project_dir)
    return loader.load()


def get_access_token(config: Optional[CcBridgeConfig] = None) -> str:
    """
    Resolve the Google OAuth access token.

    Checks the configured token first, then the token file.

    Raises:
        ConfigurationError: If no token can be found
    """
    if config is None:
        config = get_config()

    if config.access_token:
        logger.debug(f"[config] Using access token {mask_sensitive(config.access_token)}")
        return config.access_token

    if config.token_file:
        try:
            token = load_token_file(config.token_file)
        except CredentialError as e:
            raise ConfigurationError(
                message="Access token file could not be read",
                context={"token_file": str(config.token_file)},
                cause=e,
            )
        logger.debug(f"[config] Loaded access token {mask_sensitive(token)} from {config.token_file}")
        return token

    raise missing_token_error()


def create_config_template(include_comments: bool = True) -> str:
    """
    Generate a ccbridge.yaml template.

    Returns:
        YAML string ready to write to file
    """
    if include_comments:
        return '''# ccbridge Configuration File

google:
  # OAuth token with Drive, Forms and Apps Script scopes.
  # Prefer a token file (chmod 600) over an inline token.
  token_file: ~/.ccbridge/token.txt
  # access_token: ya29....

  # Top-level Drive folder that receives all imported courses
  root_folder: LMS Import

  # Optional Apps Script deployment used to insert quiz items with images
  # forms_script_id: AKfycb...

retry:
  max_retries: 3       # Attempts after the first failure
  initial_delay: 1.5   # Seconds before the first retry
  backoff_factor: 2    # Delay multiplier per attempt

concurrency:
  max_workers: 4       # Items materialized in parallel
  rate_limit_per_minute: 100
'''
    return '''google:
  token_file: ~/.ccbridge/token.txt
  root_folder: LMS Import
retry:
  max_retries: 3
  initial_delay: 1.5
  backoff_factor: 2
concurrency:
  max_workers: 4
  rate_limit_per_minute: 100
'''
