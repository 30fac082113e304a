import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict = {
    "phpcs_path": "phpcs",
    "phpcs_php_path": "php",
    "phpcs_standard": ["WordPress"],
    "phpcs_severity": 1,
    "phpcs_sniffs_exclude": [],
    "phpcs_runtime_set": [],  # [["key", "value"], ...] passed as --runtime-set key value
    "phpcs_skip_folders": [],
    "file_extensions": ["php", "js", "twig"],
    "svg_checks": False,
    "svg_scanner_path": None,
    "skip_large_files": True,
    "skip_large_files_limit": 15000,
    "wpscan_api": False,
    "wpscan_api_url": "https://wpscan.com",
    "wpscan_api_plugin_paths": ["plugins"],
    "wpscan_api_theme_paths": ["themes"],
    "branches_ignore": [],
    "skip_draft_prs": False,
    "skip_scanning_via_labels_allowed": False,
    "skip_label": "skip-phpcs-scan",
    "batch_limit": 60,
    "retries": 3,
    "retry_delay": 1.0,
    "autoapprove": False,
    "autoapprove_filetypes": [],
    "autoapprove_label": "diffscan-autoapproved",
    "env_options": {},  # option name -> environment variable to read it from
}

_LIST_OPTIONS = (
    "phpcs_standard",
    "phpcs_sniffs_exclude",
    "phpcs_skip_folders",
    "file_extensions",
    "branches_ignore",
    "autoapprove_filetypes",
    "wpscan_api_plugin_paths",
    "wpscan_api_theme_paths",
)
_BOOL_OPTIONS = (
    "svg_checks",
    "skip_draft_prs",
    "skip_scanning_via_labels_allowed",
    "autoapprove",
    "skip_large_files",
    "wpscan_api",
)


def _as_list(value) -> list:
    """Accept either a YAML list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return list(value)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "on")
    return bool(value)


def _parse_env_options(value) -> dict:
    """Accept {"option": "ENV_VAR"} or "option=ENV_VAR,option2=ENV_VAR2"."""
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    pairs = {}
    for item in _as_list(value):
        option, sep, env_var = item.partition("=")
        if sep and option.strip() and env_var.strip():
            pairs[option.strip()] = env_var.strip()
        else:
            logger.warning("Ignoring malformed env_options entry %r", item)
    return pairs


def _read_env_options(config: dict) -> None:
    for option, env_var in config["env_options"].items():
        if option not in DEFAULT_CONFIG:
            logger.warning("env_options: unknown option %r ignored", option)
            continue
        value = os.environ.get(env_var)
        if value is None:
            continue
        config[option] = value


def load_config(config_path: str = ".diffscan.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .diffscan.yml in the current directory
      3. Options read from environment variables named in ``env_options``
      4. CLI argument overrides
    """
    config = {key: list(value) if isinstance(value, list) else value for key, value in DEFAULT_CONFIG.items()}
    config["env_options"] = {}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    config["env_options"] = _parse_env_options(config.get("env_options"))
    _read_env_options(config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    for key in _LIST_OPTIONS:
        config[key] = _as_list(config.get(key))
    for key in _BOOL_OPTIONS:
        config[key] = _as_bool(config.get(key))
    config["phpcs_severity"] = int(config["phpcs_severity"])
    config["batch_limit"] = int(config["batch_limit"])
    config["retries"] = int(config["retries"])
    config["retry_delay"] = float(config["retry_delay"])
    config["skip_large_files_limit"] = int(config["skip_large_files_limit"])

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["wpscan_api_token"] = os.environ.get("WPSCAN_API_TOKEN")

    return config
