"""
Load and expose app config (YAML). Used by the manager to get the data dir, poll
timing, ffmpeg binary and per-provider defaults.
"""
import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

CONFIG_ENV = "CONTINUATOR_CONFIG"
DEFAULT_CONFIG_NAME = "continuator.yaml"

# Env var -> (section, key); section None means top level
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "CONTINUATOR_PROVIDER": (None, "provider"),
    "CONTINUATOR_DATA_DIR": (None, "data_dir"),
    "GOOGLE_CLOUD_PROJECT": ("veo", "project"),
    "GOOGLE_CLOUD_LOCATION": ("veo", "location"),
}


def _defaults() -> dict[str, Any]:
    return {
        "provider": "sora",
        "data_dir": "videos",
        "poll": {
            "interval_seconds": 5.0,
            "backoff": 1.0,
            "max_interval_seconds": 30.0,
            "timeout_seconds": 1800.0,
        },
        "ffmpeg": {"bin": "ffmpeg"},
        "sora": {
            "api_base": "https://api.openai.com/v1",
            "api_key": None,
            "api_key_env": "OPENAI_API_KEY",
            "model": "sora-2",
            "size": "1280x720",
            "seconds": 12,
            "request_timeout": 60,
        },
        "veo": {
            "project": None,
            "location": None,
            "access_token": None,
            "access_token_env": "GCP_ACCESS_TOKEN",
            "credential_helper": ["gcloud", "auth", "print-access-token"],
            "model": "veo-3.0-generate-preview",
            "size": "1280x720",
            "seconds": 8,
            "storage_uri": None,
            "generate_audio": True,
            "enhance_prompt": True,
            "resolution": None,
            "request_timeout": 120,
        },
    }


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _config_path(config_path: Path | None) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_NAME


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load config from YAML merged over defaults, then apply env overrides.
    Path lookup: explicit argument, $CONTINUATOR_CONFIG, ./continuator.yaml.
    A missing file means defaults only.
    """
    path = _config_path(config_path)
    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    config = _deep_merge(_defaults(), data)
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            config[key] = value
        else:
            config[section][key] = value
    return config


def apply_overrides(config: dict[str, Any], **flags: Any) -> dict[str, Any]:
    """
    Layer CLI flags over config. None means the flag was not given.
    model/size/seconds apply to the selected provider's section.
    """
    out = copy.deepcopy(config)
    provider = flags.get("provider") or out.get("provider", "sora")
    out["provider"] = provider
    top_level = {"data_dir": "data_dir"}
    poll_keys = {"poll_interval": "interval_seconds", "timeout": "timeout_seconds"}
    provider_keys = {"model": "model", "size": "size", "seconds": "seconds"}
    section_keys = {
        "api_key": ("sora", "api_key"),
        "gcp_project": ("veo", "project"),
        "gcp_location": ("veo", "location"),
        "gcp_access_token": ("veo", "access_token"),
        "gcp_storage_uri": ("veo", "storage_uri"),
        "gcp_generate_audio": ("veo", "generate_audio"),
        "gcp_resolution": ("veo", "resolution"),
        "gcp_enhance_prompt": ("veo", "enhance_prompt"),
    }
    for flag, value in flags.items():
        if value is None or flag == "provider":
            continue
        if flag in top_level:
            out[top_level[flag]] = value
        elif flag in poll_keys:
            out["poll"][poll_keys[flag]] = value
        elif flag in provider_keys:
            out.setdefault(provider, {})[provider_keys[flag]] = value
        elif flag in section_keys:
            section, key = section_keys[flag]
            out[section][key] = value
        else:
            raise ConfigError(f"Unknown config override: {flag}")
    return out


def get_data_dir(config: dict[str, Any]) -> Path:
    """Resolve the clip data directory (relative paths resolve against the cwd)."""
    return Path(config.get("data_dir") or "videos").expanduser()


def get_poll_settings(config: dict[str, Any]) -> dict[str, float]:
    """Poll timing as floats, validated."""
    poll = config.get("poll", {})
    settings = {
        "interval_seconds": float(poll.get("interval_seconds", 5.0)),
        "backoff": float(poll.get("backoff", 1.0)),
        "max_interval_seconds": float(poll.get("max_interval_seconds", 30.0)),
        "timeout_seconds": float(poll.get("timeout_seconds", 1800.0)),
    }
    if settings["interval_seconds"] < 0 or settings["timeout_seconds"] <= 0:
        raise ConfigError("poll.interval_seconds must be >= 0 and poll.timeout_seconds > 0")
    if settings["backoff"] < 1.0:
        raise ConfigError("poll.backoff must be >= 1.0")
    return settings
