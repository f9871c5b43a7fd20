"""Configuration management."""
import os
import yaml
from pathlib import Path

_config = None
_CONFIG_DIR = Path(__file__).parent
_DEFAULT_CONFIG = _CONFIG_DIR / "default_config.yaml"
DEFAULT_RULES_PATH = _CONFIG_DIR / "automation_rules.yaml"

REQUIRED_SECTIONS = ["monitor", "alerts", "metrics", "channels", "automation", "database", "logging"]


class ConfigError(ValueError):
    """Raised when the merged configuration is invalid."""


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    env_map = {
        "OPSWATCH_DB_PATH": ("database", "path"),
        "OPSWATCH_TICK_INTERVAL": ("monitor", "tick_interval"),
        "OPSWATCH_DECISION_INTERVAL": ("monitor", "decision_interval"),
        "OPSWATCH_LOG_LEVEL": ("logging", "level"),
        "OPSWATCH_FEED_URL": ("monitor", "feed", "base_url"),
    }
    for env_key, config_path in env_map.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = int(val)
            except ValueError:
                d[config_path[-1]] = val

    _apply_channel_env(config)
    _validate_config(config)
    _config = config
    return config


def get_config():
    """Return cached config, loading defaults if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_channel_env(config):
    """Slack webhook and SMTP host come from the environment when present."""
    webhook = os.environ.get("OPSWATCH_SLACK_WEBHOOK_URL")
    smtp_host = os.environ.get("OPSWATCH_SMTP_HOST")
    for channel in config.get("channels", []):
        cfg = channel.setdefault("configuration", {})
        if channel.get("transport") == "slack" and webhook:
            cfg["webhook_url"] = webhook
            channel["enabled"] = True
        if channel.get("transport") == "email" and smtp_host:
            cfg["smtp_host"] = smtp_host
        if channel.get("enabled_if_configured"):
            key = "webhook_url" if channel.get("transport") in ("slack", "webhook") else "smtp_host"
            channel["enabled"] = bool(cfg.get(key))


def _validate_config(config):
    """Basic config validation."""
    for section in REQUIRED_SECTIONS:
        if section not in config:
            raise ConfigError(f"Missing required config section: {section}")

    monitor = config["monitor"]
    if monitor["tick_interval"] <= 0:
        raise ConfigError("monitor.tick_interval must be > 0 seconds")
    if monitor["decision_interval"] < monitor["tick_interval"]:
        raise ConfigError("monitor.decision_interval must be >= monitor.tick_interval")

    alerts = config["alerts"]
    if alerts["dedup_window_seconds"] < 0:
        raise ConfigError("alerts.dedup_window_seconds must be >= 0")
    if not 0 <= alerts["auto_resolve_confidence"] <= 1:
        raise ConfigError("alerts.auto_resolve_confidence must be within [0, 1]")

    seen = set()
    for metric in config["metrics"]:
        if "id" not in metric:
            raise ConfigError("Every metric needs an id")
        if metric["id"] in seen:
            raise ConfigError(f"Duplicate metric id: {metric['id']}")
        seen.add(metric["id"])
