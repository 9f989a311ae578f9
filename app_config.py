# app_config.py (v1.3)
import json
import logging
import os

CONFIG_FILE = "config.json"

REQUIRED_SECRETS = ("SUPABASE_URL", "SUPABASE_ANON_KEY")
OPTIONAL_SECRETS = (
    "R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET_NAME", "R2_PUBLIC_URL",
    "CLOUDFLARE_ACCOUNT_ID", "CLOUDFLARE_DATABASE_ID", "CLOUDFLARE_D1_TOKEN",
)

DEFAULT_SETTINGS = {
    "log_level": "INFO",
    "scanner": {
        "cooldown_seconds": 1.0,
        "rearm_delay_seconds": 1.0,
        "feedback_display_seconds": 1.0,
        "not_found_handoff_seconds": 0.8,
    },
    "images": {
        "allowed_types": ["image/jpeg", "image/png", "image/webp"],
        "max_file_size": 5 * 1024 * 1024,
        "output_size": 800,
        "webp_quality": 80,
    },
}


class ConfigError(Exception):
    """Raised when required secrets are missing."""


def read_secrets(secrets, environ=None):
    """
    Collects service credentials from a Streamlit secrets mapping, falling
    back to environment variables for anything the mapping lacks.
    Raises ConfigError listing every missing required key at once.
    """
    environ = os.environ if environ is None else environ
    resolved = {}
    for key in REQUIRED_SECRETS + OPTIONAL_SECRETS:
        value = None
        try:
            value = secrets[key]
        except (KeyError, FileNotFoundError):
            value = environ.get(key)
        resolved[key] = value.strip() if isinstance(value, str) else value

    missing = [key for key in REQUIRED_SECRETS if not resolved.get(key)]
    if missing:
        raise ConfigError(f"Missing required secrets: {', '.join(missing)}")
    return resolved


def _merge(defaults, overrides):
    merged = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path=CONFIG_FILE):
    """Loads tunables from config.json on top of DEFAULT_SETTINGS."""
    if not os.path.exists(path):
        logging.info(f"{path} not found, using default settings.")
        return _merge(DEFAULT_SETTINGS, {})
    with open(path, 'r') as f:
        overrides = json.load(f)
    return _merge(DEFAULT_SETTINGS, overrides)


def configure_logging(settings):
    level_name = str(settings.get("log_level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(module)s: %(message)s",
    )
