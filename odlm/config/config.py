"""
Load the library config once at import time, validate it, and apply the
initial log configuration. Values in config.yaml can be overridden with
environment variables of the same name in upper case (e.g. DRY_RUN=true).
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)
CONFIG_FILE = os.path.join(_CONFIG_DIR, "config.yaml")
VALIDATION_FILE = os.path.join(_CONFIG_DIR, "config_validation.yaml")


def load_config(config_file: str = CONFIG_FILE) -> aconfig.Config:
    """Load a config file with env overrides and validate it against the
    validation rules, which themselves are never overridden
    """
    loaded = aconfig.Config.from_yaml(config_file, override_env_vars=True)
    rules = aconfig.Config.from_yaml(VALIDATION_FILE, override_env_vars=False)
    invalid_params = get_invalid_params(loaded, rules)
    assert not invalid_params, f"Invalid library configuration: {invalid_params}"
    return loaded


library_config = load_config()

alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
