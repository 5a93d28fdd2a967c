"""
Base library config module. Values here are read once at import time from
config.yaml and may be overridden with environment variables.
"""

# Local
from . import validation
from .config import library_config


# Delegate attribute access on this module to the library config
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


__all__ = list(library_config.keys())
