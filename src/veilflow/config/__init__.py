"""Configuration exports."""

from veilflow.config.loader import DEFAULT_CONFIG_PATH, load_app_config
from veilflow.config.models import AppConfig

__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "load_app_config",
]
