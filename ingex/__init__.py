"""Ingex: resumable snapshot ingestion into Elasticsearch."""

from ingex.config import AppConfig, load_config
from ingex.constants import APP_NAME

__all__ = [
    "APP_NAME",
    "AppConfig",
    "__version__",
    "load_config",
]
__version__ = "0.1.0"
