"""Public configuration API."""

from .loader import ConfigFiles, load_config_bundle
from .models import ConfigBundle

__all__ = ["ConfigFiles", "ConfigBundle", "load_config_bundle"]
