"""
Utilities: channel namespacing and environment configuration.
"""

from .namespace import ChannelNamespacer
from .config import BusConfig, load_config, configure_logging

__all__ = [
    "ChannelNamespacer",
    "BusConfig",
    "load_config",
    "configure_logging",
]
