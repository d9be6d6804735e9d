"""Process configuration: command line and optional YAML file."""

from .config_loader import ConfigError, ConfigLoader
from .settings import (
    ForwarderConfig,
    build_parser,
    config_from_mapping,
    parse_args,
    parse_listen_address,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "ForwarderConfig",
    "build_parser",
    "config_from_mapping",
    "parse_args",
    "parse_listen_address",
]
