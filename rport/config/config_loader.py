"""
YAML configuration file loader.

Expected layout:

    forwarder:
      listen: 0.0.0.0:9309
      target: example.com:80
      tls_cert: certs/cert.pem
      tls_key: certs/key.pem
      tls_handshake_timeout: 60
      log_level: info
      buffer_size: 65536
"""

from pathlib import Path
from typing import Any

import yaml

from rport.network.errors import ConfigError

KNOWN_KEYS = {
    "listen",
    "target",
    "tls_cert",
    "tls_key",
    "tls_handshake_timeout",
    "log_level",
    "buffer_size",
}


class ConfigLoader:
    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)

    def load_all(self) -> dict[str, Any]:
        """Load the whole file as a mapping."""
        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping")
        return data

    def load_forwarder(self) -> dict[str, Any]:
        """Return the `forwarder` section, rejecting unknown keys."""
        section = self.load_all().get("forwarder") or {}
        if not isinstance(section, dict):
            raise ConfigError(f"'forwarder' in {self.config_path} must be a mapping")

        unknown = set(section) - KNOWN_KEYS
        if unknown:
            raise ConfigError(
                f"Unknown forwarder option(s) in {self.config_path}: "
                f"{', '.join(sorted(unknown))}"
            )
        return section
