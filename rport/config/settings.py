"""
Command-line configuration.

Values given on the command line override the optional YAML file
(--config). The target address is only checked when a connection dials it.
"""

import argparse
import ipaddress
from dataclasses import dataclass
from typing import Any

from rport.config.config_loader import ConfigLoader
from rport.network.errors import ConfigError
from rport.network.forwarder import DEFAULT_BUFFER_SIZE
from rport.network.tls import DEFAULT_HANDSHAKE_TIMEOUT

DEFAULT_LISTEN = "0.0.0.0:9309"
LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class ForwarderConfig:
    target: str
    listen_host: str = "0.0.0.0"
    listen_port: int = 9309
    tls_cert: str | None = None
    tls_key: str | None = None
    log_level: str | None = None
    buffer_size: int = DEFAULT_BUFFER_SIZE
    tls_handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)

    @property
    def listen(self) -> str:
        if ":" in self.listen_host:
            return f"[{self.listen_host}]:{self.listen_port}"
        return f"{self.listen_host}:{self.listen_port}"


def parse_listen_address(value: str) -> tuple[str, int]:
    """
    Parse a socket address: "1.2.3.4:port" or "[::1]:port".

    The host must be an IP literal.
    """
    host, sep, port = str(value).rpartition(":")
    if not sep or not host:
        raise ValueError(f"invalid socket address {value!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        if ipaddress.ip_address(host).version != 6:
            raise ValueError(f"invalid socket address {value!r}")
    else:
        if ipaddress.ip_address(host).version != 4:
            raise ValueError(f"IPv6 addresses must be enclosed in brackets: {value!r}")

    if not port.isdigit() or int(port) > 65535:
        raise ValueError(f"invalid port in socket address {value!r}")

    return host, int(port)


def _listen_arg(value: str) -> str:
    try:
        parse_listen_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    return value


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number {value!r}") from None
    if not number > 0:
        raise argparse.ArgumentTypeError("must be a positive number")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rport",
        description="TCP port forwarder with optional TLS termination",
    )
    parser.add_argument(
        "--listen",
        type=_listen_arg,
        help=f"local address to listen on (default: {DEFAULT_LISTEN})",
    )
    parser.add_argument("--target", help="remote address to forward to, e.g. example.com:80")
    parser.add_argument("--tls-cert", help="path to a PEM TLS certificate (requires --tls-key)")
    parser.add_argument("--tls-key", help="path to a PEM private key (requires --tls-cert)")
    parser.add_argument(
        "--tls-handshake-timeout",
        type=_positive_float,
        metavar="SECONDS",
        help=f"TLS handshake timeout (default: {DEFAULT_HANDSHAKE_TIMEOUT:g})",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="log level (default: $RPORT_LOG or info)",
    )
    parser.add_argument(
        "--buffer-size",
        type=_positive_int,
        help=f"read chunk size in bytes (default: {DEFAULT_BUFFER_SIZE})",
    )
    return parser


def _merge(file_values: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    merged = dict(file_values)
    for key in (
        "listen",
        "target",
        "tls_cert",
        "tls_key",
        "tls_handshake_timeout",
        "log_level",
        "buffer_size",
    ):
        value = getattr(args, key)
        if value is not None:
            merged[key] = value
    return merged


def config_from_mapping(values: dict[str, Any]) -> ForwarderConfig:
    """Validate merged values into a ForwarderConfig. Raises ConfigError."""
    target = values.get("target")
    if not target:
        raise ConfigError("a target address is required (--target)")

    try:
        listen_host, listen_port = parse_listen_address(values.get("listen") or DEFAULT_LISTEN)
    except ValueError as e:
        raise ConfigError(f"invalid listen address: {e}") from e

    tls_cert = values.get("tls_cert")
    tls_key = values.get("tls_key")
    if bool(tls_cert) != bool(tls_key):
        raise ConfigError("--tls-cert and --tls-key must be given together")

    log_level = values.get("log_level")
    if log_level is not None and str(log_level).lower() not in LOG_LEVELS:
        raise ConfigError(f"invalid log level {log_level!r}")

    buffer_size = values.get("buffer_size", DEFAULT_BUFFER_SIZE)
    if not isinstance(buffer_size, int) or isinstance(buffer_size, bool) or buffer_size <= 0:
        raise ConfigError(f"buffer_size must be a positive integer, got {buffer_size!r}")

    handshake_timeout = values.get("tls_handshake_timeout", DEFAULT_HANDSHAKE_TIMEOUT)
    if (
        not isinstance(handshake_timeout, (int, float))
        or isinstance(handshake_timeout, bool)
        or not handshake_timeout > 0
    ):
        raise ConfigError(
            f"tls_handshake_timeout must be a positive number, got {handshake_timeout!r}"
        )

    return ForwarderConfig(
        target=str(target),
        listen_host=listen_host,
        listen_port=listen_port,
        tls_cert=str(tls_cert) if tls_cert else None,
        tls_key=str(tls_key) if tls_key else None,
        log_level=str(log_level).lower() if log_level else None,
        buffer_size=buffer_size,
        tls_handshake_timeout=float(handshake_timeout),
    )


def parse_args(argv: list[str] | None = None) -> ForwarderConfig:
    """
    Parse the command line (and --config file) into a ForwarderConfig.

    Invalid input exits through argparse with status 2.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        file_values = ConfigLoader(args.config).load_forwarder() if args.config else {}
        return config_from_mapping(_merge(file_values, args))
    except ConfigError as e:
        parser.error(str(e))
