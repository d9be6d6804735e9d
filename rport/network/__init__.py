"""Connection forwarding engine: listener, TLS decorator and forwarder."""

from .errors import (
    AcceptError,
    BindError,
    ConfigError,
    ConnectError,
    CopyError,
    ForwarderError,
    HandshakeError,
    TLSConfigError,
)
from .forwarder import Connection, ConnectionState, Forwarder, TargetAddress
from .listener import Listener
from .streams import DuplexStream, PlainStream, TLSStream
from .tls import TLSDecorator, load_tls_config

__all__ = [
    "AcceptError",
    "BindError",
    "Connection",
    "ConnectionState",
    "ConfigError",
    "ConnectError",
    "CopyError",
    "DuplexStream",
    "Forwarder",
    "ForwarderError",
    "HandshakeError",
    "Listener",
    "PlainStream",
    "TargetAddress",
    "TLSConfigError",
    "TLSDecorator",
    "TLSStream",
    "load_tls_config",
]
