"""
Error taxonomy for the forwarding engine.

Startup fatal:
- BindError, TLSConfigError

Service fatal:
- AcceptError

Per connection (logged at the connection boundary, never propagated):
- HandshakeError, ConnectError, CopyError
"""


class ForwarderError(Exception):
    """Base class for all forwarder errors."""


class BindError(ForwarderError):
    def __init__(self, address: str, reason: str):
        super().__init__(f"Failed to bind to {address}: {reason}")
        self.address = address


class AcceptError(ForwarderError):
    pass


class TLSConfigError(ForwarderError):
    pass


class HandshakeError(ForwarderError):
    def __init__(self, peer, reason: str):
        super().__init__(f"TLS handshake failed for {peer}: {reason}")
        self.peer = peer


class ConnectError(ForwarderError):
    def __init__(self, target: str, reason: str):
        super().__init__(f"Failed to connect to target {target}: {reason}")
        self.target = target


class CopyError(ForwarderError):
    """I/O failure in one direction while forwarding."""

    def __init__(self, direction: str, reason: str):
        super().__init__(f"{direction} copy failed: {reason}")
        self.direction = direction


class ConfigError(ForwarderError):
    pass
