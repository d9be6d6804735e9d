"""rport - asyncio TCP port forwarder with optional TLS termination."""

__version__ = "0.1.0"
