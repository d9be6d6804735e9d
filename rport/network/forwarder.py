"""
Bidirectional copy engine.

Given a client stream and a target address:
- dial the target
- copy client -> target and target -> client concurrently
- half-close each destination when its source reaches end-of-stream
- report the first I/O error, if any
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from rport.network.errors import ConnectError, CopyError
from rport.network.streams import DuplexStream, PlainStream

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 64 * 1024

CLIENT_TO_TARGET = "client to target"
TARGET_TO_CLIENT = "target to client"


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


# ----------------------------------------------------------------
# Connection lifecycle
# ----------------------------------------------------------------
class ConnectionState(Enum):
    DIALING = "dialing"
    FORWARDING = "forwarding"
    HALF_CLOSED = "half_closed"
    COMPLETED = "completed"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]


_STATE_RANK = {
    ConnectionState.DIALING: 0,
    ConnectionState.FORWARDING: 1,
    ConnectionState.HALF_CLOSED: 2,
    ConnectionState.COMPLETED: 3,
    ConnectionState.FAILED: 3,
    ConnectionState.CLOSED: 4,
}


@dataclass(frozen=True)
class TargetAddress:
    host: str
    port: int

    @classmethod
    def parse(cls, target: str) -> "TargetAddress":
        """Parse "host:port", "1.2.3.4:port" or "[::1]:port"."""
        host, sep, port = target.rpartition(":")
        if not sep or not host:
            raise ValueError("expected HOST:PORT")

        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        elif ":" in host:
            raise ValueError("IPv6 addresses must be enclosed in brackets")

        if not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"invalid port {port!r}")

        return cls(host=host, port=int(port))

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass
class Connection:
    """Per-client unit of work, owned by a single handler task."""

    client: DuplexStream
    target: str
    peer: object = None
    state: ConnectionState = ConnectionState.DIALING
    error: OSError | None = None
    error_direction: str | None = None
    bytes_up: int = 0
    bytes_down: int = 0
    upstream: DuplexStream | None = field(default=None, repr=False)

    def advance(self, state: ConnectionState) -> None:
        # States only move forward.
        if state.rank > self.state.rank:
            self.state = state

    def record_error(self, direction: str, exc: OSError) -> bool:
        """Keep the first error only. Returns True if this one was kept."""
        if self.error is not None:
            return False
        self.error = exc
        self.error_direction = direction
        self.advance(ConnectionState.FAILED)
        return True


# ----------------------------------------------------------------
# Forwarder
# ----------------------------------------------------------------
class Forwarder:
    def __init__(self, *, buffer_size: int = DEFAULT_BUFFER_SIZE):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size

    # ------------------------------------------------------------------

    async def forward(
        self,
        client: DuplexStream,
        target: str,
        *,
        peer=None,
    ) -> Connection:
        """
        Relay bytes between client and target until both directions finish.

        Raises ConnectError if the target cannot be dialed and CopyError if
        either direction failed. Both streams are closed on return.
        """
        conn = Connection(client=client, target=target, peer=peer or client.peername)

        try:
            conn.upstream = await self._dial(conn)
            conn.advance(ConnectionState.FORWARDING)

            logger.debug("Starting bidirectional copy for %s", conn.peer)
            await asyncio.gather(
                self._pipe(conn, CLIENT_TO_TARGET, client, conn.upstream),
                self._pipe(conn, TARGET_TO_CLIENT, conn.upstream, client),
            )
            if conn.error is None:
                conn.advance(ConnectionState.COMPLETED)
        finally:
            await self._release(conn)

        if conn.error is not None:
            raise CopyError(conn.error_direction, _describe(conn.error)) from conn.error

        logger.debug(
            "Connection handling complete for %s (%d bytes up, %d bytes down)",
            conn.peer,
            conn.bytes_up,
            conn.bytes_down,
        )
        return conn

    # ------------------------------------------------------------------

    async def _dial(self, conn: Connection) -> PlainStream:
        logger.debug("Attempting to connect to target %s", conn.target)
        try:
            address = TargetAddress.parse(conn.target)
        except ValueError as e:
            conn.advance(ConnectionState.FAILED)
            raise ConnectError(conn.target, _describe(e)) from e

        try:
            reader, writer = await asyncio.open_connection(address.host, address.port)
        except OSError as e:
            conn.advance(ConnectionState.FAILED)
            raise ConnectError(conn.target, _describe(e)) from e

        logger.info("Connected to target %s", conn.target)
        return PlainStream(reader, writer)

    async def _pipe(
        self,
        conn: Connection,
        direction: str,
        src: DuplexStream,
        dst: DuplexStream,
    ) -> None:
        logger.debug("Copying %s", direction)
        copied = 0
        try:
            while data := await src.read(self.buffer_size):
                await dst.write(data)
                copied += len(data)
                if direction == CLIENT_TO_TARGET:
                    conn.bytes_up += len(data)
                else:
                    conn.bytes_down += len(data)

            await dst.shutdown_write()
            conn.advance(ConnectionState.HALF_CLOSED)
        except OSError as e:
            logger.debug("%s copy failed after %d bytes: %s", direction.capitalize(), copied, e)
            conn.record_error(direction, e)
            # Unblocks the opposite direction, which reads from dst.
            dst.abort()
            return

        logger.debug("%s copy done: %d bytes", direction.capitalize(), copied)

    async def _release(self, conn: Connection) -> None:
        if conn.upstream is not None:
            await conn.upstream.close()
        await conn.client.close()

        conn.advance(ConnectionState.CLOSED)
