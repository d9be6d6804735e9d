"""
Duplex byte streams.

A duplex stream wraps an asyncio reader/writer pair and exposes:
- read / write
- half-close of the write direction
- idempotent release

Two variants share the interface: plain TCP and TLS-wrapped.
"""

import asyncio
import logging
import ssl

logger = logging.getLogger(__name__)

TLS_READ_SIZE = 64 * 1024


class DuplexStream:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ):
        self.reader = reader
        self.writer = writer
        self.write_closed = False
        self.closed = False

    @property
    def peername(self):
        return self.writer.get_extra_info("peername")

    # ------------------------------------------------------------------

    async def read(self, n: int) -> bytes:
        """Read up to n bytes. Returns b"" at end-of-stream."""
        return await self.reader.read(n)

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def shutdown_write(self) -> None:
        """Signal "no more data" to the peer while reading stays open."""
        raise NotImplementedError

    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Drop the underlying transport without waiting for buffered data."""
        self.write_closed = True
        self.closed = True
        self.writer.transport.abort()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.write_closed = True

        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            # The outcome of the connection is already decided at this point.
            logger.debug("Error while closing stream to %s: %s", self.peername, e)


class PlainStream(DuplexStream):
    """Raw TCP stream; half-close sends a FIN."""

    async def shutdown_write(self) -> None:
        if self.write_closed:
            return
        self.write_closed = True

        if self.writer.can_write_eof():
            self.writer.write_eof()


class TLSStream(DuplexStream):
    """
    TLS session run over a plain TCP stream through memory BIOs.

    The session is driven here rather than by an asyncio TLS transport so the
    write side can be half-closed: shutdown_write() sends close_notify and
    then a TCP FIN, while reads keep decrypting until the peer finishes.
    """

    def __init__(self, raw: PlainStream, context: ssl.SSLContext):
        super().__init__(raw.reader, raw.writer)
        self._incoming = ssl.MemoryBIO()
        self._outgoing = ssl.MemoryBIO()
        self._ssl = context.wrap_bio(self._incoming, self._outgoing, server_side=True)
        self._plaintext = bytearray()
        self._read_eof = False
        self._eof_written = False

    @property
    def cipher(self):
        return self._ssl.cipher()

    # ------------------------------------------------------------------

    async def handshake(self) -> None:
        """Run the server side of the handshake. Raises OSError on failure."""
        while True:
            try:
                self._ssl.do_handshake()
            except ssl.SSLWantReadError:
                await self._flush()
                if not await self._receive():
                    raise ConnectionResetError("Connection closed during TLS handshake")
            else:
                await self._flush()
                # Records that arrived with the client's last flight
                self._decrypt()
                return

    async def read(self, n: int) -> bytes:
        while not self._plaintext and not self._read_eof:
            self._decrypt()
            await self._flush()
            if self._plaintext or self._read_eof:
                break
            if not await self._receive():
                # TCP EOF without close_notify, treated like a clean end
                self._read_eof = True

        data = bytes(self._plaintext[:n])
        del self._plaintext[:n]
        return data

    async def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            count = self._ssl.write(view)
            view = view[count:]
        await self._flush()

    async def shutdown_write(self) -> None:
        if self.write_closed:
            return
        self.write_closed = True

        self._send_close_notify()
        await self._flush()
        if self.writer.can_write_eof():
            self._eof_written = True
            self.writer.write_eof()

    async def close(self) -> None:
        if not self.closed and not self.write_closed and not self.writer.is_closing():
            try:
                self._send_close_notify()
                self.writer.write(self._outgoing.read())
            except OSError as e:
                logger.debug("Could not send close_notify to %s: %s", self.peername, e)
        await super().close()

    # ------------------------------------------------------------------

    def _decrypt(self) -> None:
        # Complete records never stay in the incoming BIO, so unwrap() cannot
        # consume application data while it looks for the peer's close_notify.
        try:
            while chunk := self._ssl.read(TLS_READ_SIZE):
                self._plaintext += chunk
            self._read_eof = True
        except ssl.SSLWantReadError:
            pass
        except ssl.SSLZeroReturnError:
            self._read_eof = True

    def _send_close_notify(self) -> None:
        try:
            self._ssl.unwrap()
        except ssl.SSLWantReadError:
            # Sent; the peer's close_notify arrives through read()
            pass

    async def _receive(self) -> bool:
        data = await self.reader.read(TLS_READ_SIZE)
        if not data:
            return False
        self._incoming.write(data)
        return True

    async def _flush(self) -> None:
        if not self._outgoing.pending:
            return
        data = self._outgoing.read()
        if self._eof_written:
            return
        self.writer.write(data)
        await self.writer.drain()
