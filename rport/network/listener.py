"""
Async TCP listener with no protocol awareness.

Owns:
- the bound server socket
- the accept loop
- one task per accepted connection

Per-connection failures stay inside that connection's task. A failing
accept loop ends serve_forever() with AcceptError.
"""

import asyncio
import errno
import logging
import socket

from rport.network.errors import (
    AcceptError,
    BindError,
    ForwarderError,
)
from rport.network.forwarder import Forwarder
from rport.network.streams import DuplexStream, PlainStream
from rport.network.tls import TLSDecorator

logger = logging.getLogger(__name__)

# Descriptor or buffer exhaustion clears up once connections finish
RESOURCE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})
ACCEPT_RETRY_DELAY = 1.0


class Listener:
    def __init__(
        self,
        *,
        listen_host: str,
        listen_port: int,
        target: str,
        tls: TLSDecorator | None = None,
        forwarder: Forwarder | None = None,
    ):
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.target = target
        self.tls = tls
        self.forwarder = forwarder or Forwarder()

        self.sock: socket.socket | None = None
        self._accept_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def sockname(self):
        if self.sock is None:
            return None
        return self.sock.getsockname()

    @property
    def port(self) -> int | None:
        sockname = self.sockname
        return sockname[1] if sockname else None

    @property
    def active_connections(self) -> int:
        return len(self._tasks)

    def is_serving(self) -> bool:
        return self._accept_task is not None and not self._accept_task.done()

    # ------------------------------------------------------------------

    async def start(self):
        family = socket.AF_INET6 if ":" in self.listen_host else socket.AF_INET
        try:
            self.sock = socket.create_server(
                (self.listen_host, self.listen_port),
                family=family,
                backlog=100,
            )
        except OSError as e:
            raise BindError(f"{self.listen_host}:{self.listen_port}", str(e)) from e
        self.sock.setblocking(False)

        logger.info(
            "Listening on %s, forwarding to %s%s",
            self.sockname,
            self.target,
            " (TLS)" if self.tls else "",
        )

    async def serve_forever(self):
        """
        Accept until stop() is called.

        Returns normally after stop(). Raises AcceptError when accepting
        fails with anything other than resource exhaustion.
        """
        if self.sock is None:
            await self.start()

        self._accept_task = asyncio.create_task(self._accept_loop())
        try:
            await asyncio.wait({self._accept_task})
        finally:
            self._accept_task.cancel()

        if not self._accept_task.cancelled():
            self._accept_task.result()

    async def run(self):
        await self.start()
        await self.serve_forever()

    async def stop(self):
        if self._accept_task is not None:
            self._accept_task.cancel()
            await asyncio.gather(self._accept_task, return_exceptions=True)

        if self.sock is not None:
            self.sock.close()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------

    async def _accept_loop(self):
        loop = asyncio.get_running_loop()
        while True:
            try:
                conn, _ = await loop.sock_accept(self.sock)
            except ConnectionAbortedError as e:
                logger.debug("Connection aborted before accept on %s: %s", self.sockname, e)
                continue
            except OSError as e:
                if e.errno in RESOURCE_ERRNOS:
                    logger.warning(
                        "Accept failed on %s, retrying in %.1fs: %s",
                        self.sockname,
                        ACCEPT_RETRY_DELAY,
                        e,
                    )
                    await asyncio.sleep(ACCEPT_RETRY_DELAY)
                    continue
                logger.error("Accept loop failed on %s: %s", self.sockname, e)
                raise AcceptError(f"Accept loop failed: {e}") from e

            task = asyncio.create_task(self._handle(conn))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _handle(self, conn: socket.socket):
        try:
            client_reader, client_writer = await asyncio.open_connection(sock=conn)
        except OSError as e:
            conn.close()
            logger.error("Could not set up accepted connection: %s", e)
            return

        client: DuplexStream = PlainStream(client_reader, client_writer)
        peer = client.peername
        try:
            if self.tls:
                logger.info("New TLS connection from %s", peer)
                client = await self.tls.wrap(client)
            else:
                logger.info("New connection from %s", peer)

            await self.forwarder.forward(client, self.target, peer=peer)
        except ForwarderError as e:
            logger.error("Connection error for %s: %s", peer, e)
        except asyncio.CancelledError:
            logger.debug("Connection from %s cancelled on shutdown", peer)
        finally:
            await client.close()
