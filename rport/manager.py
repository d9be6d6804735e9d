#!/usr/bin/env python3
"""
Async port forwarder manager.

Wires configuration, logging, TLS material and the listener together.
"""

import asyncio
import logging
import signal

from rport.config.settings import ForwarderConfig, parse_args
from rport.logging_setup import init_logging
from rport.network.errors import AcceptError, BindError, TLSConfigError
from rport.network.forwarder import Forwarder
from rport.network.listener import Listener
from rport.network.tls import TLSDecorator, load_tls_config

logger = logging.getLogger(__name__)


class PortForwarderManager:
    """Owns the listener for the lifetime of the process."""

    def __init__(self, config: ForwarderConfig):
        self.config = config
        self.listener: Listener | None = None
        self._stopped = asyncio.Event()

    def build_tls(self) -> TLSDecorator | None:
        """Load TLS material once. None when TLS is not configured."""
        if not self.config.tls_enabled:
            return None
        context = load_tls_config(self.config.tls_cert, self.config.tls_key)
        return TLSDecorator(context, handshake_timeout=self.config.tls_handshake_timeout)

    async def start(self) -> Listener:
        """Build the TLS context and bind. Raises TLSConfigError or BindError."""
        tls = self.build_tls()
        if tls:
            logger.info("Starting TLS forwarding")
        else:
            logger.info("Starting non-TLS forwarding")

        self.listener = Listener(
            listen_host=self.config.listen_host,
            listen_port=self.config.listen_port,
            target=self.config.target,
            tls=tls,
            forwarder=Forwarder(buffer_size=self.config.buffer_size),
        )
        await self.listener.start()
        return self.listener

    async def stop(self) -> None:
        self._stopped.set()
        if self.listener:
            await self.listener.stop()

    async def run(self) -> None:
        """Serve until stop() is called or SIGINT/SIGTERM arrives."""
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stopped.set)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform / outside the main thread.
                pass

        serve = asyncio.create_task(self.listener.serve_forever())
        stopped = asyncio.create_task(self._stopped.wait())
        try:
            done, _ = await asyncio.wait(
                {serve, stopped},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if serve in done and not serve.cancelled():
                # Raises AcceptError if accepting failed.
                serve.result()
        finally:
            stopped.cancel()
            logger.info("Shutting down")
            await self.listener.stop()
            serve.cancel()
            await asyncio.gather(serve, return_exceptions=True)
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass


def main(argv: list[str] | None = None) -> int:
    config = parse_args(argv)
    init_logging(config.log_level)

    try:
        asyncio.run(PortForwarderManager(config).run())
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, shutting down")
    except TLSConfigError as e:
        logger.error("Failed to load TLS config: %s", e)
        return 1
    except BindError as e:
        logger.error("%s", e)
        return 1
    except AcceptError as e:
        logger.error("Tunnel error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
