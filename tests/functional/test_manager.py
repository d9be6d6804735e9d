#!/usr/bin/env python3
"""
Functional tests for the process entry point.

Tests verify:
- TLS material is loaded once, only when configured
- The manager binds, forwards and shuts down cleanly
- Startup failures map to exit codes
"""

import asyncio
import socket

import pytest

from rport import manager as manager_module
from rport.config.settings import ForwarderConfig
from rport.manager import PortForwarderManager, main
from rport.network.errors import TLSConfigError
from rport.network.tls import TLSDecorator
from tests.helpers import IO_TIMEOUT, close_writer, read_exactly, wait_until


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    """Keep pytest's log capture handlers in place."""
    monkeypatch.setattr(manager_module, "init_logging", lambda level=None: None)


class TestBuildTLS:
    def test_no_tls_without_material(self):
        manager = PortForwarderManager(ForwarderConfig(target="example.com:80"))

        assert manager.build_tls() is None

    def test_tls_decorator_from_files(self, tls_files):
        cert_path, key_path = tls_files
        manager = PortForwarderManager(
            ForwarderConfig(
                target="example.com:80",
                tls_cert=str(cert_path),
                tls_key=str(key_path),
                tls_handshake_timeout=7.5,
            )
        )

        tls = manager.build_tls()

        assert isinstance(tls, TLSDecorator)
        assert tls.handshake_timeout == 7.5

    def test_bad_material_raises(self, tmp_path):
        manager = PortForwarderManager(
            ForwarderConfig(
                target="example.com:80",
                tls_cert=str(tmp_path / "missing.crt"),
                tls_key=str(tmp_path / "missing.key"),
            )
        )

        with pytest.raises(TLSConfigError):
            manager.build_tls()


class TestManagerRun:
    @pytest.mark.asyncio
    async def test_run_forwards_until_stopped(self, target_server, caplog):
        manager = PortForwarderManager(
            ForwarderConfig(
                target=target_server.address,
                listen_host="127.0.0.1",
                listen_port=0,
                buffer_size=1024,
            )
        )

        with caplog.at_level("INFO", logger="rport"):
            run = asyncio.create_task(manager.run())
            await wait_until(lambda: manager.listener is not None and manager.listener.port)

            reader, writer = await asyncio.open_connection("127.0.0.1", manager.listener.port)
            target_reader, target_writer = await target_server.next_connection()

            writer.write(b"hello")
            await writer.drain()
            assert await read_exactly(target_reader, 5) == b"hello"

            target_writer.write(b"world")
            await target_writer.drain()
            assert await read_exactly(reader, 5) == b"world"

            await close_writer(writer)
            await manager.stop()
            await asyncio.wait_for(run, IO_TIMEOUT)

        assert "Starting non-TLS forwarding" in caplog.text
        assert "Shutting down" in caplog.text
        assert manager.listener.forwarder.buffer_size == 1024


class TestMain:
    def test_bind_error_exit_code(self, caplog):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            port = busy.getsockname()[1]

            code = main(["--listen", f"127.0.0.1:{port}", "--target", "example.com:80"])

        assert code == 1
        assert "Failed to bind" in caplog.text

    def test_tls_config_error_exit_code(self, tmp_path, caplog):
        code = main(
            [
                "--listen", "127.0.0.1:0",
                "--target", "example.com:80",
                "--tls-cert", str(tmp_path / "missing.crt"),
                "--tls-key", str(tmp_path / "missing.key"),
            ]
        )

        assert code == 1
        assert "Failed to load TLS config" in caplog.text

    def test_argument_error_exits_with_usage(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--listen", "nowhere"])

        assert exc_info.value.code == 2
