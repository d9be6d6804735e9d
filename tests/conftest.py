# tests/conftest.py
import socket
import ssl

import pytest
import pytest_asyncio

from tests.helpers import TargetServer, make_self_signed


@pytest.fixture
def tls_files(tmp_path):
    return make_self_signed(tmp_path)


@pytest.fixture
def client_ssl_context(tls_files):
    cert_path, _ = tls_files
    return ssl.create_default_context(cafile=str(cert_path))


@pytest_asyncio.fixture
async def target_server():
    server = TargetServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def unreachable_target():
    """An address nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"
