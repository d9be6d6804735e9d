"""Shared test helpers: TLS material, a stand-in target server, read helpers."""

import asyncio
import datetime
import ipaddress
import socket

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from rport.network.streams import PlainStream

IO_TIMEOUT = 5.0


def make_self_signed(directory, *, key_format="pkcs8", name="server"):
    """Write a self-signed localhost certificate and key, return both paths."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    key_encoding = {
        "pkcs8": serialization.PrivateFormat.PKCS8,
        "traditional": serialization.PrivateFormat.TraditionalOpenSSL,
    }[key_format]

    cert_path = directory / f"{name}.crt"
    key_path = directory / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            key_encoding,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


class TargetServer:
    """Plain TCP server standing in for the forwarding target."""

    def __init__(self):
        self.server: asyncio.AbstractServer | None = None
        self.accepted: asyncio.Queue = asyncio.Queue()
        self._writers: list[asyncio.StreamWriter] = []

    @property
    def address(self) -> str:
        host, port = self.server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def _handle(self, reader, writer):
        self._writers.append(writer)
        await self.accepted.put((reader, writer))

    async def next_connection(self):
        return await asyncio.wait_for(self.accepted.get(), IO_TIMEOUT)

    async def stop(self):
        for writer in self._writers:
            writer.close()
        self.server.close()
        await asyncio.wait_for(self.server.wait_closed(), IO_TIMEOUT)


async def read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    return await asyncio.wait_for(reader.readexactly(n), IO_TIMEOUT)


async def read_to_eof(reader: asyncio.StreamReader) -> bytes:
    return await asyncio.wait_for(reader.read(), IO_TIMEOUT)


async def close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), IO_TIMEOUT)
    except (OSError, asyncio.TimeoutError):
        pass


async def stream_pair():
    """
    Connected (proxy_side, peer_reader, peer_writer) over a socketpair.

    proxy_side is a PlainStream as the forwarder would see it; the peer
    end plays the remote application.
    """
    left, right = socket.socketpair()
    reader, writer = await asyncio.open_connection(sock=left)
    peer_reader, peer_writer = await asyncio.open_connection(sock=right)
    return PlainStream(reader, writer), peer_reader, peer_writer


async def wait_until(predicate, timeout: float = IO_TIMEOUT, interval: float = 0.01):
    """Poll predicate until it returns true or the timeout expires."""

    async def _poll():
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout)
