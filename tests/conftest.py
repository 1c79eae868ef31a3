"""Shared pytest fixtures for forwarder tests."""

import asyncio
import datetime
import ipaddress
import socket
from collections.abc import Awaitable, Callable

import pytest
import pytest_asyncio
import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from lt_forwarder.common.exceptions import TunnelClosedError
from lt_forwarder.relay import Connection

Handler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


async def open_pair(label: str) -> tuple[Connection, Connection]:
    """Create two connected in-memory connections.

    Returns:
        (inner, peer): inner is handed to the code under test, peer is
        driven by the test
    """
    left, right = socket.socketpair()
    inner_reader, inner_writer = await asyncio.open_connection(sock=left)
    peer_reader, peer_writer = await asyncio.open_connection(sock=right)
    return (
        Connection(inner_reader, inner_writer, label=label),
        Connection(peer_reader, peer_writer, label=f"{label} peer"),
    )


async def echo_handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    """Echo everything back until EOF."""
    try:
        while data := await reader.read(4096):
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass
    finally:
        writer.close()


class FakeTunnel:
    """In-memory TunnelHandle fed by the test."""

    def __init__(self, url: str = "fake://tunnel"):
        self.url = url
        self.close_calls = 0
        self._queue: asyncio.Queue[Connection | Exception] = asyncio.Queue()
        self._closed = asyncio.Event()

    def push(self, item: Connection | Exception) -> None:
        self._queue.put_nowait(item)

    def drop(self) -> None:
        """Simulate the remote relay dropping the tunnel."""
        self._closed.set()

    async def accept(self) -> Connection:
        if self._closed.is_set():
            raise TunnelClosedError("listener was closed")

        get = asyncio.create_task(self._queue.get())
        closed = asyncio.create_task(self._closed.wait())
        done, _ = await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
        closed.cancel()
        if get not in done:
            get.cancel()
            raise TunnelClosedError("listener was closed")

        item = get.result()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self._closed.set()


@pytest.fixture
def fake_tunnel():
    """Create an in-memory tunnel handle."""
    return FakeTunnel()


@pytest_asyncio.fixture
async def start_server():
    """Start TCP servers on localhost for the duration of a test.

    Returns:
        Callable taking a connection handler (and optional ssl context) and
        returning the bound port
    """
    servers: list[asyncio.Server] = []

    async def _start(handler: Handler, ssl=None) -> int:
        server = await asyncio.start_server(handler, "127.0.0.1", 0, ssl=ssl)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    yield _start

    for server in servers:
        server.close()
        if hasattr(server, "close_clients"):
            server.close_clients()
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=2.0)
        except asyncio.TimeoutError:
            pass


@pytest.fixture
def unused_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="session")
def tls_cert(tmp_path_factory) -> tuple[str, str]:
    """Generate a self-signed certificate for localhost.

    Returns:
        (cert_path, key_path) as strings
    """
    directory = tmp_path_factory.mktemp("tls")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key()),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset structlog configuration after each test.

    This prevents tests from interfering with each other's logging setup.
    """
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_pair():
    """Factory for connected (inner, peer) connection pairs."""
    return open_pair


@pytest.fixture
def echo():
    """Connection handler echoing everything back."""
    return echo_handler


@pytest.fixture
def tunnel_class():
    """The FakeTunnel class, for tests needing several tunnels."""
    return FakeTunnel
