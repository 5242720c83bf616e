"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator

from kvwire.network.tcp_server import KVServer
from kvwire.protocol.binary import BinaryProtocolParser
from kvwire.protocol.parser import ProtocolParser
from kvwire.storage.store import KVStore

# Must match the credentials in tests/test_auth.py
LOGIN = "admin"
PASSWORD = "s3cret"


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# ============================================================================
# KVStore Fixtures
# ============================================================================

@pytest.fixture
def store() -> KVStore:
    """Create a fresh KVStore instance."""
    return KVStore()


# ============================================================================
# Protocol Fixtures
# ============================================================================

@pytest.fixture
def parser() -> ProtocolParser:
    """Create a text ProtocolParser instance."""
    return ProtocolParser()


@pytest.fixture
def binary_parser() -> BinaryProtocolParser:
    """Create a BinaryProtocolParser instance."""
    return BinaryProtocolParser()


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


async def _running_server(**kwargs) -> KVServer:
    srv = KVServer(host='127.0.0.1', **kwargs)
    await srv.start()
    return srv


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[KVServer, None]:
    """
    Create and start a text-protocol server for testing.

    This fixture:
    1. Creates a KVServer on a random free port
    2. Starts it (start() returns once it accepts connections)
    3. Yields the server for testing
    4. Stops it after the test
    """
    srv = await _running_server(port=server_port, protocol="text")
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def binary_server(server_port: int) -> AsyncGenerator[KVServer, None]:
    """Create and start a binary-protocol server for testing."""
    srv = await _running_server(port=server_port, protocol="binary")
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def auth_server(server_port: int) -> AsyncGenerator[KVServer, None]:
    """Create and start a text-protocol server that requires a login."""
    srv = await _running_server(
        port=server_port,
        protocol="text",
        login=LOGIN,
        password=PASSWORD,
        auth_timeout=0.5,
    )
    yield srv
    await srv.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

class AsyncClient:
    """
    Helper class for testing server interactions over the text protocol.

    Usage:
        async with AsyncClient('127.0.0.1', port) as client:
            response = await client.send_command("SET key value")
            assert response == "SET OK: key = value"
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.reader = None
        self.writer = None

    async def connect(self) -> None:
        """Establish connection to server."""
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port
        )

    async def disconnect(self) -> None:
        """Close connection to server."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError:
                pass

    async def send_command(self, command: str) -> str:
        """
        Send a command and receive the response.

        Args:
            command: Command string (newline will be added if missing)

        Returns:
            Response string (stripped of trailing newline)
        """
        if not command.endswith('\n'):
            command += '\n'

        self.writer.write(command.encode())
        await self.writer.drain()

        response = await asyncio.wait_for(self.reader.readline(), timeout=5)
        return response.decode().strip()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


@pytest.fixture
def client_factory(server_port: int):
    """
    Factory fixture to create test clients.

    Usage:
        async def test_something(server, client_factory):
            async with client_factory() as client:
                response = await client.send_command("GET key")
    """
    def factory() -> AsyncClient:
        return AsyncClient('127.0.0.1', server_port)
    return factory


async def read_until_closed(reader: asyncio.StreamReader, timeout: float = 2.0) -> bytes:
    """Read until the server closes the socket; a reset counts as closed."""
    try:
        return await asyncio.wait_for(reader.read(), timeout=timeout)
    except ConnectionResetError:
        return b""


@pytest.fixture
def wait_closed():
    """Expose read_until_closed to tests."""
    return read_until_closed


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
