"""
Async Client Module

A small asyncio client for kvwire servers, for either wire variant.

Usage:
    async with KVClient('127.0.0.1', 8000) as client:
        await client.set("greeting", "hello")
        value = await client.get("greeting")

    async with KVClient('127.0.0.1', 8000, protocol="binary",
                        login="admin", password="secret") as client:
        await client.delete("greeting")
"""

import asyncio
import logging
from typing import Optional

from .errors import AuthError, ServerError, TransportError
from .protocol import Command, Response, get_parser
from .protocol.binary import RESPONSE_HEADER

logger = logging.getLogger(__name__)


class KVClient:
    """
    One connection to a kvwire server.

    Requests are sent one at a time; each call waits for its response.

    Attributes:
        host: Server host
        port: Server port
        parser: Parser for the server's wire variant
        timeout: Seconds to wait for connect and for each response
    """

    def __init__(
            self,
            host: str,
            port: int,
            protocol: str = "text",
            login: Optional[str] = None,
            password: Optional[str] = None,
            timeout: float = 5.0,
    ):
        if (login is None) != (password is None):
            raise ValueError("login and password must be given together")
        self.host = host
        self.port = port
        self.parser = get_parser(protocol)
        self.login = login
        self.password = password
        self.timeout = timeout
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """
        Open the connection and run the login handshake if configured.

        Raises:
            TransportError: If the server cannot be reached
            AuthError: If the server rejects the credentials
        """
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"failed to connect to {self.host}:{self.port}: {exc!r}") from exc

        if self.login is not None:
            try:
                await self._authenticate()
            except (AuthError, OSError):
                await self.close()
                raise

    async def _authenticate(self) -> None:
        self.writer.write(f"{self.login}:{self.password}\n".encode("utf-8"))
        await self.writer.drain()
        try:
            line = await asyncio.wait_for(self.reader.readline(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AuthError("no answer to credentials") from exc

        answer = line.decode("utf-8").strip()
        if answer != "OK":
            raise AuthError(f"authentication rejected: {answer or 'connection closed'}")
        logger.debug(f"Authenticated to {self.host}:{self.port}")

    async def close(self) -> None:
        """Close the connection."""
        if self.writer is None:
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as exc:
            logger.debug(f"Error while closing connection: {exc!r}")
        finally:
            self.reader = self.writer = None

    async def execute(self, command: Command) -> Response:
        """
        Send one command and return the server's response.

        Raises:
            TransportError: If the connection is not open or breaks
            ParseError: If a binary response envelope is malformed
        """
        if self.writer is None:
            raise TransportError("client is not connected")

        async with self._lock:
            try:
                self.writer.write(self.parser.serialize(command))
                await self.writer.drain()
                data = await asyncio.wait_for(self._read_response(), timeout=self.timeout)
            except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError) as exc:
                raise TransportError(f"request to {self.host}:{self.port} failed: {exc!r}") from exc

        return self.parser.parse_response(data)

    async def _read_response(self) -> bytes:
        if self.parser.name == "binary":
            header = await self.reader.readexactly(RESPONSE_HEADER.size)
            _, _, length = RESPONSE_HEADER.unpack(header)
            return header + await self.reader.readexactly(length)

        line = await self.reader.readline()
        if not line.endswith(b"\n"):
            raise TransportError("connection closed by server")
        return line

    async def _call(self, command: Command) -> str:
        response = await self.execute(command)
        if response.is_error:
            raise ServerError(response.message)
        return response.message

    async def set(self, key: str, value: str) -> str:
        """Store a value; returns the server's acknowledgement."""
        return await self._call(Command.set(key, value))

    async def get(self, key: str) -> str:
        """
        Fetch a value.

        Raises:
            ServerError: If the key is not stored
        """
        message = await self._call(Command.get(key))
        return message[len("VALUE: "):] if message.startswith("VALUE: ") else message

    async def delete(self, key: str) -> str:
        """
        Delete a key and return the value it held.

        Raises:
            ServerError: If the key is not stored
        """
        message = await self._call(Command.delete(key))
        prefix = f"DEL OK: {key} = "
        return message[len(prefix):] if message.startswith(prefix) else message

    async def __aenter__(self) -> "KVClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
