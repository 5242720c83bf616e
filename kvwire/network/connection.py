"""
Client Connection Module

One Connection wraps the StreamReader/StreamWriter pair of an accepted
socket. Its receive loop cuts the byte stream into frames and hands each
one to the dispatcher queue; the dispatcher later writes responses back
through send().
"""

import asyncio
import hmac
import logging
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from typing import Optional, Union

from ..config.settings import settings
from ..errors import AuthError, ParseError, TransportError
from ..protocol.binary import LENGTH, TAG_SIZE, TAGS, has_value
from ..protocol.parser import ERROR_PREFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    """One raw request frame and the connection it arrived on."""
    connection: "Connection"
    payload: bytes


@dataclass(frozen=True)
class ConnectionClosed:
    """Queued when a connection stops reading; error is None on clean EOF."""
    connection: "Connection"
    error: Optional[Exception] = None


Event = Union[Message, ConnectionClosed]


class Connection:
    """
    Server-side handle for one connected client.

    Attributes:
        reader: StreamReader for the socket
        writer: StreamWriter for the socket
        peer: Remote address, used for logging
        protocol: "text" (newline framing) or "binary" (length prefixes)
        task: The task running this connection's receive loop
    """

    def __init__(
            self,
            reader: StreamReader,
            writer: StreamWriter,
            protocol: str = "text",
            max_frame_size: int = None,
            write_timeout: float = None,
    ):
        self.reader = reader
        self.writer = writer
        self.peer = writer.get_extra_info('peername')
        self.protocol = protocol
        self.max_frame_size = max_frame_size if max_frame_size is not None else settings.MAX_FRAME_SIZE
        self.write_timeout = write_timeout if write_timeout is not None else settings.WRITE_TIMEOUT
        self.task: Optional[asyncio.Task] = None
        self._closed = False

        if protocol == "binary":
            self._read_frame = self._read_binary_frame
        else:
            self._read_frame = self._read_text_frame

    def __repr__(self) -> str:
        return f"<Connection {self.peer} {self.protocol}>"

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    async def receive(self, queue: "asyncio.Queue[Event]") -> None:
        """
        Read frames until EOF and put each one on the queue.

        Returns normally on EOF, leaving the socket open so responses to
        frames already queued can still be written. An overlong text line
        or a malformed binary frame also leaves the socket open; the
        dispatcher closes it after answering the earlier frames. A socket
        read error aborts the connection at once.

        Raises:
            TransportError: On a socket read error or an overlong text line
            ParseError: On a malformed binary frame
        """
        while True:
            try:
                frame = await self._read_frame()
            except OSError as exc:
                self.abort()
                raise TransportError(f"failed to read from {self.peer}: {exc}") from exc

            if frame is None:
                return
            await queue.put(Message(self, frame))

    async def _read_text_frame(self) -> Optional[bytes]:
        try:
            line = await self.reader.readline()
        except ValueError as exc:
            # StreamReader reports a line over its limit as ValueError
            raise TransportError(f"line from {self.peer} is too long") from exc

        if not line:
            return None
        if not line.endswith(b"\n"):
            logger.debug(f"Discarding unterminated line from {self.peer}: {line!r}")
            return None
        return line.rstrip(b"\r\n")

    async def _read_binary_frame(self) -> Optional[bytes]:
        try:
            tag = await self.reader.readexactly(TAG_SIZE)
        except asyncio.IncompleteReadError as exc:
            if exc.partial:
                logger.debug(f"Discarding truncated frame from {self.peer}")
            return None

        command_type = TAGS.get(tag)
        if command_type is None:
            raise ParseError(f"unknown command tag: {tag!r}")

        frame = bytearray(tag)
        try:
            frame += await self._read_field()
            if has_value(command_type):
                frame += await self._read_field()
        except asyncio.IncompleteReadError:
            logger.debug(f"Discarding truncated {command_type.value} frame from {self.peer}")
            return None
        return bytes(frame)

    async def _read_field(self) -> bytes:
        prefix = await self.reader.readexactly(LENGTH.size)
        (length,) = LENGTH.unpack(prefix)
        if length > self.max_frame_size:
            raise ParseError(f"field length {length} exceeds limit {self.max_frame_size}")
        return prefix + await self.reader.readexactly(length)

    async def send(self, data: bytes) -> None:
        """
        Write one framed response and wait for it to be flushed.

        Raises:
            TransportError: If the connection is closed, the write fails or
                the client does not drain it within write_timeout
        """
        if self.closed:
            raise TransportError(f"connection {self.peer} is closed")
        try:
            self.writer.write(data)
            await asyncio.wait_for(self.writer.drain(), timeout=self.write_timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"failed to send to {self.peer}: {exc!r}") from exc

    async def authenticate(self, credentials: str, timeout: float) -> None:
        """
        Run the login handshake: expect "login:password\\n", answer "OK\\n".

        Always a text line, whatever the wire variant.

        Raises:
            AuthError: On a mismatch, EOF, or no line within timeout; an
                ERROR line has been sent (best effort) before raising
        """
        try:
            line = await asyncio.wait_for(self.reader.readline(), timeout=timeout)
        except (asyncio.TimeoutError, ValueError, OSError) as exc:
            logger.debug(f"No credentials from {self.peer}: {exc!r}")
            line = b""

        if not line.endswith(b"\n"):
            await self._reject("failed to read credentials, please send login:password")
            raise AuthError(f"no credentials received from {self.peer}")

        if not hmac.compare_digest(line.strip(), credentials.encode("utf-8")):
            await self._reject("invalid login or password")
            raise AuthError(f"invalid login or password from {self.peer}")

        await self.send(b"OK\n")

    async def _reject(self, reason: str) -> None:
        try:
            await self.send(f"{ERROR_PREFIX} {reason}\n".encode("utf-8"))
        except TransportError as exc:
            logger.debug(f"Could not send auth error to {self.peer}: {exc}")

    def close(self) -> None:
        """Close the socket after flushing pending writes."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()

    def abort(self) -> None:
        """Close the socket immediately, discarding pending writes."""
        self._closed = True
        self.writer.transport.abort()

    def cancel(self) -> None:
        """Cancel the task running this connection's receive loop."""
        if self.task is not None and not self.task.done():
            self.task.cancel()
