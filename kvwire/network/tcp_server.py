"""
Async TCP Server Module

This module implements the dispatcher at the heart of kvwire.

Every accepted socket gets its own task running Connection.receive(),
which feeds raw frames into one bounded asyncio.Queue. A single dispatch
task drains that queue in arrival order, decodes and executes each command
against the shared KVStore and writes the response back to the connection
the frame came from. Because only the dispatch task executes commands,
requests are serialized across all clients while each client's own request
order is preserved end to end.

Lifecycle:
    CREATED -> LISTENING -> RUNNING -> STOPPING -> STOPPED

    server = KVServer(host='127.0.0.1', port=8000)
    await server.start()         # returns once accepting
    ...
    await server.stop()          # or wait_stopped() from the owner
"""

import asyncio
import logging
import threading
from asyncio import StreamReader, StreamWriter
from enum import Enum
from typing import List, Optional, Set

from ..config.settings import settings
from ..errors import AuthError, KeyNotFoundError, ParseError, TransportError
from ..protocol import Response, execute, get_parser
from ..storage.store import KVStore
from .connection import Connection, ConnectionClosed, Event, Message

logger = logging.getLogger(__name__)


class ServerState(Enum):
    """Lifecycle states of a KVServer."""
    CREATED = "created"
    LISTENING = "listening"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ConnectionRegistry:
    """Set of live connections, safe to use without external locking."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Set[Connection] = set()

    def add(self, connection: Connection) -> None:
        with self._lock:
            self._connections.add(connection)

    def remove(self, connection: Connection) -> bool:
        """Remove a connection; returns False if it was not registered."""
        with self._lock:
            if connection not in self._connections:
                return False
            self._connections.remove(connection)
            return True

    def drain(self) -> List[Connection]:
        """Remove and return every registered connection."""
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
            return connections

    def __contains__(self, connection: Connection) -> bool:
        with self._lock:
            return connection in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)


class KVServer:
    """
    Asynchronous TCP server for the kvwire service.

    Features:
    - One receive task per connection, one dispatch task per server
    - Bounded queue between them, so slow dispatch pushes back on readers
    - Text or binary wire variant, fixed per server
    - Optional login:password handshake before the receive loop starts
    - Explicit start()/stop() lifecycle, no signal handling of its own

    Attributes:
        host: Server bind address (e.g., '0.0.0.0')
        port: Server port number; updated to the bound port when 0
        store: The KVStore instance shared by all connections
        parser: ProtocolParser or BinaryProtocolParser for the wire variant
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            store: KVStore = None,
            protocol: str = None,
            login: str = None,
            password: str = None,
            queue_size: int = None,
            auth_timeout: float = None,
    ):
        """
        Initialize the server.

        Args:
            host: Bind address (default from settings)
            port: Port number (default from settings)
            store: KVStore instance (creates new one if not provided)
            protocol: "text" or "binary" (default from settings)
            login: Expected login; requires password as well
            password: Expected password; requires login as well
            queue_size: Bound of the dispatch queue (default from settings)
            auth_timeout: Seconds allowed for the login line

        Raises:
            ValueError: For an unknown protocol, a non-positive queue size,
                or only one of login/password
        """
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.store = store if store is not None else KVStore()
        self.parser = get_parser(protocol if protocol is not None else settings.PROTOCOL)

        login = login if login is not None else settings.LOGIN
        password = password if password is not None else settings.PASSWORD
        if (login is None) != (password is None):
            raise ValueError("login and password must be configured together")
        self._credentials = f"{login}:{password}" if login is not None else None
        self.auth_timeout = auth_timeout if auth_timeout is not None else settings.AUTH_TIMEOUT

        self.queue_size = queue_size if queue_size is not None else settings.QUEUE_SIZE
        if self.queue_size <= 0:
            raise ValueError("queue_size must be positive")

        # Server state
        self._state = ServerState.CREATED
        self._server: Optional[asyncio.Server] = None
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=self.queue_size)
        self._connections = ConnectionRegistry()
        self._accept_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._processing: Optional[asyncio.Future] = None
        self._stopped = asyncio.Event()
        self._connection_count = 0
        self._total_requests = 0

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def auth_enabled(self) -> bool:
        return self._credentials is not None

    def _set_state(self, state: ServerState) -> None:
        logger.debug(f"Server state {self._state.name} -> {state.name}")
        self._state = state
        if state == ServerState.STOPPED:
            self._stopped.set()

    async def start(self) -> None:
        """
        Bind the listening socket and start the accept and dispatch tasks.

        Returns as soon as the server is RUNNING.

        Raises:
            TransportError: If the address cannot be bound; the server is
                then STOPPED and never runs
            RuntimeError: If the server was already started
        """
        if self._state != ServerState.CREATED:
            raise RuntimeError(f"cannot start a server in state {self._state.name}")

        try:
            self._server = await asyncio.start_server(
                self._handle_client,
                self.host,
                self.port,
                limit=settings.READ_BUFFER_SIZE,
                start_serving=False,
            )
        except OSError as exc:
            logger.error(f"Failed to listen on {self.host}:{self.port}: {exc}")
            self._set_state(ServerState.STOPPED)
            raise TransportError(f"failed to listen on {self.host}:{self.port}: {exc}") from exc
        self._set_state(ServerState.LISTENING)

        sockets = self._server.sockets or []
        if self.port == 0 and sockets:
            self.port = sockets[0].getsockname()[1]
        addrs = ', '.join(str(sock.getsockname()) for sock in sockets)
        auth = "with" if self.auth_enabled else "without"
        logger.info(f"Serving {self.parser.name} protocol on {addrs} ({auth} authentication)")

        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        self._accept_task = asyncio.create_task(self._server.serve_forever())
        self._accept_task.add_done_callback(self._on_accept_done)
        self._set_state(ServerState.RUNNING)

    def _on_accept_done(self, task: asyncio.Task) -> None:
        if self._state != ServerState.RUNNING:
            return
        if task.cancelled():
            logger.error("Accept loop stopped unexpectedly, shutting down")
        else:
            logger.error(f"Accept loop failed, shutting down: {task.exception()!r}")
        self._shutdown_task = asyncio.ensure_future(self.stop())

    async def _handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        """
        Run one connection: optional handshake, then the receive loop.

        The loop's end is always reported through the queue as a
        ConnectionClosed event, so the dispatcher retires the connection
        only after every frame it sent before has been answered.
        """
        if self._state != ServerState.RUNNING:
            # Accepted just before stop() closed the listener
            writer.transport.abort()
            return

        connection = Connection(reader, writer, protocol=self.parser.name)
        connection.task = asyncio.current_task()
        self._connections.add(connection)
        self._connection_count += 1
        logger.debug(f"Client connected: {connection.peer}")

        error = None
        try:
            if self._credentials is not None:
                await connection.authenticate(self._credentials, self.auth_timeout)
                logger.debug(f"Client authenticated: {connection.peer}")
            await connection.receive(self._queue)
        except AuthError as exc:
            logger.warning(f"Authentication failed: {exc}")
            self._connections.remove(connection)
            connection.close()
            return
        except (TransportError, ParseError) as exc:
            error = exc

        await self._queue.put(ConnectionClosed(connection, error))

    async def _dispatch_loop(self) -> None:
        """Serially process queued events until cancelled."""
        while True:
            event = await self._queue.get()
            # Shielded so stop() can let a dequeued event finish
            self._processing = asyncio.ensure_future(self._handle_event(event))
            try:
                await asyncio.shield(self._processing)
            except Exception:  # Log unexpected errors but keep dispatching
                logger.exception(f"Error dispatching {event!r}")
            finally:
                self._queue.task_done()

    async def _handle_event(self, event: Event) -> None:
        if isinstance(event, ConnectionClosed):
            self._retire(event.connection, event.error)
            return
        connection = event.connection
        if connection.closed or connection not in self._connections:
            # Frames read before the connection was retired are never executed
            logger.debug(f"Skipping frame from retired connection {connection.peer}")
            return
        await self._process_message(event)

    async def _process_message(self, message: Message) -> None:
        """
        Decode, execute and answer one frame.

        ParseError and KeyNotFoundError become ERROR responses. Under the
        binary protocol a ParseError instead closes the connection without
        any response.
        """
        connection = message.connection
        self._total_requests += 1

        try:
            command = self.parser.parse_request(message.payload)
        except ParseError as exc:
            if self.parser.fatal_parse_errors:
                logger.warning(f"Malformed frame from {connection.peer}, closing: {exc}")
                self._retire(connection, exc)
                return
            logger.debug(f"Malformed request from {connection.peer}: {exc}")
            response = Response.error(str(exc))
        else:
            try:
                response = execute(command, self.store)
            except KeyNotFoundError as exc:
                response = Response.error(str(exc))
            logger.debug(f"{connection.peer} {command.type.value} {command.key!r} -> {response.status.value}")

        if connection.closed:
            logger.debug(f"Dropping response for closed connection {connection.peer}")
            return

        try:
            await connection.send(self.parser.format_response(response))
        except TransportError as exc:
            self._retire(connection, exc)

    def _retire(self, connection: Connection, error: Optional[Exception] = None) -> None:
        """Forget a connection and close its socket."""
        connection.close()
        if not self._connections.remove(connection):
            return
        if error is None:
            logger.debug(f"Client disconnected: {connection.peer}")
        else:
            logger.info(f"Connection {connection.peer} closed: {error}")

    async def stop(self) -> None:
        """
        Stop the server.

        Closes the listening socket, force-closes every tracked connection,
        cancels the accept, dispatch and receive tasks, waits for a command
        already being processed, then discards whatever is still queued.
        Safe to call more than once and from several tasks.
        """
        if self._state == ServerState.CREATED:
            self._set_state(ServerState.STOPPED)
            return
        if self._state in (ServerState.STOPPING, ServerState.STOPPED):
            await self._stopped.wait()
            return

        self._set_state(ServerState.STOPPING)
        logger.info("Stopping server...")

        self._server.close()

        connections = self._connections.drain()
        for connection in connections:
            connection.abort()
            connection.cancel()

        tasks = [connection.task for connection in connections if connection.task is not None]
        for task in (self._accept_task, self._dispatch_task):
            if task is not None:
                task.cancel()
                tasks.append(task)
        current = asyncio.current_task()
        await asyncio.gather(*(task for task in tasks if task is not current), return_exceptions=True)

        if self._processing is not None and not self._processing.done():
            await asyncio.gather(self._processing, return_exceptions=True)

        dropped = self._drain_queue()
        if dropped:
            logger.info(f"Discarded {dropped} queued events")

        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=settings.SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for client sockets to close")

        self._server = None
        self._set_state(ServerState.STOPPED)
        logger.info(f"Server stopped ({len(connections)} connections closed)")

    def _drain_queue(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    async def wait_stopped(self) -> None:
        """Block until the server reaches STOPPED."""
        await self._stopped.wait()

    async def serve_forever(self) -> None:
        """Start the server if needed and block until it is stopped."""
        if self._state == ServerState.CREATED:
            await self.start()
        await self.wait_stopped()

    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._state == ServerState.RUNNING

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with server stats including connection counts,
            request counts, queue depth and store statistics.
        """
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "protocol": self.parser.name,
            "open_connections": len(self._connections),
            "total_connections": self._connection_count,
            "total_requests": self._total_requests,
            "queued_events": self._queue.qsize(),
            "store_stats": self.store.get_stats(),
        }
