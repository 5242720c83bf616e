#!/usr/bin/env python3
"""
kvwire Server Entry Point

This is the main entry point for starting the kvwire server.

Usage:
    python -m kvwire.server                         # Default settings (0.0.0.0:8000, text)
    python -m kvwire.server --port 8001             # Custom port
    python -m kvwire.server --protocol binary       # Length-prefixed binary protocol
    python -m kvwire.server --login admin --password secret
    python -m kvwire.server --debug                 # Enable debug logging

Environment Variables:
    KVWIRE_HOST         - Server bind address
    KVWIRE_PORT         - Server port
    KVWIRE_PROTOCOL     - Wire variant (text/binary)
    KVWIRE_LOGIN        - Login required from clients
    KVWIRE_PASSWORD     - Password required from clients
    KVWIRE_QUEUE_SIZE   - Bound of the dispatch queue
    KVWIRE_DEBUG        - Enable debug mode (true/false)
    KVWIRE_LOG_LEVEL    - Log level when not in debug mode
"""

import argparse
import asyncio
import logging
import signal
import sys

from .config.settings import settings
from .errors import TransportError
from .network.tcp_server import KVServer
from .protocol import PARSERS
from .storage.store import KVStore

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="kvwire: Networked Key-Value Store Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Host address to bind to",
    )

    parser.add_argument(
        "-p", "--port",
        type=int,
        default=settings.PORT,
        help="Port number to listen on",
    )

    parser.add_argument(
        "--protocol",
        choices=sorted(PARSERS),
        default=settings.PROTOCOL,
        help="Wire protocol variant",
    )

    parser.add_argument(
        "--login",
        type=str,
        default=settings.LOGIN,
        help="Login clients must send before any command",
    )

    parser.add_argument(
        "--password",
        type=str,
        default=settings.PASSWORD,
        help="Password clients must send before any command",
    )

    parser.add_argument(
        "--queue-size",
        type=int,
        default=settings.QUEUE_SIZE,
        help="Maximum number of requests waiting for dispatch",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    if (args.login is None) != (args.password is None):
        parser.error("--login and --password must be given together")
    return args


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


async def serve(args: argparse.Namespace) -> None:
    """Run a server until SIGINT/SIGTERM stops it."""
    server = KVServer(
        host=args.host,
        port=args.port,
        store=KVStore(),
        protocol=args.protocol,
        login=args.login,
        password=args.password,
        queue_size=args.queue_size,
    )

    loop = asyncio.get_running_loop()
    stop_tasks = []

    def shutdown(sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        stop_tasks.append(asyncio.ensure_future(server.stop()))

    # Register signal handlers (Unix only)
    if sys.platform != 'win32':
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown, sig)

    try:
        await server.serve_forever()
    finally:
        await server.stop()
        await asyncio.gather(*stop_tasks)


def main(argv=None) -> None:
    """Main entry point for the server."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    # Log startup info
    logger.info("Starting kvwire server")
    logger.info(f"  Host: {args.host}")
    logger.info(f"  Port: {args.port}")
    logger.info(f"  Protocol: {args.protocol}")
    logger.info(f"  Authentication: {'on' if args.login is not None else 'off'}")
    logger.info(f"  Queue size: {args.queue_size}")

    try:
        asyncio.run(serve(args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except TransportError as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)
    logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
