#!/usr/bin/env python3
"""
Interactive Test Client for kvwire

A simple command-line client for manually testing a kvwire server that
speaks the text protocol.

Usage:
    python scripts/client.py                  # Connect to localhost:8000
    python scripts/client.py --host 1.2.3.4   # Connect to specific host
    python scripts/client.py --port 8001      # Connect to specific port
    python scripts/client.py --login admin --password secret

Commands:
    SET <key> <value>   - Store a key-value pair
    GET <key>           - Retrieve a value
    DEL <key>           - Delete a key
    help                - Show this help
    exit                - Exit client
"""

import argparse
import socket
import sys

# Enable command history with arrow keys (works on Unix systems)
try:
    import readline  # noqa: F401
except ImportError:
    pass  # readline not available on Windows by default


class KVWireClient:
    """Simple blocking TCP client for the kvwire text protocol."""

    def __init__(self, host: str, port: int, timeout: float = 5.0,
                 login: str = None, password: str = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.login = login
        self.password = password
        self.socket = None
        self._buffer = b''

    def connect(self) -> bool:
        """Connect to the server and authenticate if credentials are set."""
        try:
            self.socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            print(f"Connection error: {e}")
            self.socket = None
            return False

        if self.login is None:
            return True

        answer = self.send_command(f"{self.login}:{self.password}")
        if answer != "OK":
            print(f"Authentication failed: {answer}")
            self.disconnect()
            return False
        return True

    def disconnect(self):
        """Disconnect from the server."""
        if self.socket:
            try:
                self.socket.close()
            except OSError as e:
                print(f"Error while closing: {e}")
            self.socket = None
            self._buffer = b''

    def send_command(self, command: str) -> str:
        """Send a command line and receive the response line."""
        if not self.socket:
            return "ERROR: Not connected"

        try:
            # Ensure command ends with newline
            if not command.endswith('\n'):
                command += '\n'

            self.socket.sendall(command.encode('utf-8'))

            # Receive response
            while b'\n' not in self._buffer:
                chunk = self.socket.recv(4096)
                if not chunk:
                    self.disconnect()
                    return "ERROR: Connection closed by server"
                self._buffer += chunk

            line, self._buffer = self._buffer.split(b'\n', 1)
            return line.decode('utf-8').strip()

        except socket.timeout:
            return "ERROR: Request timed out"
        except OSError as e:
            self.disconnect()
            return f"ERROR: {e}"

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def print_help():
    """Print help message."""
    print("""
kvwire Commands:
----------------
  SET <key> <value>         Store a key-value pair
  GET <key>                 Retrieve the value for a key
  DEL <key>                 Delete a key and print its value

Client Commands:
----------------
  help                      Show this help message
  exit                      Exit the client
  reconnect                 Reconnect to the server
  status                    Show connection status

Examples:
---------
  SET greeting hello        Store "hello" under "greeting"
  GET greeting              Get value for "greeting"
  DEL greeting              Delete "greeting"
""")


def main():
    parser = argparse.ArgumentParser(
        description="Interactive test client for kvwire"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="localhost",
        help="Server host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Server port (default: 8000)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Socket timeout in seconds (default: 5.0)"
    )
    parser.add_argument("--login", type=str, default=None, help="Login for the handshake")
    parser.add_argument("--password", type=str, default=None, help="Password for the handshake")

    args = parser.parse_args()
    if (args.login is None) != (args.password is None):
        parser.error("--login and --password must be given together")

    print("kvwire Client")
    print("=============")
    print(f"Connecting to {args.host}:{args.port}...")

    client = KVWireClient(args.host, args.port, args.timeout, args.login, args.password)

    if not client.connect():
        print("Failed to connect. Is the server running?")
        print(f"  Try: python -m kvwire.server --port {args.port}")
        sys.exit(1)

    print("Connected! Type 'help' for commands.\n")

    try:
        while True:
            try:
                command = input(">>> ").strip()

                if not command:
                    continue

                # Handle client-side commands
                lower_cmd = command.lower()

                if lower_cmd == "help":
                    print_help()
                    continue

                if lower_cmd in ("exit", "quit"):
                    print("Goodbye!")
                    break

                if lower_cmd == "reconnect":
                    client.disconnect()
                    if client.connect():
                        print("Reconnected!")
                    else:
                        print("Reconnection failed.")
                    continue

                if lower_cmd == "status":
                    status = "Connected" if client.socket else "Disconnected"
                    print(f"Status: {status}")
                    print(f"Server: {args.host}:{args.port}")
                    continue

                print(client.send_command(command))

            except EOFError:
                print("\nGoodbye!")
                break

    except KeyboardInterrupt:
        print("\n\nInterrupted. Goodbye!")
    finally:
        client.disconnect()


if __name__ == "__main__":
    main()
