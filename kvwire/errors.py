"""
Error Taxonomy

All failures raised by kvwire derive from KVError. The dispatcher turns
ParseError and KeyNotFoundError into ERROR responses; TransportError and
AuthError only ever affect the connection they occurred on (or the whole
server when the listening socket fails).
"""


class KVError(Exception):
    """Base class for kvwire errors."""


class TransportError(KVError):
    """Socket-level failure: bind, accept, read or write."""


class ParseError(KVError):
    """A frame could not be decoded into a command."""


class KeyNotFoundError(KVError):
    """GET or DEL on a key that is not stored."""

    def __init__(self, key: str):
        super().__init__("no record with such key")
        self.key = key


class AuthError(KVError):
    """The login handshake failed or timed out."""


class ServerError(KVError):
    """Raised by the client when the server answers with an ERROR response."""
