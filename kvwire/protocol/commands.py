"""
Protocol Command and Response Definitions

This module defines the data structures for protocol commands and
responses, and executes commands against the store. Both wire variants
decode into the same Command and encode the same Response.
"""

from dataclasses import dataclass
from enum import Enum

from ..storage.store import KVStore


class CommandType(Enum):
    """Enumeration of supported command types (value is the wire verb)."""
    SET = "SET"
    GET = "GET"
    DEL = "DEL"


class ResponseStatus(Enum):
    """Enumeration of response statuses."""
    OK = "OK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Command:
    """
    Represents a parsed protocol command.

    Attributes:
        type: The type of command (SET, GET, DEL)
        key: The key for the operation
        value: The value for SET operations (empty for GET and DEL)
    """
    type: CommandType
    key: str
    value: str = ""

    @classmethod
    def set(cls, key: str, value: str) -> "Command":
        return cls(CommandType.SET, key, value)

    @classmethod
    def get(cls, key: str) -> "Command":
        return cls(CommandType.GET, key)

    @classmethod
    def delete(cls, key: str) -> "Command":
        return cls(CommandType.DEL, key)


@dataclass(frozen=True)
class Response:
    """
    Represents a protocol response.

    Attributes:
        status: OK or ERROR
        message: Response text or error description
    """
    status: ResponseStatus
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.status == ResponseStatus.ERROR

    @classmethod
    def ok(cls, message: str = "") -> "Response":
        """Create a successful response."""
        return cls(status=ResponseStatus.OK, message=message)

    @classmethod
    def error(cls, message: str) -> "Response":
        """Create an error response."""
        return cls(status=ResponseStatus.ERROR, message=message)

    @classmethod
    def stored(cls, key: str, value: str) -> "Response":
        """Create the acknowledgement for a SET."""
        return cls.ok(f"SET OK: {key} = {value}")

    @classmethod
    def value_response(cls, value: str) -> "Response":
        """Create a GET response with a value."""
        return cls.ok(f"VALUE: {value}")

    @classmethod
    def deleted(cls, key: str, value: str) -> "Response":
        """Create a DEL response echoing the removed value."""
        return cls.ok(f"DEL OK: {key} = {value}")


def execute(command: Command, store: KVStore) -> Response:
    """
    Execute a parsed command on the store.

    Args:
        command: The Command object to execute
        store: The shared KVStore

    Returns:
        Response object with the result

    Raises:
        KeyNotFoundError: For GET or DEL on a missing key
    """
    if command.type == CommandType.SET:
        store.set(command.key, command.value)
        return Response.stored(command.key, command.value)

    if command.type == CommandType.GET:
        return Response.value_response(store.get(command.key))

    if command.type == CommandType.DEL:
        return Response.deleted(command.key, store.delete(command.key))

    raise ValueError(f"unhandled command type: {command.type}")
