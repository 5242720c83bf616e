"""Protocol module for kvwire."""

from .binary import BinaryProtocolParser
from .commands import Command, CommandType, Response, ResponseStatus, execute
from .parser import ProtocolParser

PARSERS = {
    ProtocolParser.name: ProtocolParser,
    BinaryProtocolParser.name: BinaryProtocolParser,
}


def get_parser(name: str):
    """Return a parser instance for the "text" or "binary" wire variant."""
    try:
        return PARSERS[name]()
    except KeyError:
        raise ValueError(f"unknown protocol {name!r}, expected one of {sorted(PARSERS)}") from None


__all__ = [
    "BinaryProtocolParser",
    "Command",
    "CommandType",
    "PARSERS",
    "ProtocolParser",
    "Response",
    "ResponseStatus",
    "execute",
    "get_parser",
]
