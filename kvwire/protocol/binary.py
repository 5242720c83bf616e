"""
Binary Protocol Module

Length-prefixed request frames and a versioned response envelope.

Request frame:
    [3-byte tag: SET | GET | DEL]
    [4-byte big-endian uint32 key length][key bytes]
    [4-byte big-endian uint32 value length][value bytes]    (SET only)

Response envelope (version 1):
    [1 byte version = 0x01][1 byte status: 0x00 OK, 0x01 ERROR]
    [4-byte big-endian uint32 length][UTF-8 message]

Keys and values are UTF-8. A frame must be consumed exactly: trailing
bytes after the last field are a ParseError. Any ParseError is fatal to
the connection that sent the frame.
"""

import struct
from typing import Tuple

from .commands import Command, CommandType, Response, ResponseStatus
from ..errors import ParseError

TAG_SIZE = 3
LENGTH = struct.Struct(">I")
RESPONSE_HEADER = struct.Struct(">BBI")
RESPONSE_VERSION = 1

TAGS = {command_type.value.encode("ascii"): command_type for command_type in CommandType}

_STATUS_CODES = {ResponseStatus.OK: 0, ResponseStatus.ERROR: 1}
_STATUS_BY_CODE = {code: status for status, code in _STATUS_CODES.items()}


def has_value(command_type: CommandType) -> bool:
    """Whether frames of this type carry a value field."""
    return command_type == CommandType.SET


class BinaryProtocolParser:
    """Parser for the kvwire binary protocol."""

    name = "binary"
    fatal_parse_errors = True

    def parse_request(self, data: bytes) -> Command:
        """
        Decode exactly one request frame.

        Raises:
            ParseError: On an unknown tag, a length prefix running past the
                end of the buffer, invalid UTF-8, or trailing bytes
        """
        tag = bytes(data[:TAG_SIZE])
        command_type = TAGS.get(tag)
        if command_type is None:
            raise ParseError(f"unknown command tag: {tag!r}")

        key, offset = self._read_field(data, TAG_SIZE, "key")
        value = ""
        if has_value(command_type):
            value, offset = self._read_field(data, offset, "value")

        if offset != len(data):
            raise ParseError(f"{len(data) - offset} trailing bytes after {command_type.value} frame")

        return Command(command_type, key, value)

    @staticmethod
    def _read_field(data: bytes, offset: int, field: str) -> Tuple[str, int]:
        if len(data) - offset < LENGTH.size:
            raise ParseError(f"missing {field} length")
        (length,) = LENGTH.unpack_from(data, offset)
        offset += LENGTH.size

        if length > len(data) - offset:
            raise ParseError(f"{field} length {length} exceeds remaining {len(data) - offset} bytes")
        try:
            text = bytes(data[offset:offset + length]).decode("utf-8")
        except UnicodeDecodeError:
            raise ParseError(f"{field} is not valid UTF-8") from None
        return text, offset + length

    def serialize(self, command: Command) -> bytes:
        """Encode a command as one request frame."""
        key = command.key.encode("utf-8")
        frame = command.type.value.encode("ascii") + LENGTH.pack(len(key)) + key
        if has_value(command.type):
            value = command.value.encode("utf-8")
            frame += LENGTH.pack(len(value)) + value
        return frame

    def format_response(self, response: Response) -> bytes:
        """Wrap a response in a version 1 envelope."""
        body = response.message.encode("utf-8")
        header = RESPONSE_HEADER.pack(RESPONSE_VERSION, _STATUS_CODES[response.status], len(body))
        return header + body

    def parse_response(self, data: bytes) -> Response:
        """
        Decode one complete response envelope.

        Raises:
            ParseError: On an unknown version or status, or a body whose
                size does not match the declared length
        """
        if len(data) < RESPONSE_HEADER.size:
            raise ParseError("truncated response header")
        version, code, length = RESPONSE_HEADER.unpack_from(data)
        if version != RESPONSE_VERSION:
            raise ParseError(f"unsupported response version: {version}")
        status = _STATUS_BY_CODE.get(code)
        if status is None:
            raise ParseError(f"unknown response status: {code}")

        body = data[RESPONSE_HEADER.size:]
        if len(body) != length:
            raise ParseError(f"response body is {len(body)} bytes, expected {length}")
        return Response(status, body.decode("utf-8"))
