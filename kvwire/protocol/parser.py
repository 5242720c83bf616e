"""
Text Protocol Parser Module

This module handles parsing of line-oriented text commands and formatting
of text responses. Framing (splitting the stream on newlines) is done by
the connection; the parser only ever sees one line without its newline.
"""

from .commands import Command, CommandType, Response, ResponseStatus
from ..errors import ParseError

ERROR_PREFIX = "ERROR:"


class ProtocolParser:
    """
    Parser for the kvwire text protocol.

    Protocol Format:
        Request:  <VERB> <key> [value]\\n
        Response: <message>\\n | ERROR: <reason>\\n

    Commands:
        SET <key> <value>  -> SET OK: <key> = <value>
        GET <key>          -> VALUE: <value> | ERROR: no record with such key
        DEL <key>          -> DEL OK: <key> = <value> | ERROR: no record with such key

    Constraints:
        - Verbs are case-insensitive
        - Keys and values cannot contain whitespace
        - A malformed line is answered with an error; the connection stays open
    """

    name = "text"
    fatal_parse_errors = False

    def parse_request(self, data: bytes) -> Command:
        """
        Parse one request line into a Command object.

        Args:
            data: Raw request line (a trailing newline is tolerated)

        Returns:
            Command object representing the parsed request.

        Raises:
            ParseError: For empty lines, unknown verbs, wrong argument
                counts and invalid UTF-8

        Examples:
            >>> parser = ProtocolParser()
            >>> parser.parse_request(b"set greeting hello")
            Command(type=<CommandType.SET: 'SET'>, key='greeting', value='hello')
        """
        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError:
            raise ParseError("invalid encoding") from None

        parts = raw.split()
        if not parts:
            raise ParseError("empty command")

        verb = parts[0].upper()
        if verb == CommandType.SET.value:
            if len(parts) != 3:
                raise ParseError("SET requires a key and a value")
            return Command.set(parts[1], parts[2])
        if verb == CommandType.GET.value:
            if len(parts) != 2:
                raise ParseError("GET requires a key")
            return Command.get(parts[1])
        if verb == CommandType.DEL.value:
            if len(parts) != 2:
                raise ParseError("DEL requires a key")
            return Command.delete(parts[1])

        raise ParseError(f"unknown command: {parts[0]}")

    def serialize(self, command: Command) -> bytes:
        """
        Format a command as a request line (used by clients).

        Raises:
            ValueError: If the key or value cannot be expressed in the text
                protocol (empty or containing whitespace)
        """
        fields = [command.key]
        if command.type == CommandType.SET:
            fields.append(command.value)

        for field in fields:
            if not field or any(ch.isspace() for ch in field):
                raise ValueError(f"cannot send {field!r} over the text protocol")

        return (" ".join([command.type.value, *fields]) + "\n").encode("utf-8")

    def format_response(self, response: Response) -> bytes:
        """
        Format a Response object into a protocol line.

        Examples:
            >>> parser = ProtocolParser()
            >>> parser.format_response(Response.value_response("hello"))
            b'VALUE: hello\\n'
            >>> parser.format_response(Response.error("unknown command: FOO"))
            b'ERROR: unknown command: FOO\\n'
        """
        if response.is_error:
            return f"{ERROR_PREFIX} {response.message}\n".encode("utf-8")
        return f"{response.message}\n".encode("utf-8")

    def parse_response(self, data: bytes) -> Response:
        """Parse a response line received from a server."""
        line = data.decode("utf-8").rstrip("\r\n")
        if line.startswith(ERROR_PREFIX):
            return Response(ResponseStatus.ERROR, line[len(ERROR_PREFIX):].strip())
        return Response.ok(line)
