"""Wire protocol helpers for the agiwire client.

Handles line reading, startup-block parsing, command line encoding and
reply parsing for the Asterisk Gateway Interface.  The engine talks to the
script over a pair of byte streams (normally stdin/stdout).  Wire text is
UTF-8; bytes that are not valid UTF-8 (a Latin-1 caller name, say) are
carried through unchanged as surrogate escapes.
"""

from typing import IO, Callable, Iterable, NamedTuple, Optional, Tuple

ENCODING = "utf-8"

# Undecodable engine bytes become lone surrogates and are written back as
# the same bytes.
ENCODING_ERRORS = "surrogateescape"

# Asterisk passes at most this many script arguments (agi_arg_1 ..
# agi_arg_127).
MAX_ARGS = 127

# Milliseconds used for commands whose timeout argument was omitted.
DEFAULT_TIMEOUT = "2000"

# Value given to a startup field that is present but empty, or missing.
PLACEHOLDER = " "


class ProtocolError(Exception):
    """Raised on wire protocol violations (unexpected EOF, malformed
    startup block or reply lines)."""


class ProtocolDesyncError(ProtocolError):
    """Raised when a reply line cannot be parsed.

    The command stream has no framing beyond newlines, so once a reply is
    misread the session cannot be resynchronized.
    """


class StartupFormatError(ProtocolError):
    """Raised when the startup variable block is malformed or truncated."""


class CommandResult(NamedTuple):
    """A decoded reply line: ``<status_code> result=<result>[ <data>]``."""

    status_code: str
    result: str
    data: str


# Positional layout of the startup block.  The engine always sends these
# twenty variables first and in this order; the names on the wire are not
# consulted.
SESSION_FIELDS = (
    ("request", "agi_request"),
    ("channel", "agi_channel"),
    ("language", "agi_language"),
    ("type", "agi_type"),
    ("uniqueid", "agi_uniqueid"),
    ("version", "agi_version"),
    ("callerid", "agi_callerid"),
    ("calleridname", "agi_calleridname"),
    ("callingpres", "agi_callingpres"),
    ("callingani2", "agi_callingani2"),
    ("callington", "agi_callington"),
    ("callingtns", "agi_callingtns"),
    ("dnid", "agi_dnid"),
    ("rdnis", "agi_rdnis"),
    ("context", "agi_context"),
    ("extension", "agi_extension"),
    ("priority", "agi_priority"),
    ("enhanced", "agi_enhanced"),
    ("accountcode", "agi_accountcode"),
    ("threadid", "agi_threadid"),
)  # type: Tuple[Tuple[str, str], ...]


class SessionContext(NamedTuple):
    """Call metadata sent by the engine before the first command.

    Every field is a printable, newline-free string.  Fields that were
    empty on the wire hold a single space.  ``args`` holds the script
    arguments (agi_arg_1 onwards) in order.
    """

    request: str = PLACEHOLDER
    channel: str = PLACEHOLDER
    language: str = PLACEHOLDER
    type: str = PLACEHOLDER
    uniqueid: str = PLACEHOLDER
    version: str = PLACEHOLDER
    callerid: str = PLACEHOLDER
    calleridname: str = PLACEHOLDER
    callingpres: str = PLACEHOLDER
    callingani2: str = PLACEHOLDER
    callington: str = PLACEHOLDER
    callingtns: str = PLACEHOLDER
    dnid: str = PLACEHOLDER
    rdnis: str = PLACEHOLDER
    context: str = PLACEHOLDER
    extension: str = PLACEHOLDER
    priority: str = PLACEHOLDER
    enhanced: str = PLACEHOLDER
    accountcode: str = PLACEHOLDER
    threadid: str = PLACEHOLDER
    args: Tuple[str, ...] = ()

    @property
    def is_enhanced(self) -> bool:
        """True if the script was started as EAGI (audio on fd 3)."""
        return self.enhanced.strip() == "1.0"


def read_line(stream: IO[bytes]) -> str:
    """Read a single line from the stream, including its LF.

    Returns an empty string on EOF.  A final line without LF is returned
    as-is so the caller can report it.
    """
    return stream.readline().decode(ENCODING, ENCODING_ERRORS)


def _strip_newline(line: str) -> str:
    # Strip trailing CR too (hand-driven sessions over a terminal)
    line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def read_session_context(stream: IO[bytes]) -> SessionContext:
    """Drain the startup block and return it as a SessionContext.

    The block is a sequence of ``name: value`` lines terminated by an
    empty line.  The first twenty lines fill the fixed fields by position;
    every later line is a script argument.

    Raises StartupFormatError if the stream ends before the terminating
    empty line, if a line has no colon, or if more than MAX_ARGS
    arguments are sent.
    """
    values = []
    args = []
    while True:
        line = read_line(stream)
        if not line.endswith("\n"):
            if line:
                raise StartupFormatError(
                    "Startup block ended mid-line (partial data: {!r})".format(
                        line))
            raise StartupFormatError(
                "Stream closed before end of startup block")
        if line in ("\n", "\r\n"):
            break

        colon = line.find(":")
        if colon < 0:
            raise StartupFormatError(
                "Problem reading variables, no separator in {!r}".format(line))

        # Value starts after ": ".  An empty value is just the newline.
        value = _strip_newline(line[colon + 2:] or "\n")
        if not value:
            value = PLACEHOLDER

        if len(values) < len(SESSION_FIELDS):
            values.append(value)
        else:
            if len(args) >= MAX_ARGS:
                raise StartupFormatError(
                    "More than {} script arguments in startup block".format(
                        MAX_ARGS))
            args.append(value)

    fields = {name: value
              for (name, _wire), value in zip(SESSION_FIELDS, values)}
    return SessionContext(args=tuple(args), **fields)


def escape_spaces(text: str) -> str:
    """Escape every space as backslash-space.

    Asterisk splits EXEC options on unescaped spaces.
    """
    return text.replace(" ", "\\ ")


def encode_command(parts: Iterable[str]) -> str:
    """Join command fragments into a single LF-terminated wire line.

    Empty fragments are dropped, so an omitted optional argument leaves
    no stray separator behind.
    """
    return " ".join(part for part in parts if part) + "\n"


def parse_reply(line: str) -> CommandResult:
    """Split a reply line into (status_code, result, data).

    Examples:
      "200 result=0\\n"             -> ("200", "0", "")
      "200 result=1 endpos=160\\n"  -> ("200", "1", "endpos=160")
      "200 result=-1 (timeout)\\n"  -> ("200", "-1", "(timeout)")

    Raises ProtocolDesyncError if the line has no space after the status
    code, no '=' before the result, or no terminating LF.
    """
    status_code, sep, rest = line.partition(" ")
    if not sep:
        raise ProtocolDesyncError(
            "Problem parsing reply, no status separator: {!r}".format(line))

    _label, sep, rest = rest.partition("=")
    if not sep:
        raise ProtocolDesyncError(
            "Problem parsing reply, no result field: {!r}".format(line))

    if not rest.endswith("\n"):
        raise ProtocolDesyncError(
            "Reply is not newline-terminated: {!r}".format(line))
    rest = _strip_newline(rest)

    result, _sep, data = rest.partition(" ")
    return CommandResult(status_code, result, data)


def send_command(stream: IO[bytes], line: str) -> None:
    """Write an already-encoded command line and flush it to the engine.

    Raises ProtocolError, before writing anything, unless ``line`` is a
    single LF-terminated line with no CR or LF inside it.
    """
    if not line.endswith("\n") or "\n" in line[:-1] or "\r" in line:
        raise ProtocolError(
            "Command must be a single line: {!r}".format(line))
    stream.write(line.encode(ENCODING, ENCODING_ERRORS))
    stream.flush()


def read_reply(stream: IO[bytes],
               on_line: Optional[Callable[[str], None]] = None
               ) -> CommandResult:
    """Read exactly one reply line and parse it.

    ``on_line``, if given, is called with the raw line before parsing
    (used for tracing).

    Raises ProtocolDesyncError on EOF or a malformed line.
    """
    line = read_line(stream)
    if not line:
        raise ProtocolDesyncError("Stream closed by engine")
    if on_line is not None:
        on_line(line)
    return parse_reply(line)
