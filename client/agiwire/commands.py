"""AGI command catalog.

Each command is described by a Command entry: its keyword, its
positional arguments, the value returned when a required argument is
missing, and a mapper that turns the decoded reply into the command's
return value.  AgiSession wraps each entry in a plain method.

Optional arguments are positional on the wire, so the first optional
argument left empty ends the line; anything after it is not sent.
"""

from typing import Any, Callable, NamedTuple, Optional, Sequence, Tuple

from .protocol import CommandResult, encode_command, escape_spaces


class Arg(NamedTuple):
    """One positional argument of a command.

    required:        reject the call locally when empty.
    default_timeout: substitute the session default timeout when empty.
    empty_quotes:    send "" when empty ("no digits allowed") instead of
                     ending the line.
    quote:           wrap the value in double quotes.
    escape:          escape spaces as backslash-space.
    """

    name: str
    required: bool = False
    default_timeout: bool = False
    empty_quotes: bool = False
    quote: bool = False
    escape: bool = False


class Command(NamedTuple):
    keyword: str
    args: Tuple[Arg, ...]
    mapper: Callable[[CommandResult], Any]
    rejected: Any = None

    def missing(self, values: Sequence[str]) -> Optional[str]:
        """Return the name of the first empty required argument, if any."""
        for arg, value in zip(self.args, values):
            if arg.required and not value:
                return arg.name
        return None

    def build(self, values: Sequence[str], default_timeout: str) -> str:
        """Encode the wire line for this command and the given values."""
        parts = [self.keyword]
        for arg, value in zip(self.args, values):
            if not value and arg.default_timeout:
                value = default_timeout
            if not value:
                if arg.empty_quotes:
                    parts.append('""')
                    continue
                break
            if arg.escape:
                value = escape_spaces(value)
            if arg.quote:
                value = '"{}"'.format(value)
            parts.append(value)
        return encode_command(parts)


def _required(name):
    return Arg(name, required=True)


def _optional(name):
    return Arg(name)


def _timeout(name="timeout"):
    return Arg(name, default_timeout=True)


def _digits(name="escape_digits"):
    return Arg(name, empty_quotes=True)


def _dummy(result, data=""):
    """A locally built reply for a structured command rejected before I/O."""
    return CommandResult("200", result, data)


def atoi(text: str) -> int:
    """Parse a leading integer the way C atoi() does.

    Leading whitespace and an optional sign are accepted, parsing stops at
    the first non-digit, and text with no digits yields 0.
    """
    text = text.lstrip()
    end = 1 if text[:1] in ("-", "+") else 0
    start = end
    while end < len(text) and text[end] in "0123456789":
        end += 1
    if end == start:
        return 0
    return int(text[:end])


# ---------------------------------------------------------------------------
# Result mappers
# ---------------------------------------------------------------------------

# CHANNEL STATUS result codes.
CHANNEL_STATES = {
    "0": 0,  # down and available
    "1": 1,  # down, but reserved
    "2": 2,  # off hook
    "3": 3,  # digits (or equivalent) have been dialed
    "4": 4,  # line is ringing
    "5": 5,  # remote end is ringing
    "6": 6,  # line is up
    "7": 7,  # line is busy
}

CHANNEL_STATE_NAMES = {
    -1: "unknown",
    0: "down, available",
    1: "down, reserved",
    2: "off hook",
    3: "digits dialed",
    4: "ringing",
    5: "remote ringing",
    6: "up",
    7: "busy",
}

_TDD_STATES = {"1": 1, "0": 0}


def raw(reply: CommandResult) -> CommandResult:
    return reply


def constant(value):
    """Mapper for commands whose engine result carries no information."""
    return lambda reply: value


def failed_or_zero(reply):
    return -1 if reply.result == "-1" else 0


def zero_or_failed(reply):
    return 0 if reply.result == "0" else -1


def one_or_zero(reply):
    return 1 if reply.result == "1" else 0


def one_or_failed(reply):
    return 1 if reply.result == "1" else -1


def channel_state(reply):
    return CHANNEL_STATES.get(reply.result, -1)


def tdd_state(reply):
    return _TDD_STATES.get(reply.result, -1)


def value_if_set(reply):
    """Variable-style lookups: the value lives in data when result is 1."""
    return reply.data if reply.result == "1" else ""


def text_unless_failed(reply):
    return reply.result if reply.result != "-1" else ""


def digit_unless_failed(reply):
    """SAY commands: "0" for no digit, the digit's ASCII code if pressed,
    "" on error or hangup."""
    return "" if reply.result == "-1" else reply.result


def integer(reply):
    return atoi(reply.result)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

ANSWER = Command("ANSWER", (), failed_or_zero)

CHANNEL_STATUS = Command(
    "CHANNEL STATUS", (_optional("channelname"),), channel_state)

DATABASE_DEL = Command(
    "DATABASE DEL", (_required("family"), _required("key")),
    one_or_zero, 0)

# Deleting a family without a keytree has been seen to report success
# whether or not anything matched; the reply is mapped as sent.
DATABASE_DELTREE = Command(
    "DATABASE DELTREE", (_required("family"), _optional("keytree")),
    one_or_zero, 0)

DATABASE_GET = Command(
    "DATABASE GET", (_required("family"), _required("key")),
    value_if_set, "")

DATABASE_PUT = Command(
    "DATABASE PUT",
    (_required("family"), _required("key"), _required("value")),
    one_or_zero, 0)

EXEC = Command(
    "EXEC", (_required("application"), Arg("options", escape=True)),
    raw, _dummy("-2"))

GET_DATA = Command(
    "GET DATA", (_required("file"), _timeout(), _optional("maxdigits")),
    raw, _dummy("-1"))

GET_FULL_VARIABLE = Command(
    "GET FULL VARIABLE", (_required("variablename"), _optional("channel")),
    value_if_set, "")

GET_OPTION = Command(
    "GET OPTION",
    (_required("file"), _required("escapedigits"), _optional("timeout")),
    raw, _dummy("-1", "endpos=0"))

GET_VARIABLE = Command(
    "GET VARIABLE", (_required("variablename"),), value_if_set, "")

HANGUP = Command("HANGUP", (_optional("channelname"),), one_or_failed)

NOOP = Command("NOOP", (_optional("str"),), constant(0))

# Reported as unreliable against real engines: the reply is handed back
# untouched and should not be read as proof that a character arrived.
RECEIVE_CHAR = Command("RECEIVE CHAR", (_timeout(),), raw)

RECEIVE_TEXT = Command("RECEIVE TEXT", (_timeout(),), text_unless_failed)

RECORD_FILE = Command(
    "RECORD FILE",
    (_required("file"), _required("format"), _required("escape_digits"),
     _required("timeout"), _optional("offset_samples"), _optional("beep"),
     _optional("silence")),
    raw, _dummy("-1", "(randomerror) endpos=0"))


def _say(keyword, subject, *extra):
    return Command(
        keyword, (_required(subject), _required("escape_digits")) + extra,
        digit_unless_failed, "-1")


SAY_ALPHA = _say("SAY ALPHA", "letters")
SAY_DIGITS = _say("SAY DIGITS", "numbers")
SAY_NUMBER = _say("SAY NUMBER", "number", _optional("gender"))
SAY_PHONETIC = _say("SAY PHONETIC", "string")
SAY_DATE = _say("SAY DATE", "date")
SAY_TIME = _say("SAY TIME", "time")
SAY_DATETIME = _say(
    "SAY DATETIME", "time", _optional("format"), _optional("timezone"))

SEND_IMAGE = Command(
    "SEND IMAGE", (_required("image"),), zero_or_failed, -1)

SEND_TEXT = Command(
    "SEND TEXT", (Arg("text", required=True, quote=True),),
    zero_or_failed, -1)

SET_AUTOHANGUP = Command(
    "SET AUTOHANGUP", (_required("time"),), constant(0), 0)

SET_CALLERID = Command(
    "SET CALLERID", (_required("number"),), constant(1), 1)

SET_CONTEXT = Command(
    "SET CONTEXT", (_required("context"),), constant(0), 0)

SET_EXTENSION = Command(
    "SET EXTENSION", (_required("extension"),), constant(0), 0)

SET_MUSIC = Command(
    "SET MUSIC", (_required("onoff"), _optional("class")), constant(0), 0)

SET_PRIORITY = Command(
    "SET PRIORITY", (_required("priority"),), constant(0), 0)

SET_VARIABLE = Command(
    "SET VARIABLE", (_required("variablename"), _required("value")),
    constant(1), 1)

STREAM_FILE = Command(
    "STREAM FILE",
    (_required("file"), _digits(), _optional("sample_offset")),
    raw, _dummy("0", "endpos=0"))

CONTROL_STREAM_FILE = Command(
    "CONTROL STREAM FILE",
    (_required("file"), _digits(), _optional("skipms"),
     _optional("ffchar"), _optional("rewchr"), _optional("pausechr")),
    raw, _dummy("0", "endpos=0"))

TDD_MODE = Command("TDD MODE", (_required("toggle"),), tdd_state, -1)

VERBOSE = Command(
    "VERBOSE",
    (Arg("message", required=True, quote=True), _optional("level")),
    constant(1), 1)

# The pressed digit comes back as its ASCII code (49 for "1").
WAIT_FOR_DIGIT = Command(
    "WAIT FOR DIGIT", (_required("timeout"),), integer, -1)

SPEECH_CREATE = Command(
    "SPEECH CREATE", (_required("engine"),), integer, -1)

SPEECH_SET = Command(
    "SPEECH SET", (_required("name"), _required("value")), integer, -1)

SPEECH_DESTROY = Command("SPEECH DESTROY", (), integer)

SPEECH_LOAD_GRAMMAR = Command(
    "SPEECH LOAD GRAMMAR", (_required("name"), _required("path")),
    integer, -1)

SPEECH_UNLOAD_GRAMMAR = Command(
    "SPEECH UNLOAD GRAMMAR", (_required("name"),), integer, -1)

SPEECH_ACTIVATE_GRAMMAR = Command(
    "SPEECH ACTIVATE GRAMMAR", (_required("name"),), integer, -1)

SPEECH_DEACTIVATE_GRAMMAR = Command(
    "SPEECH DEACTIVATE GRAMMAR", (_required("name"),), integer, -1)

SPEECH_RECOGNIZE = Command(
    "SPEECH RECOGNIZE",
    (_required("prompt"), _timeout(), _optional("offset")),
    raw, _dummy("-1"))

GOSUB = Command(
    "GOSUB",
    (_required("context"), _required("extension"), _required("priority"),
     Arg("arguments", quote=True)),
    integer, -1)
