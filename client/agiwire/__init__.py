"""agiwire -- Python client library for the Asterisk Gateway Interface.

Provides AgiSession for driving a call from an AGI script over the
engine's stdin/stdout pipe, plus run() as the script's top-level entry
point.

Usage::

    import agiwire

    def main(agi):
        agi.answer()
        agi.stream_file("hello-world")
        agi.hangup()

    if __name__ == "__main__":
        agiwire.run(main)
"""

import sys
from typing import Callable, IO, Optional

from . import commands
from .colors import DiagnosticWriter
from .commands import CHANNEL_STATE_NAMES
from .protocol import (
    CommandResult, DEFAULT_TIMEOUT, MAX_ARGS, ProtocolDesyncError,
    ProtocolError, SessionContext, StartupFormatError, encode_command,
    read_reply, read_session_context, send_command,
)


__all__ = [
    "AgiSession",
    "CHANNEL_STATE_NAMES",
    "CommandResult",
    "DEFAULT_TIMEOUT",
    "DiagnosticWriter",
    "MAX_ARGS",
    "ProtocolDesyncError",
    "ProtocolError",
    "SessionContext",
    "StartupFormatError",
    "run",
]


# ---------------------------------------------------------------------------
# Session class
# ---------------------------------------------------------------------------

class AgiSession:
    """One AGI conversation with the engine.

    Can be used as a context manager::

        with AgiSession() as agi:
            agi.answer()

    Or managed manually::

        agi = AgiSession()
        agi.connect()
        try:
            agi.verbose("hello")
        finally:
            agi.close()

    stdin and stdout are binary streams and default to the process's own
    pipes.  Diagnostics (rejected arguments, traces) go to ``diagnostics``,
    a DiagnosticWriter on stderr by default.

    Commands never raise for empty required arguments: they write a
    diagnostic line and return the command's failure value without
    contacting the engine.  A malformed reply raises ProtocolDesyncError.
    """

    def __init__(
        self,
        stdin: Optional[IO[bytes]] = None,
        stdout: Optional[IO[bytes]] = None,
        diagnostics: Optional[DiagnosticWriter] = None,
        default_timeout: str = DEFAULT_TIMEOUT,
        trace: bool = False,
    ) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self.diagnostics = diagnostics or DiagnosticWriter()
        self.default_timeout = str(default_timeout)
        self.trace = trace
        self._context = None  # type: Optional[SessionContext]

    # -- Context manager ---------------------------------------------------

    def __enter__(self) -> "AgiSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()
        return None

    def __repr__(self) -> str:
        if self._context is None:
            return "AgiSession(disconnected)"
        return "AgiSession({!r}, channel={!r})".format(
            self._context.request, self._context.channel)

    # -- Session lifecycle -------------------------------------------------

    def connect(self) -> SessionContext:
        """Read the startup block.  Must be called once before any command.

        Raises StartupFormatError if the block is malformed.
        """
        if self._context is None:
            self._context = read_session_context(self._stdin)
        return self._context

    def close(self) -> None:
        """Flush anything still buffered towards the engine."""
        try:
            self._stdout.flush()
        except (OSError, ValueError):
            # Engine already hung up the pipe
            pass

    @property
    def context(self) -> Optional[SessionContext]:
        """The startup variables, or None before connect()."""
        return self._context

    # -- Internal helpers --------------------------------------------------

    def execute(self, line: str) -> CommandResult:
        """Send one encoded command line and read its single reply.

        Raises ProtocolError if the session was not started or ``line`` is
        not a single line (nothing is written then), and
        ProtocolDesyncError if the reply is missing or malformed.
        """
        if self._context is None:
            raise ProtocolError("Not connected")
        send_command(self._stdout, line)
        if not self.trace:
            return read_reply(self._stdin)
        self.diagnostics.sent(line)
        return read_reply(self._stdin, self.diagnostics.received)

    def command(self, *parts: str) -> CommandResult:
        """Send an arbitrary command built from fragments.

        Empty fragments are skipped, so ``command("NOOP", "")`` sends
        ``NOOP``.  Returns the raw decoded reply.
        """
        return self.execute(encode_command(parts))

    def _invoke(self, command, *values):
        missing = command.missing(values)
        if missing is not None:
            self.diagnostics.error(
                "ERROR! <{}> must not be empty.".format(missing))
            return command.rejected
        line = command.build(values, self.default_timeout)
        return command.mapper(self.execute(line))

    # -- Channel -----------------------------------------------------------

    def answer(self) -> int:
        """Answer the channel.  Returns 0 on success, -1 on failure."""
        return self._invoke(commands.ANSWER)

    def channel_status(self, channel_name: str = "") -> int:
        """Return the state of a channel (current one if no name).

        0 down/available, 1 down/reserved, 2 off hook, 3 digits dialed,
        4 ringing, 5 remote end ringing, 6 up, 7 busy, -1 unknown.
        """
        return self._invoke(commands.CHANNEL_STATUS, channel_name)

    def hangup(self, channel_name: str = "") -> int:
        """Hang up a channel (current one if no name).  1 or -1."""
        return self._invoke(commands.HANGUP, channel_name)

    def set_autohangup(self, time: str) -> int:
        """Hang up automatically after ``time`` seconds (0 disables)."""
        return self._invoke(commands.SET_AUTOHANGUP, time)

    def set_callerid(self, number: str) -> int:
        return self._invoke(commands.SET_CALLERID, number)

    def set_context(self, context: str) -> int:
        """Set the dialplan context to continue in after the script."""
        return self._invoke(commands.SET_CONTEXT, context)

    def set_extension(self, extension: str) -> int:
        return self._invoke(commands.SET_EXTENSION, extension)

    def set_priority(self, priority: str) -> int:
        """Set the priority (number or label) to continue at."""
        return self._invoke(commands.SET_PRIORITY, priority)

    def set_music(self, onoff: str, mclass: str = "") -> int:
        """Turn music on hold ON or OFF, optionally with a class."""
        return self._invoke(commands.SET_MUSIC, onoff, mclass)

    def tdd_mode(self, toggle: str) -> int:
        """Toggle TDD (on, off, mate).  1 ok, 0 not capable, -1 error."""
        return self._invoke(commands.TDD_MODE, toggle)

    def exec(self, application: str, options: str = "") -> CommandResult:
        """Run a dialplan application.

        Spaces in ``options`` are escaped before sending.  Returns the raw
        reply; ``result`` is the application's return value, "-2" if the
        application could not be found.
        """
        return self._invoke(commands.EXEC, application, options)

    def gosub(self, context: str, extension: str, priority: str,
              arguments: str = "") -> int:
        return self._invoke(
            commands.GOSUB, context, extension, priority, arguments)

    def noop(self, text: str = "") -> int:
        return self._invoke(commands.NOOP, text)

    def verbose(self, message: str, level: str = "") -> int:
        """Log ``message`` on the engine console at the given level."""
        return self._invoke(commands.VERBOSE, message, level)

    # -- Database ----------------------------------------------------------

    def database_del(self, family: str, key: str) -> int:
        """Delete family/key.  1 if deleted, 0 otherwise."""
        return self._invoke(commands.DATABASE_DEL, family, key)

    def database_deltree(self, family: str, keytree: str = "") -> int:
        """Delete a family, or a keytree within it.  1 or 0.

        Without a keytree the engine has been seen to report success
        whether or not the family existed.
        """
        return self._invoke(commands.DATABASE_DELTREE, family, keytree)

    def database_get(self, family: str, key: str) -> str:
        """Return the value stored at family/key, or "" if absent."""
        return self._invoke(commands.DATABASE_GET, family, key)

    def database_put(self, family: str, key: str, value: str) -> int:
        """Store value at family/key.  1 if stored, 0 otherwise."""
        return self._invoke(commands.DATABASE_PUT, family, key, value)

    # -- Variables ---------------------------------------------------------

    def get_variable(self, variablename: str) -> str:
        """Return a channel variable's value, or "" if it is not set."""
        return self._invoke(commands.GET_VARIABLE, variablename)

    def get_full_variable(self, variablename: str, channel: str = "") -> str:
        """Like get_variable but evaluates expressions and functions.

        The engine only reports failure when the channel does not exist,
        so "" can also mean the variable is set to nothing.
        """
        return self._invoke(
            commands.GET_FULL_VARIABLE, variablename, channel)

    def set_variable(self, variablename: str, value: str) -> int:
        return self._invoke(commands.SET_VARIABLE, variablename, value)

    # -- Playback and input ------------------------------------------------

    def stream_file(self, file: str, escape_digits: str = "",
                    sample_offset: str = "") -> CommandResult:
        """Play ``file`` (no extension), interruptible by escape_digits.

        result is "0" when playback completes, the ASCII code of the digit
        pressed, or "-1" on error/hangup.  data is "endpos=<offset>".
        """
        return self._invoke(
            commands.STREAM_FILE, file, escape_digits, sample_offset)

    def control_stream_file(self, file: str, escape_digits: str = "",
                            skipms: str = "", ffchar: str = "",
                            rewchr: str = "",
                            pausechr: str = "") -> CommandResult:
        """Play ``file`` with fast-forward/rewind/pause keys.

        ffchar and rewchr default to * and # on the engine side.
        """
        return self._invoke(
            commands.CONTROL_STREAM_FILE, file, escape_digits, skipms,
            ffchar, rewchr, pausechr)

    def get_option(self, file: str, escapedigits: str,
                   timeout: str = "") -> CommandResult:
        """Play ``file`` and wait up to ``timeout`` ms for a digit.

        A pressed digit is reported in result as its decimal ASCII code,
        e.g. "49" for the 1 key.
        """
        return self._invoke(commands.GET_OPTION, file, escapedigits, timeout)

    def get_data(self, file: str, timeout: str = "",
                 maxdigits: str = "") -> CommandResult:
        """Play ``file`` and collect DTMF digits.

        result holds the digits entered; data is "(timeout)" when the
        caller stopped typing before maxdigits.
        """
        return self._invoke(commands.GET_DATA, file, timeout, maxdigits)

    def wait_for_digit(self, timeout: str) -> int:
        """Wait up to ``timeout`` ms (-1 blocks) for a DTMF digit.

        Returns the ASCII code of the digit, 0 on timeout, -1 on failure.
        """
        return self._invoke(commands.WAIT_FOR_DIGIT, timeout)

    def record_file(self, file: str, format: str, escape_digits: str,
                    timeout: str, offset_samples: str = "", beep: str = "",
                    silence: str = "") -> CommandResult:
        """Record to ``file`` until a digit, timeout, silence or hangup.

        ``silence`` must be given as "s=<seconds>".  data carries the
        reason, e.g. "(dtmf) endpos=8000" or "(hangup) endpos=1600".
        """
        return self._invoke(
            commands.RECORD_FILE, file, format, escape_digits, timeout,
            offset_samples, beep, silence)

    def receive_char(self, timeout: str = "") -> CommandResult:
        """Wait for one character of text on the channel.

        Known to misbehave on real engines; treat the reply as advisory.
        """
        return self._invoke(commands.RECEIVE_CHAR, timeout)

    def receive_text(self, timeout: str = "") -> str:
        """Wait for a text message.  Returns it, or "" on failure."""
        return self._invoke(commands.RECEIVE_TEXT, timeout)

    def send_image(self, image: str) -> int:
        return self._invoke(commands.SEND_IMAGE, image)

    def send_text(self, text: str) -> int:
        return self._invoke(commands.SEND_TEXT, text)

    # -- Say ---------------------------------------------------------------
    #
    # All SAY commands return "0" when playback completes, the ASCII code
    # of the escape digit pressed, "" on error/hangup, and "-1" when a
    # required argument is missing.

    def say_alpha(self, letters: str, escape_digits: str) -> str:
        return self._invoke(commands.SAY_ALPHA, letters, escape_digits)

    def say_digits(self, numbers: str, escape_digits: str) -> str:
        return self._invoke(commands.SAY_DIGITS, numbers, escape_digits)

    def say_number(self, number: str, escape_digits: str,
                   gender: str = "") -> str:
        return self._invoke(
            commands.SAY_NUMBER, number, escape_digits, gender)

    def say_phonetic(self, string: str, escape_digits: str) -> str:
        return self._invoke(commands.SAY_PHONETIC, string, escape_digits)

    def say_date(self, date: str, escape_digits: str) -> str:
        """``date`` is seconds since the epoch."""
        return self._invoke(commands.SAY_DATE, date, escape_digits)

    def say_time(self, time: str, escape_digits: str) -> str:
        return self._invoke(commands.SAY_TIME, time, escape_digits)

    def say_datetime(self, time: str, escape_digits: str, format: str = "",
                     timezone: str = "") -> str:
        """Say a UNIX time using a voicemail.conf style ``format``."""
        return self._invoke(
            commands.SAY_DATETIME, time, escape_digits, format, timezone)

    # -- Speech ------------------------------------------------------------

    def speech_create(self, engine: str) -> int:
        return self._invoke(commands.SPEECH_CREATE, engine)

    def speech_set(self, name: str, value: str) -> int:
        return self._invoke(commands.SPEECH_SET, name, value)

    def speech_destroy(self) -> int:
        return self._invoke(commands.SPEECH_DESTROY)

    def speech_load_grammar(self, name: str, path: str) -> int:
        return self._invoke(commands.SPEECH_LOAD_GRAMMAR, name, path)

    def speech_unload_grammar(self, name: str) -> int:
        return self._invoke(commands.SPEECH_UNLOAD_GRAMMAR, name)

    def speech_activate_grammar(self, name: str) -> int:
        return self._invoke(commands.SPEECH_ACTIVATE_GRAMMAR, name)

    def speech_deactivate_grammar(self, name: str) -> int:
        return self._invoke(commands.SPEECH_DEACTIVATE_GRAMMAR, name)

    def speech_recognize(self, prompt: str, timeout: str = "",
                         offset: str = "") -> CommandResult:
        return self._invoke(
            commands.SPEECH_RECOGNIZE, prompt, timeout, offset)


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------

def run(handler: Callable[[AgiSession], Optional[int]], **kwargs) -> int:
    """Start a session, call ``handler(session)`` and return its status.

    Keyword arguments are passed to AgiSession.  A ProtocolError anywhere
    in the conversation is fatal: one diagnostic line is written and the
    process exits with status 1.
    """
    session = AgiSession(**kwargs)
    try:
        with session:
            rc = handler(session)
    except ProtocolError as e:
        session.diagnostics.error("ERROR! {}".format(e))
        sys.exit(1)
    return rc or 0
