"""Diagnostics output for AGI scripts, with optional ANSI color.

stdout belongs to the engine, so everything meant for a human goes to
stderr, which Asterisk shows on its console.
"""

import os
import sys


def _supports_color(stream):
    """Detect whether the diagnostics stream supports ANSI color."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("AGIWIRE_COLOR", "").lower() == "never":
        return False
    if os.environ.get("AGIWIRE_COLOR", "").lower() == "always":
        return True
    if not hasattr(stream, "isatty"):
        return False
    if not stream.isatty():
        return False
    if sys.platform == "win32":
        return bool(os.environ.get("WT_SESSION"))
    return True


# ANSI escape sequences
RESET = "\033[0m"
DIM = "\033[2m"
RED = "\033[31m"
YELLOW = "\033[33m"
CYAN = "\033[36m"


class DiagnosticWriter:
    """Write one line at a time to the diagnostics stream and flush.

    Usage:
        diag = DiagnosticWriter()
        diag.error("ERROR! <file> must not be empty.")   # red
        diag.warning("channel is not answered")          # yellow
        diag.line("plain text")                          # default color

    The stream is resolved lazily so that pytest's capsys and similar
    replacements of sys.stderr are honored.
    """

    def __init__(self, stream=None, force_color=None):
        self._stream = stream
        self._force_color = force_color

    @property
    def stream(self):
        return self._stream if self._stream is not None else sys.stderr

    @property
    def enabled(self):
        if self._force_color is not None:
            return self._force_color
        return _supports_color(self.stream)

    def _wrap(self, code, text):
        if self.enabled:
            return "{}{}{}".format(code, text, RESET)
        return text

    def line(self, text):
        stream = self.stream
        stream.write(text + "\n")
        stream.flush()

    def error(self, text):
        self.line(self._wrap(RED, text))

    def warning(self, text):
        self.line(self._wrap(YELLOW, text))

    def sent(self, line):
        """Trace a command line written to the engine."""
        self.line(self._wrap(CYAN, ">> " + line.rstrip("\n")))

    def received(self, line):
        """Trace a reply line read from the engine."""
        self.line(self._wrap(DIM, "<< " + line.rstrip("\n")))


def color_setting(value):
    """Map a config ``color`` value to a DiagnosticWriter force_color.

    Returns True for "always", False for "never" and None for "auto".
    Raises ValueError for anything else.
    """
    value = (value or "auto").strip().lower()
    if value == "always":
        return True
    if value == "never":
        return False
    if value == "auto":
        return None
    raise ValueError(
        "color must be auto, always or never, got: {!r}".format(value))
