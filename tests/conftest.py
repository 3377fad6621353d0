"""Shared fixtures and helpers for agiwire tests.

No engine is needed: the engine side of the pipe is simulated with
in-memory byte streams.  ``make_session`` queues a startup block plus
canned reply lines on the session's stdin, and everything the session
writes lands in an ``io.BytesIO`` that tests can inspect.

Usage:
    pytest tests/ -v
"""

import io
import os
import sys

import pytest

# Add the client library to the path so tests can import agiwire
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from agiwire import AgiSession, DiagnosticWriter


# ---------------------------------------------------------------------------
# Startup block helpers
# ---------------------------------------------------------------------------

STARTUP_VALUES = [
    ("agi_request", "test.py"),
    ("agi_channel", "SIP/101-00000001"),
    ("agi_language", "en"),
    ("agi_type", "SIP"),
    ("agi_uniqueid", "1245040107.63"),
    ("agi_version", "1.6.0.9"),
    ("agi_callerid", "101"),
    ("agi_calleridname", "Front Desk"),
    ("agi_callingpres", "0"),
    ("agi_callingani2", "0"),
    ("agi_callington", "0"),
    ("agi_callingtns", "0"),
    ("agi_dnid", "102"),
    ("agi_rdnis", "unknown"),
    ("agi_context", "default"),
    ("agi_extension", "102"),
    ("agi_priority", "1"),
    ("agi_enhanced", "0.0"),
    ("agi_accountcode", ""),
    ("agi_threadid", "139973785782592"),
]


def startup_block(values=None, args=()):
    """Build the raw startup block the engine sends before any command.

    values is a list of (name, value) pairs for the fixed fields
    (default: STARTUP_VALUES); args are appended as agi_arg_N lines.
    """
    if values is None:
        values = STARTUP_VALUES
    lines = ["{}: {}\n".format(name, value) for name, value in values]
    for i, arg in enumerate(args, 1):
        lines.append("agi_arg_{}: {}\n".format(i, arg))
    lines.append("\n")
    return "".join(lines).encode("utf-8")


def replies(*lines):
    """Encode reply lines, adding the LF when missing."""
    return "".join(
        line if line.endswith("\n") else line + "\n" for line in lines
    ).encode("utf-8")


class FakeEngine:
    """The engine's end of the pipe: what it sent and what it received."""

    def __init__(self, inbound):
        self.to_script = io.BytesIO(inbound)
        self.from_script = io.BytesIO()
        self.diag_stream = io.StringIO()

    @property
    def written(self):
        """Everything the script wrote, decoded."""
        return self.from_script.getvalue().decode("utf-8")

    @property
    def diagnostics(self):
        return self.diag_stream.getvalue()


def make_session(*reply_lines, args=(), connect=True, raw=b"", **kwargs):
    """Create an AgiSession wired to a FakeEngine.

    Returns (session, engine).  The startup block is queued ahead of the
    replies and, unless connect=False, already consumed.  ``raw`` bytes
    are queued after the reply lines as is.
    """
    engine = FakeEngine(
        startup_block(args=args) + replies(*reply_lines) + raw)
    session = AgiSession(
        stdin=engine.to_script,
        stdout=engine.from_script,
        diagnostics=DiagnosticWriter(engine.diag_stream, force_color=False),
        **kwargs
    )
    if connect:
        session.connect()
    return session, engine


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """Return make_session so tests can queue their own replies."""
    return make_session


@pytest.fixture
def config_file(tmp_path):
    """Write a config file and return its path.

    Usage: path = config_file("[agi]\\ndefault_timeout = 5000\\n")
    """
    def _write(content):
        path = tmp_path / "agiwire.conf"
        path.write_text(content)
        return str(path)
    return _write
