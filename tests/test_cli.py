"""Unit tests for the agiwire CLI and the run() entry point.

The CLI reads the startup block from sys.stdin and writes commands to
sys.stdout, so both are swapped for in-memory streams.  Human-readable
output is expected on stderr only.
"""

import io
import sys
from unittest import mock

import pytest

from agiwire import DiagnosticWriter, run
from agiwire.__main__ import _load_config, main

from conftest import replies, startup_block


@pytest.fixture
def pipe(capsys, monkeypatch, tmp_path):
    """Install fake engine pipes as sys.stdin/sys.stdout.

    Usage: out = pipe("200 result=0", args=["x"]); ...; out.getvalue()

    capsys is requested first so its own sys.stdout swap is undone after
    ours, not before.
    """
    monkeypatch.setenv("AGIWIRE_CONFIG", str(tmp_path / "missing.conf"))
    monkeypatch.delenv("AGIWIRE_TIMEOUT", raising=False)
    monkeypatch.delenv("AGIWIRE_COLOR", raising=False)

    def _install(*reply_lines, args=(), raw=None):
        inbound = raw if raw is not None else (
            startup_block(args=args) + replies(*reply_lines))
        stdin = io.TextIOWrapper(io.BytesIO(inbound))
        stdout = io.TextIOWrapper(io.BytesIO())
        monkeypatch.setattr(sys, "stdin", stdin)
        monkeypatch.setattr(sys, "stdout", stdout)
        return stdout.buffer
    return _install


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------

class TestRun:
    """Tests for the top-level script handler."""

    def _run(self, raw, handler):
        diag = io.StringIO()
        out = io.BytesIO()
        rc = run(handler, stdin=io.BytesIO(raw), stdout=out,
                 diagnostics=DiagnosticWriter(diag, force_color=False))
        return rc, out, diag

    def test_handler_gets_connected_session(self):
        seen = {}

        def handler(agi):
            seen["args"] = agi.context.args
            return agi.answer()

        raw = startup_block(args=["a"]) + replies("200 result=0")
        rc, out, _diag = self._run(raw, handler)
        assert rc == 0
        assert seen["args"] == ("a",)
        assert out.getvalue() == b"ANSWER\n"

    def test_handler_return_value(self):
        rc, _out, _diag = self._run(startup_block(), lambda agi: 3)
        assert rc == 3

    def test_none_means_zero(self):
        rc, _out, _diag = self._run(startup_block(), lambda agi: None)
        assert rc == 0

    def test_bad_startup_block_exits_with_diagnostic(self):
        # Third line has no colon
        raw = startup_block().replace(b"agi_language: en\n",
                                      b"agi_language en\n")
        handler = mock.MagicMock()
        diag = io.StringIO()
        with pytest.raises(SystemExit) as exc_info:
            run(handler, stdin=io.BytesIO(raw), stdout=io.BytesIO(),
                diagnostics=DiagnosticWriter(diag, force_color=False))
        assert exc_info.value.code == 1
        assert diag.getvalue().startswith("ERROR! ")
        handler.assert_not_called()

    def test_desync_mid_session_exits(self):
        diag = io.StringIO()
        raw = startup_block() + replies("garbage")
        with pytest.raises(SystemExit) as exc_info:
            run(lambda agi: agi.answer(), stdin=io.BytesIO(raw),
                stdout=io.BytesIO(),
                diagnostics=DiagnosticWriter(diag, force_color=False))
        assert exc_info.value.code != 0
        assert "ERROR!" in diag.getvalue()

    def test_latin1_startup_and_reply(self):
        seen = {}

        def handler(agi):
            seen["name"] = agi.context.calleridname
            seen["value"] = agi.get_variable("GREETING")
            return 0

        raw = startup_block().replace(
            b"agi_calleridname: Front Desk\n",
            b"agi_calleridname: J\xfcrgen\n") + b"200 result=1 gr\xfc\xdf\n"
        rc, out, diag = self._run(raw, handler)
        assert rc == 0
        assert seen["name"].encode("utf-8", "surrogateescape") == b"J\xfcrgen"
        assert seen["value"].encode("utf-8", "surrogateescape") == \
            b"gr\xfc\xdf"
        assert out.getvalue() == b"GET VARIABLE GREETING\n"
        assert diag.getvalue() == ""

    def test_line_break_in_argument_exits(self):
        diag = io.StringIO()
        out = io.BytesIO()
        raw = startup_block() + replies("200 result=1", "200 result=1")
        with pytest.raises(SystemExit) as exc_info:
            run(lambda agi: agi.verbose("line one\nline two"),
                stdin=io.BytesIO(raw), stdout=out,
                diagnostics=DiagnosticWriter(diag, force_color=False))
        assert exc_info.value.code == 1
        assert diag.getvalue().startswith("ERROR! ")
        assert out.getvalue() == b""

    def test_other_exceptions_propagate(self):
        def handler(agi):
            raise KeyError("boom")

        with pytest.raises(KeyError):
            self._run(startup_block(), handler)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

class TestSubcommands:
    """Tests for each CLI subcommand."""

    def test_env(self, pipe, capsys):
        out = pipe(args=["foo", "bar"])
        main(["env"])
        err = capsys.readouterr().err
        assert "agi_request=test.py\n" in err
        assert "agi_accountcode= \n" in err
        assert "agi_arg_1=foo\n" in err
        assert "agi_arg_2=bar\n" in err
        assert out.getvalue() == b""

    def test_run(self, pipe, capsys):
        out = pipe("200 result=0", "200 result=0 endpos=10")
        main(["run", "ANSWER", "STREAM FILE beep \"\""])
        assert out.getvalue() == b'ANSWER\nSTREAM FILE beep ""\n'
        err = capsys.readouterr().err
        assert "200 result=0\n" in err
        assert "200 result=0 endpos=10\n" in err

    def test_run_error_status_exits(self, pipe, capsys):
        pipe("511 result=-1 Command Not Permitted")
        with pytest.raises(SystemExit) as exc_info:
            main(["run", "EXEC Dial"])
        assert exc_info.value.code == 1
        assert "511" in capsys.readouterr().err

    def test_run_without_lines(self, pipe, capsys):
        out = pipe()
        with pytest.raises(SystemExit) as exc_info:
            main(["run"])
        assert exc_info.value.code == 1
        assert out.getvalue() == b""

    def test_play(self, pipe, capsys):
        out = pipe("200 result=0", "200 result=0 endpos=8000")
        main(["play", "hello-world"])
        assert out.getvalue() == b'ANSWER\nSTREAM FILE hello-world ""\n'
        assert "endpos=8000" in capsys.readouterr().err

    def test_play_no_answer(self, pipe):
        out = pipe("200 result=0 endpos=8000")
        main(["play", "--no-answer", "--escape-digits", "#", "beep"])
        assert out.getvalue() == b"STREAM FILE beep #\n"

    def test_play_failure(self, pipe):
        pipe("200 result=0", "200 result=-1 endpos=0")
        with pytest.raises(SystemExit) as exc_info:
            main(["play", "missing"])
        assert exc_info.value.code == 1

    def test_say_digits(self, pipe, capsys):
        out = pipe("200 result=0")
        main(["say-digits", "1234"])
        assert out.getvalue() == b"SAY DIGITS 1234 #\n"
        assert "result=0" in capsys.readouterr().err

    def test_read_digits(self, pipe, capsys):
        out = pipe("200 result=42 (timeout)", "200 result=1")
        main(["read-digits", "enter-pin", "--max-digits", "4",
              "--variable", "PIN"])
        assert out.getvalue() == \
            b"GET DATA enter-pin 2000 4\nSET VARIABLE PIN 42\n"
        assert "digits=42" in capsys.readouterr().err

    def test_status(self, pipe, capsys):
        out = pipe("200 result=6")
        main(["status"])
        assert out.getvalue() == b"CHANNEL STATUS\n"
        assert "6 (up)" in capsys.readouterr().err

    def test_trace_flag(self, pipe, capsys):
        pipe("200 result=0")
        main(["--trace", "run", "NOOP"])
        err = capsys.readouterr().err
        assert ">> NOOP" in err
        assert "<< 200 result=0" in err

    def test_protocol_error_exits(self, pipe, capsys):
        pipe(raw=b"agi_request test\n\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["env"])
        assert exc_info.value.code == 1
        assert "ERROR!" in capsys.readouterr().err

    def test_missing_subcommand(self, pipe):
        pipe()
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfig:
    """Tests for config file, environment and flag precedence."""

    def test_config_timeout_and_trace(self, pipe, config_file, capsys):
        path = config_file("[agi]\ndefault_timeout = 5000\ntrace = yes\n")
        out = pipe("200 result=")
        main(["--config", path, "read-digits", "enter-pin"])
        assert out.getvalue() == b"GET DATA enter-pin 5000\n"
        assert ">> GET DATA enter-pin 5000" in capsys.readouterr().err

    def test_env_var_config_path(self, pipe, config_file, monkeypatch):
        out = pipe("200 result=")
        monkeypatch.setenv(
            "AGIWIRE_CONFIG", config_file("[agi]\ndefault_timeout = 700\n"))
        main(["read-digits", "enter-pin"])
        assert out.getvalue() == b"GET DATA enter-pin 700\n"

    def test_env_timeout_beats_config(self, pipe, config_file, monkeypatch):
        path = config_file("[agi]\ndefault_timeout = 5000\n")
        out = pipe("200 result=")
        monkeypatch.setenv("AGIWIRE_TIMEOUT", "3000")
        main(["--config", path, "read-digits", "enter-pin"])
        assert out.getvalue() == b"GET DATA enter-pin 3000\n"

    def test_flag_beats_env(self, pipe, monkeypatch):
        out = pipe("200 result=")
        monkeypatch.setenv("AGIWIRE_TIMEOUT", "3000")
        main(["--timeout", "4000", "read-digits", "enter-pin"])
        assert out.getvalue() == b"GET DATA enter-pin 4000\n"

    def test_bad_env_timeout_exits(self, pipe, monkeypatch):
        pipe()
        monkeypatch.setenv("AGIWIRE_TIMEOUT", "soon")
        with pytest.raises(SystemExit) as exc_info:
            main(["env"])
        assert exc_info.value.code == 1

    def test_explicit_missing_config_exits(self, pipe, tmp_path):
        pipe()
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "nope.conf"), "env"])
        assert exc_info.value.code == 1

    def test_implicit_missing_config_is_empty(self, tmp_path):
        assert _load_config(str(tmp_path / "nope.conf"), explicit=False) == {}

    def test_load_config_values(self, config_file):
        path = config_file(
            "[agi]\ndefault_timeout = 1500\ntrace = no\n"
            "[diagnostics]\ncolor = never\n")
        assert _load_config(path, explicit=True) == {
            "default_timeout": 1500, "trace": False, "color": False}

    def test_invalid_timeout_exits(self, config_file):
        path = config_file("[agi]\ndefault_timeout = later\n")
        with pytest.raises(SystemExit):
            _load_config(path, explicit=True)

    def test_invalid_color_exits(self, config_file):
        path = config_file("[diagnostics]\ncolor = sometimes\n")
        with pytest.raises(SystemExit):
            _load_config(path, explicit=True)

    def test_unparseable_implicit_config_warns(self, config_file, capsys):
        path = config_file("not an ini file\n")
        assert _load_config(path, explicit=False) == {}
        assert "Warning" in capsys.readouterr().err
