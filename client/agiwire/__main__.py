"""CLI entry point for agiwire.

The CLI is itself an AGI script: point the dialplan at it and pick a
subcommand with the AGI arguments::

    exten => 100,1,AGI(agiwire,env)
    exten => 101,1,AGI(agiwire,play,hello-world)
    exten => 102,1,AGI(agiwire,run,ANSWER,SAY DIGITS 1234 "")

stdout is the protocol channel, so all output goes to stderr (the
Asterisk console).
"""

import argparse
import configparser
import os
import sys

from . import AgiSession, CHANNEL_STATE_NAMES, ProtocolError
from .colors import DiagnosticWriter, color_setting
from .protocol import SESSION_FIELDS


def _format_result(reply):
    text = "{} result={}".format(reply.status_code, reply.result)
    if reply.data:
        text += " " + reply.data
    return text


def cmd_env(agi, args):
    """Handle the 'env' subcommand."""
    diag = agi.diagnostics
    ctx = agi.context
    for name, wire_name in SESSION_FIELDS:
        diag.line("{}={}".format(wire_name, getattr(ctx, name)))
    for i, value in enumerate(ctx.args, 1):
        diag.line("agi_arg_{}={}".format(i, value))
    return 0


def cmd_run(agi, args):
    """Handle the 'run' subcommand."""
    lines = args.lines
    # argparse.REMAINDER may include a leading '--'; strip it
    if lines and lines[0] == "--":
        lines = lines[1:]
    if not lines:
        agi.diagnostics.error("Error: no command specified")
        return 1
    rc = 0
    for line in lines:
        reply = agi.execute(line.rstrip("\n") + "\n")
        if reply.status_code == "200":
            agi.diagnostics.line(_format_result(reply))
        else:
            agi.diagnostics.warning(_format_result(reply))
            rc = 1
    return rc


def cmd_play(agi, args):
    """Handle the 'play' subcommand."""
    if not args.no_answer and agi.answer() != 0:
        agi.diagnostics.error("Error: could not answer channel")
        return 1
    reply = agi.stream_file(args.file, args.escape_digits)
    agi.diagnostics.line(_format_result(reply))
    return 0 if reply.result != "-1" else 1


def cmd_say_digits(agi, args):
    """Handle the 'say-digits' subcommand."""
    result = agi.say_digits(args.digits, args.escape_digits)
    agi.diagnostics.line("result={}".format(result))
    return 0 if result not in ("", "-1") else 1


def cmd_read_digits(agi, args):
    """Handle the 'read-digits' subcommand."""
    reply = agi.get_data(args.file, args.timeout_ms, args.max_digits)
    if reply.result == "-1":
        agi.diagnostics.error("Error: {}".format(_format_result(reply)))
        return 1
    agi.diagnostics.line("digits={}".format(reply.result))
    if args.variable and reply.result:
        agi.set_variable(args.variable, reply.result)
    return 0


def cmd_status(agi, args):
    """Handle the 'status' subcommand."""
    state = agi.channel_status(args.channel)
    agi.diagnostics.line("{} ({})".format(state, CHANNEL_STATE_NAMES[state]))
    return 0


def _default_config_path():
    """Return the config file path used when --config is not given."""
    env_path = os.environ.get("AGIWIRE_CONFIG")
    if env_path:
        return env_path
    return os.path.join(
        os.path.expanduser("~"), ".config", "agiwire", "agiwire.conf")


def _load_config(path, explicit):
    """Load settings from a config file.

    Args:
        path: File path to read.
        explicit: True if the user passed --config (errors are fatal).

    Returns a dict with keys 'default_timeout', 'trace', 'color' (any may
    be missing).
    """
    if not os.path.exists(path):
        if explicit:
            print("Error: config file not found: {}".format(path),
                  file=sys.stderr)
            sys.exit(1)
        return {}

    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        if explicit:
            print("Error: failed to parse config file: {}".format(e),
                  file=sys.stderr)
            sys.exit(1)
        print("Warning: failed to parse config file: {}".format(e),
              file=sys.stderr)
        return {}

    result = {}

    # Default timeout
    try:
        timeout = config.getint("agi", "default_timeout", fallback=None)
    except ValueError as e:
        print("Error: invalid default_timeout in config file: {}".format(e),
              file=sys.stderr)
        sys.exit(1)
    if timeout is not None:
        result["default_timeout"] = timeout

    # Trace
    try:
        trace = config.getboolean("agi", "trace", fallback=None)
    except ValueError as e:
        print("Error: invalid trace in config file: {}".format(e),
              file=sys.stderr)
        sys.exit(1)
    if trace is not None:
        result["trace"] = trace

    # Color
    color = config.get("diagnostics", "color", fallback=None)
    if color is not None:
        try:
            result["color"] = color_setting(color)
        except ValueError as e:
            print("Error: invalid color in config file: {}".format(e),
                  file=sys.stderr)
            sys.exit(1)

    return result


def build_parser():
    parser = argparse.ArgumentParser(
        prog="agiwire",
        description="Asterisk AGI script toolbox",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to config file (default: $AGIWIRE_CONFIG or "
             "~/.config/agiwire/agiwire.conf)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        metavar="MS",
        help="Default timeout in milliseconds for commands that take one",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        default=None,
        help="Echo every command and reply to stderr",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    subparsers.add_parser("env", help="Print the startup variables")

    p_run = subparsers.add_parser("run", help="Send raw AGI command lines")
    p_run.add_argument("lines", nargs=argparse.REMAINDER,
                       help="Command lines, one per argument")

    p_play = subparsers.add_parser("play", help="Answer and play a file")
    p_play.add_argument("file", help="Sound file, without extension")
    p_play.add_argument("--escape-digits", default="",
                        help="DTMF digits that stop playback")
    p_play.add_argument("--no-answer", action="store_true",
                        help="Do not answer the channel first")

    p_say = subparsers.add_parser("say-digits", help="Say a digit string")
    p_say.add_argument("digits", help="Digits to say")
    p_say.add_argument("--escape-digits", default="#",
                       help="DTMF digits that stop playback (default: #)")

    p_read = subparsers.add_parser(
        "read-digits", help="Play a prompt and collect DTMF digits")
    p_read.add_argument("file", help="Prompt file, without extension")
    p_read.add_argument("--timeout-ms", default="",
                        help="Wait this long for input (default: "
                             "--timeout / config default)")
    p_read.add_argument("--max-digits", default="",
                        help="Stop after this many digits")
    p_read.add_argument("--variable", default="",
                        help="Store the digits in this channel variable")

    p_status = subparsers.add_parser("status", help="Show channel state")
    p_status.add_argument("channel", nargs="?", default="",
                          help="Channel name (default: current channel)")

    return parser


def main(argv=None) -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config is not None:
        config = _load_config(args.config, explicit=True)
    else:
        config = _load_config(_default_config_path(), explicit=False)

    env_timeout_str = os.environ.get("AGIWIRE_TIMEOUT")
    env_timeout = None
    if env_timeout_str:
        try:
            env_timeout = int(env_timeout_str)
        except ValueError:
            print(
                "Error: AGIWIRE_TIMEOUT must be an integer, got: {!r}".format(
                    env_timeout_str
                ),
                file=sys.stderr,
            )
            sys.exit(1)

    # Precedence: flag > env > config file > built-in default
    timeout = args.timeout
    if timeout is None:
        timeout = env_timeout
    if timeout is None:
        timeout = config.get("default_timeout")

    trace = args.trace
    if trace is None:
        trace = config.get("trace", False)

    diagnostics = DiagnosticWriter(force_color=config.get("color"))
    session_kwargs = {"diagnostics": diagnostics, "trace": trace}
    if timeout is not None:
        session_kwargs["default_timeout"] = str(timeout)

    dispatch = {
        "env": cmd_env,
        "play": cmd_play,
        "read-digits": cmd_read_digits,
        "run": cmd_run,
        "say-digits": cmd_say_digits,
        "status": cmd_status,
    }

    try:
        with AgiSession(**session_kwargs) as agi:
            rc = dispatch[args.command](agi, args)
    except ProtocolError as e:
        diagnostics.error("ERROR! {}".format(e))
        sys.exit(1)
    if rc:
        sys.exit(rc)


if __name__ == "__main__":
    main()
