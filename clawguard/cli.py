"""
clawguard/cli.py
─────────────────
ClawGuard CLI — terminal entry point.

Usage:
  clawguard classify '{"tool": "exec", "arguments": {"command": "sudo rm -rf /"}}'
  echo '{"tool": "read", ...}' | clawguard classify -
  clawguard sequences --sessions-dir ~/.openclaw/agents/main/sessions
  clawguard serve --port 3847 --sink-url https://siem.example/ingest
  clawguard show-config
  clawguard version
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import pathlib
import sys

from clawguard import __version__

# ANSI colour codes
_RESET  = "\033[0m"
_GRAY   = "\033[90m"
_CYAN   = "\033[96m"
_RED    = "\033[91m"
_YELLOW = "\033[93m"
_GREEN  = "\033[92m"
_BOLD   = "\033[1m"
_DIM    = "\033[2m"


def _supports_ansi() -> bool:
    """Return True if the terminal supports ANSI colour codes."""
    if os.environ.get("NO_COLOR"):
        return False
    if sys.platform == "win32":
        return os.environ.get("WT_SESSION") is not None or "ANSICON" in os.environ
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


# ──────────────────────────────────────────────────────────────────────────────
# SEVERITY COLOURS
# ──────────────────────────────────────────────────────────────────────────────

_SEV_COLOR = {
    "critical": _RED,
    "high":     _YELLOW,
    "medium":   "\033[33m",
    "low":      _GREEN,
    "none":     _GREEN,
}


def _sev(severity: str, color: bool = True) -> str:
    if not color:
        return severity.upper()
    c = _SEV_COLOR.get(severity, "")
    return f"{_BOLD}{c}{severity.upper()}{_RESET}"


def _load_config(args):
    from clawguard.config import load_config
    return load_config(
        path=getattr(args, "config", None),
        dotenv_path=getattr(args, "env_file", None),
        port=getattr(args, "port", None),
        bind=getattr(args, "bind", None),
        sessions_dirs=getattr(args, "sessions_dir", None),
        trusted_root=getattr(args, "trusted_root", None),
        webhook_url=getattr(args, "webhook_url", None),
        sink_url=getattr(args, "sink_url", None),
        window_minutes=getattr(args, "window_minutes", None),
    )


# ──────────────────────────────────────────────────────────────────────────────
# COMMANDS
# ──────────────────────────────────────────────────────────────────────────────

def cmd_classify(args, color: bool) -> int:
    """Classify one JSON activity record."""
    from clawguard.core.classifier import classify

    raw = sys.stdin.read() if args.record == "-" else args.record
    try:
        record = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"❌  Invalid JSON record: {e}", file=sys.stderr)
        return 2
    if not isinstance(record, dict):
        print("❌  Record must be a JSON object", file=sys.stderr)
        return 2

    verdict = classify(record, trusted_root=args.trusted_root)

    if args.json:
        print(json.dumps(verdict, indent=2))
    else:
        print(f"\n  Level    : {_sev(verdict['level'], color)}")
        print(f"  Category : {verdict['category']}")
        print(f"  Score    : {verdict['score']}")
        for flag in verdict["flags"]:
            print(f"    {'⚠' if color else '!'} {flag}")
        print()

    return 1 if args.fail_on_detection and verdict["level"] in ("high", "critical") else 0


def cmd_sequences(args, color: bool) -> int:
    """Scan session logs for suspicious sequences."""
    from clawguard.core.parser import load_activity
    from clawguard.extended.sequence import scan

    cfg = _load_config(args)
    records = load_activity(cfg.sessions_dirs, limit=args.records)
    try:
        result = scan(records, window_seconds=cfg.detection.window_seconds, max_results=args.limit)
    except ValueError as e:
        print(f"❌  {e}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(result, indent=2, default=str))
        return 0

    sequences = result["sequences"]
    print(f"\n  Records scanned : {len(records)}")
    print(f"  Sequences       : {result['total']}  (showing {len(sequences)})")
    print(f"  Severity        : {_sev(result['severity'], color)}\n")
    for seq in sequences:
        head = f"{_BOLD}{seq['type']}{_RESET}" if color else seq["type"]
        print(f"  {_sev(seq['severity'], color):<10} {head}  {seq['timestamp']}")
        print(f"      {seq['description']}")
        for action in seq["actions"]:
            line = f"      → {action['tool']}: {action.get('summary')}"
            print(f"{_DIM}{line}{_RESET}" if color else line)
        print()
    return 1 if args.fail_on_detection and result["severity"] in ("high", "critical") else 0


def cmd_serve(args, color: bool) -> int:
    """Start the monitor and the live feed server."""
    from clawguard.server import ClawGuardServer

    cfg = _load_config(args)
    print(f"\n  clawguard  →  {cfg.bind}:{cfg.port}")
    print(f"  config source  :  {cfg.source}")
    print(f"  sessions       :  {', '.join(cfg.sessions_dirs)}\n")
    ClawGuardServer(cfg).run()
    return 0


def cmd_show_config(args, color: bool) -> int:
    cfg = _load_config(args)
    print(json.dumps(cfg.redacted(), indent=2))
    return 0


def cmd_version(args, color: bool) -> int:
    """Print version info."""
    from clawguard.extended.sequence import SEQUENCE_SEVERITY

    if color:
        print(f"\n  {_BOLD}clawguard{_RESET}  v{_CYAN}{__version__}{_RESET}")
        print(f"  {_GRAY}Sequence patterns : {len(SEQUENCE_SEVERITY)}{_RESET}")
        for name in SEQUENCE_SEVERITY:
            print(f"    {_GREEN}✓{_RESET}  {name}")
    else:
        print(f"\n  clawguard v{__version__}")
        print(f"  Sequence patterns: {len(SEQUENCE_SEVERITY)}")
        for name in SEQUENCE_SEVERITY:
            print(f"    + {name}")
    print()
    return 0


# ──────────────────────────────────────────────────────────────────────────────
# MAIN
# ──────────────────────────────────────────────────────────────────────────────

def _add_config_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", "-c", type=pathlib.Path, default=None, metavar="PATH",
                   help="JSON config file (default: ./config.json, ~/.clawguard/config.json).")
    p.add_argument("--env-file", type=pathlib.Path, default=None, metavar="PATH",
                   help="Path to .env file (default: ./.env).")
    p.add_argument("--sessions-dir", action="append", default=None, metavar="DIR",
                   help="Session directory to read; repeatable (CLAWGUARD_SESSIONS_DIR env).")
    p.add_argument("--trusted-root", default=None, metavar="DIR",
                   help="Writes under this directory are not escalated (default: home).")
    p.add_argument("--window-minutes", type=float, default=None, metavar="MIN",
                   help="Sequence correlation window in minutes (default 5).")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawguard",
        description="clawguard — risk classification and sequence detection for agent activity logs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colour output")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity.")

    sub = parser.add_subparsers(dest="command", title="commands")

    # classify
    p_cls = sub.add_parser("classify", help="Classify one JSON activity record")
    p_cls.add_argument("record", help="JSON record, or - to read stdin")
    p_cls.add_argument("--trusted-root", default=None, metavar="DIR")
    p_cls.add_argument("--json", action="store_true", help="Print the raw verdict")
    p_cls.add_argument("--fail-on-detection", action="store_true",
                       help="Exit code 1 if level is high or critical")

    # sequences
    p_seq = sub.add_parser("sequences", help="Scan session logs for suspicious sequences")
    _add_config_args(p_seq)
    p_seq.add_argument("--limit", type=int, default=20, help="Max sequences to show")
    p_seq.add_argument("--records", type=int, default=5000, help="Max records to scan")
    p_seq.add_argument("--json", action="store_true", help="Print the raw result")
    p_seq.add_argument("--fail-on-detection", action="store_true",
                       help="Exit code 1 if severity is high or critical")

    # serve
    p_srv = sub.add_parser("serve", help="Monitor sessions and serve the live feed")
    _add_config_args(p_srv)
    p_srv.add_argument("--port", "-p", type=int, default=None, metavar="PORT",
                       help="Listen port (default 3847 / CLAWGUARD_PORT env).")
    p_srv.add_argument("--bind", "-b", default=None, metavar="ADDRESS",
                       help="Bind address (default 127.0.0.1 / CLAWGUARD_BIND env).")
    p_srv.add_argument("--sink-url", default=None, metavar="URL",
                       help="Stream classified entries to this endpoint (CLAWGUARD_SINK_URL env).")
    p_srv.add_argument("--webhook-url", default=None, metavar="URL",
                       help="Send alerts to this webhook (CLAWGUARD_WEBHOOK_URL env).")

    # show-config
    p_cfg = sub.add_parser("show-config", help="Print resolved config and exit")
    _add_config_args(p_cfg)

    # version
    sub.add_parser("version", help="Show version and sequence patterns")

    return parser


_COMMANDS = {
    "classify":    cmd_classify,
    "sequences":   cmd_sequences,
    "serve":       cmd_serve,
    "show-config": cmd_show_config,
    "version":     cmd_version,
}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    color = _supports_ansi() and not args.no_color

    command = _COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0
    return command(args, color)


if __name__ == "__main__":
    sys.exit(main())
