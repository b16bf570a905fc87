"""typeprof CLI: command-line interface for the type-error profiler.

Commands:
  typeprof profile <file>        Profile an IR document and print the report tree
  typeprof watch <file>          Profile, then re-profile whenever the file changes

Exit codes: 0 no findings, 1 findings, 2 input or engine error.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from typeprof import __version__
from typeprof.config import ProfilerConfig, load_config
from typeprof.errors import EngineError
from typeprof.formatters import format_report
from typeprof.report import Report
from typeprof.session import ProfileSession, profile_and_watch


def _config(args: argparse.Namespace) -> ProfilerConfig:
    config = load_config(args.config, start_dir=os.path.dirname(os.path.abspath(args.file)))
    if getattr(args, "format", None):
        config.format = args.format
    if getattr(args, "parallel", False):
        config.parallel = True
    if getattr(args, "strict", None) is not None:
        config.explore_both_branches = args.strict
    if getattr(args, "interval", None) is not None:
        config.poll_interval = args.interval
    if getattr(args, "no_color", False):
        config.color = False
    return config.validate()


def _print_report(report: Report, config: ProfilerConfig) -> None:
    print(format_report(report, config.format, config.color))


def cmd_profile(args: argparse.Namespace) -> int:
    """Profile an IR document once."""
    if not os.path.exists(args.file):
        print(json.dumps({"error": f"File not found: {args.file}"}))
        return 2
    try:
        config = _config(args)
        report = ProfileSession(config).profile(args.file)
    except EngineError as e:
        print(e.to_json())
        return 2
    _print_report(report, config)
    return 0 if report.ok else 1


def cmd_watch(args: argparse.Namespace) -> int:
    """Watch an IR document and re-profile on changes."""
    if not os.path.exists(args.file):
        print(json.dumps({"error": f"File not found: {args.file}"}))
        return 2
    try:
        config = _config(args)
    except EngineError as e:
        print(e.to_json())
        return 2

    print(f"Watching {args.file} for changes... (Ctrl+C to stop)")
    try:
        profile_and_watch(args.file, on_report=lambda r: _print_report(r, config),
                          config=config, max_runs=args.max_runs)
    except EngineError as e:
        print(e.to_json())
        return 2
    except KeyboardInterrupt:
        print("\nWatch stopped.")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="typeprof",
        description="typeprof: find latent type errors by abstract interpretation over types",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log engine progress (-vv for debug traces)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def common(p: argparse.ArgumentParser) -> None:
        p.add_argument("file", help="IR document (.yml, .yaml or .json)")
        p.add_argument("--config", default=None, help="Configuration file (default: nearest .typeprofrc)")
        p.add_argument("--format", choices=["pretty", "text", "json"], default=None,
                       help="Output format (default: pretty)")
        p.add_argument("--parallel", action="store_true", help="Infer toplevel calls on a thread pool")
        p.add_argument("--strict", dest="strict", action="store_true", default=None,
                       help="Interpret both branches of every conditional")
        p.add_argument("--no-strict", dest="strict", action="store_false",
                       help="Prune branches guarded by a literal true/false")
        p.add_argument("--no-color", action="store_true", dest="no_color", help="Disable colors")

    # profile
    p_profile = subparsers.add_parser("profile", help="Profile an IR document")
    common(p_profile)
    p_profile.set_defaults(func=cmd_profile)

    # watch
    p_watch = subparsers.add_parser("watch", help="Re-profile an IR document whenever it changes")
    common(p_watch)
    p_watch.add_argument("--interval", type=float, default=None, help="Polling interval in seconds")
    p_watch.add_argument("--max-runs", type=int, default=None, dest="max_runs",
                         help="Stop after this many runs")
    p_watch.set_defaults(func=cmd_watch)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

    if not args.command:
        parser.print_help()
        sys.exit(2)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
