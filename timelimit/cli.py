"""timelimit CLI — run the usage check, print a user's report, or install the launchd job.

    timelimit              run one usage check for the console user
    timelimit USER         show daily usage for USER
    timelimit --install    run the check every minute via launchd
"""

import argparse
import logging
import logging.handlers
import subprocess
import sys
import textwrap
from pathlib import Path

import timelimit.config as config
from timelimit.db import UsageStore
from timelimit.engine import LimitEngine
from timelimit.errors import TimeLimitError
from timelimit.policy import load_policies
from timelimit.report import DailyAggregator, render_json, render_text
from timelimit.session import MacSession

log = logging.getLogger("timelimit")

_PLIST_LABEL = "com.timelimit.check"
_PLIST_DST = Path("/Library/LaunchDaemons") / f"{_PLIST_LABEL}.plist"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _file_handlers() -> list[logging.Handler]:
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    main_log = logging.handlers.TimedRotatingFileHandler(
        str(config.LOG_PATH), when="midnight", backupCount=config.LOG_RETENTION_DAYS,
    )
    try:
        errors = logging.handlers.TimedRotatingFileHandler(
            str(config.ERROR_LOG_PATH), when="midnight", backupCount=config.LOG_RETENTION_DAYS,
        )
    except OSError:
        main_log.close()
        raise
    errors.setLevel(logging.ERROR)
    return [main_log, errors]


def _setup_logging(verbose: bool = False, debug: bool = False, quiet: bool = False,
                   to_file: bool = True) -> None:
    """Configure the root logger once per invocation.

    The report path passes ``to_file=False``: it may run as a user who cannot
    write the log files owned by the launchd job.
    """
    if quiet:
        logging.basicConfig(handlers=[logging.NullHandler()], force=True)
        return

    handlers: list[logging.Handler] = []
    file_error: OSError | None = None
    if to_file:
        try:
            handlers.extend(_file_handlers())
        except OSError as e:
            file_error = e
    if verbose or debug or not handlers:
        stderr = logging.StreamHandler(sys.stderr)
        if not (verbose or debug):
            stderr.setLevel(logging.WARNING)
        handlers.append(stderr)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        log.warning("cannot write log files in %s (%s); logging to stderr", config.DATA_DIR, file_error)


def _generate_plist(limits: Path, db: Path) -> str:
    data = config.DATA_DIR
    return textwrap.dedent(f"""\
        <?xml version="1.0" encoding="UTF-8"?>
        <!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN"
          "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
        <plist version="1.0">
        <dict>
            <key>Label</key>
            <string>{_PLIST_LABEL}</string>
            <key>ProgramArguments</key>
            <array>
                <string>{sys.executable}</string>
                <string>-m</string>
                <string>timelimit</string>
                <string>--limits</string>
                <string>{limits}</string>
                <string>--db</string>
                <string>{db}</string>
            </array>
            <key>EnvironmentVariables</key>
            <dict>
                <key>TIMELIMIT_DATA_DIR</key>
                <string>{data}</string>
            </dict>
            <key>StartInterval</key>
            <integer>{config.CHECK_INTERVAL}</integer>
            <key>RunAtLoad</key>
            <true/>
            <key>StandardOutPath</key>
            <string>{data}/timelimit.stdout.log</string>
            <key>StandardErrorPath</key>
            <string>{data}/timelimit.stderr.log</string>
        </dict>
        </plist>""")


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_check(args: argparse.Namespace) -> int:
    policies = load_policies(args.limits)
    if not policies:
        log.debug("no limits configured")
    with UsageStore(path=args.db) as store:
        engine = LimitEngine(store, policies, MacSession(), action=config.ENFORCE_ACTION)
        engine.update()
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    with UsageStore(path=args.db) as store:
        series = DailyAggregator(store).build_series(args.user)
    print(render_json(series) if args.json else render_text(args.user, series))
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    limits, db = args.limits.resolve(), args.db.resolve()
    try:
        config.DATA_DIR.mkdir(parents=True, exist_ok=True)
        _PLIST_DST.write_text(_generate_plist(limits, db))
    except OSError as e:
        print(f"  [!] Cannot write {_PLIST_DST}: {e}")
        print("      Installing the LaunchDaemon needs root — run with sudo")
        return 1
    print(f"  [+] Data directory: {config.DATA_DIR}")
    if not limits.exists():
        print(f"  [!] No limit file at {limits} — nobody will be limited")
    print(f"  [+] LaunchDaemon written to {_PLIST_DST}")

    subprocess.run(["launchctl", "unload", str(_PLIST_DST)], capture_output=True)
    subprocess.run(["launchctl", "load", "-w", str(_PLIST_DST)], capture_output=True)
    print(f"  [+] LaunchDaemon loaded (every {config.CHECK_INTERVAL}s)")
    return 0


def cmd_uninstall(args: argparse.Namespace) -> int:
    if _PLIST_DST.exists():
        try:
            subprocess.run(["launchctl", "unload", str(_PLIST_DST)], capture_output=True)
            _PLIST_DST.unlink()
        except OSError as e:
            print(f"  [!] Cannot remove {_PLIST_DST}: {e} — run with sudo")
            return 1
        print("  [+] LaunchDaemon removed")
    else:
        print("  [ ] LaunchDaemon not found (already removed?)")
    print(f"  [ ] Data directory kept at: {config.DATA_DIR}")
    return 0


# ── Main ─────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timelimit",
        description="per-user daily computer time limits for macOS",
    )
    parser.add_argument("user", nargs="?",
                        help="show the daily usage report for this user instead of running the check")
    parser.add_argument("--json", action="store_true",
                        help="print the report as JSON")
    parser.add_argument("--limits", type=Path, default=config.LIMITS_PATH,
                        help=f"limit file (default: {config.LIMITS_PATH})")
    parser.add_argument("--db", type=Path, default=config.DB_PATH,
                        help=f"usage database (default: {config.DB_PATH})")

    out = parser.add_mutually_exclusive_group()
    out.add_argument("-v", "--verbose", action="store_true", help="also log to stderr")
    out.add_argument("--debug", action="store_true", help="log debug output to stderr")
    out.add_argument("-q", "--quiet", action="store_true", help="discard all log output")

    job = parser.add_mutually_exclusive_group()
    job.add_argument("--install", action="store_true",
                     help="install the launchd job that runs the check every minute")
    job.add_argument("--uninstall", action="store_true",
                     help="remove the launchd job")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.install:
        return cmd_install(args)
    if args.uninstall:
        return cmd_uninstall(args)

    _setup_logging(verbose=args.verbose, debug=args.debug, quiet=args.quiet,
                   to_file=not args.user)
    command = cmd_report if args.user else cmd_check
    try:
        return command(args)
    except TimeLimitError as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
