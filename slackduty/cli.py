# slackduty/cli.py
"""
Command-line entrypoints.

Subcommands
-----------
serve
    - Registers every group on the shared APScheduler scheduler and blocks
    - SIGINT/SIGTERM set the cancel token; running firings finish, no new ones start

run [--group NAME ...]
    - Syncs every (or each named) group exactly once, for external triggers
    - Group failures are logged, not reflected in the exit code

list-groups
    - Prints configured groups with their schedule and next fire times

validate-config [--recurring]
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from datetime import datetime

from . import config_schema as _config_schema
from . import logging_utils as L
from . import scheduler as _scheduler
from .orchestrator import Orchestrator

LOG = logging.getLogger("slackduty.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging(level: str | None = None) -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if not root.handlers:
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root.setLevel(getattr(logging, level, logging.INFO))


# -------------------------- Utility / glue code ------------------------------
def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    """Very simple column table printer."""
    rows = [tuple(headers)] + [tuple(r) for r in rows]
    widths = [max(len(r[i]) for r in rows) for i in range(len(headers))]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    for idx, row in enumerate(rows):
        print("| " + " | ".join(c.ljust(w) for c, w in zip(row, widths)) + " |")
        if idx == 0:
            print(sep)
    print(sep)


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _load_settings(args: argparse.Namespace, *, with_keys: bool) -> _config_schema.Settings:
    """Load config; with ``with_keys`` the API keys are read from the environment."""
    overrides = {}
    if with_keys:
        pd_key, slack_key = _config_schema.api_keys_from_env()
        overrides = {"pagerduty_api_key": pd_key, "slack_api_key": slack_key}
    return _config_schema.load_config(args.config, **overrides)


def _select_groups(settings: _config_schema.Settings, names: list[str] | None) -> list[_config_schema.Group]:
    if not names:
        return list(settings.groups)
    out = []
    for name in names:
        try:
            out.append(settings.group(name))
        except KeyError:
            raise _config_schema.ConfigError(f"Unknown group '{name}'.") from None
    return out


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args, with_keys=False)
        _config_schema.validate(settings, recurring=args.recurring)
        print(f"OK: configuration is valid ({len(settings.groups)} group(s)).")
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_groups(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args, with_keys=False)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list groups: {e}", file=sys.stderr)
        return 1

    if not settings.groups:
        print("No groups found in config.")
        return 0

    rows = []
    for g in settings.groups:
        next_runs = "-"
        if g.schedule:
            try:
                trigger = _scheduler.build_trigger(g.schedule, settings.timezone)
                times = _scheduler.preview_trigger(trigger, settings.timezone)
                next_runs = ", ".join(t.isoformat(timespec="seconds") for t in times) or "-"
            except ValueError as e:
                next_runs = f"invalid: {e}"
        rows.append((g.name, g.schedule or "(external)", ", ".join(str(s) for s in g.usergroups), next_runs))
    _print_table(rows, headers=("GROUP", "SCHEDULE", "USERGROUPS", "NEXT RUNS"))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args, with_keys=True)
        _config_schema.validate(settings, recurring=False)
        groups = _select_groups(settings, args.group)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        L.error({"ts": _now_iso(), "where": "cli.run", "error": repr(e)})
        return 1

    L.activity({"ts": _now_iso(), "event": "cli_run", "groups": [g.name for g in groups]})
    try:
        Orchestrator(settings, external_trigger=True).run(groups=groups)
    except KeyboardInterrupt:
        return 130
    print("DONE: sync run completed.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run every group on its schedule until a termination signal is received.
    """
    try:
        settings = _load_settings(args, with_keys=True)
        _config_schema.validate(settings, recurring=True)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        L.error({"ts": _now_iso(), "where": "cli.serve", "error": repr(e)})
        return 1

    L.activity({"ts": _now_iso(), "event": "serve_start", "groups": len(settings.groups)})
    cancel = threading.Event()

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    Orchestrator(settings, external_trigger=False).run(cancel)
    L.activity({"ts": _now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="slackduty",
        description="Sync Slack usergroups from PagerDuty rosters.",
    )
    p.add_argument(
        "--config",
        help=f"Path to config file (fallbacks to {_config_schema.CONFIG_ENV} env or ~/.slackduty/config.yml).",
    )
    p.add_argument("--log-level", help="Logging level (default: LOG_LEVEL env or INFO).")
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    sp = sub.add_parser("serve", help="Run every group on its cron schedule until stopped.")
    sp.set_defaults(func=cmd_serve)

    # run
    sp = sub.add_parser("run", help="Sync groups once (for crontab or other external triggers).")
    sp.add_argument(
        "--group",
        action="append",
        metavar="NAME",
        help="Only sync this group (repeatable). Defaults to every group.",
    )
    sp.set_defaults(func=cmd_run)

    # list-groups
    sp = sub.add_parser("list-groups", help="Print all groups from config.")
    sp.set_defaults(func=cmd_list_groups)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.add_argument(
        "--recurring",
        action="store_true",
        help="Also require a valid schedule on every group.",
    )
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    _ensure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
