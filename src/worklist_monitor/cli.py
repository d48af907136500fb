from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .history import read_history
from .logging_config import configure_logging
from .models import AccountCredentials, exit_code
from .portal.client import WorklistPortalClient
from .runner import account_slug, format_summary, run_all


logger = logging.getLogger("worklist_monitor")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="worklist-monitor")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    check = sub.add_parser("check", help="Log in with every configured account and record worklist case counts")
    check.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    mode = check.add_mutually_exclusive_group()
    mode.add_argument("--headful", action="store_true", help="Show the browser (default unless CI=true)")
    mode.add_argument("--headless", action="store_true", help="Hide the browser (default when CI=true)")
    check.add_argument(
        "--account",
        action="append",
        default=[],
        help="Only check the named account (repeatable). Default: all configured accounts.",
    )
    check.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under the debug dir.")

    probe = sub.add_parser(
        "probe-selectors",
        help="Open the portal and report which configured selectors match (for fixing selectors after portal changes).",
    )
    probe.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    probe.add_argument("--headless", action="store_true", help="Hide the browser (default: headed)")
    probe.add_argument("--login", default="", metavar="ACCOUNT", help="Also log in as ACCOUNT and probe post-login selectors")
    probe.add_argument("--pause", action="store_true", help="Keep the browser open until Enter is pressed")

    history = sub.add_parser("history", help="Print the most recent history rows for an account")
    history.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    history.add_argument("--account", required=True, help="Account display name")
    history.add_argument("--last", type=int, default=10, help="Number of rows to show (default: 10)")

    return p


def _env_is_ci() -> bool:
    return (os.getenv("CI", "") or "").strip().lower() in {"1", "true", "yes"}


def _load(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path or None)
    return cfg


def _find_account(cfg: AppConfig, name: str):
    wanted = name.strip().lower()
    for account in cfg.accounts:
        if (account.name or "").strip().lower() == wanted:
            return account
    raise SystemExit(f"No configured account named {name!r}.")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.cmd == "check":
        cfg = _load(args)
        automated = args.headless or (not args.headful and _env_is_ci())

        accounts = [_find_account(cfg, n) for n in args.account] if args.account else list(cfg.accounts)
        if not accounts:
            raise SystemExit(
                "No accounts configured. Set ACCOUNT1_NAME / ACCOUNT1_USERNAME / ACCOUNT1_PASSWORD in .env, "
                "or list them under 'accounts:' in a YAML config."
            )

        client = WorklistPortalClient(portal=cfg.portal, debug_dir=cfg.output.debug_dir, step_debug=args.step_debug)
        outcomes = run_all(cfg, automated=automated, client=client, accounts=accounts)

        print()
        for line in format_summary(outcomes):
            print(line)

        code = exit_code(outcomes)
        if code:
            logger.error("One or more checks failed. Exiting with error code.")
        return code

    if args.cmd == "probe-selectors":
        cfg = _load(args)
        client = WorklistPortalClient(portal=cfg.portal, debug_dir=cfg.output.debug_dir)
        account = _find_account(cfg, args.login) if args.login else None

        try:
            with client.session(automated=args.headless) as session:
                if not client.open_login_page(session.page):
                    print(f"⚠️  Login form marker {client.selectors.login_form_marker_text!r} did not appear.")
                _print_probe("Login page", client.probe_selectors(session.page, logged_in=False))

                if account is not None:
                    creds = AccountCredentials(name=account.name, username=account.username, password=account.password)
                    if client.login(session.page, creds):
                        client.wait_for_worklist_selector(session.page)
                        _print_probe("After login", client.probe_selectors(session.page, logged_in=True))
                    else:
                        print("❌ Login failed; see log and debug dir for details.")

                if args.pause:
                    input("Press Enter to close the browser...")
        except Exception as e:
            logger.debug("probe-selectors aborted", exc_info=True)
            print(f"❌ probe-selectors failed: {e}")
            return 1
        return 0

    if args.cmd == "history":
        cfg = _load(args)
        path = cfg.output.history_path(account_slug(args.account))
        header, rows = read_history(path)
        if not header:
            print(f"No history recorded yet ({path}).")
            return 0
        print(",".join(header))
        shown = rows[-args.last:] if args.last > 0 else []
        for row in shown:
            print(",".join(row))
        return 0

    raise AssertionError("Unhandled command")


def _print_probe(title: str, found: dict[str, int]) -> None:
    print(f"\n=== {title} ===")
    for name, count in found.items():
        status = "✅ FOUND" if count else "❌ NOT FOUND"
        print(f"{status:<14} {name} ({count})")
