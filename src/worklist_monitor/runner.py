from __future__ import annotations

import logging
import re
import time
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from .aggregate import aggregate
from .alerts import AlertEmitter, should_alert
from .config import AccountConfig, AppConfig
from .history import HistoryRecorder
from .models import AccountCredentials, AggregatedResult, RunOutcome
from .portal.client import WorklistPortalClient


logger = logging.getLogger(__name__)


class LoginFailedError(RuntimeError):
    pass


def account_slug(name: str) -> str:
    # e.g. "Dr. Jane Doe" -> "dr.-jane-doe"; keeps file names stable across runs.
    slug = re.sub(r"\s+", "-", (name or "").strip().lower())
    return slug.replace("/", "-").replace("\\", "-")


class AccountMonitor:
    """
    One account's check: browser session -> login -> extract -> aggregate -> history -> alert.
    """

    def __init__(self, creds: AccountCredentials, config: AppConfig, client: WorklistPortalClient) -> None:
        self.creds = creds
        self.config = config
        self.client = client
        slug = account_slug(creds.name)
        self.history = HistoryRecorder(
            config.output.history_path(slug),
            tz_name=config.output.timezone,
            drift_policy=config.output.schema_drift,
        )
        self.alerts = AlertEmitter(config.output.alert_path(slug))

    def run_check(self, *, automated: bool) -> AggregatedResult:
        logger.info("Starting case count check for %s", self.creds.name)
        wl = self.config.worklists

        with self.client.session(automated=automated) as session:
            if not self.client.login(session.page, self.creds):
                raise LoginFailedError("Failed to login to portal")
            raw = self.client.extract_all_counts(session.page, list(wl.tracked))

        result = aggregate(raw, wl.alertable or [])
        logger.info("Current case count: %d", result.total)

        self._save_history(result)
        self._save_alert(result)
        logger.info("Check completed successfully")
        return result

    def _save_history(self, result: AggregatedResult) -> None:
        try:
            self.history.record(result)
        except Exception:
            logger.exception("Could not save to history: %s", self.history.path)

    def _save_alert(self, result: AggregatedResult) -> None:
        wl = self.config.worklists
        has_cases = should_alert(result, wl.trigger, wl.alert_threshold)
        if has_cases:
            logger.info(
                "Alert raised: %d cases found (%s: %d)", result.total, wl.trigger, result.worklists.get(wl.trigger, 0)
            )
        else:
            logger.info("No cases found in %s, no alert raised", wl.trigger)
        try:
            self.alerts.emit(result, self.creds.name, has_cases=has_cases)
        except Exception:
            logger.exception("Could not write alert file: %s", self.alerts.path)


def _describe_error(err: Exception, account: AccountConfig) -> str:
    if isinstance(err, ValidationError):
        missing = sorted({str(e["loc"][0]) for e in err.errors() if e.get("loc")})
        return f"Incomplete credentials for {account.name or 'unnamed account'} ({', '.join(missing)})"
    return str(err) or err.__class__.__name__


def run_all(
    config: AppConfig,
    *,
    automated: bool,
    client: Optional[WorklistPortalClient] = None,
    accounts: Optional[Iterable[AccountConfig]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[RunOutcome]:
    """
    Check every account in order. A failing account is recorded and never stops the others.
    """
    client = client or WorklistPortalClient(portal=config.portal, debug_dir=config.output.debug_dir)
    todo = list(config.accounts if accounts is None else accounts)
    outcomes: list[RunOutcome] = []

    logger.info("Starting automated case monitoring for %d account(s)", len(todo))
    for idx, account in enumerate(todo):
        display = (account.name or "").strip() or f"account #{idx + 1}"
        logger.info("Processing: %s", display)
        try:
            creds = AccountCredentials(name=account.name, username=account.username, password=account.password)
            AccountMonitor(creds, config, client).run_check(automated=automated)
        except Exception as e:
            reason = _describe_error(e, account)
            logger.error("Check failed for %s: %s", display, reason)
            outcomes.append(RunOutcome(account=display, status="failed", error=reason))
            _apply_stale_policy(config, account)
        else:
            logger.info("Successfully completed check for %s", display)
            outcomes.append(RunOutcome(account=display, status="success"))

        if idx < len(todo) - 1:
            pause = config.portal.timings.between_accounts_s
            logger.info("Waiting %.1fs before next account", pause)
            sleep(pause)

    for line in format_summary(outcomes):
        logger.info(line)
    return outcomes


def _apply_stale_policy(config: AppConfig, account: AccountConfig) -> None:
    policy = config.output.stale_alert
    if policy == "retain" or not (account.name or "").strip():
        return
    emitter = AlertEmitter(config.output.alert_path(account_slug(account.name)))
    try:
        emitter.handle_failure(policy)
    except Exception:
        logger.exception("Could not apply stale alert policy %r to %s", policy, emitter.path)


def format_summary(outcomes: Iterable[RunOutcome]) -> list[str]:
    lines = ["SUMMARY:"]
    for o in outcomes:
        mark = "✅" if o.ok else "❌"
        suffix = f" - {o.error}" if o.error else ""
        lines.append(f"  {mark} {o.account}: {o.status.upper()}{suffix}")
    return lines
