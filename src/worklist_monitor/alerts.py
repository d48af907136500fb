from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import AggregatedResult
from .util.dates import utc_now_iso


logger = logging.getLogger(__name__)

StalePolicy = Literal["retain", "mark", "clear"]

_BANNER = "━" * 30


class AlertSnapshot(BaseModel):
    """
    Alert state as of the latest run. Serialized with the camelCase keys the notifier reads.
    """

    model_config = ConfigDict(populate_by_name=True)

    has_cases: bool = Field(alias="hasCases")
    cases_found: int = Field(alias="casesFound")
    timestamp: str
    account_name: str = Field(alias="doctorName")
    worklists: dict[str, int]
    formatted_message: str = Field(alias="formattedMessage")

    # Only present once a later run for the account failed (stale policy "mark").
    stale: bool = False
    stale_since: Optional[str] = Field(default=None, alias="staleSince")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_defaults=True), indent=2, ensure_ascii=False)


def should_alert(result: AggregatedResult, trigger: str, threshold: int = 0) -> bool:
    # Gated on one worklist, not the total: other worklists may be non-zero without alerting.
    return result.worklists.get(trigger, 0) > threshold


def format_message(account_name: str, result: AggregatedResult) -> str:
    lines = [
        f"📊 Case Count Report - {account_name}",
        _BANNER,
        "",
        f"👤 Account: {account_name}",
        "",
        "📋 WORKLIST DETAILS:",
        "",
    ]
    for name, count in result.worklists.items():
        lines.append(f"  • {name}: {count} cases")
    lines += [
        "",
        _BANNER,
        "",
        f"📈 TOTAL CASES: {result.total}",
        "",
        _BANNER,
    ]
    return "\n".join(lines) + "\n"


class AlertEmitter:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def build(
        self,
        result: AggregatedResult,
        account_name: str,
        *,
        has_cases: bool,
        now: Optional[datetime] = None,
    ) -> AlertSnapshot:
        return AlertSnapshot(
            has_cases=has_cases,
            cases_found=result.total,
            timestamp=utc_now_iso(now),
            account_name=account_name,
            worklists=dict(result.worklists),
            formatted_message=format_message(account_name, result),
        )

    def emit(
        self,
        result: AggregatedResult,
        account_name: str,
        *,
        has_cases: bool,
        now: Optional[datetime] = None,
    ) -> AlertSnapshot:
        """
        Overwrite the alert file with a snapshot of `result`.
        """
        snapshot = self.build(result, account_name, has_cases=has_cases, now=now)
        self._write(snapshot)
        logger.info("Alert file written (hasCases=%s casesFound=%d): %s", has_cases, result.total, self.path)
        return snapshot

    def load(self) -> Optional[AlertSnapshot]:
        if not self.path.exists():
            return None
        return AlertSnapshot.model_validate_json(self.path.read_text(encoding="utf-8"))

    def handle_failure(self, policy: StalePolicy, *, now: Optional[datetime] = None) -> None:
        """
        Apply the stale-alert policy after a failed check for this account.

        retain: leave the last snapshot untouched.
        mark: keep it but flag `stale` with the failure time.
        clear: delete it.
        """
        if policy == "retain" or not self.path.exists():
            return
        if policy == "clear":
            self.path.unlink()
            logger.info("Cleared stale alert file: %s", self.path)
            return

        snapshot = self.load()
        if snapshot is None:
            return
        if not snapshot.stale:
            snapshot = snapshot.model_copy(update={"stale": True, "stale_since": utc_now_iso(now)})
            self._write(snapshot)
            logger.info("Marked alert file stale: %s", self.path)

    def _write(self, snapshot: AlertSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(snapshot.to_json() + "\n", encoding="utf-8")
        tmp.replace(self.path)
