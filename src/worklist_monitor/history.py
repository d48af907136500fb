from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional, Sequence, Union

from .models import AggregatedResult
from .util.dates import format_local_timestamp


logger = logging.getLogger(__name__)

DriftPolicy = Literal["rotate", "reject", "append"]


class HistorySchemaDriftError(RuntimeError):
    """
    Raised when an existing history file's columns differ from the current worklists
    and the drift policy is "reject".
    """


def _header_line(worklists: Sequence[str]) -> str:
    return ",".join(["Time", *worklists])


class HistoryRecorder:
    """
    Append-only per-account CSV: `Time,<worklist>,...` then one row per successful check.

    Rows are written as plain comma-joined text (no quoting) so consumers can split lines on
    ','. Timestamps and worklist names therefore never contain commas.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        tz_name: str = "Asia/Kolkata",
        drift_policy: DriftPolicy = "rotate",
    ) -> None:
        self.path = Path(path)
        self.tz_name = tz_name
        self.drift_policy = drift_policy

    def ensure_header(self, worklists: Sequence[str]) -> None:
        expected = _header_line(worklists)
        if self.path.exists() and self.path.stat().st_size > 0:
            current = self._read_header()
            if current == expected:
                return
            self._handle_drift(current=current, expected=expected)
            if self.drift_policy != "rotate":
                return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8", newline="") as fh:
            fh.write(expected + "\n")
        logger.info("Created CSV history file with header: %s", self.path)

    def append(self, timestamp: str, counts: Sequence[int]) -> None:
        if "," in timestamp or "\n" in timestamp:
            raise ValueError(f"history timestamp must not contain ',' or newlines: {timestamp!r}")
        line = ",".join([timestamp, *(str(int(c)) for c in counts)])
        with self.path.open("a", encoding="utf-8", newline="") as fh:
            fh.write(line + "\n")

    def record(self, result: AggregatedResult, *, when: Optional[datetime] = None) -> str:
        """
        Ensure the header and append one row for `result`. Returns the rendered timestamp.
        """
        names = list(result.worklists)
        self.ensure_header(names)
        stamp = format_local_timestamp(when or datetime.now(timezone.utc), self.tz_name)
        self.append(stamp, [result.worklists[n] for n in names])
        logger.info("Saved to CSV: %s | Total: %d", stamp, result.total)
        return stamp

    def _read_header(self) -> str:
        with self.path.open("r", encoding="utf-8") as fh:
            return fh.readline().rstrip("\r\n")

    def _handle_drift(self, *, current: str, expected: str) -> None:
        if self.drift_policy == "reject":
            raise HistorySchemaDriftError(
                f"{self.path} has columns {current!r}, current worklists need {expected!r}"
            )
        if self.drift_policy == "append":
            logger.warning(
                "History columns changed (%r -> %r); appending under the old header in %s",
                current,
                expected,
                self.path,
            )
            return

        rotated = self._rotation_target()
        self.path.rename(rotated)
        logger.warning("History columns changed (%r -> %r); previous history moved to %s", current, expected, rotated)

    def _rotation_target(self) -> Path:
        # Two drifts within the same second must not clobber the first rotated file.
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base = f"{self.path.stem}.{stamp}"
        candidate = self.path.with_name(f"{base}{self.path.suffix}")
        n = 0
        while candidate.exists():
            n += 1
            candidate = self.path.with_name(f"{base}.{n}{self.path.suffix}")
        return candidate


def read_history(path: Union[str, Path]) -> tuple[list[str], list[list[str]]]:
    """
    Split a history file into (header columns, rows). Missing file -> ([], []).
    """
    p = Path(path)
    if not p.exists():
        return [], []
    lines = [ln for ln in p.read_text(encoding="utf-8").splitlines() if ln.strip()]
    if not lines:
        return [], []
    return lines[0].split(","), [ln.split(",") for ln in lines[1:]]
