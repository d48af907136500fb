from __future__ import annotations

import sys
from typing import Any
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "portal: integration smoke tests that require real portal credentials",
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch) -> None:
    # A developer's .env / CI secrets must not leak into config-driven unit tests.
    for n in range(1, 6):
        for suffix in ("NAME", "USERNAME", "PASSWORD"):
            monkeypatch.delenv(f"ACCOUNT{n}_{suffix}", raising=False)
    for key in (
        "PORTAL_URL",
        "PORTAL_EXECUTABLE_PATH",
        "WORKLISTS",
        "ALERTABLE_WORKLISTS",
        "ALERT_TRIGGER_WORKLIST",
        "ALERT_THRESHOLD",
        "HISTORY_TIMEZONE",
        "DATA_DIR",
        "LOG_FILE",
        "CI",
    ):
        monkeypatch.delenv(key, raising=False)
