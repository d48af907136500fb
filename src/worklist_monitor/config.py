from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_PORTAL_URL = "https://eradwl.innovativeradiologypc.com/Evo/#login:"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_WORKLISTS = ["A##MY LIST", "UNVIEWED"]


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _parse_name_list(value: str) -> list[str]:
    # Worklist names contain spaces and '#', so only commas separate entries.
    out: list[str] = []
    for item in (value or "").split(","):
        name = item.strip()
        if name and name not in out:
            out.append(name)
    return out


def _accounts_from_env() -> list[dict]:
    """
    Collect ACCOUNT<n>_NAME / ACCOUNT<n>_USERNAME / ACCOUNT<n>_PASSWORD triples.

    Numbering starts at 1 and stops at the first missing NAME.
    """
    accounts: list[dict] = []
    n = 1
    while True:
        name = os.getenv(f"ACCOUNT{n}_NAME", "")
        if not name.strip():
            break
        accounts.append(
            {
                "name": name,
                "username": os.getenv(f"ACCOUNT{n}_USERNAME", ""),
                "password": os.getenv(f"ACCOUNT{n}_PASSWORD", ""),
            }
        )
        n += 1
    return accounts


def _default_config_from_env() -> dict:
    """
    Env-only config so a scheduled job only needs secrets in its environment.

    YAML remains an optional override for everything else.
    """
    raw: dict = {
        "portal": {
            "url": os.getenv("PORTAL_URL", DEFAULT_PORTAL_URL),
            "executable_path": os.getenv("PORTAL_EXECUTABLE_PATH", ""),
        },
        "worklists": {},
        "output": {
            "data_dir": os.getenv("DATA_DIR", "."),
            "timezone": os.getenv("HISTORY_TIMEZONE", "Asia/Kolkata"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", ""),
        },
        "accounts": _accounts_from_env(),
    }

    tracked = _parse_name_list(os.getenv("WORKLISTS", ""))
    if tracked:
        raw["worklists"]["tracked"] = tracked
    alertable = _parse_name_list(os.getenv("ALERTABLE_WORKLISTS", ""))
    if alertable:
        raw["worklists"]["alertable"] = alertable
    trigger = os.getenv("ALERT_TRIGGER_WORKLIST", "").strip()
    if trigger:
        raw["worklists"]["trigger"] = trigger
    threshold = os.getenv("ALERT_THRESHOLD", "").strip()
    if threshold:
        raw["worklists"]["alert_threshold"] = threshold
    return raw


class PortalTimings(BaseModel):
    """
    Bounded waits (`*_timeout_ms`) fail the current step when exceeded.

    Settle delays (`*_settle_ms`) are unconditional sleeps standing in for completion signals
    the portal does not expose. A slow portal makes them too short, which shows up as missing
    worklists or zero counts rather than errors.
    """

    launch_timeout_ms: int = 60_000
    navigation_timeout_ms: int = 60_000
    post_navigation_settle_ms: int = 3_000
    login_form_timeout_ms: int = 30_000
    field_timeout_ms: int = 10_000
    login_settle_ms: int = 15_000
    login_confirm_timeout_ms: int = 20_000
    worklist_toggle_timeout_ms: int = 10_000
    selector_open_settle_ms: int = 2_000
    worklist_load_settle_ms: int = 15_000
    between_accounts_s: float = 3.0


class ViewportConfig(BaseModel):
    width: int = 1920
    height: int = 1080


class PortalConfig(BaseModel):
    url: str = DEFAULT_PORTAL_URL
    # Only used for interactive (headed) runs; automated runs use Playwright's bundled Chromium.
    executable_path: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    viewport: ViewportConfig = ViewportConfig()
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
        ]
    )
    timings: PortalTimings = PortalTimings()

    @model_validator(mode="after")
    def _validate_url(self) -> "PortalConfig":
        self.url = (self.url or "").strip()
        if not self.url.startswith(("http://", "https://")):
            raise ValueError("portal.url must be a full URL like 'https://portal.example.com/'")
        return self


class WorklistConfig(BaseModel):
    """
    `tracked` worklists are extracted and written to history, in this order.
    Only `alertable` ones count towards the total; `trigger` alone gates the alert.
    """

    tracked: list[str] = Field(default_factory=lambda: list(DEFAULT_WORKLISTS))
    alertable: Optional[list[str]] = None
    trigger: str = ""
    alert_threshold: int = 0

    @model_validator(mode="after")
    def _fill_defaults_and_validate(self) -> "WorklistConfig":
        tracked = [(n or "").strip() for n in self.tracked]
        if not tracked or any(not n for n in tracked):
            raise ValueError("worklists.tracked must list at least one non-empty worklist name")
        for name in tracked:
            # History rows are split naively on ',' and '\n'.
            if "," in name or "\n" in name:
                raise ValueError(f"worklist name {name!r} must not contain commas or newlines")
        if len(set(tracked)) != len(tracked):
            raise ValueError("worklists.tracked contains duplicate names")

        alertable = [(n or "").strip() for n in self.alertable] if self.alertable is not None else tracked[:1]
        unknown = [n for n in alertable if n not in tracked]
        if unknown:
            raise ValueError(f"worklists.alertable names are not tracked: {unknown}")

        trigger = (self.trigger or "").strip() or tracked[0]
        if trigger not in tracked:
            raise ValueError(f"worklists.trigger {trigger!r} is not a tracked worklist")

        if self.alert_threshold < 0:
            raise ValueError("worklists.alert_threshold must be >= 0")

        self.tracked = tracked
        self.alertable = alertable
        self.trigger = trigger
        return self


class OutputConfig(BaseModel):
    data_dir: str = "."
    history_template: str = "case-history-{slug}.csv"
    alert_template: str = "alert-status-{slug}.json"
    debug_dir: str = "data/debug"
    timezone: str = "Asia/Kolkata"
    schema_drift: Literal["rotate", "reject", "append"] = "rotate"
    stale_alert: Literal["retain", "mark", "clear"] = "retain"

    def history_path(self, slug: str) -> Path:
        return Path(self.data_dir) / self.history_template.format(slug=slug)

    def alert_path(self, slug: str) -> Path:
        return Path(self.data_dir) / self.alert_template.format(slug=slug)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = ""


class AccountConfig(BaseModel):
    # Completeness is checked when the account's check starts (see models.AccountCredentials),
    # so one misconfigured account cannot prevent the others from running.
    name: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)


class AppConfig(BaseModel):
    portal: PortalConfig = PortalConfig()
    worklists: WorklistConfig = WorklistConfig()
    output: OutputConfig = OutputConfig()
    logging: LoggingConfig = LoggingConfig()
    accounts: list[AccountConfig] = Field(default_factory=list)


def load_config(path: Union[str, Path, None]) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
