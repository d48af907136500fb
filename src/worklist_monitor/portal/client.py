from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright

from ..config import PortalConfig
from ..models import AccountCredentials
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)


class SessionSetupError(RuntimeError):
    """
    Raised when the browser cannot be launched (missing binary, sandbox failure, ...).
    """


_COUNT_RE = re.compile(r"^\s*(\d+)")

_BODY_HAS_TEXT_JS = """
(needle) => Array.from(document.querySelectorAll('div'))
  .some(div => (div.textContent || '').includes(needle))
"""

_CLICK_BY_EXACT_TEXT_JS = """
({ selector, text }) => {
  const match = Array.from(document.querySelectorAll(selector))
    .find(el => (el.textContent || '').trim() === text);
  if (!match) return false;
  match.click();
  return true;
}
"""

_ROW_COUNT_TEXT_JS = """
({ name, rowSelector, countSelector }) => {
  for (const row of document.querySelectorAll(rowSelector)) {
    const divs = Array.from(row.querySelectorAll('div'));
    if (!divs.some(div => (div.textContent || '').includes(name))) continue;
    const countEl = row.querySelector(countSelector);
    if (countEl) return (countEl.textContent || '').trim();
  }
  return null;
}
"""


def parse_count(text: Optional[str]) -> int:
    """
    Leading-integer parse of a worklist total: "12" -> 12, "12 cases" -> 12, "1,204" -> 1204.
    Anything without a leading number (blank, "--", "n/a") counts as 0.
    """
    m = _COUNT_RE.match((text or "").replace(",", ""))
    return int(m.group(1)) if m else 0


@dataclass
class PortalSession:
    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    closed: bool = False


class WorklistPortalClient:
    """
    Drives one browser session against the worklist portal.

    Every step is sequential: the portal keeps a single worklist selection and dropdown state
    client-side, so nothing here may run concurrently against the same page.
    """

    def __init__(
        self,
        *,
        portal: PortalConfig,
        selectors: Optional[PortalSelectors] = None,
        debug_dir: str = "data/debug",
        step_debug: bool = False,
    ) -> None:
        self.portal = portal
        self.timings = portal.timings
        self.selectors = selectors or PortalSelectors()
        self.debug_dir = debug_dir
        self._step_debug_enabled = step_debug
        self._step_counter = 0

    # Session lifecycle

    def establish_session(self, *, automated: bool) -> PortalSession:
        pw: Optional[Playwright] = None
        browser: Optional[Browser] = None
        try:
            pw = sync_playwright().start()
            browser = self._launch(pw, automated=automated)
            context = browser.new_context(
                viewport={"width": self.portal.viewport.width, "height": self.portal.viewport.height},
                user_agent=self.portal.user_agent,
            )
            page = context.new_page()
        except Exception as e:
            logger.error("Failed to set up browser: %s", e)
            if browser is not None:
                try:
                    browser.close()
                except Exception:
                    logger.debug("Failed to close half-initialised browser.", exc_info=True)
            if pw is not None:
                try:
                    pw.stop()
                except Exception:
                    logger.debug("Failed to stop Playwright driver.", exc_info=True)
            raise SessionSetupError(f"Could not launch browser: {e}") from e

        self._step_counter = 0
        logger.info("Browser launched in %s mode", "automated (headless)" if automated else "local (headed)")
        return PortalSession(playwright=pw, browser=browser, context=context, page=page)

    def teardown(self, session: PortalSession) -> None:
        if session.closed:
            return
        session.closed = True
        for what, close in (
            ("context", session.context.close),
            ("browser", session.browser.close),
            ("playwright", session.playwright.stop),
        ):
            try:
                close()
            except Exception as e:
                logger.warning("Error while closing %s: %s", what, e)

    @contextmanager
    def session(self, *, automated: bool) -> Iterator[PortalSession]:
        s = self.establish_session(automated=automated)
        try:
            yield s
        finally:
            self.teardown(s)

    def _launch(self, pw: Playwright, *, automated: bool) -> Browser:
        kwargs: dict[str, Any] = {
            "headless": automated,
            "args": list(self.portal.launch_args),
            "timeout": self.timings.launch_timeout_ms,
        }
        executable = (self.portal.executable_path or "").strip()
        if executable and not automated:
            kwargs["executable_path"] = executable
            return pw.chromium.launch(**kwargs)

        try:
            return pw.chromium.launch(**kwargs)
        except Exception as e:
            if automated or "Executable doesn't exist" not in str(e):
                raise
            logger.warning("Playwright Chromium executable missing; falling back to system browser channel. (%s)", e)

        # Try Chrome first, then Edge.
        try:
            return pw.chromium.launch(channel="chrome", **kwargs)
        except Exception:
            return pw.chromium.launch(channel="msedge", **kwargs)

    # Login

    def login(self, page: Page, creds: AccountCredentials) -> bool:
        """
        Log in with `creds`. Returns False (never raises) when any step fails or times out.
        """
        sel = self.selectors
        t = self.timings
        try:
            logger.info("Navigating to portal login page")
            page.goto(self.portal.url, wait_until="domcontentloaded", timeout=t.navigation_timeout_ms)
            page.wait_for_timeout(t.post_navigation_settle_ms)
            self._step(page, "after_goto")

            logger.info("Waiting for login form (%r)", sel.login_form_marker_text)
            page.wait_for_function(_BODY_HAS_TEXT_JS, arg=sel.login_form_marker_text, timeout=t.login_form_timeout_ms)

            logger.info("Login form loaded, entering credentials")
            page.wait_for_selector(sel.username_input, timeout=t.field_timeout_ms)
            page.locator(sel.username_input).first.press_sequentially(creds.username)
            page.wait_for_selector(sel.password_input, timeout=t.field_timeout_ms)
            page.locator(sel.password_input).first.press_sequentially(creds.password)
            self._step(page, "credentials_entered")

            clicked = page.evaluate(
                _CLICK_BY_EXACT_TEXT_JS,
                {"selector": sel.login_button, "text": sel.login_button_text},
            )
            if not clicked:
                logger.error("Login failed: no %s element labelled %r", sel.login_button, sel.login_button_text)
                self._save_debug(page, name_prefix="login_button_missing")
                return False

            logger.info("Waiting %.1fs for login to process", t.login_settle_ms / 1000)
            page.wait_for_timeout(t.login_settle_ms)

            page.wait_for_selector(sel.logged_in_marker, timeout=t.login_confirm_timeout_ms)
        except Exception as e:
            logger.error("Login failed for %s: %s", creds.name, e)
            self._save_debug(page, name_prefix="login_failure")
            return False

        self._step(page, "login_complete")
        logger.info("Successfully logged in to portal")
        return True

    # Worklists

    def extract_worklist_count(self, page: Page, worklist: str) -> Optional[int]:
        """
        Select `worklist` in the portal and read its total.

        Returns None when the worklist is not offered, its row/count is not rendered, or any
        step fails. A missing worklist is expected (accounts differ), so it only warns.
        """
        sel = self.selectors
        t = self.timings
        try:
            page.click(sel.worklist_selector_toggle)
            page.wait_for_timeout(t.selector_open_settle_ms)

            logger.info("Opening worklist: %s", worklist)
            clicked = page.evaluate(_CLICK_BY_EXACT_TEXT_JS, {"selector": sel.worklist_label, "text": worklist})
            if not clicked:
                logger.warning("Could not find %s worklist", worklist)
                return None

            # No load-complete signal exists for the worklist grid.
            logger.info("Clicked %s, waiting %.1fs for data to load", worklist, t.worklist_load_settle_ms / 1000)
            page.wait_for_timeout(t.worklist_load_settle_ms)
            self._step(page, f"worklist_{worklist}")

            raw = page.evaluate(
                _ROW_COUNT_TEXT_JS,
                {"name": worklist, "rowSelector": sel.worklist_row, "countSelector": sel.worklist_count},
            )
        except Exception as e:
            logger.error("Failed to process %s: %s", worklist, e)
            self._save_debug(page, name_prefix=f"worklist_{_safe_name(worklist)}_error")
            return None

        if raw is None:
            logger.info("%s case count: Not found", worklist)
            return None
        count = parse_count(str(raw))
        logger.info("%s case count: %d", worklist, count)
        return count

    def wait_for_worklist_selector(self, page: Page) -> bool:
        try:
            page.wait_for_selector(self.selectors.worklist_selector_toggle, timeout=self.timings.worklist_toggle_timeout_ms)
            return True
        except Exception as e:
            logger.error("Worklist selector never appeared: %s", e)
            self._save_debug(page, name_prefix="worklist_selector_missing")
            return False

    def extract_all_counts(self, page: Page, worklists: list[str]) -> dict[str, Optional[int]]:
        """
        Extract each worklist in order. One failure never skips the rest; if the worklist
        selector itself never renders, every worklist is unresolved.
        """
        logger.info("Starting worklist case count extraction")
        if not self.wait_for_worklist_selector(page):
            return {name: None for name in worklists}

        counts: dict[str, Optional[int]] = {}
        for name in worklists:
            counts[name] = self.extract_worklist_count(page, name)
        return counts

    # Diagnostics

    def probe_selectors(self, page: Page, *, logged_in: bool) -> dict[str, int]:
        """
        Count matches for each configured CSS hook on the current page.
        """
        found: dict[str, int] = {}
        for name, selector in self.selectors.css_hooks(logged_in=logged_in).items():
            try:
                found[name] = page.locator(selector).count()
            except Exception as e:
                logger.warning("Selector %s (%s) could not be evaluated: %s", name, selector, e)
                found[name] = 0
        if not logged_in:
            try:
                has_marker = bool(page.evaluate(_BODY_HAS_TEXT_JS, self.selectors.login_form_marker_text))
            except Exception:
                has_marker = False
            found["login_form_marker_text"] = 1 if has_marker else 0
        return found

    def open_login_page(self, page: Page) -> bool:
        t = self.timings
        page.goto(self.portal.url, wait_until="domcontentloaded", timeout=t.navigation_timeout_ms)
        page.wait_for_timeout(t.post_navigation_settle_ms)
        try:
            page.wait_for_function(
                _BODY_HAS_TEXT_JS, arg=self.selectors.login_form_marker_text, timeout=t.login_form_timeout_ms
            )
            return True
        except Exception:
            return False

    def _save_debug(self, page: Page, *, name_prefix: str) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(page.content(), encoding="utf-8")
            try:
                (out_dir / f"{name_prefix}.txt").write_text(page.inner_text("body"), encoding="utf-8")
            except Exception:
                pass
        except Exception:
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    def _step(self, page: Page, name: str) -> None:
        """
        If enabled, log step-by-step progress and save a screenshot per step.
        """
        if not self._step_debug_enabled:
            return

        self._step_counter += 1
        prefix = f"step_{self._step_counter:02d}_{_safe_name(name)}"
        logger.info("Step %02d %s (url=%s)", self._step_counter, name, getattr(page, "url", ""))
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{prefix}.png"), full_page=True)
        except Exception:
            logger.debug("Failed to save step screenshot (name=%s).", name, exc_info=True)


def _safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
