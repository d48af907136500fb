from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(frozen=True)
class PortalSelectors:
    """
    The worklist portal is a GWT app with generated markup; selectors may change over time.
    Keep all UI selectors/text hooks here for easy maintenance.
    """

    # Login
    login_form_marker_text: str = "Log in to your account"
    username_input: str = 'input[type="text"][class="Input"][name="userid"]'
    password_input: str = 'input[type="password"][class="Input"][name="passwd"]'
    login_button: str = ".Button.LoginButton"
    login_button_text: str = "Log In"
    # Only rendered (inline-block) once the authenticated shell has loaded.
    logged_in_marker: str = 'div.gwt-HTML.eRad[style*="display: inline-block"]'

    # Worklists
    worklist_selector_toggle: str = ".FILTER_DOWN"
    worklist_label: str = ".gwt-Label.epserv-ListLabel"
    worklist_row: str = ".InnerRow"
    worklist_count: str = ".epserv-TabPanel-BarTotalNum"

    def css_hooks(self, *, logged_in: bool) -> dict[str, str]:
        """
        CSS selectors worth probing on the current page, keyed by field name.
        """
        pre_login = {"username_input", "password_input", "login_button"}
        out: dict[str, str] = {}
        for f in fields(self):
            if f.name.endswith("_text"):
                continue
            is_login_hook = f.name in pre_login
            if is_login_hook == logged_in:
                continue
            out[f.name] = getattr(self, f.name)
        return out
