"""macOS menu bar front end (rumps)."""

import asyncio
import logging
import subprocess
import tempfile
import threading

import rumps

from .api import USAGE_PAGE_URL, dump_raw
from .browser import sign_in
from .browser_import import browser_cookie3_available, import_from_browser
from .config import (
    DEFAULT_TITLE_MODE,
    REFRESH_INTERVALS,
    TITLE_MODES,
    load_config,
    save_config,
)
from .credentials import CredentialStore
from .display import TITLE_ICON, title_text, window_lines
from .errors import ExtractionExhausted
from .extraction import credentials_sink
from .poller import PollingController, PollState

log = logging.getLogger(__name__)

APP_TITLE = "Claude Usage Bar"


# ── native macOS dialogs via osascript ───────────────────────────────────────

def _ask_text(title: str, prompt: str, default: str = "", hidden: bool = False) -> str | None:
    script = (
        f'display dialog "{prompt}" '
        f'default answer "{default}" '
        f'{"with hidden answer " if hidden else ""}'
        f'with title "{title}" '
        f'buttons {{"Cancel", "Save"}} default button "Save"'
    )
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True, text=True, timeout=300,
        )
    except (OSError, subprocess.SubprocessError):
        log.exception("_ask_text failed")
        return None
    if result.returncode != 0:
        return None
    out = result.stdout.strip()
    if "text returned:" in out:
        return out.split("text returned:")[-1].strip()
    return None


def _ask_credentials() -> tuple[str, str] | None:
    token = _ask_text(
        title=f"{APP_TITLE} — Session Key",
        prompt=(
            "Paste your claude.ai sessionKey cookie (sk-ant-sid01-…)\\n\\n"
            "  1. Open https://claude.ai in your browser\\n"
            "  2. Developer tools → Application → Cookies → sessionKey"
        ),
        hidden=True,
    )
    if not token:
        return None
    org = _ask_text(
        title=f"{APP_TITLE} — Organization ID",
        prompt="Paste your organization ID (the UUID in claude.ai/settings URLs)",
    )
    if not org:
        return None
    return token, org


def _notify(title: str, subtitle: str, message: str = ""):
    """rumps.notification wrapper; the notification center is unavailable
    when running from a bare interpreter without an Info.plist."""
    try:
        rumps.notification(title, subtitle, message)
    except Exception as e:
        log.debug("notification suppressed: %s", e)


def _show_text(text: str):
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".txt", delete=False, prefix="claude_usage_raw_"
        ) as tmp:
            tmp.write(text)
        subprocess.Popen(["open", "-a", "TextEdit", tmp.name])
    except OSError:
        log.exception("_show_text failed")


def _mi(title: str) -> rumps.MenuItem:
    """Display-only menu item."""
    return rumps.MenuItem(title)


# ── app ───────────────────────────────────────────────────────────────────────

class UsageBarApp(rumps.App):
    def __init__(self, store: CredentialStore | None = None,
                 controller: PollingController | None = None):
        super().__init__(TITLE_ICON, quit_button=None)
        self.config = load_config()
        self.store = store or CredentialStore()
        self.controller = controller or PollingController(
            self.store, interval=self.config.get("refresh_interval", 60),
        )
        self._auth_notified = False
        self._signing_in = False
        self._sign_in_status = ""

        # Thread-safe UI update queue (background thread → main thread)
        self._ui_lock = threading.Lock()
        self._ui_pending: PollState | None = None
        self._ui_dirty = False

        self.controller.changes.subscribe(self._post_state)
        self.store.changes.subscribe(lambda _record: self._post_state(self.controller.state()))

        self._apply(self.controller.state())
        # Fast ticker: drains pending UI updates on the main thread (avoids AppKit crashes)
        self._ui_ticker = rumps.Timer(self._flush_ui, 0.25)
        self._ui_ticker.start()

        self.controller.start_auto_refresh()

    # ── thread-safe UI helpers ────────────────────────────────────────────────

    def _post_state(self, state: PollState):
        with self._ui_lock:
            self._ui_pending = state
            self._ui_dirty = True

    def _post_status(self, _state, text: str):
        with self._ui_lock:
            self._sign_in_status = text
            self._ui_dirty = True

    def _flush_ui(self, _timer):
        with self._ui_lock:
            if not self._ui_dirty:
                return
            state = self._ui_pending or self.controller.state()
            self._ui_pending = None
            self._ui_dirty = False
        self._apply(state)

    def _apply(self, state: PollState):
        has_credentials = self.store.has_credentials
        self.title = title_text(
            state, has_credentials,
            mode=self.config.get("title_mode", DEFAULT_TITLE_MODE),
            show_icon=self.config.get("show_icon", False),
        )
        if state.needs_reauth and not self._auth_notified:
            self._auth_notified = True
            _notify(APP_TITLE, "Session expired — please sign in again",
                    "Click: Sign in with Browser…")
        elif state.last_updated is not None and state.last_error is None:
            self._auth_notified = False
        self._rebuild_menu(state, has_credentials)

    # ── menu ─────────────────────────────────────────────────────────────────

    def _rebuild_menu(self, state: PollState, has_credentials: bool):
        items: list = []

        if not has_credentials:
            items.append(_mi("  Not signed in"))
        elif state.last_updated is None:
            items.append(_mi("  Loading…" if state.last_error is None
                             else f"  ⚠️  {state.last_error_message[:60]}"))
        else:
            snap = state.snapshot
            rows = [("Current Session", snap.five_hour), ("Weekly", snap.seven_day)]
            if snap.seven_day_sonnet is not None:
                rows.append(("Weekly · Sonnet", snap.seven_day_sonnet))
            for label, window in rows:
                for line in window_lines(label, window):
                    items.append(_mi(line))
                items.append(None)
            if state.last_error is not None:
                items.append(_mi(f"  ⚠️  {state.last_error_message[:60]}"))
            items.append(_mi(f"  Updated {state.last_updated.astimezone():%H:%M:%S}"))
        if self._sign_in_status:
            items.append(_mi(f"  {self._sign_in_status}"))
        items.append(None)

        items.append(rumps.MenuItem("Refresh Now", callback=self._do_refresh))
        items.append(rumps.MenuItem("Open claude.ai/settings/usage", callback=self._open_usage_page))

        interval_menu = rumps.MenuItem("Refresh Interval")
        for label, secs in REFRESH_INTERVALS.items():
            item = rumps.MenuItem(label, callback=self._make_interval_cb(secs))
            item.state = 1 if secs == state.interval else 0
            interval_menu.add(item)
        items.append(interval_menu)

        mode = self.config.get("title_mode", DEFAULT_TITLE_MODE)
        display_menu = rumps.MenuItem("Display")
        for label, key in TITLE_MODES.items():
            item = rumps.MenuItem(label, callback=self._make_title_mode_cb(key))
            item.state = 1 if key == mode else 0
            display_menu.add(item)
        display_menu.add(rumps.separator)
        icon_item = rumps.MenuItem("Show Icon", callback=self._toggle_icon)
        icon_item.state = 1 if self.config.get("show_icon", False) else 0
        display_menu.add(icon_item)
        items.append(display_menu)
        items.append(None)

        items.append(rumps.MenuItem("Sign in with Browser…", callback=self._sign_in))
        items.append(rumps.MenuItem("Enter Credentials Manually…", callback=self._manual_entry))
        items.append(rumps.MenuItem("Import from Browser Cookies", callback=self._import_menu))
        if has_credentials:
            items.append(rumps.MenuItem("Show Raw API Data…", callback=self._show_raw))
            items.append(rumps.MenuItem("Sign Out", callback=self._sign_out))
        items.append(None)
        items.append(rumps.MenuItem("Quit", callback=self._quit))

        self.menu.clear()
        self.menu = items

    # ── callbacks ─────────────────────────────────────────────────────────────

    def _do_refresh(self, _sender):
        self.controller.refresh()

    def _open_usage_page(self, _sender):
        subprocess.Popen(["open", USAGE_PAGE_URL])

    def _make_interval_cb(self, secs: int):
        def _cb(_sender):
            self.config["refresh_interval"] = self.controller.set_interval(secs)
            save_config(self.config)
        return _cb

    def _make_title_mode_cb(self, mode: str):
        def _cb(_sender):
            self.config["title_mode"] = mode
            save_config(self.config)
            self._apply(self.controller.state())
        return _cb

    def _toggle_icon(self, _sender):
        self.config["show_icon"] = not self.config.get("show_icon", False)
        save_config(self.config)
        self._apply(self.controller.state())

    def _show_raw(self, _sender):
        _show_text(dump_raw(self.controller.state().snapshot))

    def _sign_out(self, _sender):
        self.store.clear()
        self.controller.refresh()

    def _quit(self, _sender):
        self.controller.close()
        rumps.quit_application()

    def _sign_in(self, _sender):
        if self._signing_in:
            return
        self._signing_in = True
        # Playwright needs its own event loop; keep it off the AppKit thread.
        threading.Thread(target=self._do_sign_in, daemon=True).start()

    def _do_sign_in(self):
        try:
            result = asyncio.run(sign_in(
                credentials_sink(self.store, self.controller),
                manual_entry=_ask_credentials,
                on_status=self._post_status,
            ))
            if result:
                _notify(APP_TITLE, "Signed in ✓", "Fetching usage data…")
        except ExtractionExhausted as e:
            _notify(APP_TITLE, "Sign-in failed", str(e))
        except Exception:
            log.exception("sign-in failed")
            _notify(APP_TITLE, "Sign-in failed", "See the log for details.")
        finally:
            self._signing_in = False
            self._post_status(None, "")

    def _manual_entry(self, _sender):
        threading.Thread(target=self._do_manual_entry, daemon=True).start()

    def _do_manual_entry(self):
        values = _ask_credentials()
        if not values or not all(v.strip() for v in values):
            return
        credentials_sink(self.store, self.controller)(*values)

    def _import_menu(self, _sender):
        if not browser_cookie3_available():
            _notify(APP_TITLE, "browser-cookie3 not installed",
                    "Run: pip install browser-cookie3")
            return
        # browser_cookie3 touches SQLite databases and the Keychain; keep it
        # off the main thread.
        threading.Thread(target=self._do_import, daemon=True).start()

    def _do_import(self):
        found = import_from_browser()
        if found:
            credentials_sink(self.store, self.controller)(*found)
            _notify(APP_TITLE, "Session imported from your browser ✓", "Fetching usage data…")
        else:
            _notify(
                APP_TITLE,
                "Could not find a claude.ai session in any browser",
                "Make sure you are logged in to claude.ai in Chrome, Firefox, or Safari.",
            )
