import asyncio
import getpass
import logging

from .api import fetch_usage
from .browser_import import import_from_browser
from .credentials import CredentialStore
from .display import bar, fmt_reset
from .errors import UsageBarError
from .poller import PollingController, PollState

log = logging.getLogger(__name__)

_BOLD = "\033[1m"
_DIM = "\033[2m"
_ORANGE = "\033[38;5;209m"
_RESET = "\033[0m"


def _inline(fn):
    fn()


def _print_state(state: PollState):
    if state.last_error is not None:
        print(f"  Error: {state.last_error_message}")
        if state.needs_reauth:
            print(f"  {_DIM}Run with --sign-in to refresh your session.{_RESET}")
        return
    snap = state.snapshot
    rows = [("Current session", snap.five_hour), ("Weekly", snap.seven_day)]
    if snap.seven_day_sonnet is not None:
        rows.append(("Weekly (Sonnet)", snap.seven_day_sonnet))
    print(f"\n{_BOLD}  Claude usage{_RESET}\n")
    for label, window in rows:
        print(f"  {label:<16} {_ORANGE}{bar(window.pct, 30)}{_RESET}  {window.pct:>3}%"
              f"  {_DIM}resets in {fmt_reset(window.reset_at)}{_RESET}")
    print()


def cli_status(store: CredentialStore | None = None, fetch=fetch_usage) -> int:
    store = store or CredentialStore()
    if not store.has_credentials:
        print("Not signed in. Run with --sign-in or --import-browser first.")
        return 1
    controller = PollingController(store, fetch=fetch, spawn=_inline)
    controller.refresh()
    state = controller.state()
    _print_state(state)
    return 1 if state.last_error else 0


def _prompt_credentials() -> tuple[str, str] | None:
    print("\nAutomatic sign-in did not work. Enter your credentials manually:")
    print(f"  {_DIM}sessionKey cookie from claude.ai, and the organization ID "
          f"from claude.ai/settings{_RESET}")
    try:
        token = getpass.getpass("  Session key: ")
        org = input("  Organization ID: ")
    except (EOFError, KeyboardInterrupt):
        return None
    return token, org


def cli_sign_in(store: CredentialStore | None = None, fetch=fetch_usage,
                **sign_in_kwargs) -> int:
    from .browser import sign_in

    store = store or CredentialStore()

    def _status(_state, text):
        if text:
            print(f"  {text}")

    try:
        result = asyncio.run(sign_in(
            store.set,
            manual_entry=_prompt_credentials,
            on_status=_status,
            **sign_in_kwargs,
        ))
    except (UsageBarError, OSError) as e:
        log.warning("sign-in failed: %s", e)
        print(f"Sign-in failed: {e}")
        return 1
    if result is None:
        print("Sign-in cancelled.")
        return 1
    # first fetch runs after the browser loop has shut down
    controller = PollingController(store, fetch=fetch, spawn=_inline)
    controller.refresh()
    _print_state(controller.state())
    return 0


def cli_import(store: CredentialStore | None = None, importer=import_from_browser) -> int:
    store = store or CredentialStore()
    found = importer()
    if not found:
        print("Could not find a claude.ai session in any browser.")
        print("Make sure you are logged in to claude.ai in Chrome, Firefox, or Safari.")
        return 1
    store.set(*found)
    print(f"Imported session for organization {found[1]}.")
    return 0


def cli_sign_out(store: CredentialStore | None = None) -> int:
    store = store or CredentialStore()
    store.clear()
    print("Signed out.")
    return 0
