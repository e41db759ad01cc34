"""
Sign-in state machine.

    Idle → BrowserLoading → AwaitingSignIn → Extracting(n)
         → Succeeded | Failed → ManualFallback

The browser surface reports main-frame navigations through
``on_navigated``. Once the URL leaves the login pages, probes run on the
event loop via a cancellable ``call_later`` handle, one at a time, until
both the session token and the organization id are found or the attempt
ceiling is reached. Closing the surface calls ``cancel`` and returns the
flow to Idle from any state.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import urlparse

from .errors import ExtractionExhausted
from .events import Observable

log = logging.getLogger(__name__)

SIGN_IN_URL = "https://claude.ai/login"
PROVIDER_HOST = "claude.ai"
MAX_ATTEMPTS = 10
RETRY_DELAY = 1.5

_AUTH_PATHS = ("/login", "/signup", "/sign-in", "/sign-up", "/logout", "/magic-link")


class ExtractionState(enum.Enum):
    IDLE = "idle"
    BROWSER_LOADING = "browser_loading"
    AWAITING_SIGN_IN = "awaiting_sign_in"
    EXTRACTING = "extracting"
    SUCCEEDED = "succeeded"
    MANUAL_FALLBACK = "manual_fallback"
    FAILED = "failed"


_SETTLED = (ExtractionState.IDLE, ExtractionState.SUCCEEDED, ExtractionState.FAILED)


@dataclass
class ProbeResult:
    organization_id: str | None = None
    session_token: str | None = None


class BrowserSurface(Protocol):
    async def open(self, url: str) -> None: ...
    async def probe(self) -> ProbeResult: ...
    async def cookie_token(self) -> str | None: ...
    async def close(self) -> None: ...


def is_signed_in_url(url: str) -> bool:
    """True once the browser is on claude.ai but off the login pages."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host != PROVIDER_HOST and not host.endswith("." + PROVIDER_HOST):
        return False
    path = parsed.path.rstrip("/").lower()
    return not any(path == p or path.startswith(p + "/") for p in _AUTH_PATHS)


def credentials_sink(store, controller) -> Callable[[str, str], None]:
    """Persist a new credential pair, then fetch usage with it right away."""
    def _apply(session_token: str, organization_id: str):
        store.set(session_token, organization_id)
        controller.refresh()
    return _apply


class ExtractionFlow:
    def __init__(self, surface: BrowserSurface,
                 on_credentials: Callable[[str, str], None], *,
                 max_attempts: int = MAX_ATTEMPTS,
                 retry_delay: float = RETRY_DELAY,
                 sign_in_url: str = SIGN_IN_URL):
        self._surface = surface
        self._on_credentials = on_credentials
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sign_in_url = sign_in_url

        self.state = ExtractionState.IDLE
        self.status = ""
        self.attempts = 0
        self.credentials: tuple[str, str] | None = None
        self.error: BaseException | None = None
        self.changes = Observable()

        self._retry: asyncio.TimerHandle | None = None
        self._run = 0
        self._probing_run: int | None = None
        self._probe_task: asyncio.Future | None = None
        self._settled = asyncio.Event()
        self._settled.set()

    # ── transitions ──────────────────────────────────────────────────────────

    def _transition(self, state: ExtractionState, status: str):
        log.debug("extraction %s → %s (%s)", self.state.value, state.value, status)
        self.state = state
        self.status = status
        if state in _SETTLED:
            self._settled.set()
        else:
            self._settled.clear()
        self.changes.emit(state, status)

    def _cancel_retry(self):
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None

    async def start(self):
        """Open the sign-in page in the browser surface."""
        if self.state not in _SETTLED and self.state is not ExtractionState.MANUAL_FALLBACK:
            return
        self._cancel_retry()
        self._run += 1
        self.attempts = 0
        self.credentials = None
        self.error = None
        self._transition(ExtractionState.BROWSER_LOADING, "Opening claude.ai…")
        try:
            await self._surface.open(self.sign_in_url)
        except Exception as e:
            log.exception("could not open sign-in page")
            if self.state is ExtractionState.BROWSER_LOADING:
                self._fail(ExtractionExhausted(0, f"Could not open the sign-in page: {e}"))

    def on_navigated(self, url: str):
        if self.state not in (ExtractionState.BROWSER_LOADING,
                              ExtractionState.AWAITING_SIGN_IN):
            return
        if is_signed_in_url(url):
            self.attempts = 0
            self._transition(ExtractionState.EXTRACTING, "Signed in — reading session…")
            self._schedule_probe(0)
        elif self.state is ExtractionState.BROWSER_LOADING:
            self._transition(ExtractionState.AWAITING_SIGN_IN, "Sign in to Claude in the browser window")

    def cancel(self):
        """Browser surface closed: drop timers and return to Idle."""
        self._cancel_retry()
        self._run += 1
        if self.state is ExtractionState.IDLE:
            return
        self.attempts = 0
        self._transition(ExtractionState.IDLE, "")

    def enter_manual(self):
        self._cancel_retry()
        self._run += 1
        self._transition(ExtractionState.MANUAL_FALLBACK,
                         "Enter your session key and organization ID")

    def submit_manual(self, session_token: str, organization_id: str) -> bool:
        token = (session_token or "").strip()
        org = (organization_id or "").strip()
        if not token or not org:
            self.status = "Both fields are required"
            self.changes.emit(self.state, self.status)
            return False
        self._cancel_retry()
        self._succeed(token, org)
        return self.state is ExtractionState.SUCCEEDED

    async def wait(self) -> tuple[str, str] | None:
        """Credentials on success, None if cancelled; raises on failure."""
        await self._settled.wait()
        if self.state is ExtractionState.FAILED:
            raise self.error or ExtractionExhausted(self.attempts)
        return self.credentials

    # ── probing ──────────────────────────────────────────────────────────────

    def _schedule_probe(self, delay: float):
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry = loop.call_later(delay, self._launch_probe)

    def _launch_probe(self):
        self._retry = None
        # a probe left over from a cancelled run does not block this one
        if self.state is not ExtractionState.EXTRACTING or self._probing_run == self._run:
            return
        self._probing_run = self._run
        self._probe_task = asyncio.ensure_future(self._run_probe(self._run))

    async def _attempt(self) -> tuple[str | None, str | None]:
        result = await self._surface.probe()
        token = result.session_token
        if result.organization_id and not token:
            # sessionKey is usually HttpOnly, so document.cookie misses it
            token = await self._surface.cookie_token()
        return token, result.organization_id

    async def _run_probe(self, run: int):
        try:
            token, org = await self._attempt()
        except Exception as e:
            log.warning("extraction probe failed: %s", e)
            token = org = None
        finally:
            if self._probing_run == run:
                self._probing_run = None

        if run != self._run or self.state is not ExtractionState.EXTRACTING:
            log.debug("discarding probe result from run %d, flow is %s run %d",
                      run, self.state.value, self._run)
            return
        if token and org:
            self._succeed(token, org)
            return

        self.attempts += 1
        log.info("extraction attempt %d/%d found token=%s org=%s",
                 self.attempts, self.max_attempts, bool(token), bool(org))
        if self.attempts >= self.max_attempts:
            self._fail(ExtractionExhausted(self.attempts))
            return
        self.status = f"Reading session… (attempt {self.attempts + 1}/{self.max_attempts})"
        self.changes.emit(self.state, self.status)
        self._schedule_probe(self.retry_delay)

    def _succeed(self, token: str, org: str):
        self.credentials = (token.strip(), org.strip())
        try:
            self._on_credentials(*self.credentials)
        except Exception as e:
            log.exception("saving extracted credentials failed")
            self.credentials = None
            self._fail(e)
            return
        self._transition(ExtractionState.SUCCEEDED, "Signed in ✓")

    def _fail(self, error: BaseException):
        self._cancel_retry()
        self.error = error
        self._transition(ExtractionState.FAILED,
                         f"{error} — enter your session key manually")
