"""Playwright-backed browser surface for the sign-in flow."""

import asyncio
import logging
from typing import Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .api import BASE_URL, SESSION_COOKIE
from .errors import ExtractionExhausted
from .extraction import ExtractionFlow, ExtractionState, ProbeResult

log = logging.getLogger(__name__)

# Runs inside the signed-in page: same-origin call to the organizations API,
# plus whatever session cookie is visible to scripts.
_PROBE_SCRIPT = """
async () => {
  const out = {organizationId: null, sessionToken: null};
  try {
    const r = await fetch('/api/organizations', {
      credentials: 'include',
      headers: {'Accept': 'application/json'},
    });
    if (r.ok) {
      const orgs = await r.json();
      if (Array.isArray(orgs) && orgs.length) {
        out.organizationId = orgs[0].uuid || orgs[0].id || null;
      }
    }
  } catch (e) {}
  const m = document.cookie.match(/(?:^|;\\s*)sessionKey=([^;]+)/);
  if (m) out.sessionToken = decodeURIComponent(m[1]);
  return out;
}
"""


class PlaywrightSurface:
    """Headed Chromium in a fresh, non-persistent context."""

    def __init__(self, headless: bool = False):
        self.headless = headless
        self._on_navigated: Callable[[str], None] = lambda _url: None
        self._on_closed: Callable[[], None] = lambda: None
        self._pw = None
        self._browser = None
        self._context = None
        self._page = None
        self._closing = False

    def bind(self, on_navigated: Callable[[str], None], on_closed: Callable[[], None]):
        self._on_navigated = on_navigated
        self._on_closed = on_closed

    async def open(self, url: str):
        self._closing = False
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self.headless)
        # new_context() shares nothing with the user's real browser profile
        self._context = await self._browser.new_context()
        self._page = await self._context.new_page()
        self._page.on("framenavigated", self._frame_navigated)
        self._page.on("close", self._page_closed)
        await self._page.goto(url)

    def _frame_navigated(self, frame):
        if self._page is not None and frame == self._page.main_frame:
            self._on_navigated(frame.url)

    def _page_closed(self, _page):
        if not self._closing:
            log.info("sign-in window closed by user")
            self._on_closed()

    async def probe(self) -> ProbeResult:
        data = await self._page.evaluate(_PROBE_SCRIPT)
        return ProbeResult(
            organization_id=(data or {}).get("organizationId") or None,
            session_token=(data or {}).get("sessionToken") or None,
        )

    async def cookie_token(self) -> str | None:
        for cookie in await self._context.cookies(BASE_URL):
            if cookie.get("name") == SESSION_COOKIE and cookie.get("value"):
                return cookie["value"]
        return None

    async def close(self):
        self._closing = True
        try:
            if self._browser is not None:
                await self._browser.close()
            if self._pw is not None:
                await self._pw.stop()
        except PlaywrightError as e:
            log.debug("browser close: %s", e)
        finally:
            self._browser = self._context = self._page = self._pw = None


async def sign_in(on_credentials: Callable[[str, str], None], *,
                  manual_entry: Callable[[], tuple[str, str] | None] | None = None,
                  on_status: Callable | None = None,
                  surface=None, **flow_kwargs) -> tuple[str, str] | None:
    """
    Run one sign-in attempt end to end.

    Returns the credential pair that was handed to ``on_credentials``, or
    None if the user closed the window. When automatic extraction gives up
    and ``manual_entry`` is given, the browser is closed and
    ``manual_entry()`` (run in a worker thread) is asked for the two values.
    """
    surface = surface or PlaywrightSurface()
    flow = ExtractionFlow(surface, on_credentials, **flow_kwargs)
    surface.bind(flow.on_navigated, flow.cancel)
    if on_status is not None:
        flow.changes.subscribe(on_status)
    try:
        await flow.start()
        try:
            return await flow.wait()
        except ExtractionExhausted:
            if manual_entry is None:
                raise
        await surface.close()
        flow.enter_manual()
        values = await asyncio.get_running_loop().run_in_executor(None, manual_entry)
        if values and flow.submit_manual(*values):
            return flow.credentials
        if flow.state is ExtractionState.FAILED:
            raise flow.error
        flow.cancel()
        return None
    finally:
        await surface.close()
