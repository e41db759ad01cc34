"""Reuse an existing claude.ai login from an installed browser."""

import importlib.util
import json
import logging
import subprocess
import sys

from .api import (
    SESSION_COOKIE,
    fetch_organization_id,
    org_id_from_cookies,
    parse_cookie_string,
)

log = logging.getLogger(__name__)

COOKIE_DOMAIN = "claude.ai"

# Script run in a child process: isolates browser_cookie3 C-library crashes
# (libcrypto / sqlite segfaults on Chromium decryption don't kill the main app).
_DETECT_SCRIPT = r"""
import sys, json

domain  = sys.argv[1]
target  = sys.argv[2]

BROWSERS = [
    'firefox', 'librewolf', 'chrome', 'arc', 'brave',
    'edge', 'chromium', 'opera', 'vivaldi', 'safari',
]

# Pick the jar whose target cookie expires last, so the freshest session
# wins when the user is logged in to several browsers.
candidates = []  # list of (expires, cookie_str)

import browser_cookie3
for name in BROWSERS:
    fn = getattr(browser_cookie3, name, None)
    if fn is None:
        continue
    try:
        jar = fn(domain_name=domain)
        cookies = {x.name: x for x in jar}
        if target not in cookies:
            continue
        expires = cookies[target].expires or 0
        cookie_str = '; '.join(f'{k}={c.value}' for k, c in cookies.items())
        candidates.append((expires, cookie_str))
    except Exception as e:
        print(f'{name}: {e}', file=sys.stderr)

result = None
if candidates:
    candidates.sort(key=lambda x: (x[0], len(x[1])), reverse=True)
    result = candidates[0][1]

print(json.dumps(result))
"""


def browser_cookie3_available() -> bool:
    return importlib.util.find_spec("browser_cookie3") is not None


def _run_cookie_detection(domain: str, target_cookie: str) -> str | None:
    """Run browser_cookie3 in an isolated child process (crash-safe)."""
    try:
        r = subprocess.run(
            [sys.executable, "-c", _DETECT_SCRIPT, domain, target_cookie],
            capture_output=True, text=True, timeout=60,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("cookie detection could not run: %s", e)
        return None
    log.debug("cookie-detect rc=%d err=%r", r.returncode, r.stderr[:300])
    out = r.stdout.strip()
    if not out:
        return None
    try:
        return json.loads(out)
    except json.JSONDecodeError:
        log.warning("cookie detection returned garbage: %r", out[:80])
        return None


def import_from_browser(http=None) -> tuple[str, str] | None:
    """(session token, organization id) from a browser login, or None."""
    if not browser_cookie3_available():
        log.info("browser_cookie3 not installed; skipping browser import")
        return None
    cookie_str = _run_cookie_detection(COOKIE_DOMAIN, SESSION_COOKIE)
    if not cookie_str:
        return None
    cookies = parse_cookie_string(cookie_str)
    token = cookies.get(SESSION_COOKIE)
    if not token:
        return None
    log.debug("browser cookie keys: %s", list(cookies.keys()))
    org_id = org_id_from_cookies(cookies) or fetch_organization_id(token, http=http)
    if not org_id:
        log.info("found a browser session but no organization id")
        return None
    return token, org_id
