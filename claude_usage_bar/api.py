import json
import logging
import math
import re
import urllib.parse
from datetime import datetime, timezone

from curl_cffi import CurlError
from curl_cffi import requests
from curl_cffi.requests.exceptions import RequestException

from .errors import (
    DecodeFailure,
    HTTPStatusError,
    NetworkFailure,
    NoCredentials,
    Unauthorized,
)
from .models import CredentialRecord, UsageSnapshot, UsageWindow

log = logging.getLogger(__name__)

BASE_URL = "https://claude.ai"
ORGANIZATIONS_URL = f"{BASE_URL}/api/organizations"
USAGE_URL = ORGANIZATIONS_URL + "/{org_id}/usage"
USAGE_PAGE_URL = f"{BASE_URL}/settings/usage"

SESSION_COOKIE = "sessionKey"

HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Content-Type": "application/json",
    "anthropic-client-platform": "web_claude_ai",
    "Referer": USAGE_PAGE_URL,
    "Origin": BASE_URL,
}
# Cloudflare fingerprint-checks Chrome aggressively; Safari passes cleanly.
_IMPERSONATE = "safari184"
# (connect, read) seconds
TIMEOUT = (30, 60)


# ── timestamps ────────────────────────────────────────────────────────────────

_ISO_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)
_LEGACY_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%a %b %d %H:%M:%S %Y",
)
_FRACTION = re.compile(r"\.(\d+)")


def _strptime(value: str, fmt: str) -> datetime | None:
    try:
        dt = datetime.strptime(value, fmt)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _normalise_iso(value: str) -> str:
    if value[-1:] in ("Z", "z"):
        value = value[:-1] + "+00:00"
    # strptime's %f takes at most 6 digits; the API sometimes sends more
    return _FRACTION.sub(lambda m: "." + m.group(1)[:6], value, count=1)


def parse_reset_time(value) -> datetime | None:
    """Parse a reset timestamp. Unknown formats give None, never an error."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    s = str(value).strip()
    if not s:
        return None
    iso = _normalise_iso(s)
    for fmt in _ISO_FORMATS:
        dt = _strptime(iso, fmt)
        if dt:
            return dt
    for fmt in _LEGACY_FORMATS:
        dt = _strptime(s, fmt)
        if dt:
            return dt
    log.debug("unparseable reset time %r", value)
    return None


# ── parser ────────────────────────────────────────────────────────────────────

def _window(data: dict, key: str) -> UsageWindow | None:
    bucket = data.get(key)
    if bucket is None:
        return None
    if not isinstance(bucket, dict):
        raise DecodeFailure(TypeError(f"{key} is {type(bucket).__name__}, expected object"))
    raw = bucket.get("utilization")
    try:
        used = float(raw) if raw is not None else 0.0
    except (TypeError, ValueError) as e:
        raise DecodeFailure(e) from e
    if not math.isfinite(used):
        raise DecodeFailure(ValueError(f"{key} utilization is {raw!r}"))
    return UsageWindow(used=used, reset_at=parse_reset_time(bucket.get("resets_at")))


def parse_usage(payload, fetched_at: datetime | None = None) -> UsageSnapshot:
    """
    API response shape:
      five_hour        → current session (rolling 5 h)
      seven_day        → weekly, all models
      seven_day_sonnet → weekly, Sonnet only (optional)
    each {"utilization": 28.0, "resets_at": "2025-...Z" | null}
    """
    if not isinstance(payload, dict):
        raise DecodeFailure(TypeError(f"expected object, got {type(payload).__name__}"))
    five = _window(payload, "five_hour")
    seven = _window(payload, "seven_day")
    if five is None and seven is None:
        raise DecodeFailure(ValueError("response has no five_hour or seven_day window"))
    return UsageSnapshot(
        five_hour=five or UsageWindow(),
        seven_day=seven or UsageWindow(),
        seven_day_sonnet=_window(payload, "seven_day_sonnet"),
        fetched_at=fetched_at or datetime.now(timezone.utc),
        raw=payload,
    )


# ── claude.ai API ─────────────────────────────────────────────────────────────

def fetch_usage(credentials: CredentialRecord | None, http=None) -> UsageSnapshot:
    """One authenticated GET of the usage endpoint."""
    if credentials is None:
        raise NoCredentials()
    http = http or requests
    url = USAGE_URL.format(org_id=urllib.parse.quote(credentials.organization_id, safe=""))
    headers = dict(HEADERS, Cookie=f"{SESSION_COOKIE}={credentials.session_token}")
    try:
        r = http.get(url, headers=headers, timeout=TIMEOUT, impersonate=_IMPERSONATE)
    except (RequestException, CurlError) as e:
        log.warning("GET %s failed: %s", url, e)
        raise NetworkFailure(e) from e
    log.debug("GET %s  status=%s  body=%s", url, r.status_code, r.text[:500])

    if r.status_code in (401, 403):
        raise Unauthorized(r.status_code)
    if r.status_code != 200:
        raise HTTPStatusError(r.status_code)
    try:
        payload = r.json()
    except ValueError as e:
        raise DecodeFailure(e) from e
    return parse_usage(payload)


# ── organization lookup ──────────────────────────────────────────────────────

def parse_cookie_string(raw: str) -> dict:
    """Parse 'key=val; key2=val2' or just a bare sessionKey value."""
    raw = raw.strip()
    if "=" not in raw:
        return {SESSION_COOKIE: raw} if raw else {}
    cookies = {}
    for part in raw.split(";"):
        part = part.strip()
        if "=" in part:
            k, _, v = part.partition("=")
            cookies[k.strip()] = v.strip()
    return cookies


def org_id_from_cookies(cookies: dict) -> str | None:
    return cookies.get("lastActiveOrg") or cookies.get("routingHint")


def first_org_id(orgs) -> str | None:
    """Identifier of the first organization in an organizations listing."""
    if isinstance(orgs, list) and orgs and isinstance(orgs[0], dict):
        return orgs[0].get("uuid") or orgs[0].get("id")
    return None


def fetch_organization_id(session_token: str, http=None) -> str | None:
    """Ask the organizations endpoint which org this session belongs to."""
    http = http or requests
    headers = dict(HEADERS, Cookie=f"{SESSION_COOKIE}={session_token}")
    try:
        r = http.get(ORGANIZATIONS_URL, headers=headers, timeout=TIMEOUT,
                     impersonate=_IMPERSONATE)
        log.debug("GET %s  status=%s", ORGANIZATIONS_URL, r.status_code)
        if r.status_code != 200:
            return None
        org_id = first_org_id(r.json())
    except (RequestException, CurlError, ValueError) as e:
        log.debug("organization lookup failed: %s", e)
        return None
    return str(org_id) if org_id else None


def dump_raw(snapshot: UsageSnapshot) -> str:
    return json.dumps(snapshot.raw, indent=2)
