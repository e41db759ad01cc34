"""Tests for the usage endpoint client and response parsing."""

from datetime import datetime, timezone

import pytest
from curl_cffi.requests.exceptions import RequestException

from claude_usage_bar.api import (
    ORGANIZATIONS_URL,
    TIMEOUT,
    fetch_organization_id,
    fetch_usage,
    first_org_id,
    org_id_from_cookies,
    parse_cookie_string,
    parse_reset_time,
    parse_usage,
)
from claude_usage_bar.errors import (
    DecodeFailure,
    HTTPStatusError,
    NetworkFailure,
    NoCredentials,
    Unauthorized,
)
from claude_usage_bar.models import CredentialRecord

from .conftest import FakeHTTP, FakeResponse

CREDS = CredentialRecord("sk-ant-sid01-abc", "org-uuid-1")


class TestFetchUsage:
    def test_no_credentials_makes_no_request(self):
        http = FakeHTTP()
        with pytest.raises(NoCredentials):
            fetch_usage(None, http=http)
        assert http.calls == []

    def test_success(self, usage_payload):
        http = FakeHTTP(FakeResponse(200, usage_payload))
        snap = fetch_usage(CREDS, http=http)
        assert snap.five_hour.used == 28.0
        assert snap.seven_day.used == 9.0
        assert snap.five_hour.reset_at == datetime(2025, 1, 15, 15, 0, 0, 123456, tzinfo=timezone.utc)
        assert snap.fetched_at is not None

    def test_request_shape(self, usage_payload):
        http = FakeHTTP(FakeResponse(200, usage_payload))
        fetch_usage(CREDS, http=http)
        url, kwargs = http.calls[0]
        assert url == "https://claude.ai/api/organizations/org-uuid-1/usage"
        assert kwargs["headers"]["Cookie"] == "sessionKey=sk-ant-sid01-abc"
        assert "application/json" in kwargs["headers"]["Accept"]
        assert kwargs["timeout"] == TIMEOUT

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status):
        http = FakeHTTP(FakeResponse(status, {"error": "nope"}))
        with pytest.raises(Unauthorized) as exc:
            fetch_usage(CREDS, http=http)
        assert exc.value.status_code == status

    def test_other_status_carries_code(self):
        http = FakeHTTP(FakeResponse(502, text="bad gateway"))
        with pytest.raises(HTTPStatusError) as exc:
            fetch_usage(CREDS, http=http)
        assert exc.value.status_code == 502

    def test_transport_error_is_network_failure(self):
        http = FakeHTTP(error=RequestException("connection reset"))
        with pytest.raises(NetworkFailure) as exc:
            fetch_usage(CREDS, http=http)
        assert isinstance(exc.value.cause, RequestException)

    def test_non_json_body_is_decode_failure(self):
        http = FakeHTTP(FakeResponse(200, text="<html>cloudflare</html>"))
        with pytest.raises(DecodeFailure):
            fetch_usage(CREDS, http=http)

    def test_over_100_is_preserved(self):
        payload = {"five_hour": {"utilization": 137.0, "resets_at": None},
                   "seven_day": {"utilization": 50.0}}
        snap = fetch_usage(CREDS, http=FakeHTTP(FakeResponse(200, payload)))
        assert snap.five_hour.used == 137.0
        assert snap.five_hour.pct == 100


class TestParseUsage:
    def test_missing_reset_is_valid(self):
        snap = parse_usage({"five_hour": {"utilization": 10}, "seven_day": {"utilization": 20}})
        assert snap.five_hour.reset_at is None
        assert snap.seven_day.reset_at is None

    def test_unparseable_reset_does_not_fail(self):
        snap = parse_usage({"five_hour": {"utilization": 10, "resets_at": "next tuesday"},
                            "seven_day": {"utilization": 20}})
        assert snap.five_hour.reset_at is None
        assert snap.five_hour.used == 10

    def test_one_window_missing_defaults(self):
        snap = parse_usage({"five_hour": {"utilization": 10}})
        assert snap.seven_day.used == 0
        assert snap.seven_day_sonnet is None

    def test_sonnet_window_kept(self):
        snap = parse_usage({"five_hour": {"utilization": 1}, "seven_day": {"utilization": 2},
                            "seven_day_sonnet": {"utilization": 3}})
        assert snap.seven_day_sonnet.used == 3

    def test_raw_payload_kept(self, usage_payload):
        assert parse_usage(usage_payload).raw == usage_payload

    @pytest.mark.parametrize("payload", [
        [],
        "text",
        {},
        {"five_hour": "oops"},
        {"five_hour": {"utilization": "lots"}},
    ])
    def test_bad_shapes_are_decode_failures(self, payload):
        with pytest.raises(DecodeFailure):
            parse_usage(payload)

    @pytest.mark.parametrize("value", [float("nan"), "nan", "Infinity", float("-inf")])
    def test_non_finite_utilization_is_decode_failure(self, value):
        with pytest.raises(DecodeFailure):
            parse_usage({"five_hour": {"utilization": value}, "seven_day": {"utilization": 9}})

    def test_non_finite_sonnet_window_is_decode_failure(self):
        with pytest.raises(DecodeFailure):
            parse_usage({"five_hour": {"utilization": 1}, "seven_day": {"utilization": 2},
                         "seven_day_sonnet": {"utilization": float("nan")}})


class TestParseResetTime:
    def test_iso_with_fraction(self):
        assert parse_reset_time("2024-01-15T10:00:00.5+00:00") == datetime(
            2024, 1, 15, 10, 0, 0, 500000, tzinfo=timezone.utc)

    def test_iso_with_long_fraction(self):
        dt = parse_reset_time("2024-01-15T10:00:00.123456789Z")
        assert dt == datetime(2024, 1, 15, 10, 0, 0, 123456, tzinfo=timezone.utc)

    def test_iso_without_fraction(self):
        assert parse_reset_time("2024-01-15T10:00:00Z") == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        dt = parse_reset_time("2024-01-15T12:00:00+02:00")
        assert dt == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_legacy_space_format(self):
        assert parse_reset_time("2024-01-15 10:00:00") == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_legacy_ctime_format(self):
        assert parse_reset_time("Mon Jan 15 10:00:00 2024") == datetime(
            2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        assert parse_reset_time(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "soon", "2024-13-45T99:00:00Z"])
    def test_unparseable_is_none(self, value):
        assert parse_reset_time(value) is None


class TestOrganizationLookup:
    def test_parse_cookie_string(self):
        cookies = parse_cookie_string("sessionKey=abc; lastActiveOrg=org-1 ; cf_clearance=x")
        assert cookies == {"sessionKey": "abc", "lastActiveOrg": "org-1", "cf_clearance": "x"}

    def test_bare_value_is_session_key(self):
        assert parse_cookie_string("  sk-ant-sid01-abc ") == {"sessionKey": "sk-ant-sid01-abc"}

    def test_org_from_cookies(self):
        assert org_id_from_cookies({"lastActiveOrg": "a", "routingHint": "b"}) == "a"
        assert org_id_from_cookies({"routingHint": "b"}) == "b"
        assert org_id_from_cookies({}) is None

    def test_first_org_prefers_uuid(self):
        assert first_org_id([{"id": 7, "uuid": "u-1"}, {"uuid": "u-2"}]) == "u-1"
        assert first_org_id([{"id": "only-id"}]) == "only-id"
        assert first_org_id([]) is None
        assert first_org_id({"uuid": "x"}) is None

    def test_fetch_organization_id(self):
        http = FakeHTTP(FakeResponse(200, [{"uuid": "org-from-api"}]))
        assert fetch_organization_id("tok", http=http) == "org-from-api"
        url, kwargs = http.calls[0]
        assert url == ORGANIZATIONS_URL
        assert kwargs["headers"]["Cookie"] == "sessionKey=tok"

    def test_fetch_organization_id_failure_is_none(self):
        assert fetch_organization_id("tok", http=FakeHTTP(FakeResponse(403, {}))) is None
        assert fetch_organization_id("tok", http=FakeHTTP(error=RequestException("dns"))) is None
