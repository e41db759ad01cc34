"""Shared test fixtures."""

from __future__ import annotations

import json

import pytest

from claude_usage_bar.codec import SecretCodec
from claude_usage_bar.credentials import CredentialStore


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        return json.loads(self.text)


class FakeHTTP:
    """Stands in for the curl_cffi.requests module."""

    def __init__(self, *responses, error: BaseException | None = None):
        self.responses = list(responses)
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


@pytest.fixture
def usage_payload() -> dict:
    return {
        "five_hour": {"utilization": 28.0, "resets_at": "2025-01-15T15:00:00.123456+00:00"},
        "seven_day": {"utilization": 9.0, "resets_at": "2025-01-20T00:00:00Z"},
        "seven_day_sonnet": None,
        "extra_usage": None,
    }


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(machine_id="11111111-2222-3333-4444-555555555555")


@pytest.fixture
def cred_path(tmp_path):
    return str(tmp_path / "credentials.enc")


@pytest.fixture
def store(cred_path, codec) -> CredentialStore:
    return CredentialStore(path=cred_path, codec=codec)
