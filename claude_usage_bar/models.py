import json
from dataclasses import dataclass, field
from datetime import datetime


# ── credentials ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CredentialRecord:
    """A complete credential pair. Partial records cannot be constructed."""
    session_token: str
    organization_id: str

    def __post_init__(self):
        if not self.session_token or not self.organization_id:
            raise ValueError("session token and organization id are both required")

    def __repr__(self) -> str:
        return (f"CredentialRecord(session_token='{self.session_token[:12]}…', "
                f"organization_id={self.organization_id!r})")

    def to_json(self) -> bytes:
        return json.dumps({
            "sessionKey": self.session_token,
            "organizationId": self.organization_id,
        }).encode()

    @classmethod
    def from_json(cls, data: bytes) -> "CredentialRecord":
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("credential payload is not an object")
        return cls(obj.get("sessionKey") or "", obj.get("organizationId") or "")


# ── usage ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UsageWindow:
    used: float = 0.0                  # raw utilization, may exceed 100
    reset_at: datetime | None = None

    @property
    def pct(self) -> int:
        """Utilization clamped to 0–100 for display."""
        return max(0, min(100, round(self.used)))


@dataclass(frozen=True)
class UsageSnapshot:
    five_hour: UsageWindow = field(default_factory=UsageWindow)
    seven_day: UsageWindow = field(default_factory=UsageWindow)
    seven_day_sonnet: UsageWindow | None = None
    fetched_at: datetime | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def placeholder(cls) -> "UsageSnapshot":
        return cls()

    @property
    def is_placeholder(self) -> bool:
        return self.fetched_at is None
