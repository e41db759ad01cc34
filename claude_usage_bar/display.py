from datetime import datetime, timezone

from .config import CRIT_THRESHOLD, DEFAULT_TITLE_MODE, WARN_THRESHOLD
from .models import UsageWindow
from .poller import PollState

TITLE_ICON = "◆"


def bar(pct: int, width: int = 14) -> str:
    pct = max(0, min(100, pct))
    filled = round(pct / 100 * width)
    return "█" * filled + "░" * (width - filled)


def status_icon(pct: int) -> str:
    if pct >= CRIT_THRESHOLD:
        return "🔴"
    if pct >= WARN_THRESHOLD:
        return "🟡"
    return "🟢"


def fmt_reset(reset_at: datetime | None, now: datetime | None = None) -> str:
    if reset_at is None:
        return "--"
    now = now or datetime.now(timezone.utc)
    secs = int((reset_at - now).total_seconds())
    if secs <= 0:
        return "Now"
    hours, rem = divmod(secs, 3600)
    minutes = rem // 60
    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def window_lines(label: str, window: UsageWindow, now: datetime | None = None) -> list[str]:
    line1 = f"  {status_icon(window.pct)} {label}  {window.pct}%"
    reset = fmt_reset(window.reset_at, now)
    line2 = f"  {bar(window.pct)}  resets in {reset}" if window.reset_at else f"  {bar(window.pct)}"
    return [line1, line2]


def title_text(state: PollState, has_credentials: bool, now: datetime | None = None,
               mode: str = DEFAULT_TITLE_MODE, show_icon: bool = False) -> str:
    """
    Menu bar title. Status markers (Setup, !, err, ...) win over data;
    otherwise ``mode`` picks the layout:

      compact    28% | 3d 2h     5-hour % and time to the weekly reset
      both       5h 28%  W 9%
      five_hour  5h 28%
      weekly     W 9%

    Unknown modes fall back to compact.
    """
    if not has_credentials:
        return f"{TITLE_ICON} Setup"
    if state.needs_reauth:
        return f"{TITLE_ICON} !"
    if state.last_updated is None:
        return f"{TITLE_ICON} err" if state.last_error else f"{TITLE_ICON} ..."
    snap = state.snapshot
    five, weekly = snap.five_hour.pct, snap.seven_day.pct
    if mode == "both":
        text = f"5h {five}%  W {weekly}%"
    elif mode == "five_hour":
        text = f"5h {five}%"
    elif mode == "weekly":
        text = f"W {weekly}%"
    else:
        text = f"{five}% | {fmt_reset(snap.seven_day.reset_at, now)}"
    return f"{TITLE_ICON} {text}" if show_icon else text
