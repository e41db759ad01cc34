import json
import logging
import os
import sys

log = logging.getLogger(__name__)

APP_NAME = "ClaudeUsageBar"
HOME_ENV = "CLAUDE_USAGE_BAR_HOME"

CONFIG_NAME = "config.json"
LOG_NAME = "claude_usage_bar.log"

REFRESH_INTERVALS = {
    "30 sec": 30,
    "1 min":  60,
    "5 min":  300,
    "10 min": 600,
}
DEFAULT_REFRESH = 60
MIN_REFRESH = 30
MAX_REFRESH = 600

WARN_THRESHOLD = 50   # yellow at or above this %
CRIT_THRESHOLD = 80   # red at or above this %

# menu bar title layouts (config key "title_mode"); "show_icon" prefixes the glyph
TITLE_MODES = {
    "Session + Weekly Reset": "compact",
    "Show Both":              "both",
    "Show 5h Only":           "five_hour",
    "Show Weekly Only":       "weekly",
}
DEFAULT_TITLE_MODE = "compact"


# ── paths ─────────────────────────────────────────────────────────────────────

def app_dir() -> str:
    """Application-private directory, created on first use."""
    base = os.environ.get(HOME_ENV)
    if not base:
        if sys.platform == "darwin":
            base = os.path.expanduser(f"~/Library/Application Support/{APP_NAME}")
        else:
            xdg = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
            base = os.path.join(xdg, "claude-usage-bar")
    os.makedirs(base, exist_ok=True)
    return base


def config_file() -> str:
    return os.path.join(app_dir(), CONFIG_NAME)


# ── logging ───────────────────────────────────────────────────────────────────

def setup_logging(level: int = logging.DEBUG):
    logging.basicConfig(
        filename=os.path.join(app_dir(), LOG_NAME),
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


# ── config ────────────────────────────────────────────────────────────────────

def load_config(path: str | None = None) -> dict:
    path = path or config_file()
    if os.path.exists(path):
        try:
            with open(path) as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            corrupt = path + ".bak"
            log.warning("Config file corrupt (%s), resetting. Backup at %s", e, corrupt)
            try:
                os.replace(path, corrupt)
            except OSError:
                pass
    return {}


def save_config(cfg: dict, path: str | None = None):
    path = path or config_file()
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2)
    os.replace(tmp, path)


def clamp_interval(seconds: float) -> int:
    return int(max(MIN_REFRESH, min(MAX_REFRESH, seconds)))
