"""Claude Usage Bar: claude.ai usage limits in the menu bar."""

__version__ = "0.1.0"
