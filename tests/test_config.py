"""Tests for settings, paths and interval clamping."""

import json
import os

from claude_usage_bar import config
from claude_usage_bar.config import (
    MAX_REFRESH,
    MIN_REFRESH,
    app_dir,
    clamp_interval,
    load_config,
    save_config,
)


def test_app_dir_env_override(tmp_path, monkeypatch):
    target = tmp_path / "home"
    monkeypatch.setenv(config.HOME_ENV, str(target))
    assert app_dir() == str(target)
    assert target.is_dir()


def test_app_dir_xdg_on_linux(tmp_path, monkeypatch):
    monkeypatch.delenv(config.HOME_ENV, raising=False)
    monkeypatch.setattr(config.sys, "platform", "linux")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert app_dir() == os.path.join(str(tmp_path), "claude-usage-bar")


def test_save_and_load(tmp_path):
    path = str(tmp_path / "config.json")
    save_config({"refresh_interval": 300}, path)
    assert load_config(path) == {"refresh_interval": 300}
    assert not os.path.exists(path + ".tmp")


def test_missing_config_is_empty(tmp_path):
    assert load_config(str(tmp_path / "nope.json")) == {}


def test_corrupt_config_is_backed_up(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert load_config(str(path)) == {}
    assert not path.exists()
    assert (tmp_path / "config.json.bak").read_text() == "{not json"


def test_config_never_holds_secrets(tmp_path):
    path = str(tmp_path / "config.json")
    save_config({"refresh_interval": 60}, path)
    with open(path) as f:
        assert "sessionKey" not in json.load(f)


def test_clamp_interval():
    assert clamp_interval(5) == MIN_REFRESH == 30
    assert clamp_interval(9999) == MAX_REFRESH == 600
    assert clamp_interval(90.7) == 90
