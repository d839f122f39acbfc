import json

import pytest

from myterm.local.config import MergedSettings


@pytest.mark.basic
def test_defaults_are_loaded(tmp_path):
    settings = MergedSettings(overrides_path=tmp_path / "overrides.json")
    assert settings.GRACEFUL_SHUTDOWN_TIMEOUT == 0.8
    assert settings.FORCE_KILL_WAIT == 0.8
    assert settings.RESTART_DELAY_SECONDS == 1.0
    assert settings.LIVENESS_POLL_INTERVAL == 0.05
    assert settings.LOG_HISTORY_COUNT == 500
    assert settings.get("NOT_A_SETTING", "fallback") == "fallback"


@pytest.mark.basic
def test_only_modifiable_overrides_apply(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"LOG_HISTORY_COUNT": 50, "GRACEFUL_SHUTDOWN_TIMEOUT": 10, "UNKNOWN": 1}))
    settings = MergedSettings(overrides_path=path)
    assert settings.LOG_HISTORY_COUNT == 50
    assert settings.GRACEFUL_SHUTDOWN_TIMEOUT == 0.8
    assert not hasattr(settings, "UNKNOWN")


@pytest.mark.basic
def test_update_setting_coerces_and_persists(tmp_path):
    path = tmp_path / "nested" / "overrides.json"
    settings = MergedSettings(overrides_path=path)

    ok, _ = settings.update_setting("LOG_HISTORY_COUNT", "42")
    assert ok and settings.LOG_HISTORY_COUNT == 42
    ok, _ = settings.update_setting("WATCH_PROJECT_CONFIG", "no")
    assert ok and settings.WATCH_PROJECT_CONFIG is False

    saved = json.loads(path.read_text())
    assert saved["LOG_HISTORY_COUNT"] == 42
    assert MergedSettings(overrides_path=path).LOG_HISTORY_COUNT == 42


@pytest.mark.basic
def test_update_setting_rejects_bad_input(tmp_path):
    settings = MergedSettings(overrides_path=tmp_path / "overrides.json")
    ok, message = settings.update_setting("SHELL", "/bin/zsh")
    assert not ok and "not modifiable" in message
    ok, _ = settings.update_setting("LOG_HISTORY_COUNT", "many")
    assert not ok
    assert settings.LOG_HISTORY_COUNT == 500
