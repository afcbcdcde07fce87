"""Tests for the command-line entrypoint."""

from __future__ import annotations

import json

import pytest

from mindflow.config import get_settings
from mindflow.main import main


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("ENGINE_CONFIG_FILE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_show_config(capsys: pytest.CaptureFixture[str]):
    main(["show-config"])
    body = json.loads(capsys.readouterr().out)
    assert body["level_1_enter"] == 50.0
    assert body["tick_interval_ms"] == 1000.0


def test_show_config_bad_file(monkeypatch: pytest.MonkeyPatch, tmp_path, capsys):
    monkeypatch.setenv("ENGINE_CONFIG_FILE", str(tmp_path / "missing.json"))
    get_settings.cache_clear()
    with pytest.raises(SystemExit) as exc_info:
        main(["show-config"])
    assert exc_info.value.code == 2
    assert "Cannot read engine config" in capsys.readouterr().err


def test_no_command_prints_help():
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1
