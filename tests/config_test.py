"""Tests for the configuration."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel

from taintmanager.config import Config
from taintmanager.constants import DEFAULT_TAINT_KEY


def test_defaults() -> None:
    config = Config()
    assert config.taint_key == DEFAULT_TAINT_KEY
    assert config.reconcile_interval == timedelta(seconds=5)
    assert config.resync_interval == timedelta(minutes=10)
    assert config.sync_timeout == timedelta(minutes=2)
    assert config.patch_attempts == 3
    assert config.patch_retry_delay == timedelta(milliseconds=500)
    assert config.reconcile_on_change
    assert config.metrics_enabled
    assert config.metrics_port == 9090
    assert config.slack_webhook is None


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "taintKey: example.com/not-ready\n"
        "reconcileInterval: 30s\n"
        "patchAttempts: 5\n"
        "metricsEnabled: false\n"
        "logLevel: DEBUG\n"
        "slackWebhook: https://hooks.example.com/abc\n"
    )

    config = Config.from_file(path)

    assert config.taint_key == "example.com/not-ready"
    assert config.reconcile_interval == timedelta(seconds=30)
    assert config.patch_attempts == 5
    assert not config.metrics_enabled
    assert config.log_level == LogLevel.DEBUG
    assert config.slack_webhook
    webhook = config.slack_webhook.get_secret_value()
    assert webhook == "https://hooks.example.com/abc"


def test_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert Config.from_file(path).taint_key == DEFAULT_TAINT_KEY


def test_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("taintKey: example.com/from-file\npatchAttempts: 2\n")
    monkeypatch.setenv("NODE_TAINT_MANAGER_TAINT_KEY", "example.com/from-env")
    monkeypatch.setenv("NODE_TAINT_MANAGER_RESYNC_INTERVAL", "1m")

    config = Config.from_file(path)

    assert config.taint_key == "example.com/from-env"
    assert config.resync_interval == timedelta(minutes=1)
    assert config.patch_attempts == 2


def test_invalid(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("patchAttempts: 0\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)

    path.write_text("unknownSetting: true\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)
