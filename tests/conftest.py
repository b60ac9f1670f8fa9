"""Test fixtures for node taint manager tests."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
import structlog
from structlog.stdlib import BoundLogger

from taintmanager.constants import ENV_PREFIX
from taintmanager.metrics import TaintMetrics


@pytest.fixture(autouse=True)
def environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove any configuration overrides from the environment."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name)
    yield


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(__name__)


@pytest.fixture
def metrics() -> TaintMetrics:
    return TaintMetrics()
