"""Shared fixtures."""

from __future__ import annotations

import pytest

from mediaflow.config import reset_config
from mediaflow.utils.errors import set_debug_mode


@pytest.fixture
def anyio_backend() -> str:
    """The loop, retry backoff and checkpoint gate are asyncio code."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Point config at an empty temp file and clear env overrides."""
    for name in (
        "MEDIAFLOW_MAX_ITERATIONS",
        "MEDIAFLOW_MAX_CHECKPOINTS",
        "MEDIAFLOW_CHECKPOINT_TIMEOUT",
        "MEDIAFLOW_LOG_LEVEL",
        "MEDIAFLOW_SNAPSHOT_DIR",
        "MEDIAFLOW_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MEDIAFLOW_CONFIG", str(tmp_path / "config.toml"))
    reset_config()
    set_debug_mode(False)
    yield
    reset_config()
    set_debug_mode(False)
