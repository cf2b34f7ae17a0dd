"""Shared test fixtures for focuscore tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
import yaml

# Wednesday morning, UTC
BASE = datetime(2026, 2, 11, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace with settings.yaml and an empty data dir."""
    root = tmp_path / "workspace"
    (root / "data").mkdir(parents=True)

    settings = {
        "timezone": "UTC",
        "max_retries": 3,
        "focus_seconds": 1500,
        "break_seconds": 300,
        "long_break_seconds": 900,
        "long_break_every": 2,
        "rewards": {"cycle_completion": 1, "daily_tasks": 2},
    }
    (root / "settings.yaml").write_text(
        yaml.dump(settings, default_flow_style=False), encoding="utf-8"
    )

    os.environ["FOCUSCORE_ROOT"] = str(root)
    yield root
    if "FOCUSCORE_ROOT" in os.environ:
        del os.environ["FOCUSCORE_ROOT"]


@pytest.fixture
def base() -> datetime:
    return BASE


@pytest.fixture
def at() -> Callable[[int], datetime]:
    """Moment *seconds* after BASE."""
    return lambda seconds: BASE + timedelta(seconds=seconds)
