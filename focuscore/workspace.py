"""Workspace root, timezone, path helpers for focuscore."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from focuscore.fileio import read_yaml


def workspace_root() -> Path:
    """Get the workspace root directory (contains settings.yaml and data/)."""
    return Path(
        os.environ.get("FOCUSCORE_ROOT", str(Path.home() / ".focuscore"))
    ).expanduser().resolve()


def get_timezone(root: Path | None = None) -> ZoneInfo:
    """Server timezone from settings.yaml, defaulting to UTC."""
    if root is None:
        root = workspace_root()
    try:
        settings = read_yaml(settings_path(root))
        if settings and "timezone" in settings:
            return ZoneInfo(settings["timezone"])
    except (ValueError, KeyError):
        pass
    return ZoneInfo("UTC")


def now_local(root: Path | None = None) -> datetime:
    """Current timezone-aware server time."""
    return datetime.now(get_timezone(root))


def day_str(moment: datetime, root: Path | None = None) -> str:
    """Calendar day (YYYY-MM-DD) of *moment* in the server timezone."""
    return moment.astimezone(get_timezone(root)).date().isoformat()


def today_str(root: Path | None = None) -> str:
    return day_str(now_local(root), root)


# ── Path helpers ──────────────────────────────────────────────

def settings_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "settings.yaml"


def sessions_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "sessions.json"


def ledger_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "ledger.json"


def aggregates_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "aggregates.json"


def items_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data" / "items.yaml"


def hooks_config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "hooks.yaml"
