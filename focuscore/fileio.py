"""Atomic file I/O and cross-process locking for focuscore stores.

Store documents are rewritten whole: temp file, fsync, then rename, so a
reader sees either the old or the new document and never a torn one.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

import yaml


def _load_document(path: Path, parse: Callable[[str], Any]) -> dict[str, Any]:
    """Missing or blank files are empty documents; unparseable ones raise ValueError."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    if not text.strip():
        return {}
    try:
        data = parse(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ValueError(f"Corrupt document {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def read_json(path: Path) -> dict[str, Any]:
    return _load_document(path, json.loads)


def read_yaml(path: Path) -> dict[str, Any]:
    return _load_document(path, yaml.safe_load)


def _atomic_write(path: Path, content: str, suffix: str) -> None:
    """Temp file + fsync + rename, so readers never see a partial document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Atomic JSON write."""
    _atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n", suffix=".json")


def write_yaml_atomic(path: Path, data: dict[str, Any]) -> None:
    """Atomic YAML write."""
    content = yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    _atomic_write(path, content, suffix=".yaml")


@contextmanager
def locked(path: Path) -> Iterator[None]:
    """Hold an exclusive flock on ``<path>.lock`` for the duration of the block.

    Every open() gets its own file description, so the lock excludes other
    threads of this process as well as other processes.
    """
    lock_path = path.with_name(path.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a", encoding="utf-8") as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
