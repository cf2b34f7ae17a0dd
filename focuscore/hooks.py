"""Shell hooks for engine events.

Configured via hooks.yaml at the workspace root, mapping an event name to a
list of commands (plain strings, or ``{command, timeout}`` mappings). The
event context is passed as JSON on stdin. Delivery of notifications is left
to these commands; the engine only emits events.

Hook points:
- on_session_complete
- on_reward_granted
- on_reminder_due
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from focuscore.fileio import read_yaml
from focuscore.workspace import hooks_config_path, workspace_root

logger = logging.getLogger(__name__)

VALID_HOOK_POINTS = {
    "on_session_complete",
    "on_reward_granted",
    "on_reminder_due",
}

DEFAULT_TIMEOUT = 30
OUTPUT_LIMIT = 4096


def load_hooks_config(root: Path | None = None) -> dict[str, Any]:
    return read_yaml(hooks_config_path(root))


def _commands(entries: list[Any]) -> list[tuple[str, float]]:
    commands = []
    for hook in entries:
        if isinstance(hook, str):
            commands.append((hook, DEFAULT_TIMEOUT))
        elif isinstance(hook, dict) and hook.get("command"):
            commands.append((str(hook["command"]), float(hook.get("timeout", DEFAULT_TIMEOUT))))
    return commands


def run_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
) -> list[dict[str, Any]]:
    """Run every command registered for *hook_point* and collect their results."""
    if hook_point not in VALID_HOOK_POINTS:
        return []
    if root is None:
        root = workspace_root()

    entries = load_hooks_config(root).get(hook_point, [])
    if not isinstance(entries, list):
        return []

    payload = json.dumps(context, ensure_ascii=False, default=str)
    results = []
    for command, timeout in _commands(entries):
        result: dict[str, Any] = {"command": command, "hook_point": hook_point}
        try:
            proc = subprocess.run(
                command,
                shell=True,
                input=payload,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(root),
            )
            result["exit_code"] = proc.returncode
            result["stdout"] = proc.stdout[:OUTPUT_LIMIT]
            result["stderr"] = proc.stderr[:OUTPUT_LIMIT]
            if proc.returncode != 0:
                logger.error("Hook %r for %s exited with %d", command, hook_point, proc.returncode)
        except subprocess.TimeoutExpired:
            result["exit_code"] = -1
            result["error"] = f"Hook timed out after {timeout:g}s"
            logger.error("Hook %r for %s timed out after %gs", command, hook_point, timeout)
        except OSError as e:
            result["exit_code"] = -1
            result["error"] = str(e)
            logger.error("Hook %r for %s failed: %s", command, hook_point, e)
        results.append(result)
    return results
