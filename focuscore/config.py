"""Engine settings loaded from settings.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from focuscore.fileio import read_yaml
from focuscore.workspace import settings_path


DEFAULT_REWARDS = {
    "cycle_completion": 1,
    "decomposed_completion": 1,
    "daily_tasks": 1,
    "daily_reminders": 1,
    "daily_login": 1,
}


@dataclass
class Settings:
    timezone: str = "UTC"
    max_retries: int = 3
    focus_seconds: int = 1500
    break_seconds: int = 300
    long_break_seconds: int = 900
    long_break_every: int = 4
    max_phase_seconds: int = 7200
    rewards: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_REWARDS))
    reminder_poll_seconds: int = 60
    page_size: int = 20

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        rewards = dict(DEFAULT_REWARDS)
        for reason, amount in (d.get("rewards") or {}).items():
            rewards[str(reason)] = int(amount)
        return cls(
            timezone=str(d.get("timezone", "UTC")),
            max_retries=max(1, int(d.get("max_retries", 3))),
            focus_seconds=int(d.get("focus_seconds", 1500)),
            break_seconds=int(d.get("break_seconds", 300)),
            long_break_seconds=int(d.get("long_break_seconds", 900)),
            long_break_every=max(1, int(d.get("long_break_every", 4))),
            max_phase_seconds=int(d.get("max_phase_seconds", 7200)),
            rewards=rewards,
            reminder_poll_seconds=max(1, int(d.get("reminder_poll_seconds", 60))),
            page_size=max(1, int(d.get("page_size", 20))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "max_retries": self.max_retries,
            "focus_seconds": self.focus_seconds,
            "break_seconds": self.break_seconds,
            "long_break_seconds": self.long_break_seconds,
            "long_break_every": self.long_break_every,
            "max_phase_seconds": self.max_phase_seconds,
            "rewards": dict(self.rewards),
            "reminder_poll_seconds": self.reminder_poll_seconds,
            "page_size": self.page_size,
        }

    def reward_for(self, reason: str) -> int:
        return self.rewards.get(reason, 1)


def load_settings(root: Path | None = None) -> Settings:
    """Load settings.yaml into a Settings model."""
    return Settings.from_dict(read_yaml(settings_path(root)))
