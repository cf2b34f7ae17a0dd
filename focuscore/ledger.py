"""Reward ledger: append-only coin transactions with idempotent daily grants.

The ledger document (``data/ledger.json``) holds:

- ``entries``: every LedgerEntry in creation order, never rewritten;
- ``dedupe``: unique index dedupeKey -> entry id;
- ``balances``: cached per-owner balance, rebuildable from ``entries``.

grant() and spend() run their read-check-write under the ledger's exclusive
flock, so two concurrent grants carrying the same dedupe key append exactly
one entry and the loser observes ``already_granted``.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any

from focuscore.config import load_settings
from focuscore.errors import InsufficientBalance, InvalidRequest
from focuscore.fileio import locked, read_json, write_json_atomic
from focuscore.models import EntryType, GrantResult, LedgerEntry, Reason, SpendResult
from focuscore.store import new_id
from focuscore.workspace import day_str, ledger_path, now_local

logger = logging.getLogger(__name__)


def dedupe_key(owner: str, reason: str, moment: datetime, root: Path | None = None) -> str | None:
    """``owner|reason|YYYY-MM-DD`` for daily-limited reasons, else None."""
    if reason not in Reason.DAILY_LIMITED:
        return None
    return f"{owner}|{reason}|{day_str(moment, root)}"


def _load(root: Path | None) -> dict[str, Any]:
    doc = read_json(ledger_path(root))
    doc.setdefault("entries", [])
    doc.setdefault("dedupe", {})
    doc.setdefault("balances", {})
    return doc


def _save(doc: dict[str, Any], root: Path | None) -> None:
    write_json_atomic(ledger_path(root), doc)


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise InvalidRequest("amount must be a positive integer", details={"amount": amount})
    return amount


def _append(
    doc: dict[str, Any],
    owner: str,
    entry_type: str,
    amount: int,
    reason: str,
    description: str,
    now: datetime,
    key: str | None,
) -> LedgerEntry:
    current = int(doc["balances"].get(owner, 0))
    signed = amount if entry_type == EntryType.EARN else -amount
    entry = LedgerEntry(
        id=new_id(),
        owner_id=owner,
        type=entry_type,
        amount=amount,
        reason=reason,
        description=description.strip()[:200],
        balance_after=current + signed,
        created_at=now,
        dedupe_key=key,
    )
    doc["entries"].append(entry.to_dict())
    doc["balances"][owner] = entry.balance_after
    if key is not None:
        doc["dedupe"][key] = entry.id
    return entry


def _entry_by_id(doc: dict[str, Any], entry_id: str) -> LedgerEntry:
    for raw in doc["entries"]:
        if raw.get("id") == entry_id:
            return LedgerEntry.from_dict(raw)
    raise KeyError(f"Dedupe index points at missing entry {entry_id}")


def grant(
    owner: str,
    reason: str,
    amount: int = 1,
    description: str = "",
    now: datetime | None = None,
    root: Path | None = None,
) -> GrantResult:
    """Credit *amount* coins, at most once per owner, reason and day for daily-limited reasons."""
    if reason not in Reason.EARN:
        raise InvalidRequest(f"Unknown earn reason: {reason}", details={"reason": reason})
    _validate_amount(amount)
    if now is None:
        now = now_local(root)
    key = dedupe_key(owner, reason, now, root)

    with locked(ledger_path(root)):
        doc = _load(root)
        if key is not None and key in doc["dedupe"]:
            prior = _entry_by_id(doc, doc["dedupe"][key])
            logger.warning("Reward already granted today: %s", key)
            return GrantResult(
                status=GrantResult.ALREADY_GRANTED,
                entry=prior,
                balance_after=prior.balance_after,
            )
        entry = _append(doc, owner, EntryType.EARN, amount, reason, description, now, key)
        _save(doc, root)

    logger.info("Granted %d coin(s) to %s for %s, balance %d", amount, owner, reason, entry.balance_after)
    return GrantResult(status=GrantResult.GRANTED, entry=entry, balance_after=entry.balance_after)


def spend(
    owner: str,
    amount: int,
    reason: str = Reason.ITEM_PURCHASE,
    description: str = "",
    now: datetime | None = None,
    root: Path | None = None,
) -> SpendResult:
    """Debit *amount* coins; rejects with InsufficientBalance rather than going negative."""
    if reason not in Reason.SPEND:
        raise InvalidRequest(f"Unknown spend reason: {reason}", details={"reason": reason})
    _validate_amount(amount)
    if now is None:
        now = now_local(root)

    with locked(ledger_path(root)):
        doc = _load(root)
        current = int(doc["balances"].get(owner, 0))
        if amount > current:
            raise InsufficientBalance(
                f"Insufficient balance: have {current}, need {amount}",
                details={"balance": current, "amount": amount},
            )
        entry = _append(doc, owner, EntryType.SPEND, amount, reason, description, now, None)
        _save(doc, root)

    logger.info("Spent %d coin(s) for %s on %s, balance %d", amount, owner, reason, entry.balance_after)
    return SpendResult(entry=entry, balance_after=entry.balance_after)


def claim_daily_login(owner: str, now: datetime | None = None, root: Path | None = None) -> GrantResult:
    amount = load_settings(root).reward_for(Reason.DAILY_LOGIN)
    return grant(owner, Reason.DAILY_LOGIN, amount, "Daily login reward", now, root)


# ── Queries ───────────────────────────────────────────────────


def get_balance(owner: str, root: Path | None = None) -> int:
    return int(_load(root)["balances"].get(owner, 0))


def owner_entries(owner: str, root: Path | None = None) -> list[LedgerEntry]:
    """All of the owner's entries in creation order."""
    return [LedgerEntry.from_dict(e) for e in _load(root)["entries"] if e.get("ownerId") == owner]


def list_ledger(
    owner: str,
    page: int = 1,
    page_size: int = 20,
    root: Path | None = None,
) -> dict[str, Any]:
    """One page of the owner's entries, newest first."""
    if page < 1 or page_size < 1:
        raise InvalidRequest("page and page_size must be positive", details={"page": page, "pageSize": page_size})
    entries = list(reversed(owner_entries(owner, root)))
    total = len(entries)
    total_pages = math.ceil(total / page_size) if total else 0
    start = (page - 1) * page_size
    return {
        "entries": entries[start:start + page_size],
        "currentPage": page,
        "pageSize": page_size,
        "totalCount": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
    }


def entries_between(
    owner: str,
    start: datetime | None = None,
    end: datetime | None = None,
    root: Path | None = None,
) -> list[LedgerEntry]:
    """Owner's entries with start <= createdAt < end."""
    result = []
    for entry in owner_entries(owner, root):
        if start is not None and entry.created_at < start:
            continue
        if end is not None and entry.created_at >= end:
            continue
        result.append(entry)
    return result


def find_by_dedupe_key(key: str, root: Path | None = None) -> LedgerEntry | None:
    doc = _load(root)
    entry_id = doc["dedupe"].get(key)
    if entry_id is None:
        return None
    return _entry_by_id(doc, entry_id)


def can_earn_today(owner: str, reason: str, now: datetime | None = None, root: Path | None = None) -> bool:
    if now is None:
        now = now_local(root)
    key = dedupe_key(owner, reason, now, root)
    if key is None:
        return True
    return key not in _load(root)["dedupe"]


def monthly_stats(owner: str, year: int, month: int, root: Path | None = None) -> dict[str, Any]:
    """Earned / spent totals for one calendar month in the server timezone."""
    prefix = f"{year:04d}-{month:02d}"
    earned = {"total": 0, "count": 0}
    spent = {"total": 0, "count": 0}
    for entry in owner_entries(owner, root):
        if not day_str(entry.created_at, root).startswith(prefix):
            continue
        bucket = earned if entry.type == EntryType.EARN else spent
        bucket["total"] += entry.amount
        bucket["count"] += 1
    return {
        "year": year,
        "month": month,
        "earned": earned,
        "spent": spent,
        "netGain": earned["total"] - spent["total"],
    }


# ── Reconstruction ────────────────────────────────────────────


def rebuild_balances(root: Path | None = None) -> dict[str, int]:
    """Recompute every owner's balance from the entry log and store it."""
    with locked(ledger_path(root)):
        doc = _load(root)
        balances: dict[str, int] = {}
        for raw in doc["entries"]:
            entry = LedgerEntry.from_dict(raw)
            balances[entry.owner_id] = balances.get(entry.owner_id, 0) + entry.signed_amount
        doc["balances"] = balances
        _save(doc, root)
    return balances


def verify_ledger(owner: str, root: Path | None = None) -> list[str]:
    """Check every entry's balanceAfter against the running sum. Returns problems found."""
    problems = []
    running = 0
    for entry in owner_entries(owner, root):
        running += entry.signed_amount
        if running < 0:
            problems.append(f"Entry {entry.id} drives the balance negative")
        if entry.balance_after != running:
            problems.append(f"Entry {entry.id} records {entry.balance_after}, running sum is {running}")
    if get_balance(owner, root) != running:
        problems.append(f"Cached balance {get_balance(owner, root)} differs from ledger sum {running}")
    return problems
