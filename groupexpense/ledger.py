"""
Ledger aggregation: turns a group's expense/income entries into per-member
paid and share totals under the equal-split policy.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Mapping

from .errors import UnknownMemberError
from .models import EntryKind, LedgerEntry, MemberAggregate, MemberId, MonthlySummary, Period
from .money import to_minor

logger = logging.getLogger(__name__)


def aggregate(entries: Iterable[LedgerEntry], members: Iterable[MemberId]) -> Dict[MemberId, MemberAggregate]:
    """
    Sum what each member paid and give every member an equal share of the
    group's total expense.

    Income entries are validated but take no part in the split. Every entry
    must belong to a member; an empty membership yields an empty map.
    """
    member_ids = sorted(set(members))
    paid: Dict[MemberId, int] = {member_id: 0 for member_id in member_ids}

    total_expense = 0
    for entry in entries:
        if entry.member_id not in paid:
            raise UnknownMemberError(entry.member_id, entry.group_id)
        if entry.kind is EntryKind.EXPENSE:
            paid[entry.member_id] += entry.amount
            total_expense += entry.amount

    if not member_ids:
        return {}

    share = Fraction(total_expense, len(member_ids))
    logger.debug("aggregated %d members, total expense %d, share %s", len(member_ids), total_expense, share)
    return {
        member_id: MemberAggregate(member_id=member_id, paid=paid[member_id], share=share)
        for member_id in member_ids
    }


def summarize(entries: Iterable[LedgerEntry]) -> MonthlySummary:
    total_expense = 0
    total_income = 0
    count = 0
    for entry in entries:
        count += 1
        if entry.kind is EntryKind.EXPENSE:
            total_expense += entry.amount
        else:
            total_income += entry.amount
    return MonthlySummary(total_expense=total_expense, total_income=total_income, count=count)


def filter_period(entries: Iterable[LedgerEntry], period: Period) -> List[LedgerEntry]:
    return [entry for entry in entries if period.contains(entry.timestamp)]


def entries_from_rows(rows: Iterable[Mapping[str, Any]]) -> List[LedgerEntry]:
    """Convert expense rows as returned by the store into ledger entries."""
    entries: List[LedgerEntry] = []
    for row in rows:
        entries.append(
            LedgerEntry(
                member_id=row["added_by"],
                amount=to_minor(row["amount"]),
                kind=EntryKind(row["type"]),
                group_id=row.get("group_id"),
                timestamp=_to_datetime(row.get("expense_date")),
            )
        )
    return entries


def _to_datetime(value: Any):
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))
