"""
Data models for the balance and settlement engine.

Money is held in integer minor units (paise / cents) throughout.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Dict, Hashable, List, Optional

MemberId = Hashable


class EntryKind(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


@dataclass(frozen=True)
class LedgerEntry:
    """One expense or income recorded by a group member"""
    member_id: MemberId
    amount: int  # minor units, always positive
    kind: EntryKind
    group_id: Optional[Hashable] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("ledger entry amount must be positive")


@dataclass(frozen=True)
class MemberAggregate:
    member_id: MemberId
    paid: int
    share: Fraction  # exact equal fraction of the group expense, in minor units


@dataclass(frozen=True)
class Balance:
    member_id: MemberId
    net: int  # positive: is owed money, negative: owes money


@dataclass(frozen=True)
class Transfer:
    from_member: MemberId
    to_member: MemberId
    amount: int


@dataclass(frozen=True)
class MonthlySummary:
    total_expense: int = 0
    total_income: int = 0
    count: int = 0

    @property
    def net_amount(self) -> int:
        return self.total_income - self.total_expense


@dataclass(frozen=True)
class Period:
    """Optional month/year scope; both None means all time."""
    month: Optional[int] = None
    year: Optional[int] = None

    def contains(self, moment: Optional[datetime]) -> bool:
        if self.month is None and self.year is None:
            return True
        if moment is None:
            return False
        if self.year is not None and moment.year != self.year:
            return False
        if self.month is not None and moment.month != self.month:
            return False
        return True


@dataclass
class SettlementResult:
    aggregates: Dict[MemberId, MemberAggregate] = field(default_factory=dict)
    balances: List[Balance] = field(default_factory=list)
    transfers: List[Transfer] = field(default_factory=list)
