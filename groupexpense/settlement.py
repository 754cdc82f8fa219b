"""
Settlement minimization - greedy largest-first debt matching.

Matching the largest debtor against the largest creditor zeroes at least one
of them per transfer, so n non-zero balances settle in at most n - 1
transfers. This is not always the theoretical minimum (that needs a
subset-sum search, exponential in general) but it is deterministic and
O(n log n).
"""
from __future__ import annotations

import heapq
import logging
from typing import Iterable, List, Sequence, Tuple

from .balances import compute_balances
from .errors import EmptyGroupError, InvariantViolationError
from .ledger import aggregate
from .models import Balance, LedgerEntry, MemberId, SettlementResult, Transfer

logger = logging.getLogger(__name__)


def minimize(balances: Sequence[Balance]) -> List[Transfer]:
    """
    Produce the transfers that drive every balance to zero.

    Raises InvariantViolationError if the balances do not sum to zero.
    """
    total = sum(balance.net for balance in balances)
    if total != 0:
        raise InvariantViolationError(f"cannot settle balances that sum to {total}, expected 0")

    # Heap keys: (-magnitude, member_id) so the largest party comes out first,
    # ties broken by ascending member id.
    creditors: List[Tuple[int, MemberId]] = []
    debtors: List[Tuple[int, MemberId]] = []
    for balance in balances:
        if balance.net > 0:
            creditors.append((-balance.net, balance.member_id))
        elif balance.net < 0:
            debtors.append((balance.net, balance.member_id))
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transfers: List[Transfer] = []
    while creditors and debtors:
        credit_key, creditor = heapq.heappop(creditors)
        debt_key, debtor = heapq.heappop(debtors)
        credit, debt = -credit_key, -debt_key

        amount = min(credit, debt)
        transfers.append(Transfer(from_member=debtor, to_member=creditor, amount=amount))

        if credit > amount:
            heapq.heappush(creditors, (-(credit - amount), creditor))
        if debt > amount:
            heapq.heappush(debtors, (-(debt - amount), debtor))

    return transfers


def settle(entries: Iterable[LedgerEntry], members: Iterable[MemberId]) -> SettlementResult:
    """Run the full pipeline for one group snapshot: aggregate, balance, minimize."""
    aggregates = aggregate(entries, members)
    try:
        balances = compute_balances(aggregates)
    except EmptyGroupError:
        logger.debug("group has no members, nothing to settle")
        return SettlementResult()

    transfers = minimize(balances)
    logger.debug("settled %d members with %d transfers", len(balances), len(transfers))
    return SettlementResult(aggregates=aggregates, balances=balances, transfers=transfers)
