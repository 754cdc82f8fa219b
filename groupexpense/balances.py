"""
Balance calculation: signed net position per member from aggregated ledger totals.
"""
from __future__ import annotations

import logging
from fractions import Fraction
from typing import Dict, List, Mapping

from .errors import EmptyGroupError, InvariantViolationError
from .models import Balance, MemberAggregate, MemberId
from .money import round_minor

logger = logging.getLogger(__name__)


def compute_balances(aggregates: Mapping[MemberId, MemberAggregate]) -> List[Balance]:
    """
    Return ``paid - share`` for every member, rounded half-to-even to a whole
    subunit and ordered by member id.

    Rounding can leave the nets a few subunits off zero. That residual may not
    exceed one subunit per member; it is handed back one subunit at a time to
    the members whose rounding moved furthest in its direction (ties by member
    id), so the returned nets always sum to exactly zero.
    """
    if not aggregates:
        raise EmptyGroupError("no members to compute balances for")

    member_ids = sorted(aggregates)
    exact: Dict[MemberId, Fraction] = {}
    net: Dict[MemberId, int] = {}
    for member_id in member_ids:
        aggregate = aggregates[member_id]
        exact[member_id] = Fraction(aggregate.paid) - Fraction(aggregate.share)
        net[member_id] = round_minor(exact[member_id])

    residual = sum(net.values())
    tolerance = len(member_ids)
    if abs(residual) > tolerance:
        raise InvariantViolationError(
            f"balances sum to {residual} subunits across {tolerance} members, beyond rounding tolerance"
        )

    if residual:
        step = 1 if residual > 0 else -1
        # rounding error per member, signed in the direction of the residual
        drift = {member_id: (net[member_id] - exact[member_id]) * step for member_id in member_ids}
        order = sorted(member_ids, key=lambda member_id: (-drift[member_id], member_id))
        logger.debug("absorbing rounding residual of %d subunits", residual)
        for index in range(abs(residual)):
            net[order[index % len(order)]] -= step

    return [Balance(member_id=member_id, net=net[member_id]) for member_id in member_ids]
