"""
Running-balance accumulation over bucketed movements.

WIP balance     = opening + time + disbursement + adjustment + provision - billing
Debtors balance = opening + net billings - collections

Fee and receipt rows never move WIP. Receipts are stored as negative ledger
totals, so collections = -receipt and subtracting collections adds the
(negative) receipt back.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

from firmledger.app.analytics.core import (
    MOVEMENT_KINDS,
    MetricFamily,
    PeriodMetrics,
    Summary,
    TransactionKind,
    ZERO,
    to_decimal,
)


@dataclass(frozen=True)
class MovementFormula:
    name: str
    terms: Tuple[Tuple[TransactionKind, int], ...]

    def movement(self, bucket: PeriodMetrics) -> Decimal:
        total = ZERO
        for kind, sign in self.terms:
            amount = bucket.amount(kind)
            total = total + amount if sign > 0 else total - amount
        return total


WIP_MOVEMENT = MovementFormula(
    name="wip",
    terms=(
        (TransactionKind.TIME, 1),
        (TransactionKind.DISBURSEMENT, 1),
        (TransactionKind.ADJUSTMENT, 1),
        (TransactionKind.PROVISION, 1),
        (TransactionKind.BILLING, -1),
    ),
)

# net_billings - collections == fee + other_net_billing - (-receipt)
DEBTORS_MOVEMENT = MovementFormula(
    name="debtors",
    terms=(
        (TransactionKind.FEE, 1),
        (TransactionKind.OTHER_NET_BILLING, 1),
        (TransactionKind.RECEIPT, 1),
    ),
)

_FORMULAS: Dict[str, MovementFormula] = {
    "wip": WIP_MOVEMENT,
    "debtors": DEBTORS_MOVEMENT,
}


def formula_for(family: MetricFamily) -> MovementFormula:
    try:
        return _FORMULAS[family]
    except KeyError:
        raise ValueError(f"unknown metric family: {family!r}") from None


def net_revenue(bucket: PeriodMetrics) -> Decimal:
    return bucket.time + bucket.adjustment


def net_billings(bucket: PeriodMetrics) -> Decimal:
    return bucket.fee + bucket.other_net_billing


def collections(bucket: PeriodMetrics) -> Decimal:
    return -bucket.receipt


def accumulate(
    buckets: Sequence[PeriodMetrics],
    opening_balance: Any,
    formula: MovementFormula,
) -> List[PeriodMetrics]:
    """
    Walk buckets in order and return copies carrying the post-movement balance.

    Must run on the full bucket sequence; downsampling happens afterwards on
    the returned copies only.
    """
    running = to_decimal(opening_balance)
    out: List[PeriodMetrics] = []
    for bucket in buckets:
        running = running + formula.movement(bucket)
        out.append(bucket.with_balance(running))
    return out


def summarize(buckets: Sequence[PeriodMetrics], opening_balance: Any) -> Summary:
    opening = to_decimal(opening_balance)
    totals: Dict[str, Decimal] = {kind.value: ZERO for kind in MOVEMENT_KINDS}
    for bucket in buckets:
        for kind in MOVEMENT_KINDS:
            totals[kind.value] += bucket.amount(kind)
    current = buckets[-1].balance if buckets else opening
    return Summary(totals=totals, opening_balance=opening, current_balance=current)
