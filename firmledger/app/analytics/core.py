"""
Core types for the WIP / debtors analytics engine.

Raw ledger records enter through `row_from_record`, which is the only place
numeric coercion happens. Everything downstream can assume fully populated
Decimal fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

Granularity = Literal["day", "month"]
MetricFamily = Literal["wip", "debtors"]
Resolution = Literal["high", "standard", "low"]
EntityScope = Literal["client", "group", "task"]

ENTITY_SCOPES: Tuple[str, ...] = ("client", "group", "task")
UNCATEGORIZED = "uncategorized"
ZERO = Decimal("0")


class TransactionKind(str, Enum):
    TIME = "time"
    DISBURSEMENT = "disbursement"
    ADJUSTMENT = "adjustment"
    BILLING = "billing"
    PROVISION = "provision"
    FEE = "fee"
    RECEIPT = "receipt"
    OTHER_NET_BILLING = "other_net_billing"
    # new ledger movement types are counted here instead of being miscategorized
    UNCLASSIFIED = "unclassified"

    @classmethod
    def parse(cls, value: Any) -> "TransactionKind":
        if isinstance(value, TransactionKind):
            return value
        if value is None:
            return cls.UNCLASSIFIED
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNCLASSIFIED


MOVEMENT_KINDS: Tuple[TransactionKind, ...] = tuple(TransactionKind)


def to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, int):
        return Decimal(value)
    try:
        # str() keeps 0.1 as Decimal("0.1") instead of its binary expansion
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(value.strip()[:10])
            except ValueError:
                return None
    return None


@dataclass(frozen=True)
class EntityRef:
    scope: EntityScope
    key: str

    def __post_init__(self) -> None:
        if self.scope not in ENTITY_SCOPES:
            raise ValueError(f"unknown entity scope: {self.scope!r}")
        if not str(self.key).strip():
            raise ValueError("entity key must not be empty")

    @property
    def token(self) -> str:
        return f"{self.scope}:{self.key}"


@dataclass(frozen=True)
class TransactionRow:
    date: date
    entity_key: str
    kind: TransactionKind
    amount: Decimal
    category: Optional[str] = None

    @property
    def category_key(self) -> str:
        return (self.category or "").strip() or UNCATEGORIZED


def row_from_record(
    record: Mapping[str, Any],
    *,
    kind_map: Optional[Mapping[Optional[str], TransactionKind]] = None,
) -> Optional[TransactionRow]:
    """
    Build a TransactionRow from a raw query record.

    `kind_map` translates ledger codes (e.g. "T", "Receipt") to kinds; codes it
    does not know fall through to TransactionKind.parse. Records without a
    usable date are dropped (returns None).
    """
    row_date = as_date(record.get("date"))
    if row_date is None:
        return None

    raw_kind = record.get("kind")
    if kind_map is not None:
        code = raw_kind.strip() if isinstance(raw_kind, str) else raw_kind
        kind = kind_map.get(code) or TransactionKind.parse(code)
    else:
        kind = TransactionKind.parse(raw_kind)

    category = record.get("category")
    return TransactionRow(
        date=row_date,
        entity_key=str(record.get("entity_key") or ""),
        kind=kind,
        amount=to_decimal(record.get("amount")),
        category=str(category).strip() if category else None,
    )


@dataclass(frozen=True)
class PeriodMetrics:
    """
    One bucket of a series: movement totals per kind plus the running balance.

    Instances are never mutated; the accumulator produces new ones.
    """
    period: date
    time: Decimal = ZERO
    disbursement: Decimal = ZERO
    adjustment: Decimal = ZERO
    billing: Decimal = ZERO
    provision: Decimal = ZERO
    fee: Decimal = ZERO
    receipt: Decimal = ZERO
    other_net_billing: Decimal = ZERO
    unclassified: Decimal = ZERO
    balance: Decimal = ZERO

    def amount(self, kind: TransactionKind) -> Decimal:
        return getattr(self, kind.value)

    def movements(self) -> Dict[str, Decimal]:
        return {kind.value: self.amount(kind) for kind in MOVEMENT_KINDS}

    def has_movement(self) -> bool:
        return any(self.amount(kind) != 0 for kind in MOVEMENT_KINDS)

    def with_balance(self, balance: Decimal) -> "PeriodMetrics":
        return replace(self, balance=balance)


def period_metrics(period: date, totals: Mapping[TransactionKind, Decimal]) -> PeriodMetrics:
    return PeriodMetrics(period=period, **{kind.value: totals.get(kind, ZERO) for kind in MOVEMENT_KINDS})


@dataclass(frozen=True)
class Summary:
    totals: Dict[str, Decimal] = field(default_factory=dict)
    opening_balance: Decimal = ZERO
    current_balance: Decimal = ZERO

    def total(self, kind: TransactionKind) -> Decimal:
        return self.totals.get(kind.value, ZERO)


