from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from sqlalchemy import and_, case, false, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from firmledger.app.analytics.core import (
    UNCATEGORIZED,
    EntityRef,
    MetricFamily,
    TransactionKind,
    TransactionRow,
    ZERO,
    row_from_record,
    to_decimal,
)
from firmledger.app.analytics.errors import DataSourceError
from firmledger.app.models import (
    DrsTransaction,
    ServiceLineExternal,
    ServiceLineMaster,
    WipTransaction,
)

logger = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 50000


# -------------------------
# Contract
# -------------------------

class LedgerQueryAdapter(Protocol):
    """
    Source of ledger rows for the analytics engine.

    Rows should come back sorted by date, but consumers do not rely on it.
    Failures are raised as DataSourceError.
    """

    def fetch_rows(
        self,
        entity: EntityRef,
        date_from: date,
        date_to: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> List[TransactionRow]:
        ...

    def fetch_opening_balance(
        self,
        entity: EntityRef,
        as_of: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> Decimal:
        ...

    def fetch_opening_balances_by_category(
        self,
        entity: EntityRef,
        as_of: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> Dict[str, Decimal]:
        ...

    def category_labels(self, codes: Iterable[str]) -> Dict[str, str]:
        ...


# -------------------------
# Ledger code maps
# -------------------------

WIP_KIND_MAP: Dict[Optional[str], TransactionKind] = {
    "T": TransactionKind.TIME,
    "D": TransactionKind.DISBURSEMENT,
    "ADJ": TransactionKind.ADJUSTMENT,
    "F": TransactionKind.BILLING,
    "FEE": TransactionKind.BILLING,
    "P": TransactionKind.PROVISION,
}

DRS_KIND_MAP: Dict[Optional[str], TransactionKind] = {
    "Invoice": TransactionKind.FEE,
    "Fee": TransactionKind.FEE,
    "Receipt": TransactionKind.RECEIPT,
    "Receipt Forex": TransactionKind.RECEIPT,
    "Credit Note": TransactionKind.OTHER_NET_BILLING,
    "Interest": TransactionKind.OTHER_NET_BILLING,
    "Reversal": TransactionKind.OTHER_NET_BILLING,
    "Provisions": TransactionKind.OTHER_NET_BILLING,
    None: TransactionKind.OTHER_NET_BILLING,
}


def _codes_for(kind_map: Mapping[Optional[str], TransactionKind], *kinds: TransactionKind) -> List[str]:
    return [code for code, kind in kind_map.items() if code is not None and kind in kinds]


class _LedgerTable:
    """Column bindings for one ledger table."""

    def __init__(self, model: Any, kind_column: Any, amount_column: Any, kind_map: Mapping[Optional[str], TransactionKind]):
        self.model = model
        self.kind_column = kind_column
        self.amount_column = amount_column
        self.kind_map = kind_map

    def scope_column(self, entity: EntityRef) -> Any:
        if entity.scope == "client":
            return self.model.client_id
        if entity.scope == "group":
            return self.model.group_code
        return self.model.task_code

    def movement_expr(self, family: MetricFamily) -> Any:
        """SQL counterpart of the accumulator's movement formula."""
        amount = func.coalesce(self.amount_column, 0)
        if family == "wip":
            plus = _codes_for(
                self.kind_map,
                TransactionKind.TIME,
                TransactionKind.DISBURSEMENT,
                TransactionKind.ADJUSTMENT,
                TransactionKind.PROVISION,
            )
            minus = _codes_for(self.kind_map, TransactionKind.BILLING)
            return case(
                (self.kind_column.in_(plus), amount),
                (self.kind_column.in_(minus), -amount),
                else_=0,
            )
        known = _codes_for(
            self.kind_map,
            TransactionKind.FEE,
            TransactionKind.OTHER_NET_BILLING,
            TransactionKind.RECEIPT,
        )
        return case(
            (self.kind_column.in_(known), amount),
            (self.kind_column.is_(None), amount),
            else_=0,
        )


_TABLES: Dict[str, _LedgerTable] = {
    "wip": _LedgerTable(WipTransaction, WipTransaction.t_type, WipTransaction.amount, WIP_KIND_MAP),
    "debtors": _LedgerTable(DrsTransaction, DrsTransaction.entry_type, DrsTransaction.total, DRS_KIND_MAP),
}


def _table_for(family: MetricFamily) -> _LedgerTable:
    try:
        return _TABLES[family]
    except KeyError:
        raise ValueError(f"unknown metric family: {family!r}") from None


# -------------------------
# SQL implementation
# -------------------------

class SqlLedgerAdapter:
    """
    Reads the WIP and debtors ledgers through SQLAlchemy.

    Each call opens its own session so calls can run concurrently on worker
    threads.
    """

    def __init__(self, session_factory: Callable[[], Session], *, row_limit: int = DEFAULT_ROW_LIMIT):
        self._session_factory = session_factory
        self._row_limit = row_limit

    # ---- contract ----

    def fetch_rows(
        self,
        entity: EntityRef,
        date_from: date,
        date_to: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> List[TransactionRow]:
        table = _table_for(family)
        model = table.model

        def _query(db: Session) -> List[TransactionRow]:
            service_lines = self._service_line_map(db)
            stmt = select(model.tran_date, table.kind_column, table.amount_column, model.serv_line_code).where(
                and_(
                    table.scope_column(entity) == entity.key,
                    model.tran_date >= date_from,
                    model.tran_date <= date_to,
                )
            )
            stmt = self._apply_category_filter(stmt, model, service_lines, categories)
            # the cap drops the oldest rows; openings are aggregated separately, so a
            # truncated lookback never shifts balances inside the displayed range
            stmt = stmt.order_by(model.tran_date.desc(), model.id.desc()).limit(self._row_limit)
            records = list(reversed(db.execute(stmt).all()))

            if len(records) >= self._row_limit:
                logger.warning(
                    "Ledger row limit reached: entity=%s family=%s limit=%s range=%s..%s; oldest transactions are excluded",
                    entity.token,
                    family,
                    self._row_limit,
                    date_from,
                    date_to,
                )

            rows: List[TransactionRow] = []
            for tran_date, code, amount, serv_line in records:
                row = row_from_record(
                    {
                        "date": tran_date,
                        "entity_key": entity.key,
                        "kind": code,
                        "amount": amount,
                        "category": service_lines.get(serv_line) if serv_line else None,
                    },
                    kind_map=table.kind_map,
                )
                if row is not None:
                    rows.append(row)
            return rows

        return self._run("fetch_rows", entity, family, _query)

    def fetch_opening_balance(
        self,
        entity: EntityRef,
        as_of: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> Decimal:
        table = _table_for(family)
        model = table.model

        def _query(db: Session) -> Decimal:
            service_lines = self._service_line_map(db)
            stmt = select(func.sum(table.movement_expr(family))).where(
                and_(
                    table.scope_column(entity) == entity.key,
                    model.tran_date < as_of,
                )
            )
            stmt = self._apply_category_filter(stmt, model, service_lines, categories)
            return to_decimal(db.execute(stmt).scalar())

        return self._run("fetch_opening_balance", entity, family, _query)

    def fetch_opening_balances_by_category(
        self,
        entity: EntityRef,
        as_of: date,
        categories: Optional[Sequence[str]] = None,
        *,
        family: MetricFamily = "wip",
    ) -> Dict[str, Decimal]:
        table = _table_for(family)
        model = table.model

        def _query(db: Session) -> Dict[str, Decimal]:
            service_lines = self._service_line_map(db)
            stmt = select(model.serv_line_code, func.sum(table.movement_expr(family))).where(
                and_(
                    table.scope_column(entity) == entity.key,
                    model.tran_date < as_of,
                )
            )
            stmt = self._apply_category_filter(stmt, model, service_lines, categories)
            stmt = stmt.group_by(model.serv_line_code)

            out: Dict[str, Decimal] = {}
            for serv_line, total in db.execute(stmt).all():
                category = service_lines.get(serv_line) if serv_line else None
                key = category or UNCATEGORIZED
                out[key] = out.get(key, ZERO) + to_decimal(total)
            return out

        return self._run("fetch_opening_balances_by_category", entity, family, _query)

    def category_labels(self, codes: Iterable[str]) -> Dict[str, str]:
        wanted = sorted({code for code in codes if code and code != UNCATEGORIZED})
        if not wanted:
            return {}

        def _query(db: Session) -> Dict[str, str]:
            rows = db.execute(
                select(ServiceLineMaster.code, ServiceLineMaster.name).where(ServiceLineMaster.code.in_(wanted))
            ).all()
            return {code: name for code, name in rows}

        try:
            with self._session_factory() as db:
                return _query(db)
        except SQLAlchemyError as exc:
            logger.exception("Service line label lookup failed")
            raise DataSourceError("service line label lookup failed") from exc

    # ---- helpers ----

    def _run(self, operation: str, entity: EntityRef, family: str, query: Callable[[Session], Any]) -> Any:
        try:
            with self._session_factory() as db:
                return query(db)
        except SQLAlchemyError as exc:
            logger.error("Ledger query %s failed: entity=%s family=%s error=%s", operation, entity.token, family, exc)
            raise DataSourceError(f"ledger query {operation} failed for {entity.token}") from exc

    @staticmethod
    def _service_line_map(db: Session) -> Dict[str, str]:
        rows = db.execute(select(ServiceLineExternal.serv_line_code, ServiceLineExternal.master_code)).all()
        return {serv_line: master for serv_line, master in rows}

    @staticmethod
    def _apply_category_filter(stmt: Any, model: Any, service_lines: Mapping[str, str], categories: Optional[Sequence[str]]) -> Any:
        wanted = {c.strip() for c in categories or [] if c and c.strip()}
        if not wanted:
            return stmt
        clauses = []
        codes = sorted(code for code, master in service_lines.items() if master in wanted)
        if codes:
            clauses.append(model.serv_line_code.in_(codes))
        if UNCATEGORIZED in wanted:
            # NULL or unmapped service line codes
            clauses.append(
                or_(
                    model.serv_line_code.is_(None),
                    model.serv_line_code.not_in(sorted(service_lines)),
                )
            )
        if not clauses:
            # an unknown master code matches nothing
            return stmt.where(false())
        return stmt.where(or_(*clauses))
