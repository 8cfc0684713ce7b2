from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from firmledger.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------
# Service lines
# -------------------------

class ServiceLineMaster(Base):
    """
    Master service line (the category dimension of the analytics engine).
    """
    __tablename__ = "service_line_masters"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class ServiceLineExternal(Base):
    """
    External (ledger) service line code -> master service line.
    Ledger rows whose code has no mapping are reported as uncategorized.
    """
    __tablename__ = "service_line_external"

    serv_line_code: Mapped[str] = mapped_column(String(20), primary_key=True)
    master_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("service_line_masters.code", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


# -------------------------
# Ledgers (read-only for the analytics engine)
# -------------------------

class WipTransaction(Base):
    """
    Work-in-progress ledger line.
    t_type: T (time) | D (disbursement) | ADJ (adjustment) | F/FEE (billing) | P (provision)
    """
    __tablename__ = "wip_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False)
    group_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    task_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    tran_date: Mapped[date] = mapped_column(Date, nullable=False)
    t_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    serv_line_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("ix_wip_transactions_client_date", "client_id", "tran_date"),
        Index("ix_wip_transactions_group_date", "group_code", "tran_date"),
        Index("ix_wip_transactions_task_date", "task_code", "tran_date"),
    )


class DrsTransaction(Base):
    """
    Debtors ledger line.
    entry_type: Invoice | Fee | Credit Note | Interest | Reversal | Provisions | Receipt | Receipt Forex
    Receipts are stored as negative totals.
    """
    __tablename__ = "drs_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(36), nullable=False)
    group_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    task_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    biller: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    tran_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    serv_line_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("ix_drs_transactions_client_date", "client_id", "tran_date"),
        Index("ix_drs_transactions_group_date", "group_code", "tran_date"),
        Index("ix_drs_transactions_task_date", "task_code", "tran_date"),
    )


# -------------------------
# Shared analytics cache
# -------------------------

class AnalyticsCacheEntry(Base):
    __tablename__ = "analytics_cache_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
