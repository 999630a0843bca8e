"""Database engine, session factory, and ORM models (SQLAlchemy 2.0+)."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text,
    create_engine, event,
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------

class TaxReportModel(Base):
    __tablename__ = "tax_reports"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    jurisdiction: Mapped[str] = mapped_column(String(8), nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_label: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_seconds: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=0)
    net_capital_gain: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    net_taxable_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    summary_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    strategies_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    warnings_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    consistency_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    transactions: Mapped[list[TaxableTransactionModel]] = relationship(
        back_populates="report", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_tax_reports_jurisdiction_year", "jurisdiction", "tax_year"),
    )


class TaxableTransactionModel(Base):
    __tablename__ = "taxable_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("tax_reports.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    asset: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    classification: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_personal_use: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cgt_discount_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(28, 8), nullable=True)
    disposal_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    cost_basis: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    holding_period: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    capital_gain: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    capital_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    taxable_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    income_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    deductible_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2), nullable=True)
    skip_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    report: Mapped[TaxReportModel] = relationship(back_populates="transactions")

    __table_args__ = (
        Index("ix_taxable_tx_report_time", "report_id", "timestamp"),
    )


class AuditLogModel(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    old_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )


class AppSettingsModel(Base):
    """Simple key-value settings store."""
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")


# ---------------------------------------------------------------------------
# Engine and session factory
# ---------------------------------------------------------------------------

_DB_DIR = os.path.join(os.path.expanduser("~"), ".crypto_tax")
_DB_PATH = os.path.join(_DB_DIR, "tax.db")


def get_db_path() -> str:
    return _DB_PATH


def _set_wal_mode(dbapi_conn, connection_record):
    """Enable WAL journal mode and foreign keys."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_path: str | None = None):
    """Create the SQLAlchemy engine; file databases run in WAL mode."""
    path = db_path or _DB_PATH
    is_memory = path == ":memory:"
    if not is_memory:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    url = "sqlite:///:memory:" if is_memory else f"sqlite:///{path}"
    engine = create_engine(url, echo=False)
    if not is_memory:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def create_tables(engine) -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
