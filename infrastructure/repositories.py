"""Repositories — data access layer for stored tax reports."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.entities import (
    AuditLogEntry,
    ReportWarning,
    StoredTaxReport,
    TaxableTransactionRecord,
    TaxReport,
    TaxStrategy,
    TaxSummary,
)
from domain.enums import (
    ComplianceLevel, CostBasisMethod, StrategyType, TaxEventType, WarningKind,
)
from domain.jurisdictions import TaxPeriod
from domain.value_objects import as_utc, canonical_json
from infrastructure.database import (
    AppSettingsModel, AuditLogModel, TaxableTransactionModel, TaxReportModel,
)


def _naive_utc(moment: datetime) -> datetime:
    """SQLite DATETIME columns hold naive values; store them as UTC."""
    return as_utc(moment).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _strategy_to_dict(s: TaxStrategy) -> dict[str, Any]:
    return {
        "type": s.type.value,
        "description": s.description,
        "potential_savings": s.potential_savings,
        "implementation": list(s.implementation),
        "risks": list(s.risks),
        "compliance": s.compliance.value,
        "priority": s.priority,
        "transaction_ids": list(s.transaction_ids),
    }


def _strategy_from_dict(d: dict[str, Any]) -> TaxStrategy:
    return TaxStrategy(
        type=StrategyType(d["type"]),
        description=d["description"],
        potential_savings=Decimal(str(d["potential_savings"])),
        implementation=tuple(d.get("implementation", ())),
        risks=tuple(d.get("risks", ())),
        compliance=ComplianceLevel(d["compliance"]),
        priority=int(d["priority"]),
        transaction_ids=tuple(d.get("transaction_ids", ())),
    )


def _warning_to_dict(w: ReportWarning) -> dict[str, Any]:
    return {"transaction_id": w.transaction_id, "kind": w.kind.value, "message": w.message}


def _warning_from_dict(d: dict[str, Any]) -> ReportWarning:
    return ReportWarning(
        transaction_id=d["transaction_id"],
        kind=WarningKind(d["kind"]),
        message=d["message"],
    )


def _report_to_model(r: TaxReport) -> TaxReportModel:
    return TaxReportModel(
        id=r.id,
        jurisdiction=r.jurisdiction,
        tax_year=r.period.year,
        period_start=_naive_utc(r.period.start),
        period_end=_naive_utc(r.period.end),
        period_label=r.period.label,
        method=r.metadata.method.value,
        generated_at=_naive_utc(r.generated_at),
        transaction_count=r.metadata.transaction_count,
        skipped_count=r.metadata.skipped_count,
        processing_seconds=Decimal(str(round(r.metadata.processing_seconds, 3))),
        net_capital_gain=r.summary.net_capital_gain,
        net_taxable_amount=r.summary.net_taxable_amount,
        summary_json=canonical_json(r.summary.to_dict()),
        strategies_json=canonical_json([_strategy_to_dict(s) for s in r.strategies]),
        warnings_json=canonical_json([_warning_to_dict(w) for w in r.warnings]),
        consistency_hash=r.consistency_hash,
    )


def _report_model_to_entity(m: TaxReportModel) -> StoredTaxReport:
    return StoredTaxReport(
        id=m.id,
        jurisdiction=m.jurisdiction,
        period=TaxPeriod(
            year=m.tax_year,
            start=as_utc(m.period_start),
            end=as_utc(m.period_end),
            label=m.period_label,
        ),
        method=CostBasisMethod(m.method),
        generated_at=as_utc(m.generated_at),
        summary=TaxSummary.from_dict(json.loads(m.summary_json)),
        strategies=[_strategy_from_dict(d) for d in json.loads(m.strategies_json)],
        warnings=[_warning_from_dict(d) for d in json.loads(m.warnings_json)],
        transaction_count=m.transaction_count,
        skipped_count=m.skipped_count,
        processing_seconds=float(m.processing_seconds),
        consistency_hash=m.consistency_hash,
    )


def _record_to_model(rec: TaxableTransactionRecord) -> TaxableTransactionModel:
    return TaxableTransactionModel(
        report_id=rec.report_id,
        transaction_id=rec.transaction_id,
        timestamp=_naive_utc(rec.timestamp),
        kind=rec.kind,
        asset=rec.asset,
        source=rec.source,
        event_type=rec.event_type.value,
        classification=rec.classification,
        is_personal_use=rec.is_personal_use,
        cgt_discount_applied=rec.cgt_discount_applied,
        amount=rec.amount,
        disposal_value=rec.disposal_value,
        cost_basis=rec.cost_basis,
        holding_period=rec.holding_period,
        capital_gain=rec.capital_gain,
        capital_loss=rec.capital_loss,
        taxable_amount=rec.taxable_amount,
        income_amount=rec.income_amount,
        deductible_amount=rec.deductible_amount,
        skip_reason=rec.skip_reason,
    )


def _record_model_to_entity(m: TaxableTransactionModel) -> TaxableTransactionRecord:
    return TaxableTransactionRecord(
        id=m.id,
        report_id=m.report_id,
        transaction_id=m.transaction_id,
        timestamp=as_utc(m.timestamp),
        kind=m.kind,
        asset=m.asset,
        source=m.source,
        event_type=TaxEventType(m.event_type),
        classification=m.classification,
        is_personal_use=bool(m.is_personal_use),
        cgt_discount_applied=bool(m.cgt_discount_applied),
        amount=m.amount,
        disposal_value=m.disposal_value,
        cost_basis=m.cost_basis,
        holding_period=m.holding_period,
        capital_gain=m.capital_gain,
        capital_loss=m.capital_loss,
        taxable_amount=m.taxable_amount,
        income_amount=m.income_amount,
        deductible_amount=m.deductible_amount,
        skip_reason=m.skip_reason,
    )


# ═══════════════════════════════════════════════════════════════════════════
# TaxReportRepository
# ═══════════════════════════════════════════════════════════════════════════

class TaxReportRepository:
    """Stores finished reports together with their flattened transactions."""

    # ── reads ──────────────────────────────────────────────────────────

    @staticmethod
    def get_by_id(session: Session, report_id: str) -> Optional[StoredTaxReport]:
        m = session.get(TaxReportModel, report_id)
        return _report_model_to_entity(m) if m else None

    @staticmethod
    def list_all(session: Session) -> list[StoredTaxReport]:
        rows = session.execute(
            select(TaxReportModel).order_by(TaxReportModel.generated_at.desc())
        ).scalars().all()
        return [_report_model_to_entity(r) for r in rows]

    @staticmethod
    def list_by_year(session: Session, tax_year: int,
                     jurisdiction: str | None = None) -> list[StoredTaxReport]:
        stmt = select(TaxReportModel).where(TaxReportModel.tax_year == tax_year)
        if jurisdiction:
            stmt = stmt.where(TaxReportModel.jurisdiction == jurisdiction)
        rows = session.execute(
            stmt.order_by(TaxReportModel.generated_at.desc())
        ).scalars().all()
        return [_report_model_to_entity(r) for r in rows]

    # ── writes ─────────────────────────────────────────────────────────

    @staticmethod
    def insert(session: Session, report: TaxReport,
               records: Sequence[TaxableTransactionRecord]) -> str:
        if not report.consistency_hash:
            report.seal()
        if session.get(TaxReportModel, report.id) is not None:
            raise ValueError(f"Tax report {report.id} already stored")
        model = _report_to_model(report)
        model.transactions = [_record_to_model(rec) for rec in records]
        session.add(model)
        session.flush()
        AuditLogRepository.log_action(
            session, "tax_reports", model.id, "INSERT", new_data=_model_to_json(model)
        )
        return model.id

    @staticmethod
    def delete(session: Session, report_id: str) -> bool:
        model = session.get(TaxReportModel, report_id)
        if model is None:
            return False
        old_json = _model_to_json(model)
        session.delete(model)
        session.flush()
        AuditLogRepository.log_action(
            session, "tax_reports", report_id, "DELETE", old_data=old_json,
        )
        return True


# ═══════════════════════════════════════════════════════════════════════════
# TaxableTransactionRepository
# ═══════════════════════════════════════════════════════════════════════════

class TaxableTransactionRepository:

    @staticmethod
    def get_by_report(session: Session, report_id: str) -> list[TaxableTransactionRecord]:
        rows = session.execute(
            select(TaxableTransactionModel)
            .where(TaxableTransactionModel.report_id == report_id)
            .order_by(TaxableTransactionModel.timestamp, TaxableTransactionModel.id)
        ).scalars().all()
        return [_record_model_to_entity(r) for r in rows]

    @staticmethod
    def get_by_asset(session: Session, report_id: str,
                     asset: str) -> list[TaxableTransactionRecord]:
        rows = session.execute(
            select(TaxableTransactionModel)
            .where(TaxableTransactionModel.report_id == report_id)
            .where(TaxableTransactionModel.asset == asset.upper())
            .order_by(TaxableTransactionModel.timestamp, TaxableTransactionModel.id)
        ).scalars().all()
        return [_record_model_to_entity(r) for r in rows]

    @staticmethod
    def get_skipped(session: Session, report_id: str) -> list[TaxableTransactionRecord]:
        rows = session.execute(
            select(TaxableTransactionModel)
            .where(TaxableTransactionModel.report_id == report_id)
            .where(TaxableTransactionModel.skip_reason.is_not(None))
            .order_by(TaxableTransactionModel.timestamp, TaxableTransactionModel.id)
        ).scalars().all()
        return [_record_model_to_entity(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# AuditLogRepository
# ═══════════════════════════════════════════════════════════════════════════

class AuditLogRepository:

    @staticmethod
    def log_action(
        session: Session,
        table_name: str,
        record_id: str,
        action: str,
        old_data: str | None = None,
        new_data: str | None = None,
    ) -> None:
        session.add(AuditLogModel(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            old_data=old_data,
            new_data=new_data,
        ))

    @staticmethod
    def get_recent(session: Session, limit: int = 100) -> list[AuditLogEntry]:
        rows = session.execute(
            select(AuditLogModel)
            .order_by(AuditLogModel.timestamp.desc(), AuditLogModel.id.desc())
            .limit(limit)
        ).scalars().all()
        return [
            AuditLogEntry(
                id=r.id, table_name=r.table_name, record_id=r.record_id,
                action=r.action, old_data=r.old_data, new_data=r.new_data,
                timestamp=r.timestamp,
            )
            for r in rows
        ]


# ═══════════════════════════════════════════════════════════════════════════
# Settings helpers
# ═══════════════════════════════════════════════════════════════════════════

class SettingsRepository:

    @staticmethod
    def get(session: Session, key: str, default: str = "") -> str:
        row = session.get(AppSettingsModel, key)
        return row.value if row else default

    @staticmethod
    def set(session: Session, key: str, value: str) -> None:
        row = session.get(AppSettingsModel, key)
        if row:
            row.value = value
        else:
            session.add(AppSettingsModel(key=key, value=value))
        session.flush()


# ═══════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═══════════════════════════════════════════════════════════════════════════

def _decimal_default(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    raise TypeError(f"Not serializable: {type(obj)}")


def _model_to_json(model) -> str:
    data = {
        c.name: getattr(model, c.name)
        for c in model.__table__.columns
        if not c.name.endswith("_json")
    }
    return json.dumps(data, default=_decimal_default, sort_keys=True)
