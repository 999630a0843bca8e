"""Application use cases — orchestration of the engine and storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from application.accessors import to_record
from application.report_generator import (
    DEFAULT_CHUNK_SIZE,
    CancelFlag,
    ReportConfig,
    ReportOptions,
    TaxReportGenerator,
)
from domain.entities import ProgressUpdate, TaxReport
from domain.enums import CostBasisMethod, RiskTolerance
from domain.transactions import Transaction
from infrastructure.repositories import (
    SettingsRepository,
    TaxableTransactionRepository,
    TaxReportRepository,
)
from reports.pdf_generator import TaxReportPdfGenerator
from reports.report_export import (
    STRATEGY_HEADERS,
    SUMMARY_HEADERS,
    TRANSACTION_HEADERS,
    export_csv,
    export_pdf,
    strategy_rows,
    summary_rows,
    transaction_rows,
)

log = logging.getLogger(__name__)

KEY_JURISDICTION = "default_jurisdiction"
KEY_METHOD = "default_cost_basis_method"
KEY_CHUNK_SIZE = "default_chunk_size"
KEY_RISK_TOLERANCE = "default_risk_tolerance"
KEY_LAST_REPORT = "last_report_id"


# ═══════════════════════════════════════════════════════════════════════════
# Report defaults
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ReportDefaults:
    """Persistent defaults kept in the settings table."""

    jurisdiction: str = "AU"
    method: CostBasisMethod = CostBasisMethod.FIFO
    chunk_size: int = DEFAULT_CHUNK_SIZE
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE

    @classmethod
    def load(cls, session) -> ReportDefaults:
        """Read defaults; a malformed stored value raises ``ValueError``."""
        base = cls()
        return cls(
            jurisdiction=SettingsRepository.get(
                session, KEY_JURISDICTION, base.jurisdiction).upper(),
            method=CostBasisMethod(SettingsRepository.get(
                session, KEY_METHOD, base.method.value)),
            chunk_size=int(SettingsRepository.get(
                session, KEY_CHUNK_SIZE, str(base.chunk_size))),
            risk_tolerance=RiskTolerance(SettingsRepository.get(
                session, KEY_RISK_TOLERANCE, base.risk_tolerance.value)),
        )

    def save(self, session) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        SettingsRepository.set(session, KEY_JURISDICTION, self.jurisdiction.upper())
        SettingsRepository.set(session, KEY_METHOD, self.method.value)
        SettingsRepository.set(session, KEY_CHUNK_SIZE, str(self.chunk_size))
        SettingsRepository.set(session, KEY_RISK_TOLERANCE, self.risk_tolerance.value)

    def options(self) -> ReportOptions:
        return ReportOptions(
            method=self.method,
            chunk_size=self.chunk_size,
            risk_tolerance=self.risk_tolerance,
        )


# ═══════════════════════════════════════════════════════════════════════════
# GenerateTaxReport
# ═══════════════════════════════════════════════════════════════════════════

class GenerateTaxReportUseCase:
    """Runs the report pipeline and persists the finished report."""

    def __init__(self, generator: Optional[TaxReportGenerator] = None) -> None:
        self._generator = generator or TaxReportGenerator()

    def execute(
        self,
        session,
        transactions: Sequence[Transaction],
        tax_year: int,
        jurisdiction_code: Optional[str] = None,
        options: Optional[ReportOptions] = None,
        on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
        cancel_event: Optional[CancelFlag] = None,
        persist: bool = True,
    ) -> TaxReport:
        """Generate the report for *tax_year*; missing arguments come from settings.

        Nothing is written when the run fails or is cancelled.
        """
        defaults = ReportDefaults.load(session)
        config = ReportConfig(
            jurisdiction_code=jurisdiction_code or defaults.jurisdiction,
            tax_year=tax_year,
            transactions=transactions,
            options=options or defaults.options(),
        )
        report = self._generator.generate_report(config, on_progress, cancel_event)

        if persist:
            records = [to_record(report.id, t) for t in report.transactions]
            TaxReportRepository.insert(session, report, records)
            SettingsRepository.set(session, KEY_LAST_REPORT, report.id)
            log.info("Stored tax report %s (%s %s, %d transactions)",
                     report.id, report.jurisdiction, report.period.label, len(records))
        return report


# ═══════════════════════════════════════════════════════════════════════════
# ExportTaxReport
# ═══════════════════════════════════════════════════════════════════════════

class ExportTaxReportUseCase:
    """Writes a stored report to CSV or PDF."""

    FORMATS = ("csv", "summary_csv", "strategies_csv", "pdf", "summary_pdf")

    def __init__(self, pdf_generator: Optional[TaxReportPdfGenerator] = None) -> None:
        self._pdf = pdf_generator or TaxReportPdfGenerator()

    def execute(self, session, report_id: str, path: str, fmt: str = "csv",
                date_format: str = "ISO") -> str:
        fmt = fmt.lower()
        if fmt not in self.FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        report = TaxReportRepository.get_by_id(session, report_id)
        if report is None:
            raise ValueError(f"Tax report {report_id} not found")

        if fmt == "summary_csv":
            written = export_csv(path, SUMMARY_HEADERS, summary_rows(report.summary))
        elif fmt == "strategies_csv":
            written = export_csv(path, STRATEGY_HEADERS, strategy_rows(report.strategies))
        elif fmt == "summary_pdf":
            written = export_pdf(
                path, "Tax Summary", SUMMARY_HEADERS, summary_rows(report.summary),
                subtitle=f"{report.jurisdiction} tax year {report.period.label} | "
                         f"{report.method.label}",
                numeric_from=1,
            )
        else:
            records = TaxableTransactionRepository.get_by_report(session, report_id)
            if fmt == "csv":
                written = export_csv(path, TRANSACTION_HEADERS,
                                     transaction_rows(records, date_format))
            else:
                written = self._pdf.generate(path, report, records)

        log.info("Exported tax report %s as %s to %s", report_id, fmt, written)
        return written


# ═══════════════════════════════════════════════════════════════════════════
# Report housekeeping
# ═══════════════════════════════════════════════════════════════════════════

class DeleteTaxReportUseCase:

    def execute(self, session, report_id: str) -> bool:
        deleted = TaxReportRepository.delete(session, report_id)
        if deleted and SettingsRepository.get(session, KEY_LAST_REPORT) == report_id:
            SettingsRepository.set(session, KEY_LAST_REPORT, "")
        return deleted
