"""PDF tax report generator using ReportLab."""

from __future__ import annotations

import os
from datetime import datetime
from decimal import Decimal
from typing import Sequence, Union

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle,
)

from babel.numbers import format_currency

from domain.entities import StoredTaxReport, TaxableTransactionRecord, TaxReport
from domain.enums import Currency
from domain.value_objects import as_utc
from reports.report_export import TABLE_STYLE

ReportLike = Union[TaxReport, StoredTaxReport]

_LOCALES = {Currency.AUD: "en_AU", Currency.USD: "en_US"}


def fmt_money(value, currency: Currency = Currency.AUD) -> str:
    if value is None:
        return "-"
    try:
        return format_currency(Decimal(value), currency.value, locale=_LOCALES[currency])
    except (ValueError, TypeError, ArithmeticError):
        return f"{currency.symbol}{float(value):,.2f}"


def _fmt_qty(value) -> str:
    if value is None:
        return ""
    v = float(value)
    if v == int(v):
        return str(int(v))
    return f"{v:.8f}".rstrip("0").rstrip(".")


def _table(data: list[list], right_from: int | None = None) -> Table:
    t = Table(data, repeatRows=1)
    t.setStyle(TABLE_STYLE)
    if right_from is not None:
        t.setStyle(TableStyle([("ALIGN", (right_from, 1), (-1, -1), "RIGHT")]))
    return t


class TaxReportPdfGenerator:
    """Renders a finished or stored tax report to PDF."""

    def __init__(self, currency: Currency = Currency.AUD) -> None:
        self.currency = currency

    def generate(
        self,
        output_path: str,
        report: ReportLike,
        records: Sequence[TaxableTransactionRecord] = (),
        *,
        include_transactions: bool = True,
        include_strategies: bool = True,
    ) -> str:
        """Generate a PDF and return the output path."""
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

        doc = SimpleDocTemplate(
            output_path, pagesize=landscape(A4) if include_transactions else A4,
            leftMargin=15 * mm, rightMargin=15 * mm,
            topMargin=15 * mm, bottomMargin=15 * mm,
        )

        styles = getSampleStyleSheet()
        story = []
        money = self._money

        title_style = ParagraphStyle(
            "CustomTitle", parent=styles["Title"],
            fontSize=18, textColor=colors.HexColor("#0078D4"),
            spaceAfter=6,
        )
        story.append(Paragraph(
            f"Cryptocurrency Tax Report ({report.jurisdiction})", title_style))
        story.append(Spacer(1, 4 * mm))

        meta_style = ParagraphStyle(
            "Meta", parent=styles["Normal"], fontSize=10, spaceAfter=4,
        )
        generated = as_utc(report.generated_at).strftime("%d/%m/%Y %H:%M UTC")
        story.append(Paragraph(f"Tax year: <b>{report.period.label}</b>", meta_style))
        story.append(Paragraph(f"Generated: {generated}", meta_style))
        story.append(Paragraph(
            f"Cost basis method: <b>{report.method.label}</b> | "
            f"Transactions: <b>{report.transaction_count}</b>",
            meta_style,
        ))
        story.append(Spacer(1, 6 * mm))

        # ── Summary ────────────────────────────────────────────────────
        s = report.summary
        story.append(Paragraph("Summary", styles["Heading2"]))
        story.append(_table([
            ["Item", "Amount"],
            ["Total capital gains", money(s.total_capital_gains)],
            ["Total capital losses", money(s.total_capital_losses)],
            ["Net capital gain", money(s.net_capital_gain)],
            ["CGT discount", money(s.cgt_discount)],
            ["Taxable capital gain", money(s.taxable_capital_gain)],
            ["Ordinary income", money(s.ordinary_income)],
            ["Deductions", money(s.total_deductions)],
            ["Net taxable amount", money(s.net_taxable_amount)],
        ], right_from=1))
        if s.capital_loss_carry_forward:
            story.append(Spacer(1, 2 * mm))
            story.append(Paragraph(
                f"Capital loss carried forward: <b>{money(s.capital_loss_carry_forward)}</b>",
                meta_style,
            ))
        story.append(Spacer(1, 6 * mm))

        # ── By asset ───────────────────────────────────────────────────
        assets = s.assets_by_performance()
        if assets:
            story.append(Paragraph("By Asset", styles["Heading2"]))
            data = [["Asset", "Disposals", "Gains", "Losses", "Taxable", "Income"]]
            for a in assets:
                data.append([
                    a.asset, str(a.disposals), money(a.capital_gains),
                    money(a.capital_losses), money(a.taxable_gain), money(a.income),
                ])
            story.append(_table(data, right_from=1))
            story.append(Spacer(1, 6 * mm))

        # ── Strategies ─────────────────────────────────────────────────
        if include_strategies and report.strategies:
            story.append(Paragraph("Optimization Strategies", styles["Heading2"]))
            data = [["Strategy", "Compliance", "Priority", "Potential savings"]]
            for st in report.strategies:
                data.append([st.type.label, st.compliance.value, str(st.priority),
                             money(st.potential_savings)])
            story.append(_table(data, right_from=2))
            story.append(Paragraph(
                "Savings are estimates only and do not constitute tax advice.", meta_style))
            story.append(Spacer(1, 6 * mm))

        # ── Warnings ───────────────────────────────────────────────────
        if report.warnings:
            story.append(Paragraph("Warnings", styles["Heading2"]))
            data = [["Transaction", "Kind", "Message"]]
            for w in report.warnings:
                data.append([w.transaction_id, w.kind.value, w.message[:90]])
            story.append(_table(data))
            story.append(Spacer(1, 6 * mm))

        # ── Transactions ───────────────────────────────────────────────
        if include_transactions and records:
            story.append(Paragraph("Transactions", styles["Heading2"]))
            data = [["Date", "Asset", "Type", "Event", "Amount", "Proceeds",
                     "Cost basis", "Gain", "Loss", "Taxable", "Days"]]
            for r in records:
                data.append([
                    as_utc(r.timestamp).strftime("%d/%m/%Y"),
                    r.asset,
                    r.kind,
                    r.event_type.label,
                    _fmt_qty(r.amount),
                    money(r.disposal_value),
                    money(r.cost_basis),
                    money(r.capital_gain),
                    money(r.capital_loss),
                    money(r.taxable_amount),
                    "" if r.holding_period is None else str(r.holding_period),
                ])
            story.append(_table(data, right_from=4))

        story.append(Spacer(1, 10 * mm))
        footer_style = ParagraphStyle(
            "Footer", parent=styles["Normal"],
            fontSize=8, textColor=colors.HexColor("#999999"),
            alignment=1,  # center
        )
        story.append(Paragraph(
            f"Crypto Tax Engine — report {report.id} — "
            f"printed {datetime.now().strftime('%d/%m/%Y %H:%M')}", footer_style
        ))

        doc.build(story)
        return output_path

    def _money(self, value) -> str:
        return fmt_money(value, self.currency)
