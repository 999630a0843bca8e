"""Flat CSV and single-table PDF exports of a stored tax report.

The ``*_rows`` builders turn stored records, a summary or a strategy list
into rows of strings; ``export_csv`` and ``export_pdf`` write any such
table.  The full multi-section PDF lives in ``reports.pdf_generator``.
"""

from __future__ import annotations

import csv
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle,
)

from domain.entities import TaxableTransactionRecord, TaxStrategy, TaxSummary
from domain.value_objects import as_utc

TRANSACTION_HEADERS = [
    "Date", "Type", "Asset", "Amount", "Value", "Tax Event", "Classification",
    "Cost Basis", "Capital Gain", "Capital Loss", "Income Amount",
    "Deductible Amount", "Holding Period", "CGT Discount Applied",
    "Personal Use", "Skip Reason",
]

SUMMARY_HEADERS = ["Item", "Amount"]

STRATEGY_HEADERS = ["Strategy", "Compliance", "Priority", "Potential Savings", "Description"]

TABLE_STYLE = TableStyle([
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E0E0E0")),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 8),
    ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#DDDDDD")),
    ("ROWBACKGROUNDS", (0, 1), (-1, -1),
     [colors.white, colors.HexColor("#F9F9F9")]),
    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ("TOPPADDING", (0, 0), (-1, -1), 3),
    ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
])


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------

def fmt_amount(value: Optional[Decimal]) -> str:
    return "0" if value is None else str(value)


def fmt_date(moment: datetime, date_format: str = "ISO") -> str:
    """``ISO`` gives ISO-8601 UTC; ``AU`` gives DD/MM/YYYY."""
    moment = as_utc(moment)
    if date_format == "AU":
        return moment.strftime("%d/%m/%Y")
    if date_format == "ISO":
        return moment.isoformat()
    raise ValueError(f"Unknown date format: {date_format}")


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def transaction_rows(records: Iterable[TaxableTransactionRecord],
                     date_format: str = "ISO") -> list[list[str]]:
    return [
        [
            fmt_date(r.timestamp, date_format),
            r.kind,
            r.asset,
            fmt_amount(r.amount),
            fmt_amount(r.disposal_value),
            r.event_type.value,
            r.classification,
            fmt_amount(r.cost_basis),
            fmt_amount(r.capital_gain),
            fmt_amount(r.capital_loss),
            fmt_amount(r.income_amount),
            fmt_amount(r.deductible_amount),
            str(r.holding_period or 0),
            _yes_no(r.cgt_discount_applied),
            _yes_no(r.is_personal_use),
            r.skip_reason or "",
        ]
        for r in records
    ]


def summary_rows(summary: TaxSummary) -> list[list[str]]:
    return [
        ["Total Capital Gains", fmt_amount(summary.total_capital_gains)],
        ["Total Capital Losses", fmt_amount(summary.total_capital_losses)],
        ["Net Capital Gain", fmt_amount(summary.net_capital_gain)],
        ["CGT Discount", fmt_amount(summary.cgt_discount)],
        ["Taxable Capital Gain", fmt_amount(summary.taxable_capital_gain)],
        ["Ordinary Income", fmt_amount(summary.ordinary_income)],
        ["Total Deductions", fmt_amount(summary.total_deductions)],
        ["Net Taxable Amount", fmt_amount(summary.net_taxable_amount)],
    ]


def strategy_rows(strategies: Iterable[TaxStrategy]) -> list[list[str]]:
    return [
        [s.type.label, s.compliance.value, str(s.priority),
         fmt_amount(s.potential_savings), s.description]
        for s in strategies
    ]


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def export_csv(
    path: str,
    headers: list[str],
    rows: list[list[str]],
    *,
    delimiter: str = ";",
) -> str:
    """Write headers + rows to a CSV file. Returns the path."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8-sig") as f:
        writer = csv.writer(f, delimiter=delimiter)
        writer.writerow(headers)
        writer.writerows(rows)
    return path


def export_pdf(
    path: str,
    title: str,
    headers: list[str],
    rows: list[list[str]],
    *,
    subtitle: str = "",
    numeric_from: Optional[int] = None,
    landscape_mode: bool = False,
) -> str:
    """Write one titled table to *path*; columns from *numeric_from* align right."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    doc = SimpleDocTemplate(
        path, pagesize=landscape(A4) if landscape_mode else A4,
        leftMargin=15 * mm, rightMargin=15 * mm,
        topMargin=15 * mm, bottomMargin=15 * mm,
        title=title,
    )
    styles = getSampleStyleSheet()
    heading = ParagraphStyle(
        "TableTitle", parent=styles["Title"],
        fontSize=16, textColor=colors.HexColor("#0078D4"), spaceAfter=4,
    )
    note = ParagraphStyle("TableNote", parent=styles["Normal"], fontSize=9, spaceAfter=4)

    story: list = [Paragraph(title, heading)]
    if subtitle:
        story.append(Paragraph(subtitle, note))
    stamp = datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC")
    story.append(Paragraph(f"Generated: {stamp}", note))
    story.append(Spacer(1, 4 * mm))

    if rows:
        table = Table([headers] + rows, repeatRows=1)
        table.setStyle(TABLE_STYLE)
        if numeric_from is not None:
            table.setStyle(TableStyle([("ALIGN", (numeric_from, 1), (-1, -1), "RIGHT")]))
        story.append(table)
    else:
        story.append(Paragraph("No rows to report.", note))

    story.append(Spacer(1, 8 * mm))
    footer = ParagraphStyle(
        "TableFooter", parent=styles["Normal"],
        fontSize=7, textColor=colors.HexColor("#999999"), alignment=1,
    )
    story.append(Paragraph(
        "Crypto Tax Engine. Figures are computed from the supplied transactions "
        "and are not tax advice.", footer))

    doc.build(story)
    return path
