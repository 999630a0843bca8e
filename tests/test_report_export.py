"""Tests for CSV/PDF export helpers and the PDF report generator."""

import csv
import pytest
from datetime import datetime, timezone
from decimal import Decimal

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from application.accessors import to_record
from application.report_generator import ReportConfig, TaxReportGenerator
from domain.enums import TradeSide
from domain.transactions import SpotTrade
from domain.value_objects import AssetAmount, DataSource
from reports.pdf_generator import TaxReportPdfGenerator, fmt_money
from reports.report_export import (
    SUMMARY_HEADERS, TRANSACTION_HEADERS, export_csv, export_pdf, fmt_date,
    summary_rows, transaction_rows,
)

SRC = DataSource(id="sw", name="Swyftx")


def _make_trade(tx_id, side, when, amount, total, asset="BTC"):
    return SpotTrade(
        id=tx_id, timestamp=when, source=SRC, side=side,
        base_asset=AssetAmount(asset, Decimal(amount)),
        quote_asset=AssetAmount("AUD", Decimal(total)),
    )


@pytest.fixture(scope="module")
def report():
    txs = [
        _make_trade("B1", TradeSide.BUY, datetime(2023, 8, 1, tzinfo=timezone.utc), "1", "40000"),
        _make_trade("S1", TradeSide.SELL, datetime(2024, 3, 1, tzinfo=timezone.utc), "0.5", "30000"),
        _make_trade("X1", TradeSide.SELL, datetime(2024, 3, 2, tzinfo=timezone.utc), "2", "100", "SOL"),
    ]
    return TaxReportGenerator().generate_report(ReportConfig("AU", 2024, txs))


@pytest.fixture
def records(report):
    return [to_record(report.id, t) for t in report.transactions]


class TestFormatting:
    def test_dates(self):
        moment = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        assert fmt_date(moment) == "2024-03-01T12:30:00+00:00"
        assert fmt_date(moment, "AU") == "01/03/2024"
        with pytest.raises(ValueError):
            fmt_date(moment, "US")

    def test_money(self):
        assert fmt_money(None) == "-"
        assert fmt_money(Decimal("1234.5")) == "$1,234.50"


class TestRows:
    def test_transaction_rows(self, records):
        rows = transaction_rows(records, "AU")
        assert len(rows) == 3
        assert all(len(r) == len(TRANSACTION_HEADERS) for r in rows)
        sale = dict(zip(TRANSACTION_HEADERS, rows[1]))
        assert sale["Date"] == "01/03/2024"
        assert sale["Type"] == "SPOT_TRADE"
        assert sale["Tax Event"] == "DISPOSAL"
        assert sale["Classification"] == "Sale of Cryptocurrency"
        assert sale["Cost Basis"] == "20000.00"
        assert sale["Capital Gain"] == "10000.00"
        assert sale["Holding Period"] == "213"
        assert sale["CGT Discount Applied"] == "No"
        assert sale["Skip Reason"] == ""

    def test_skipped_row(self, records):
        skipped = dict(zip(TRANSACTION_HEADERS, transaction_rows(records)[2]))
        assert skipped["Capital Gain"] == "0"
        assert skipped["Skip Reason"].startswith("Insufficient acquisition lots for SOL")

    def test_summary_rows(self, report):
        rows = summary_rows(report.summary)
        assert rows[0] == ["Total Capital Gains", "10000.00"]
        assert rows[-1][0] == "Net Taxable Amount"
        assert len(rows) == 8


class TestWriters:
    def test_csv(self, tmp_path, records):
        path = str(tmp_path / "out" / "tx.csv")
        assert export_csv(path, TRANSACTION_HEADERS, transaction_rows(records)) == path
        with open(path, encoding="utf-8-sig", newline="") as f:
            rows = list(csv.reader(f, delimiter=";"))
        assert rows[0] == TRANSACTION_HEADERS
        assert [r[2] for r in rows[1:]] == ["BTC", "BTC", "SOL"]

    def test_table_pdf(self, tmp_path, report):
        path = str(tmp_path / "summary.pdf")
        export_pdf(path, "Summary", SUMMARY_HEADERS, summary_rows(report.summary))
        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"

    def test_empty_table_pdf(self, tmp_path):
        path = str(tmp_path / "empty.pdf")
        export_pdf(path, "Nothing", SUMMARY_HEADERS, [], landscape_mode=True)
        assert os.path.getsize(path) > 0


class TestPdfGenerator:
    def test_full_report(self, tmp_path, report, records):
        path = str(tmp_path / "report.pdf")
        assert TaxReportPdfGenerator().generate(path, report, records) == path
        with open(path, "rb") as f:
            assert f.read(4) == b"%PDF"

    def test_without_transactions(self, tmp_path, report):
        path = str(tmp_path / "short.pdf")
        TaxReportPdfGenerator().generate(path, report, include_transactions=False,
                                         include_strategies=False)
        assert os.path.getsize(path) > 0
