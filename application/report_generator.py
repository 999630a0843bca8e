"""TaxReportGenerator — runs the whole pipeline for one tax year.

A run moves through ``IDLE → FILTERING_PERIOD → CLASSIFYING →
COMPUTING_COST_BASIS_AND_GAINS → AGGREGATING → OPTIMIZING → COMPLETE``.
Classification and cost-basis work happen in fixed-size chunks; after
each chunk ``iter_report`` yields a ``ProgressUpdate`` and the caller
decides when to resume.  A cancellation flag is checked at every progress
point.

A disposal whose cost basis cannot be computed is skipped: its gain and
loss stay unset, ``skip_reason`` says why, and the report carries a
warning.  Configuration errors (unknown jurisdiction, unsupported method)
abort the run before any work is done.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Generator, Iterator, Mapping, Optional, Protocol, Sequence

from application.accessors import (
    asset_key,
    base_amount,
    deductible_value,
    income_value,
    is_acquisition_event,
    is_income_event,
    make_asset_key,
    transaction_source,
    type_label,
)
from application.capital_gains import CapitalGainsCalculator
from application.classifier import TransactionClassifier
from application.cost_basis import (
    CostBasisCalculatorFactory,
    LotCostBasisCalculator,
    LotIdentifier,
    SpecificIdentificationCalculator,
)
from application.lot_manager import AcquisitionLotManager
from application.optimization import OptimizationContext, TaxOptimizationEngine
from application.summary import TaxSummaryAggregator
from domain.entities import (
    CostBasis,
    ProgressUpdate,
    ReportMetadata,
    ReportWarning,
    TaxableTransaction,
    TaxReport,
)
from domain.enums import (
    CostBasisMethod,
    LotSelectionStrategy,
    ReportPhase,
    RiskTolerance,
    TaxEventType,
    WarningKind,
)
from domain.exceptions import ReportCancelled, TaxEngineError, UnsupportedCostBasisMethod
from domain.jurisdictions import TaxJurisdiction, load_jurisdiction
from domain.transactions import Swap, Transaction
from domain.value_objects import ZERO, round_monetary

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


class CancelFlag(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class ReportOptions:
    method: CostBasisMethod = CostBasisMethod.FIFO
    chunk_size: int = DEFAULT_CHUNK_SIZE
    include_optimization: bool = True
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    personal_use_ids: frozenset[str] = frozenset()
    lot_selections: Mapping[str, Sequence[LotIdentifier]] = field(default_factory=dict)
    lot_selection_strategy: LotSelectionStrategy = LotSelectionStrategy.MINIMIZE_GAIN
    market_prices: Mapping[str, Decimal] = field(default_factory=dict)
    use_prior_history: bool = True

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        self.personal_use_ids = frozenset(self.personal_use_ids)


@dataclass
class ReportConfig:
    jurisdiction_code: str
    tax_year: int
    transactions: Sequence[Transaction]
    options: ReportOptions = field(default_factory=ReportOptions)


def _chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class _Run:
    """Mutable state of one report run."""

    def __init__(self, config: ReportConfig, jurisdiction: TaxJurisdiction,
                 calculator: LotCostBasisCalculator,
                 cancel_event: Optional[CancelFlag], clock: Callable[[], float]) -> None:
        self.config = config
        self.options = config.options
        self.jurisdiction = jurisdiction
        self.period = jurisdiction.tax_year_period(config.tax_year)
        self.calculator = calculator
        self.lot_manager = calculator.lot_manager
        self.cancel_event = cancel_event
        self.clock = clock
        self.started = clock()
        self.warnings: list[ReportWarning] = []
        self.total = 0
        self.units_done = 0

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ReportCancelled(
                f"Report for {self.jurisdiction.code} {self.config.tax_year} cancelled")

    def progress(self, processed: int, phase: ReportPhase) -> ProgressUpdate:
        self.check_cancelled()
        work = 2 * self.total
        eta: Optional[float] = None
        if self.units_done and work:
            elapsed = self.clock() - self.started
            eta = max(elapsed / self.units_done * (work - self.units_done), 0.0)
        return ProgressUpdate(processed, self.total, phase, eta)


class TaxReportGenerator:
    """Orchestrates classification, cost basis, gains, summary and optimization."""

    def __init__(
        self,
        classifier: Optional[TransactionClassifier] = None,
        gains_calculator: Optional[CapitalGainsCalculator] = None,
        aggregator: Optional[TaxSummaryAggregator] = None,
        optimizer: Optional[TaxOptimizationEngine] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.classifier = classifier or TransactionClassifier()
        self.gains_calculator = gains_calculator or CapitalGainsCalculator()
        self.aggregator = aggregator or TaxSummaryAggregator()
        self.optimizer = optimizer or TaxOptimizationEngine()
        self.clock = clock
        self.phase = ReportPhase.IDLE

    def generate_report(
        self,
        config: ReportConfig,
        on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
        cancel_event: Optional[CancelFlag] = None,
    ) -> TaxReport:
        """Run ``iter_report`` to completion, forwarding each progress update."""
        run = self.iter_report(config, cancel_event)
        while True:
            try:
                update = next(run)
            except StopIteration as stop:
                return stop.value
            if on_progress is not None:
                on_progress(update)

    def iter_report(
        self,
        config: ReportConfig,
        cancel_event: Optional[CancelFlag] = None,
    ) -> Generator[ProgressUpdate, None, TaxReport]:
        jurisdiction = load_jurisdiction(config.jurisdiction_code)
        method = CostBasisCalculatorFactory.resolve(config.options.method)
        if not jurisdiction.supports_method(method):
            raise UnsupportedCostBasisMethod(method)

        calculator = CostBasisCalculatorFactory.create(method, AcquisitionLotManager())
        run = _Run(config, jurisdiction, calculator, cancel_event, self.clock)
        return self._execute(run)

    # ── phases ────────────────────────────────────────────────────────

    def _enter(self, phase: ReportPhase) -> None:
        self.phase = phase
        log.info("Tax report phase: %s", phase.label)

    def _execute(self, run: _Run) -> Generator[ProgressUpdate, None, TaxReport]:
        options = run.options

        self._enter(ReportPhase.FILTERING_PERIOD)
        run.check_cancelled()
        ordered = sorted(run.config.transactions, key=lambda t: t.timestamp)
        prior = [t for t in ordered if t.timestamp < run.period.start]
        in_period = [t for t in ordered if run.period.contains(t.timestamp)]
        run.total = len(in_period)
        log.info("%d of %d transactions fall in %s tax year %s",
                 len(in_period), len(ordered), run.jurisdiction.code, run.period.label)
        if options.use_prior_history and prior:
            self._replay_history(run, prior)

        self._enter(ReportPhase.CLASSIFYING)
        taxables: list[TaxableTransaction] = []
        for chunk in _chunks(in_period, options.chunk_size):
            for tx in chunk:
                taxables.append(self._classify(run, tx))
            run.units_done += len(chunk)
            yield run.progress(len(taxables), ReportPhase.CLASSIFYING)

        self._enter(ReportPhase.COMPUTING_COST_BASIS_AND_GAINS)
        processed = 0
        for chunk in _chunks(taxables, options.chunk_size):
            for taxable in chunk:
                self._compute(run, taxable)
            processed += len(chunk)
            run.units_done += len(chunk)
            yield run.progress(processed, ReportPhase.COMPUTING_COST_BASIS_AND_GAINS)

        self._enter(ReportPhase.AGGREGATING)
        run.check_cancelled()
        summary = self.aggregator.generate_summary(taxables)

        strategies = []
        if options.include_optimization:
            self._enter(ReportPhase.OPTIMIZING)
            run.check_cancelled()
            strategies = self.optimizer.generate_strategies(OptimizationContext(
                transactions=taxables,
                jurisdiction=run.jurisdiction,
                period=run.period,
                risk_tolerance=options.risk_tolerance,
                lot_manager=run.lot_manager,
                market_prices=options.market_prices,
            ))

        self._enter(ReportPhase.COMPLETE)
        elapsed = self.clock() - run.started
        report = TaxReport(
            id=uuid.uuid4().hex,
            jurisdiction=run.jurisdiction.code,
            period=run.period,
            generated_at=datetime.now(timezone.utc),
            transactions=taxables,
            summary=summary,
            metadata=ReportMetadata(
                method=run.calculator.method,
                transaction_count=len(taxables),
                processing_seconds=round(elapsed, 3),
                skipped_count=sum(1 for t in taxables if t.is_skipped),
            ),
            strategies=strategies,
            warnings=run.warnings,
        )
        report.seal()
        yield ProgressUpdate(run.total, run.total, ReportPhase.COMPLETE, 0.0)
        log.info("Tax report %s complete: %d transactions, %d skipped, %.2fs",
                 report.id, len(taxables), report.metadata.skipped_count, elapsed)
        return report

    def _replay_history(self, run: _Run, prior: Sequence[Transaction]) -> None:
        """Build lots from transactions dated before the period."""
        replayed = 0
        for tx in prior:
            treatment = self.classifier.classify(
                tx, run.jurisdiction, tx.id in run.options.personal_use_ids)
            if treatment.event_type == TaxEventType.DISPOSAL:
                try:
                    self._cost_basis(run, tx)
                except TaxEngineError as exc:
                    log.debug("Prior disposal %s not matched: %s", tx.id, exc)
                self._open_swap_lot(run, tx)
            else:
                self._open_lot(run, tx, treatment.event_type)
            replayed += 1
        log.info("Replayed %d prior transactions into lot history", replayed)

    def _classify(self, run: _Run, tx: Transaction) -> TaxableTransaction:
        treatment = self.classifier.classify(
            tx, run.jurisdiction, tx.id in run.options.personal_use_ids)
        if not treatment.matched_rule:
            run.warnings.append(ReportWarning(
                tx.id, WarningKind.UNCLASSIFIED,
                f"No rule matched '{type_label(tx)}'; treated as non-taxable",
            ))
        return TaxableTransaction(transaction=tx, treatment=treatment)

    def _compute(self, run: _Run, taxable: TaxableTransaction) -> None:
        tx = taxable.transaction
        event = taxable.treatment.event_type

        if event == TaxEventType.DISPOSAL:
            self._compute_disposal(run, taxable)
            return

        if event == TaxEventType.INCOME:
            taxable.income_amount = round_monetary(income_value(tx))
            if (taxable.income_amount == ZERO and is_income_event(tx)
                    and base_amount(tx) > ZERO):
                run.warnings.append(ReportWarning(
                    tx.id, WarningKind.MISSING_FIAT_VALUE,
                    "Income has no market value; recorded as zero",
                ))
        elif event == TaxEventType.DEDUCTIBLE:
            taxable.deductible_amount = round_monetary(deductible_value(tx))
        self._open_lot(run, tx, event)

    def _compute_disposal(self, run: _Run, taxable: TaxableTransaction) -> None:
        tx = taxable.transaction
        personal = taxable.treatment.is_personal_use
        try:
            cost_basis = self._cost_basis(run, tx)
        except TaxEngineError as exc:
            log.warning("Skipping disposal %s: %s", tx.id, exc)
            taxable.mark_skipped(str(exc))
            run.warnings.append(ReportWarning(tx.id, WarningKind.SKIPPED_DISPOSAL, str(exc)))
            cost_basis = None
        self._open_swap_lot(run, tx)
        if cost_basis is None:
            return

        result = self.gains_calculator.calculate(tx, cost_basis, run.jurisdiction, personal)
        taxable.apply_gains(
            cost_basis=cost_basis,
            disposal_value=result.disposal_value,
            capital_gain=result.capital_gain,
            capital_loss=result.capital_loss,
            taxable_amount=result.taxable_gain,
            discount_applied=result.cgt_discount_applied,
        )

    def _cost_basis(self, run: _Run, tx: Transaction) -> CostBasis:
        calc = run.calculator
        if isinstance(calc, SpecificIdentificationCalculator):
            identifiers = run.options.lot_selections.get(tx.id)
            if identifiers:
                return calc.calculate_cost_basis(tx, (), identifiers)
            return calc.calculate_optimal(
                tx, (), run.options.lot_selection_strategy,
                run.jurisdiction.cgt_holding_period)
        return calc.calculate_cost_basis(tx, ())

    @staticmethod
    def _open_lot(run: _Run, tx: Transaction, event: TaxEventType) -> None:
        if event not in (TaxEventType.ACQUISITION, TaxEventType.INCOME):
            return
        if not is_acquisition_event(tx) or base_amount(tx) <= ZERO:
            return
        if run.lot_manager.has_lot(asset_key(tx), tx.id):
            return
        run.lot_manager.add_lot(tx)

    @staticmethod
    def _open_swap_lot(run: _Run, tx: Transaction) -> None:
        """A swap also acquires its "to" asset, whether or not the disposal matched."""
        if not isinstance(tx, Swap) or tx.to_asset.amount == ZERO:
            return
        key = make_asset_key(tx.to_asset.symbol, transaction_source(tx))
        if not run.lot_manager.has_lot(key, tx.id):
            run.lot_manager.add_swap_lot(tx)
