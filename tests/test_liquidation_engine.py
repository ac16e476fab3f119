"""
Tests for the liquidation monitoring cycle and liquidation execution.
"""
import threading
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from structlog.testing import capture_logs

from app.core.errors import NotFoundError, StateConflictError, TransferError, ValidationError
from app.models.repository import InMemoryRepository
from app.schemas.lending import ActiveLoan, LoanStatus
from app.services.event_publisher import MonitoringEventRecorder
from app.services.governance import GovernanceParameters
from app.services.liquidation_engine import LiquidationEngine
from app.services.price_feed import StaticPriceFeed
from app.services.transfers import InMemoryTransferLedger


class _FailingTransfers:
    def __init__(self):
        self.calls = 0

    def execute_transfer(self, from_id, to_id, amount, memo=""):
        self.calls += 1
        raise TransferError("chain unavailable")


class _RaisingRecorder:
    def record_event(self, kind, payload):
        raise RuntimeError("audit sink down")


class _CountingFeed(StaticPriceFeed):
    def __init__(self, values=None, on_quote=None):
        super().__init__(values)
        self.quotes: list[str] = []
        self._on_quote = on_quote

    def get_collateral_value(self, loan):
        self.quotes.append(loan.id)
        if self._on_quote is not None:
            self._on_quote(loan)
        return super().get_collateral_value(loan)


def _make_loan(loan_id: str, remaining: float = 1_000.0, collateral: float = 1_000.0) -> ActiveLoan:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return ActiveLoan(
        id=loan_id,
        application_id=f"APP-{loan_id}",
        borrower_id="borrower-1",
        lender_id="lender-1",
        principal=remaining,
        interest_rate=0.08,
        remaining_amount=remaining,
        collateral_value=collateral,
        current_collateral_ratio=collateral / remaining,
        next_payment_date=now,
        total_payments=6,
        created_at=now,
        updated_at=now,
    )


def _make_engine(*loans: ActiveLoan, feed=None, transfers=None, governance=None, events=None):
    repo = InMemoryRepository[ActiveLoan]("ActiveLoan")
    for loan in loans:
        repo.add(loan)
    feed = feed if feed is not None else _CountingFeed()
    transfers = transfers if transfers is not None else InMemoryTransferLedger()
    events = events if events is not None else MonitoringEventRecorder()
    governance = governance or GovernanceParameters()
    engine = LiquidationEngine(
        loans=repo,
        price_feed=feed,
        transfers=transfers,
        events=events,
        governance=governance,
    )
    return SimpleNamespace(engine=engine, loans=repo, feed=feed, transfers=transfers,
                           events=events, governance=governance)


class TestFullLiquidation:
    def test_seizes_amount_plus_penalty(self):
        """1000 collateral vs 1000 debt: retire 166.67, penalty 8.33, seize 175."""
        h = _make_engine(_make_loan("L1"))
        checks = h.engine.run_cycle()

        assert len(checks) == 1
        assert checks[0].needs_liquidation is True
        assert checks[0].liquidation_amount == pytest.approx(166.67, abs=0.01)

        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.LIQUIDATED
        assert loan.remaining_amount == 0.0
        assert loan.collateral_value == pytest.approx(825.0)

        receipt = h.transfers.receipts[0]
        assert receipt.amount == pytest.approx(175.0)
        assert (receipt.from_id, receipt.to_id) == ("borrower-1", "lender-1")

    def test_records_event(self):
        h = _make_engine(_make_loan("L1"))
        h.engine.run_cycle()
        kinds = [e["event_type"] for e in h.events.recent()]
        assert "liquidation_required" in kinds
        assert kinds[0] == "loan_liquidated_full"

    def test_direct_liquidate_returns_result(self):
        h = _make_engine(_make_loan("L1"))
        result = h.engine.liquidate(h.loans.get("L1"), 100.0)
        assert result.success is True
        assert result.partial is False
        assert result.liquidated_amount == pytest.approx(105.0)
        assert result.remaining_debt == 0.0
        assert result.transaction_ref.startswith("tx_")


class TestPartialLiquidation:
    def test_seizes_share_of_collateral(self):
        h = _make_engine(_make_loan("L1", remaining=1_000.0, collateral=100.0))
        h.engine.run_cycle()

        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.LIQUIDATED
        assert loan.remaining_amount == pytest.approx(905.0)
        assert loan.collateral_value == pytest.approx(5.0)
        assert h.transfers.receipts[0].amount == pytest.approx(95.0)

    def test_result_marks_partial(self):
        h = _make_engine(_make_loan("L1", remaining=1_000.0, collateral=100.0))
        result = h.engine.liquidate(h.loans.get("L1"), 916.67)
        assert result.partial is True
        assert result.remaining_debt == pytest.approx(905.0)

    def test_seizure_fraction_from_governance(self):
        gov = GovernanceParameters()
        gov.update(partial_seizure_fraction=0.5)
        h = _make_engine(_make_loan("L1", remaining=1_000.0, collateral=100.0), governance=gov)
        h.engine.run_cycle()
        assert h.loans.get("L1").remaining_amount == pytest.approx(950.0)

    def test_worthless_collateral_skips_transfer(self):
        feed = _CountingFeed({"L1": 0.0})
        h = _make_engine(_make_loan("L1"), feed=feed)
        h.engine.run_cycle()

        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.LIQUIDATED
        assert loan.remaining_amount == 1_000.0
        assert h.transfers.receipts == []


class TestFailurePolicy:
    def test_transfer_failure_leaves_loan_active(self):
        transfers = _FailingTransfers()
        h = _make_engine(_make_loan("L1"), transfers=transfers)
        h.engine.run_cycle()

        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.ACTIVE
        assert loan.remaining_amount == 1_000.0
        assert transfers.calls == 1
        assert h.events.recent(kind="liquidation_failed")

    def test_failed_result(self):
        h = _make_engine(_make_loan("L1"), transfers=_FailingTransfers())
        result = h.engine.liquidate(h.loans.get("L1"), 166.67)
        assert result.success is False
        assert result.remaining_debt == 1_000.0
        assert "chain unavailable" in result.error

    def test_failed_loan_retried_next_cycle(self):
        transfers = _FailingTransfers()
        h = _make_engine(_make_loan("L1"), transfers=transfers)
        h.engine.run_cycle()
        h.engine.run_cycle()
        assert transfers.calls == 2

    def test_price_feed_failure_skips_loan(self):
        h = _make_engine(_make_loan("L1", collateral=0.0), _make_loan("L2"))
        checks = h.engine.run_cycle()

        assert [c.loan_id for c in checks] == ["L2"]
        assert h.loans.get("L1").status == LoanStatus.ACTIVE
        assert h.events.recent(kind="liquidation_check_failed")


class TestIdempotence:
    def test_second_liquidation_rejected(self):
        h = _make_engine(_make_loan("L1"))
        loan = h.loans.get("L1")
        h.engine.liquidate(loan, 166.67)

        with pytest.raises(StateConflictError):
            h.engine.liquidate(loan, 166.67)
        assert len(h.transfers.receipts) == 1

    def test_cycle_ignores_liquidated_loans(self):
        h = _make_engine(_make_loan("L1"))
        h.engine.run_cycle()
        assert h.engine.run_cycle() == []
        assert len(h.transfers.receipts) == 1

    def test_non_positive_amount(self):
        h = _make_engine(_make_loan("L1"))
        with pytest.raises(ValidationError):
            h.engine.liquidate(h.loans.get("L1"), 0)


class TestMonitoringCycle:
    def test_unknown_loan_is_skipped_with_warning(self):
        h = _make_engine(_make_loan("L1"))
        stranger = _make_loan("L9")
        with capture_logs() as logs:
            checks = h.engine.run_cycle([stranger, h.loans.get("L1")])

        assert [c.loan_id for c in checks] == ["L1"]
        assert "L9" not in h.feed.quotes
        assert {
            "event": "liquidation_loan_unknown",
            "log_level": "warning",
            "operation": "liquidation_check",
            "loan_id": "L9",
        } in logs
    def test_healthy_loans_untouched_but_ratio_persisted(self):
        feed = _CountingFeed({"L1": 3_000.0})
        h = _make_engine(_make_loan("L1"), feed=feed)
        checks = h.engine.run_cycle()

        assert checks[0].needs_liquidation is False
        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.ACTIVE
        assert loan.collateral_value == 3_000.0
        assert loan.current_collateral_ratio == 3.0

    def test_each_loan_checked_once_in_order(self):
        loans = [_make_loan("L1", collateral=2_000), _make_loan("L2", collateral=2_000), _make_loan("L3", collateral=2_000)]
        h = _make_engine(*loans)
        checks = h.engine.run_cycle(active_loans=[loans[0], loans[1], loans[0], loans[2]])

        assert [c.loan_id for c in checks] == ["L1", "L2", "L3"]
        assert h.feed.quotes == ["L1", "L2", "L3"]

    def test_threshold_snapshot_holds_for_whole_cycle(self):
        gov = GovernanceParameters()

        def relax_threshold(loan):
            gov.update(liquidation_threshold=1.05)

        feed = _CountingFeed(on_quote=relax_threshold)
        h = _make_engine(
            _make_loan("L1", collateral=1_100), _make_loan("L2", collateral=1_100),
            feed=feed, governance=gov,
        )
        checks = h.engine.run_cycle()

        assert all(c.required_collateral_ratio == 1.2 for c in checks)
        assert all(c.needs_liquidation for c in checks)

    def test_overlapping_cycle_is_skipped(self):
        entered = threading.Event()
        release = threading.Event()

        def block(loan):
            entered.set()
            release.wait(timeout=5)

        feed = _CountingFeed(on_quote=block)
        h = _make_engine(_make_loan("L1", collateral=2_000), feed=feed)

        results = {}
        worker = threading.Thread(target=lambda: results.setdefault("first", h.engine.run_cycle()))
        worker.start()
        entered.wait(timeout=5)

        assert h.engine.run_cycle() == []

        release.set()
        worker.join(timeout=5)
        assert len(results["first"]) == 1
        assert feed.quotes == ["L1"]


class TestReporting:
    def test_status_counts(self):
        feed = _CountingFeed({"L1": 1_300.0, "L2": 1_100.0, "L3": 2_000.0})
        h = _make_engine(_make_loan("L1"), _make_loan("L2"), _make_loan("L3"), feed=feed)
        status = h.engine.liquidation_status()

        assert status.total_active_loans == 3
        assert status.at_risk_loans == 2
        assert status.critical_loans == 1

    def test_status_is_read_only(self):
        feed = _CountingFeed({"L1": 500.0})
        h = _make_engine(_make_loan("L1"), feed=feed)
        h.engine.liquidation_status()

        loan = h.loans.get("L1")
        assert loan.status == LoanStatus.ACTIVE
        assert loan.version == 0
        assert h.transfers.receipts == []

    def test_trigger_requires_flagged_loan(self):
        feed = _CountingFeed({"L1": 5_000.0})
        h = _make_engine(_make_loan("L1"), feed=feed)
        with pytest.raises(StateConflictError):
            h.engine.trigger_liquidation("L1")

    def test_trigger_liquidates(self):
        h = _make_engine(_make_loan("L1"))
        result = h.engine.trigger_liquidation("L1")
        assert result.success is True
        assert h.loans.get("L1").status == LoanStatus.LIQUIDATED

    def test_trigger_rejection_logged_with_loan_id(self):
        feed = _CountingFeed({"L1": 5_000.0})
        h = _make_engine(_make_loan("L1"), feed=feed)
        with capture_logs() as logs:
            with pytest.raises(StateConflictError):
                h.engine.trigger_liquidation("L1")

        failures = [e for e in logs if e["event"] == "liquidation_operation_failed"]
        assert len(failures) == 1
        assert failures[0]["operation"] == "trigger_liquidation"
        assert failures[0]["loan_id"] == "L1"
        assert failures[0]["error_code"] == "STATE_CONFLICT"

    def test_trigger_unknown_loan_logged(self):
        h = _make_engine()
        with capture_logs() as logs:
            with pytest.raises(NotFoundError):
                h.engine.trigger_liquidation("missing")
        assert any(
            e["event"] == "liquidation_operation_failed" and e["loan_id"] == "missing"
            for e in logs
        )

    def test_history_lists_liquidated_loans(self):
        feed = _CountingFeed({"L2": 5_000.0})
        h = _make_engine(_make_loan("L1"), _make_loan("L2"), _make_loan("L3"), feed=feed)
        h.engine.run_cycle()

        assert {l.id for l in h.engine.liquidation_history()} == {"L1", "L3"}
        assert len(h.engine.liquidation_history(limit=1)) == 1


class TestMonitoringEventFailures:
    def test_raising_recorder_does_not_abort_cycle(self):
        h = _make_engine(_make_loan("L1"), _make_loan("L2"), events=_RaisingRecorder())
        checks = h.engine.run_cycle()

        assert [c.loan_id for c in checks] == ["L1", "L2"]
        assert h.loans.get("L1").status == LoanStatus.LIQUIDATED
        assert h.loans.get("L2").status == LoanStatus.LIQUIDATED
        assert len(h.transfers.receipts) == 2

    def test_raising_recorder_on_failed_liquidation(self):
        transfers = _FailingTransfers()
        h = _make_engine(_make_loan("L1"), transfers=transfers, events=_RaisingRecorder())
        with capture_logs() as logs:
            result = h.engine.liquidate(h.loans.get("L1"), 166.67)

        assert result.success is False
        assert h.loans.get("L1").status == LoanStatus.ACTIVE
        assert any(
            e["event"] == "monitoring_event_failed" and e["event_type"] == "liquidation_failed"
            for e in logs
        )
