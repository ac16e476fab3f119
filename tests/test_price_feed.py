"""
Unit tests for the collateral price feeds, transfer ledger and event recorder.
"""
from datetime import datetime, timezone

import httpx
import pytest

from app.core.errors import PriceFeedError, TransferError
from app.schemas.lending import ActiveLoan
from app.services.event_publisher import MonitoringEventRecorder
from app.services.price_feed import HttpPriceFeed, StaticPriceFeed
from app.services.transfers import InMemoryTransferLedger


def _make_loan(loan_id: str = "LOAN-001", collateral_value: float = 0.0) -> ActiveLoan:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return ActiveLoan(
        id=loan_id,
        application_id="APP-001",
        borrower_id="borrower-1",
        lender_id="lender-1",
        principal=1_000.0,
        interest_rate=0.08,
        remaining_amount=1_000.0,
        collateral_value=collateral_value,
        next_payment_date=now,
        total_payments=6,
        created_at=now,
        updated_at=now,
    )


def _http_feed(handler) -> HttpPriceFeed:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpPriceFeed("http://oracle.test/", client=client)


class TestStaticPriceFeed:
    def test_explicit_quote_wins(self):
        feed = StaticPriceFeed()
        feed.set_value("LOAN-001", 750.0)
        assert feed.get_collateral_value(_make_loan(collateral_value=1_500.0)) == 750.0

    def test_no_quote_no_fallback(self):
        with pytest.raises(PriceFeedError):
            StaticPriceFeed().get_collateral_value(_make_loan())


class TestHttpPriceFeed:
    def test_reads_value(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/collateral/LOAN-001"
            return httpx.Response(200, json={"loan_id": "LOAN-001", "value": 1234.5})

        assert _http_feed(handler).get_collateral_value(_make_loan()) == 1234.5

    def test_server_error_becomes_price_feed_error(self):
        feed = _http_feed(lambda request: httpx.Response(503))
        with pytest.raises(PriceFeedError):
            feed.get_collateral_value(_make_loan())

    def test_malformed_body(self):
        feed = _http_feed(lambda request: httpx.Response(200, json={"price": 10}))
        with pytest.raises(PriceFeedError):
            feed.get_collateral_value(_make_loan())

    def test_negative_quote(self):
        feed = _http_feed(lambda request: httpx.Response(200, json={"value": -5}))
        with pytest.raises(PriceFeedError):
            feed.get_collateral_value(_make_loan())


class TestTransferLedger:
    def test_records_receipt(self):
        ledger = InMemoryTransferLedger()
        receipt = ledger.execute_transfer("borrower-1", "lender-1", 100.0)
        assert receipt.transaction_ref.startswith("tx_")
        assert ledger.receipts == [receipt]
        assert ledger.total_transferred("borrower-1", "lender-1") == 100.0

    def test_rejects_non_positive_amount(self):
        with pytest.raises(TransferError):
            InMemoryTransferLedger().execute_transfer("borrower-1", "lender-1", 0)

    def test_rejects_missing_account(self):
        with pytest.raises(TransferError):
            InMemoryTransferLedger().execute_transfer("", "lender-1", 10)


class TestMonitoringEventRecorder:
    def test_recent_is_newest_first(self):
        recorder = MonitoringEventRecorder()
        recorder.record_event("a", {"n": 1})
        recorder.record_event("b", {"n": 2})
        events = recorder.recent()
        assert [e["event_type"] for e in events] == ["b", "a"]
        assert events[0]["n"] == 2

    def test_filter_by_kind(self):
        recorder = MonitoringEventRecorder()
        recorder.record_event("a", {})
        recorder.record_event("b", {})
        assert [e["event_type"] for e in recorder.recent(kind="a")] == ["a"]

    def test_bounded_tail(self):
        recorder = MonitoringEventRecorder(tail_size=2)
        for i in range(5):
            recorder.record_event("tick", {"n": i})
        assert [e["n"] for e in recorder.recent()] == [4, 3]

    def test_failing_sink_does_not_raise(self):
        def sink(event):
            raise RuntimeError("dashboard down")

        recorder = MonitoringEventRecorder(sink=sink)
        recorder.record_event("a", {"loan_id": "LOAN-001"})
        assert len(recorder.recent()) == 1
