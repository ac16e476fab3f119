"""
In-process transfer ledger.

Stands in for the on-chain transfer service: records every movement and
hands back a reference. The lending core only sees the TransferExecutor
interface, so swapping in the real chain client changes nothing upstream.
"""
from __future__ import annotations

import threading
import uuid

import structlog

from app.core.errors import TransferError
from app.services.interfaces import TransferReceipt

logger = structlog.get_logger()


class InMemoryTransferLedger:
    def __init__(self):
        self._lock = threading.Lock()
        self.receipts: list[TransferReceipt] = []

    def execute_transfer(self, from_id: str, to_id: str, amount: float, memo: str = "") -> TransferReceipt:
        if amount <= 0:
            raise TransferError(f"Transfer amount must be positive, got {amount}")
        if not from_id or not to_id:
            raise TransferError("Transfer requires both a source and a destination account")

        receipt = TransferReceipt(
            transaction_ref=f"tx_{uuid.uuid4().hex}",
            from_id=from_id,
            to_id=to_id,
            amount=amount,
        )
        with self._lock:
            self.receipts.append(receipt)

        logger.info(
            "transfer_executed",
            transaction_ref=receipt.transaction_ref,
            from_id=from_id,
            to_id=to_id,
            amount=round(amount, 2),
            memo=memo,
        )
        return receipt

    def total_transferred(self, from_id: str, to_id: str) -> float:
        with self._lock:
            return sum(r.amount for r in self.receipts if r.from_id == from_id and r.to_id == to_id)
