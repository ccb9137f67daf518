"""Lifecycle tracking for submitted ledger writes."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from web3 import Web3
from web3.exceptions import ContractLogicError

from autoyield.errors import TransactionReverted

logger = logging.getLogger(__name__)


class TxStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TxStatus.CONFIRMED, TxStatus.FAILED})

_ALLOWED = {
    TxStatus.IDLE: {TxStatus.SUBMITTED, TxStatus.FAILED},
    TxStatus.SUBMITTED: {TxStatus.PENDING_CONFIRMATION, TxStatus.FAILED},
    TxStatus.PENDING_CONFIRMATION: {TxStatus.CONFIRMED, TxStatus.FAILED},
    TxStatus.CONFIRMED: set(),
    TxStatus.FAILED: set(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransactionHandle:
    """One user-initiated write, from submission to a terminal outcome."""

    label: str
    status: TxStatus = TxStatus.IDLE
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    gas_used: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    dismissed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _move(self, status: TxStatus) -> None:
        if status not in _ALLOWED[self.status]:
            raise RuntimeError(f"Illegal transaction transition {self.status.value} -> {status.value}")
        self.status = status
        self.updated_at = utc_now()

    def mark_submitted(self, tx_hash: str) -> None:
        self._move(TxStatus.SUBMITTED)
        self.tx_hash = tx_hash

    def mark_pending(self) -> None:
        self._move(TxStatus.PENDING_CONFIRMATION)

    def mark_confirmed(self, gas_used: int = 0) -> None:
        self._move(TxStatus.CONFIRMED)
        self.gas_used = int(gas_used or 0)

    def mark_failed(self, error: str) -> None:
        self._move(TxStatus.FAILED)
        self.error = error

    def dismiss(self) -> None:
        # Hides a stuck pending notice; the handle keeps its status.
        self.dismissed = True

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "status": self.status.value,
            "txHash": self.tx_hash,
            "error": self.error,
            "gasUsed": self.gas_used,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "dismissed": self.dismissed,
        }


def revert_reason(web3: Web3, tx_hash: str, block_number: Optional[int] = None) -> Optional[str]:
    """Replay a reverted transaction as a call to recover its revert message."""
    try:
        tx = web3.eth.get_transaction(tx_hash)
    except Exception as exc:
        logger.debug("Transaction %s not retrievable for replay: %s", tx_hash, exc)
        return None
    call = {"to": tx["to"], "from": tx["from"], "data": tx.get("input", "0x"), "value": tx.get("value", 0)}
    try:
        web3.eth.call(call, block_number)
    except ContractLogicError as exc:
        return getattr(exc, "message", None) or str(exc)
    except Exception as exc:
        logger.debug("Replay of %s failed: %s", tx_hash, exc)
    return None


async def wait_for_receipt(
    web3: Web3,
    tx_hash: str,
    poll_seconds: float = 1.0,
    timeout: Optional[float] = None,
) -> dict:
    """Poll for a receipt until it lands. ``timeout=None`` waits indefinitely."""
    start = time.monotonic()
    while True:
        try:
            receipt = web3.eth.get_transaction_receipt(tx_hash)
        except Exception as exc:
            # Unknown hashes raise TransactionNotFound until the tx is mined.
            logger.debug("Receipt for %s not available yet: %s", tx_hash, exc)
            receipt = None
        if receipt:
            if receipt["status"] == 0:
                raise TransactionReverted(tx_hash, revert_reason(web3, tx_hash, receipt.get("blockNumber")))
            return dict(receipt)
        if timeout is not None and (time.monotonic() - start) >= timeout:
            raise TimeoutError(f"Transaction confirmation timeout: {tx_hash}")
        await asyncio.sleep(poll_seconds)
