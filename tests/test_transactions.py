import asyncio

import pytest
from web3.exceptions import ContractLogicError

from autoyield.errors import TransactionReverted
from autoyield.onchain.transactions import TransactionHandle, TxStatus, revert_reason, wait_for_receipt


def _web3(receipts):
    """Receipts are handed out in order; ``None`` means not mined yet."""
    queue = list(receipts)

    class DummyEth:
        def get_transaction_receipt(self, _tx_hash):
            value = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(value, Exception):
                raise value
            return value

    return type("DummyWeb3", (), {"eth": DummyEth()})()


def test_wait_for_receipt_success():
    web3 = _web3([{"status": 1, "gasUsed": 123}])
    receipt = asyncio.run(wait_for_receipt(web3, "0xhash", poll_seconds=0, timeout=1))
    assert receipt["gasUsed"] == 123


def test_wait_for_receipt_polls_until_mined():
    web3 = _web3([RuntimeError("not found"), None, {"status": 1, "gasUsed": 7}])
    receipt = asyncio.run(wait_for_receipt(web3, "0xhash", poll_seconds=0))
    assert receipt["gasUsed"] == 7


def test_wait_for_receipt_reverted():
    web3 = _web3([{"status": 0}])
    with pytest.raises(TransactionReverted, match="Transaction reverted"):
        asyncio.run(wait_for_receipt(web3, "0xhash", poll_seconds=0, timeout=1))


def test_wait_for_receipt_timeout():
    web3 = _web3([None])
    with pytest.raises(TimeoutError, match="Transaction confirmation timeout"):
        asyncio.run(wait_for_receipt(web3, "0xhash", poll_seconds=0, timeout=0))


def test_handle_lifecycle():
    handle = TransactionHandle(label="deposit")
    assert handle.status == TxStatus.IDLE
    handle.mark_submitted("0xabc")
    handle.mark_pending()
    assert handle.is_terminal is False
    handle.mark_confirmed(21000)
    assert handle.is_terminal is True

    payload = handle.to_dict()
    assert payload["status"] == "confirmed"
    assert payload["txHash"] == "0xabc"
    assert payload["gasUsed"] == 21000


def test_handle_rejects_skipped_states():
    handle = TransactionHandle(label="withdraw")
    with pytest.raises(RuntimeError):
        handle.mark_confirmed()


def test_terminal_handle_cannot_move():
    handle = TransactionHandle(label="withdraw")
    handle.mark_failed("rejected")
    assert handle.error == "rejected"
    with pytest.raises(RuntimeError):
        handle.mark_submitted("0xabc")


def test_dismiss_keeps_status():
    handle = TransactionHandle(label="approve")
    handle.mark_submitted("0xabc")
    handle.mark_pending()
    handle.dismiss()
    assert handle.dismissed is True
    assert handle.status == TxStatus.PENDING_CONFIRMATION


class ReplayEth:
    """Reverted receipt whose replayed call raises the contract's message."""

    def __init__(self, call_error):
        self.call_error = call_error
        self.calls = []

    def get_transaction_receipt(self, _tx_hash):
        return {"status": 0, "blockNumber": 42}

    def get_transaction(self, _tx_hash):
        return {"to": "0xvault", "from": "0xwallet", "input": "0x2e1a7d4d", "value": 0}

    def call(self, transaction, block_identifier=None):
        self.calls.append((transaction, block_identifier))
        raise self.call_error


def test_wait_for_receipt_reverted_carries_reason():
    eth = ReplayEth(ContractLogicError("execution reverted: Insufficient balance"))
    web3 = type("DummyWeb3", (), {"eth": eth})()
    with pytest.raises(TransactionReverted) as excinfo:
        asyncio.run(wait_for_receipt(web3, "0xhash", poll_seconds=0, timeout=1))

    assert excinfo.value.reason == "execution reverted: Insufficient balance"
    assert "Insufficient balance" in str(excinfo.value)
    transaction, block = eth.calls[0]
    assert transaction["data"] == "0x2e1a7d4d"
    assert block == 42


def test_revert_reason_none_when_replay_fails():
    eth = ReplayEth(ConnectionError("node down"))
    web3 = type("DummyWeb3", (), {"eth": eth})()
    assert revert_reason(web3, "0xhash") is None
