"""Shared plumbing for action surfaces that submit one ledger write at a time."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from web3 import Web3

from autoyield.config import settings
from autoyield.errors import SurfaceBusy
from autoyield.onchain.session import Session
from autoyield.onchain.transactions import TransactionHandle, TxStatus, utc_now, wait_for_receipt
from autoyield.onchain.vault_reader import AccountBalances, VaultReader
from autoyield.onchain.wallet import WalletManager

logger = logging.getLogger(__name__)


class SurfaceState(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    DEPOSITING = "depositing"
    WITHDRAWING = "withdrawing"
    MINTING = "minting"
    REBALANCING = "rebalancing"
    SETTING_APY = "setting_apy"
    CONFIRMING = "confirming"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class OperationResult:
    success: bool
    action: str
    state: SurfaceState
    tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    approval_issued: bool = False
    error: Optional[str] = None
    balances: Optional[AccountBalances] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "action": self.action,
            "state": self.state.value,
            "tx_hash": self.tx_hash,
            "approval_tx_hash": self.approval_tx_hash,
            "approval_issued": self.approval_issued,
            "error": self.error,
            "balances": self.balances.to_dict() if self.balances else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ActionSurface:
    """Holds the single in-flight transaction handle for one UI surface."""

    name = "surface"

    def __init__(
        self,
        session: Session,
        wallet: WalletManager,
        reader: VaultReader,
        web3: Optional[Web3] = None,
        poll_seconds: Optional[float] = None,
        confirmation_timeout: Optional[float] = None,
    ) -> None:
        if session.account and session.account.lower() != wallet.address.lower():
            raise ValueError("Session account does not match the signing wallet")
        self.session = session
        self.wallet = wallet
        self.reader = reader
        self.web3 = web3 or wallet.web3
        self.poll_seconds = settings.receipt_poll_seconds if poll_seconds is None else poll_seconds
        self.confirmation_timeout = (
            settings.confirmation_timeout_seconds if confirmation_timeout is None else confirmation_timeout
        )
        self.state = SurfaceState.IDLE
        self.handle: Optional[TransactionHandle] = None
        self.history: list[TransactionHandle] = []
        self.last_result: Optional[OperationResult] = None
        self.confirmation_listeners: list[Callable[[Session], None]] = []
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked() or (self.handle is not None and not self.handle.is_terminal)

    def _ensure_idle(self) -> None:
        if self.busy:
            status = self.handle.status.value if self.handle else self.state.value
            raise SurfaceBusy(self.name, status)

    def _contract(self, address: str, abi: list[dict]):
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _run_write(self, label: str, build_call: Callable[[], object], active: SurfaceState) -> TransactionHandle:
        """Submit one write and wait for it to confirm. Never raises for ledger failures."""
        handle = TransactionHandle(label=label)
        self.handle = handle
        self.history.append(handle)
        self.state = active
        try:
            tx_hash = self.wallet.send_transaction(build_call(), self.session.chain_id)
        except Exception as exc:
            logger.error("%s submission failed on %s: %s", label, self.name, exc)
            handle.mark_failed(str(exc))
            return handle
        handle.mark_submitted(tx_hash)
        handle.mark_pending()
        logger.info("%s submitted on %s: tx=%s", label, self.name, tx_hash)
        self.state = SurfaceState.CONFIRMING
        try:
            receipt = await wait_for_receipt(
                self.web3,
                tx_hash,
                poll_seconds=self.poll_seconds,
                timeout=self.confirmation_timeout,
            )
        except Exception as exc:
            logger.error("%s failed to confirm on %s: %s", label, self.name, exc)
            handle.mark_failed(str(exc))
            return handle
        handle.mark_confirmed(receipt.get("gasUsed", 0))
        logger.info("%s confirmed on %s: tx=%s", label, self.name, tx_hash)
        return handle

    def _fail(self, action: str, handle: Optional[TransactionHandle], error: str, **extra) -> OperationResult:
        self.state = SurfaceState.FAILED
        result = OperationResult(
            success=False,
            action=action,
            state=SurfaceState.FAILED,
            tx_hash=handle.tx_hash if handle else None,
            error=error,
            **extra,
        )
        self.last_result = result
        return result

    def _refresh_after_confirmation(self) -> tuple[Optional[AccountBalances], Optional[str]]:
        self.reader.invalidate(self.session)
        try:
            return self.reader.read_account_balances(self.session), None
        except Exception as exc:
            logger.warning("Balance refresh after confirmation failed on %s: %s", self.name, exc)
            return None, f"Balance refresh failed: {exc}"

    def _succeed(self, action: str, handle: TransactionHandle, **extra) -> OperationResult:
        balances, refresh_error = self._refresh_after_confirmation()
        result = OperationResult(
            success=True,
            action=action,
            state=SurfaceState.SUCCESS,
            tx_hash=handle.tx_hash,
            error=refresh_error,
            balances=balances,
            **extra,
        )
        self.last_result = result
        self._on_success(balances)
        for listener in self.confirmation_listeners:
            listener(self.session)
        self.state = SurfaceState.IDLE
        return result

    def _on_success(self, balances: Optional[AccountBalances]) -> None:
        """Hook for surfaces that keep their own view state."""

    def dismiss(self) -> None:
        if self.handle is not None and self.handle.status == TxStatus.PENDING_CONFIRMATION:
            self.handle.dismiss()

    def retry(self) -> None:
        """Acknowledge a failure and return the surface to idle."""
        self._ensure_idle()
        if self.state == SurfaceState.FAILED:
            self.state = SurfaceState.IDLE

    def snapshot(self) -> dict:
        return {
            "surface": self.name,
            "state": self.state.value,
            "busy": self.busy,
            "handle": self.handle.to_dict() if self.handle else None,
            "lastResult": self.last_result.to_dict() if self.last_result else None,
        }


class SurfaceRegistry:
    """One surface per (chain, account, surface name), shared by every caller."""

    def __init__(self) -> None:
        self._surfaces: dict[str, ActionSurface] = {}

    def get_or_create(self, session: Session, name: str, factory: Callable[[], ActionSurface]) -> ActionSurface:
        key = f"{session.key}:{name}"
        surface = self._surfaces.get(key)
        if surface is None:
            surface = factory()
            self._surfaces[key] = surface
        return surface

    def get(self, session: Session, name: str) -> Optional[ActionSurface]:
        return self._surfaces.get(f"{session.key}:{name}")

    def clear(self) -> None:
        self._surfaces.clear()
