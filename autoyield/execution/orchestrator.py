"""Allowance-gated deposit and withdraw flows against the yield vault."""
from __future__ import annotations

import logging
from typing import Optional, Union

from autoyield.errors import InvalidAmount, TestControlsDisabled
from autoyield.execution.surface import ActionSurface, OperationResult, SurfaceState
from autoyield.onchain.abi import TOKEN_ABI, VAULT_ABI
from autoyield.onchain.vault_reader import AccountBalances
from autoyield.onchain.units import to_display_string, to_ledger_units

logger = logging.getLogger(__name__)

DEFAULT_MINT_AMOUNT = "1000"

AmountInput = Union[str, int, None]


class TransferOrchestrator(ActionSurface):
    """Deposit / withdraw surface.

    Deposits read the allowance fresh and, when it is short, approve exactly the
    requested amount and wait for that approval to confirm before submitting the
    deposit. Only one write is ever in flight; a second request while the surface is
    busy raises :class:`SurfaceBusy` instead of queueing.
    """

    name = "transfer"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.amount: str = ""
        self.balances: Optional[AccountBalances] = None

    def set_amount(self, amount: str) -> None:
        # Editing the input never touches an in-flight write.
        self.amount = (amount or "").strip()

    def _resolve_amount(self, amount: AmountInput) -> int:
        if isinstance(amount, int) and not isinstance(amount, bool):
            units = amount
        else:
            units = to_ledger_units(self.amount if amount is None else amount)
        if units <= 0:
            raise InvalidAmount("Amount must be greater than zero")
        return units

    def needs_approval(self, amount: AmountInput = None) -> bool:
        try:
            units = self._resolve_amount(amount)
        except InvalidAmount:
            return False
        return self.reader.get_allowance(self.session) < units

    def refresh_balances(self) -> AccountBalances:
        self.balances = self.reader.read_account_balances(self.session)
        return self.balances

    def max_deposit(self) -> str:
        return to_display_string(self.balances.token_balance if self.balances else 0, precision=18)

    def max_withdraw(self) -> str:
        return to_display_string(self.balances.vault_balance if self.balances else 0, precision=18)

    def _on_success(self, balances: Optional[AccountBalances]) -> None:
        self.balances = balances
        self.amount = ""

    async def deposit(self, amount: AmountInput = None) -> OperationResult:
        units = self._resolve_amount(amount)
        vault_address = self.session.contracts.require("vault", self.session.chain_id)
        token_address = self.session.contracts.require("token", self.session.chain_id)
        self._ensure_idle()
        async with self._lock:
            token = self._contract(token_address, TOKEN_ABI)
            vault = self._contract(vault_address, VAULT_ABI)
            try:
                allowance = self.reader.get_allowance(self.session, fresh=True)
            except Exception as exc:
                logger.error("Allowance read failed before deposit: %s", exc)
                return self._fail("deposit", None, str(exc))

            approval_hash: Optional[str] = None
            approval_issued = allowance < units
            if approval_issued:
                logger.info("Allowance %s below deposit %s, approving exact amount", allowance, units)
                approval = await self._run_write(
                    "approve",
                    lambda: token.functions.approve(vault_address, units),
                    SurfaceState.APPROVING,
                )
                approval_hash = approval.tx_hash
                if approval.error:
                    return self._fail(
                        "deposit",
                        approval,
                        approval.error,
                        approval_tx_hash=approval_hash,
                        approval_issued=True,
                    )
                self.reader.invalidate(self.session)

            handle = await self._run_write(
                "deposit",
                lambda: vault.functions.deposit(units),
                SurfaceState.DEPOSITING,
            )
            if handle.error:
                return self._fail(
                    "deposit",
                    handle,
                    handle.error,
                    approval_tx_hash=approval_hash,
                    approval_issued=approval_issued,
                )
            return self._succeed(
                "deposit",
                handle,
                approval_tx_hash=approval_hash,
                approval_issued=approval_issued,
            )

    async def withdraw(self, amount: AmountInput = None) -> OperationResult:
        units = self._resolve_amount(amount)
        vault_address = self.session.contracts.require("vault", self.session.chain_id)
        self._ensure_idle()
        async with self._lock:
            vault = self._contract(vault_address, VAULT_ABI)
            # Balance checks are left to the vault; its revert reason is surfaced as-is.
            handle = await self._run_write(
                "withdraw",
                lambda: vault.functions.withdraw(units),
                SurfaceState.WITHDRAWING,
            )
            if handle.error:
                return self._fail("withdraw", handle, handle.error)
            return self._succeed("withdraw", handle)

    async def mint_test_funds(self, amount: AmountInput = DEFAULT_MINT_AMOUNT) -> OperationResult:
        if not self.session.test_controls_enabled:
            raise TestControlsDisabled(self.session.chain_id)
        units = self._resolve_amount(amount)
        token_address = self.session.contracts.require("token", self.session.chain_id)
        self._ensure_idle()
        async with self._lock:
            token = self._contract(token_address, TOKEN_ABI)
            handle = await self._run_write(
                "mint",
                lambda: token.functions.mint(self.wallet.address, units),
                SurfaceState.MINTING,
            )
            if handle.error:
                return self._fail("mint", handle, handle.error)
            return self._succeed("mint", handle)

    def snapshot(self) -> dict:
        payload = super().snapshot()
        payload["amount"] = self.amount
        payload["balances"] = self.balances.to_dict() if self.balances else None
        try:
            payload["needsApproval"] = self.needs_approval()
        except RuntimeError as exc:
            logger.warning("Allowance read for %s failed: %s", self.name, exc)
            payload["needsApproval"] = None
        return payload
