"""Manual rebalance trigger and the test-only venue APY override."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Union

from autoyield.errors import InvalidRate, TestControlsDisabled, ValidationError
from autoyield.execution.surface import ActionSurface, OperationResult, SurfaceState
from autoyield.onchain.abi import VAULT_ABI, VENUE_ABI
from autoyield.onchain.units import percent_to_bps

logger = logging.getLogger(__name__)

MAX_APY_PERCENT = Decimal("100")
VENUES = ("aave", "compound")


def validate_apy_percent(apy_percent: Union[float, str, Decimal]) -> int:
    """Validate a percentage and return it in basis points."""
    bps = percent_to_bps(apy_percent)
    value = Decimal(str(apy_percent).strip())
    if value < 0:
        raise InvalidRate(f"APY must not be negative: {apy_percent}")
    if value > MAX_APY_PERCENT:
        raise InvalidRate(f"APY must be at most {MAX_APY_PERCENT}%: {apy_percent}")
    return bps


class ManualControls(ActionSurface):
    name = "controls"

    async def trigger_manual_rebalance(self) -> OperationResult:
        # Profitability is decided by the vault, not pre-checked here.
        vault_address = self.session.contracts.require("vault", self.session.chain_id)
        self._ensure_idle()
        async with self._lock:
            vault = self._contract(vault_address, VAULT_ABI)
            handle = await self._run_write(
                "manualRebalance",
                lambda: vault.functions.manualRebalance(),
                SurfaceState.REBALANCING,
            )
            if handle.error:
                return self._fail("manualRebalance", handle, handle.error)
            return self._succeed("manualRebalance", handle)

    async def set_test_venue_apy(self, venue: str, apy_percent: Union[float, str, Decimal]) -> OperationResult:
        if not self.session.test_controls_enabled:
            raise TestControlsDisabled(self.session.chain_id)
        venue_key = (venue or "").strip().lower()
        if venue_key not in VENUES:
            raise ValidationError(f"Unknown venue: {venue}")
        bps = validate_apy_percent(apy_percent)
        venue_address = self.session.contracts.require(venue_key, self.session.chain_id)
        self._ensure_idle()
        async with self._lock:
            target = self._contract(venue_address, VENUE_ABI)
            logger.info("Setting %s APY to %s bps", venue_key, bps)
            handle = await self._run_write(
                f"setAPY:{venue_key}",
                lambda: target.functions.setAPY(bps),
                SurfaceState.SETTING_APY,
            )
            if handle.error:
                return self._fail("setAPY", handle, handle.error)
            return self._succeed("setAPY", handle)
