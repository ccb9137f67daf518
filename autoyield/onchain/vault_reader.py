"""Read vault, token and venue state from chain with short-lived caching."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Optional

from web3 import Web3

from autoyield.config import settings
from autoyield.onchain.abi import TOKEN_ABI, VAULT_ABI
from autoyield.onchain.session import Session
from autoyield.onchain.units import format_bps, to_display_string

logger = logging.getLogger(__name__)

VENUE_NAMES = {"aave": "Aave", "compound": "Compound"}
UNKNOWN_VENUE = "Unknown"


@dataclass
class VenueInfo:
    name: str
    apy_bps: int
    balance: int
    is_active: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "apyBps": self.apy_bps,
            "apy": format_bps(self.apy_bps),
            "balance": str(self.balance),
            "balanceDisplay": to_display_string(self.balance),
            "isActive": self.is_active,
        }


@dataclass
class VaultOverview:
    user_balance: int
    total_assets: int
    active_venue: VenueInfo
    venue_apys: dict[str, int]
    venues: list[VenueInfo] = field(default_factory=list)
    token_supply: int = 0

    def to_dict(self) -> dict:
        return {
            "userBalance": str(self.user_balance),
            "userBalanceDisplay": to_display_string(self.user_balance),
            "totalAssets": str(self.total_assets),
            "totalAssetsDisplay": to_display_string(self.total_assets),
            "activeVenue": self.active_venue.to_dict(),
            "venueApys": {name: format_bps(bps) for name, bps in self.venue_apys.items()},
            "venues": [venue.to_dict() for venue in self.venues],
            "tokenSupply": str(self.token_supply),
            "tokenSupplyDisplay": to_display_string(self.token_supply),
        }


@dataclass
class AccountBalances:
    token_balance: int
    vault_balance: int
    allowance: int

    def to_dict(self) -> dict:
        return {
            "tokenBalance": str(self.token_balance),
            "tokenBalanceDisplay": to_display_string(self.token_balance),
            "vaultBalance": str(self.vault_balance),
            "vaultBalanceDisplay": to_display_string(self.vault_balance),
            "allowance": str(self.allowance),
        }


def _match_venue_key(protocol_name: str) -> Optional[str]:
    lowered = (protocol_name or "").lower()
    for key in VENUE_NAMES:
        if key in lowered:
            return key
    return None


class VaultReader:
    def __init__(
        self,
        web3: Optional[Web3] = None,
        cache_ttl: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 0.5,
    ) -> None:
        self.web3 = web3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        self.cache_ttl = settings.read_cache_ttl if cache_ttl is None else cache_ttl
        self.max_retries = settings.read_max_retries if max_retries is None else max_retries
        self.backoff_seconds = backoff_seconds
        self._cache: dict[str, tuple[object, float]] = {}

    def _get_cached(self, key: str) -> Optional[object]:
        value = self._cache.get(key)
        if not value:
            return None
        cached_value, ts = value
        if (time.time() - ts) > self.cache_ttl:
            self._cache.pop(key, None)
            return None
        return cached_value

    def _set_cache(self, key: str, value: object) -> None:
        self._cache[key] = (value, time.time())

    def invalidate(self, session: Session) -> None:
        """Drop every cached read a confirmed write by ``session`` may have changed."""
        account_prefix = f"{session.key}:"
        chain_prefix = f"{session.chain_id}:vault:"
        stale = [key for key in self._cache if key.startswith(account_prefix) or key.startswith(chain_prefix)]
        for key in stale:
            self._cache.pop(key, None)
        logger.debug("Invalidated %d cached reads for %s", len(stale), session.key)

    def _contract(self, address: str, abi: list[dict]):
        if not Web3.is_address(address):
            raise ValueError(f"Invalid contract address: {address}")
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _retry_call(self, fn: Callable[[], Any], cache_key: Optional[str] = None) -> Any:
        last_exc: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return fn()
            except Exception as exc:
                last_exc = exc
                if cache_key:
                    self._cache.pop(cache_key, None)
                if attempt >= self.max_retries:
                    break
                time.sleep(self.backoff_seconds * (2**attempt))
        raise RuntimeError(self._format_error(last_exc)) from last_exc

    def _format_error(self, exc: Optional[Exception]) -> str:
        if exc is None:
            return "Unknown RPC error"
        message = str(exc)
        if "execution reverted" in message:
            return message
        if "timeout" in message.lower():
            return f"RPC timeout: {message}"
        return message

    def _cached_call(self, cache_key: str, fn: Callable[[], Any]) -> Any:
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached
        value = self._retry_call(fn, cache_key=cache_key)
        self._set_cache(cache_key, value)
        return value

    def get_token_balance(self, session: Session) -> int:
        token_address = session.contracts.token
        if not token_address or not session.account:
            return 0
        token = self._contract(token_address, TOKEN_ABI)
        return int(
            self._cached_call(
                f"{session.key}:token_balance",
                lambda: token.functions.balanceOf(session.account).call(),
            )
        )

    def get_vault_balance(self, session: Session) -> int:
        vault_address = session.contracts.vault
        if not vault_address or not session.account:
            return 0
        vault = self._contract(vault_address, VAULT_ABI)
        return int(
            self._cached_call(
                f"{session.key}:vault_balance",
                lambda: vault.functions.getBalance(session.account).call(),
            )
        )

    def get_allowance(self, session: Session, fresh: bool = False) -> int:
        token_address = session.contracts.token
        vault_address = session.contracts.vault
        if not token_address or not vault_address or not session.account:
            return 0
        token = self._contract(token_address, TOKEN_ABI)
        cache_key = f"{session.key}:allowance"
        if fresh:
            self._cache.pop(cache_key, None)
        return int(
            self._cached_call(
                cache_key,
                lambda: token.functions.allowance(session.account, vault_address).call(),
            )
        )

    def get_total_assets(self, session: Session) -> int:
        vault_address = session.contracts.vault
        if not vault_address:
            return 0
        vault = self._contract(vault_address, VAULT_ABI)
        return int(
            self._cached_call(
                f"{session.chain_id}:vault:total_assets",
                lambda: vault.functions.totalAssets().call(),
            )
        )

    def get_token_total_supply(self, session: Session) -> int:
        token_address = session.contracts.token
        if not token_address:
            return 0
        token = self._contract(token_address, TOKEN_ABI)
        return int(
            self._cached_call(
                f"{session.chain_id}:vault:token_supply",
                lambda: token.functions.totalSupply().call(),
            )
        )

    def get_current_protocol_info(self, session: Session) -> tuple[str, int, int]:
        vault_address = session.contracts.vault
        if not vault_address:
            return UNKNOWN_VENUE, 0, 0
        vault = self._contract(vault_address, VAULT_ABI)
        name, apy, balance = self._cached_call(
            f"{session.chain_id}:vault:protocol_info",
            lambda: tuple(vault.functions.getCurrentProtocolInfo().call()),
        )
        return str(name or UNKNOWN_VENUE), int(apy), int(balance)

    def get_protocol_apys(self, session: Session) -> dict[str, int]:
        vault_address = session.contracts.vault
        if not vault_address:
            return {"aave": 0, "compound": 0}
        vault = self._contract(vault_address, VAULT_ABI)
        aave_apy, compound_apy = self._cached_call(
            f"{session.chain_id}:vault:protocol_apys",
            lambda: tuple(vault.functions.getProtocolAPYs().call()),
        )
        return {"aave": int(aave_apy), "compound": int(compound_apy)}

    def read_account_balances(self, session: Session) -> AccountBalances:
        return AccountBalances(
            token_balance=self.get_token_balance(session),
            vault_balance=self.get_vault_balance(session),
            allowance=self.get_allowance(session),
        )

    def read_vault_overview(self, session: Session) -> VaultOverview:
        name, apy, balance = self.get_current_protocol_info(session)
        apys = self.get_protocol_apys(session)
        active_key = _match_venue_key(name)
        venues = [
            VenueInfo(
                name=label,
                apy_bps=apys.get(key, 0),
                balance=balance if key == active_key else 0,
                is_active=key == active_key,
            )
            for key, label in VENUE_NAMES.items()
        ]
        return VaultOverview(
            user_balance=self.get_vault_balance(session),
            total_assets=self.get_total_assets(session),
            active_venue=VenueInfo(name=name, apy_bps=apy, balance=balance, is_active=True),
            venue_apys=apys,
            venues=venues,
            token_supply=self.get_token_total_supply(session),
        )
