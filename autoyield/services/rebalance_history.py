"""Rebuild the vault's rebalance history from its ``Rebalanced`` event log."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

from web3 import Web3

from autoyield.config import settings
from autoyield.errors import QueryError
from autoyield.onchain.abi import VAULT_ABI
from autoyield.onchain.session import ContractAddresses, Session
from autoyield.onchain.units import WEI, format_bps, to_display_string

logger = logging.getLogger(__name__)

SOURCE_LEDGER = "ledger"
SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class KnownVenue:
    name: str
    address: Optional[str] = None

    @property
    def known(self) -> bool:
        return True


@dataclass(frozen=True)
class UnknownVenue:
    address: Optional[str] = None

    name = "Unknown"

    @property
    def known(self) -> bool:
        return False


VenueRef = Union[KnownVenue, UnknownVenue]


class VenueDirectory:
    """Closed lookup from canonical venue address to display name."""

    def __init__(self, entries: Optional[dict[str, str]] = None) -> None:
        self._entries: dict[str, str] = {}
        for address, name in (entries or {}).items():
            if address and Web3.is_address(address):
                self._entries[Web3.to_checksum_address(address)] = name

    @classmethod
    def from_contracts(cls, contracts: ContractAddresses) -> "VenueDirectory":
        return cls({contracts.aave: "Aave", contracts.compound: "Compound"})

    def resolve(self, address: Any) -> VenueRef:
        text = str(address) if address is not None else ""
        if not Web3.is_address(text):
            return UnknownVenue(address=text or None)
        checksum = Web3.to_checksum_address(text)
        name = self._entries.get(checksum)
        if name is None:
            return UnknownVenue(address=checksum)
        return KnownVenue(name=name, address=checksum)


@dataclass(frozen=True)
class RebalanceEvent:
    id: str
    timestamp: Optional[datetime]
    from_venue: VenueRef
    to_venue: VenueRef
    amount: int
    from_apy_bps: int
    to_apy_bps: int
    tx_hash: str
    block_number: int = 0
    log_index: int = 0

    @property
    def yield_improvement_bps(self) -> int:
        return self.to_apy_bps - self.from_apy_bps

    @property
    def short_tx_hash(self) -> str:
        if len(self.tx_hash) <= 12:
            return self.tx_hash
        return f"{self.tx_hash[:6]}...{self.tx_hash[-4:]}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "fromVenue": self.from_venue.name,
            "fromVenueKnown": self.from_venue.known,
            "fromVenueAddress": self.from_venue.address,
            "toVenue": self.to_venue.name,
            "toVenueKnown": self.to_venue.known,
            "toVenueAddress": self.to_venue.address,
            "amount": str(self.amount),
            "amountDisplay": to_display_string(self.amount),
            "fromApy": format_bps(self.from_apy_bps),
            "toApy": format_bps(self.to_apy_bps),
            "yieldImprovement": format_bps(self.yield_improvement_bps),
            "txHash": self.tx_hash,
            "shortTxHash": self.short_tx_hash,
            "blockNumber": self.block_number,
            "logIndex": self.log_index,
        }


@dataclass
class HistoryResult:
    events: list[RebalanceEvent]
    source: str = SOURCE_LEDGER
    error: Optional[QueryError] = None

    @property
    def is_fallback(self) -> bool:
        return self.source != SOURCE_LEDGER

    def to_dict(self) -> dict:
        return {
            "events": [event.to_dict() for event in self.events],
            "source": self.source,
            "error": self.error.to_dict() if self.error else None,
        }


def _placeholder(
    event_id: str,
    timestamp: datetime,
    from_name: str,
    to_name: str,
    amount_tokens: int,
    from_bps: int,
    to_bps: int,
    tx_hash: str,
) -> RebalanceEvent:
    return RebalanceEvent(
        id=event_id,
        timestamp=timestamp,
        from_venue=KnownVenue(from_name),
        to_venue=KnownVenue(to_name),
        amount=amount_tokens * WEI,
        from_apy_bps=from_bps,
        to_apy_bps=to_bps,
        tx_hash=tx_hash,
    )


FALLBACK_HISTORY: tuple[RebalanceEvent, ...] = (
    _placeholder("1", datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc), "Compound", "Aave", 50_000, 420, 580, "0x1234...5678"),
    _placeholder("2", datetime(2024, 1, 12, 14, 45, tzinfo=timezone.utc), "Aave", "Compound", 25_000, 390, 470, "0xabcd...efgh"),
    _placeholder("3", datetime(2024, 1, 8, 9, 15, tzinfo=timezone.utc), "Compound", "Aave", 75_000, 310, 450, "0x9876...5432"),
)


class BlockTimestampProvider:
    """Reads timestamps from the containing block, memoised per block."""

    def __init__(self, web3: Web3) -> None:
        self.web3 = web3
        self._cache: dict[int, datetime] = {}

    def __call__(self, block_number: int) -> datetime:
        cached = self._cache.get(block_number)
        if cached:
            return cached
        block = self.web3.eth.get_block(block_number)
        timestamp = datetime.fromtimestamp(int(block["timestamp"]), tz=timezone.utc)
        self._cache[block_number] = timestamp
        return timestamp


class ApproximateTimestampProvider:
    """Estimates a block's time from its distance to the chain head."""

    def __init__(
        self,
        web3: Web3,
        average_block_seconds: float,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.web3 = web3
        self.average_block_seconds = average_block_seconds
        self._now = now
        self._head: Optional[tuple[int, datetime]] = None

    def __call__(self, block_number: int) -> datetime:
        if self._head is None:
            self._head = (int(self.web3.eth.block_number), self._now())
        head_block, head_time = self._head
        behind = max(head_block - int(block_number), 0)
        return head_time - timedelta(seconds=behind * self.average_block_seconds)


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else f"0x{value}"
    return Web3.to_hex(value)


class RebalanceHistoryReconciler:
    """Single best-effort fetch of the vault's rebalance history.

    Query failures are never raised. They come back as ``HistoryResult.error`` with the
    last good history for that vault or, failing that, a static placeholder.
    """

    def __init__(
        self,
        web3: Optional[Web3] = None,
        timestamp_source: Optional[str] = None,
        start_block: Optional[int] = None,
        average_block_seconds: Optional[float] = None,
    ) -> None:
        self.web3 = web3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        self.timestamp_source = timestamp_source or settings.history_timestamp_source
        self.start_block = settings.history_start_block if start_block is None else start_block
        self.average_block_seconds = (
            settings.average_block_seconds if average_block_seconds is None else average_block_seconds
        )
        self._cache: dict[str, list[RebalanceEvent]] = {}

    def _timestamp_resolver(self) -> Callable[[int], Optional[datetime]]:
        approximate = ApproximateTimestampProvider(self.web3, self.average_block_seconds)
        primary: Callable[[int], datetime] = (
            BlockTimestampProvider(self.web3) if self.timestamp_source == "block" else approximate
        )

        def resolve(block_number: int) -> Optional[datetime]:
            try:
                return primary(block_number)
            except Exception as exc:
                logger.debug("Timestamp lookup for block %s failed: %s", block_number, exc)
            if primary is approximate:
                return None
            try:
                return approximate(block_number)
            except Exception as exc:
                logger.debug("Approximate timestamp for block %s failed: %s", block_number, exc)
                return None

        return resolve

    def decode_log(
        self,
        log: Any,
        venues: VenueDirectory,
        timestamp_for: Callable[[int], Optional[datetime]],
    ) -> RebalanceEvent:
        event = log["args"]
        tx_hash = _to_hex(log["transactionHash"])
        log_index = int(log["logIndex"])
        block_number = int(log.get("blockNumber") or 0)
        return RebalanceEvent(
            id=f"{tx_hash}-{log_index}",
            timestamp=timestamp_for(block_number),
            from_venue=venues.resolve(event.get("oldProtocol")),
            to_venue=venues.resolve(event.get("newProtocol")),
            amount=int(event.get("amount") or 0),
            from_apy_bps=int(event.get("oldAPY") or 0),
            to_apy_bps=int(event.get("newAPY") or 0),
            tx_hash=tx_hash,
            block_number=block_number,
            log_index=log_index,
        )

    def _fallback(self, cache_key: str, error: QueryError) -> HistoryResult:
        cached = self._cache.get(cache_key)
        if cached is not None:
            return HistoryResult(events=list(cached), source=SOURCE_CACHE, error=error)
        return HistoryResult(events=list(FALLBACK_HISTORY), source=SOURCE_FALLBACK, error=error)

    async def fetch_history(self, session: Session, vault_address: Optional[str] = None) -> HistoryResult:
        vault = vault_address or session.contracts.vault
        cache_key = f"{session.chain_id}:{(vault or '').lower()}"
        if not vault or not Web3.is_address(vault):
            logger.warning("No vault address for chain %s, serving placeholder history", session.chain_id)
            return self._fallback(cache_key, QueryError(QueryError.UNAVAILABLE, "No vault configured"))

        contract = self.web3.eth.contract(address=Web3.to_checksum_address(vault), abi=VAULT_ABI)
        try:
            logs = contract.events.Rebalanced().get_logs(from_block=self.start_block, to_block="latest")
        except Exception as exc:
            error = QueryError.from_exception(exc)
            logger.warning("Rebalanced log query for %s failed (%s): %s", vault, error.kind, error.message)
            return self._fallback(cache_key, error)

        venues = VenueDirectory.from_contracts(session.contracts)
        timestamp_for = self._timestamp_resolver()
        ordered = sorted(
            logs,
            key=lambda log: (
                int(log.get("blockNumber") or 0),
                int(log.get("transactionIndex") or 0),
                int(log.get("logIndex") or 0),
            ),
            reverse=True,
        )
        events: list[RebalanceEvent] = []
        for log in ordered:
            try:
                events.append(self.decode_log(log, venues, timestamp_for))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed Rebalanced log: %s", exc)

        self._cache[cache_key] = list(events)
        logger.info("Loaded %d rebalance events for %s", len(events), vault)
        return HistoryResult(events=events, source=SOURCE_LEDGER)
