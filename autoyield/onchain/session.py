"""Explicit per-caller session: who is acting, on which chain, against which node."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from web3 import Web3

from autoyield.config import CONTRACT_ROLES, settings
from autoyield.errors import ContractNotConfigured


@dataclass(frozen=True)
class ContractAddresses:
    token: Optional[str] = None
    aave: Optional[str] = None
    compound: Optional[str] = None
    vault: Optional[str] = None

    @classmethod
    def from_mapping(cls, entries: Optional[dict[str, str]]) -> "ContractAddresses":
        # Placeholder entries such as "0x" count as missing.
        resolved: dict[str, Optional[str]] = {}
        for role in CONTRACT_ROLES:
            address = (entries or {}).get(role)
            resolved[role] = Web3.to_checksum_address(address) if address and Web3.is_address(address) else None
        return cls(**resolved)

    def get(self, role: str) -> Optional[str]:
        return getattr(self, role, None)

    def require(self, role: str, chain_id: int) -> str:
        address = self.get(role)
        if not address:
            raise ContractNotConfigured(role, chain_id)
        return address


@dataclass(frozen=True)
class Session:
    account: Optional[str]
    chain_id: int
    rpc_url: str
    contracts: ContractAddresses = field(default_factory=ContractAddresses)
    test_controls_enabled: bool = False

    @classmethod
    def from_settings(cls, account: Optional[str], chain_id: Optional[int] = None) -> "Session":
        chain = int(chain_id if chain_id is not None else settings.default_chain_id)
        normalized = Web3.to_checksum_address(account) if account and Web3.is_address(account) else None
        return cls(
            account=normalized,
            chain_id=chain,
            rpc_url=settings.rpc_url,
            contracts=ContractAddresses.from_mapping(settings.chain_contracts.get(chain)),
            test_controls_enabled=chain in settings.test_controls_chain_ids,
        )

    @property
    def key(self) -> str:
        return f"{self.chain_id}:{(self.account or '').lower()}"
