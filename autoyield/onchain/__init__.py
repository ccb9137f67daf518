"""On-chain integration helpers."""

from autoyield.onchain.session import ContractAddresses, Session
from autoyield.onchain.transactions import TransactionHandle, TxStatus, wait_for_receipt
from autoyield.onchain.vault_reader import AccountBalances, VaultOverview, VaultReader, VenueInfo
from autoyield.onchain.wallet import WalletManager

__all__ = [
    "AccountBalances",
    "ContractAddresses",
    "Session",
    "TransactionHandle",
    "TxStatus",
    "VaultOverview",
    "VaultReader",
    "VenueInfo",
    "WalletManager",
    "wait_for_receipt",
]
