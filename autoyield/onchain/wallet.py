"""Wallet manager for signing and broadcasting vault transactions."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from autoyield.config import settings

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 500000


@dataclass
class SignedTransaction:
    raw_transaction: bytes
    hash: str


def _hex_hash(value: Any) -> str:
    tx_hash = value.hex() if hasattr(value, "hex") else str(value)
    return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"


class WalletManager:
    def __init__(
        self,
        web3: Optional[Web3] = None,
        private_key: Optional[str] = None,
    ) -> None:
        self.web3 = web3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        env_key = os.getenv("WALLET_PRIVATE_KEY", "")
        key = private_key or env_key or settings.wallet_private_key
        if not key:
            raise ValueError("Missing WALLET_PRIVATE_KEY")
        raw = key[2:] if key.startswith("0x") else key
        if len(raw) != 64 or any(c not in "0123456789abcdefABCDEF" for c in raw):
            raise ValueError("Invalid private key")
        key = f"0x{raw}"
        try:
            self._account: LocalAccount = Account.from_key(key)
        except Exception as exc:
            raise ValueError("Invalid private key") from exc

    @property
    def address(self) -> str:
        return self._account.address

    def __repr__(self) -> str:
        return f"WalletManager(address={self.address})"

    def sign_transaction(self, tx: dict, chain_id: Optional[int] = None) -> SignedTransaction:
        tx = dict(tx)
        tx.setdefault("from", self.address)
        if "chainId" not in tx:
            tx["chainId"] = chain_id or settings.default_chain_id
        if "nonce" not in tx:
            tx["nonce"] = self.web3.eth.get_transaction_count(self.address)
        if "gas" not in tx:
            try:
                tx["gas"] = self.web3.eth.estimate_gas(tx)
            except Exception as exc:
                error_msg = str(exc)
                if "execution reverted" in error_msg:
                    raise RuntimeError(f"Transaction will revert on-chain: {error_msg}") from exc
                logger.warning("Gas estimation failed, using default: %s", exc)
                tx["gas"] = DEFAULT_GAS_LIMIT
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            tx["gasPrice"] = getattr(self.web3.eth, "gas_price", 0)
        tx.pop("from", None)
        signed = self._account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        return SignedTransaction(raw_transaction=raw_tx, hash=_hex_hash(signed.hash))

    def build_transaction(self, contract_call, chain_id: Optional[int] = None) -> dict:
        """Turn a bound contract function into an unsigned transaction dict."""
        return dict(contract_call.build_transaction({"from": self.address, "chainId": chain_id or settings.default_chain_id}))

    def send_transaction(self, contract_call, chain_id: Optional[int] = None) -> str:
        tx = self.build_transaction(contract_call, chain_id)
        signed = self.sign_transaction(tx, chain_id)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return _hex_hash(tx_hash)
