"""Minimal ABIs for the vault, its test token and the two lending venue mocks."""
from __future__ import annotations


def _view(name: str, inputs: list[dict] | None = None, outputs: list[dict] | None = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": outputs if outputs is not None else [{"type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }


def _write(name: str, inputs: list[dict] | None = None, outputs: list[dict] | None = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": outputs or [],
        "stateMutability": "nonpayable",
        "type": "function",
    }


_AMOUNT = [{"name": "amount", "type": "uint256"}]

VAULT_ABI: list[dict] = [
    _write("deposit", _AMOUNT),
    _write("withdraw", _AMOUNT),
    _write("manualRebalance"),
    _view("getBalance", [{"name": "user", "type": "address"}]),
    _view("totalAssets"),
    _view(
        "getCurrentProtocolInfo",
        outputs=[
            {"name": "name", "type": "string"},
            {"name": "apy", "type": "uint256"},
            {"name": "balance", "type": "uint256"},
        ],
    ),
    _view(
        "getProtocolAPYs",
        outputs=[
            {"name": "aaveAPY", "type": "uint256"},
            {"name": "compoundAPY", "type": "uint256"},
        ],
    ),
    _view("currentProtocol", outputs=[{"type": "address"}]),
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "oldProtocol", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "newProtocol", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "oldAPY", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "newAPY", "type": "uint256"},
        ],
        "name": "Rebalanced",
        "type": "event",
    },
]

TOKEN_ABI: list[dict] = [
    _view("balanceOf", [{"name": "account", "type": "address"}]),
    _view(
        "allowance",
        [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
    ),
    _view("totalSupply"),
    _write(
        "approve",
        [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        [{"type": "bool"}],
    ),
    _write("mint", [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}]),
]

VENUE_ABI: list[dict] = [
    _view("getAPY"),
    _write("setAPY", [{"name": "newAPY", "type": "uint256"}]),
    {
        "inputs": [],
        "name": "getName",
        "outputs": [{"type": "string"}],
        "stateMutability": "pure",
        "type": "function",
    },
]
