from __future__ import annotations

import json
import os
from typing import Optional
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCAL_CHAIN_ID = 31337

# Deterministic addresses of the first four deployments on a fresh local node.
LOCAL_CONTRACTS = {
    "token": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
    "aave": "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512",
    "compound": "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0",
    "vault": "0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9",
}

CONTRACT_ROLES = ("token", "aave", "compound", "vault")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        enable_decoding=False,
    )

    rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        validation_alias=AliasChoices("RPC_URL", "NODE_RPC_URL", "rpc_url"),
    )
    default_chain_id: int = LOCAL_CHAIN_ID
    chain_contracts: dict[int, dict[str, str]] = {LOCAL_CHAIN_ID: dict(LOCAL_CONTRACTS)}
    cors_origins: list[str] = ["http://localhost:3000"]
    api_version: str = "0.1.0"
    wallet_private_key: str = ""
    test_controls_chain_ids: list[int] = [LOCAL_CHAIN_ID]
    history_start_block: int = 0
    history_timestamp_source: str = "block"
    average_block_seconds: float = 2.0
    overview_poll_seconds: int = 0
    read_cache_ttl: int = 5
    read_max_retries: int = 2
    receipt_poll_seconds: float = 1.0
    confirmation_timeout_seconds: Optional[float] = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("test_controls_chain_ids", mode="before")
    @classmethod
    def parse_test_controls_chain_ids(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [int(item) for item in parsed]
                except (json.JSONDecodeError, ValueError):
                    pass
            return [int(item.strip()) for item in stripped.split(",") if item.strip()]
        return value

    @field_validator("chain_contracts", mode="before")
    @classmethod
    def parse_chain_contracts(cls, value):
        if isinstance(value, str):
            stripped = value.strip()
            # Try JSON format first: {"31337": {"token": "0x...", "vault": "0x..."}}
            if stripped.startswith("{") and stripped.endswith("}"):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, dict):
                        return {
                            int(chain_id): {
                                role.strip().lower(): str(address).strip()
                                for role, address in (entries or {}).items()
                            }
                            for chain_id, entries in parsed.items()
                        }
                except (json.JSONDecodeError, ValueError):
                    pass
            # Fallback: 31337:token=0x..;vault=0x..,11155111:token=0x..
            parsed_table: dict[int, dict[str, str]] = {}
            for chunk in (item.strip() for item in stripped.split(",") if item.strip()):
                if ":" not in chunk:
                    continue
                chain_part, pairs = chunk.split(":", 1)
                entries: dict[str, str] = {}
                for pair in pairs.split(";"):
                    if "=" not in pair:
                        continue
                    role, address = pair.split("=", 1)
                    entries[role.strip().lower()] = address.strip()
                parsed_table[int(chain_part.strip())] = entries
            return parsed_table
        return value

    @field_validator("history_timestamp_source", mode="before")
    @classmethod
    def parse_history_timestamp_source(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized not in {"block", "approximate"}:
                raise ValueError("history_timestamp_source must be 'block' or 'approximate'")
            return normalized
        return value

    @field_validator("confirmation_timeout_seconds", mode="before")
    @classmethod
    def parse_confirmation_timeout(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value


settings = Settings()


def running_in_hosted_env() -> bool:
    """Detect hosted/runtime environments (Railway/containers) by common vars."""
    markers = (
        "RAILWAY_ENVIRONMENT",
        "RAILWAY_PROJECT_ID",
        "RAILWAY_SERVICE_NAME",
        "PORT",
    )
    return any(os.getenv(name) for name in markers)


def rpc_url_safe(raw_url: str | None = None) -> str:
    """Return the node URL for logs without credentials, path keys or query."""
    url = raw_url or settings.rpc_url
    if not isinstance(url, str) or not url:
        return "<unset>"
    parts = urlsplit(url)
    host = parts.hostname or "<unknown>"
    port_str = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{host}{port_str}"
