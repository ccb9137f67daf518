"""Error taxonomy shared by the orchestrator, controls and reconciler."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class VaultClientError(Exception):
    """Base class for errors raised by the vault client core."""


class ValidationError(VaultClientError):
    """Input rejected before anything is submitted to the ledger."""


class InvalidAmount(ValidationError):
    pass


class InvalidRate(ValidationError):
    pass


class SurfaceBusy(VaultClientError):
    def __init__(self, surface: str, status: str) -> None:
        super().__init__(f"Surface '{surface}' already has an operation in flight ({status})")
        self.surface = surface
        self.status = status


class TestControlsDisabled(VaultClientError):
    __test__ = False

    def __init__(self, chain_id: int) -> None:
        super().__init__(f"Test-only controls are not enabled for chain {chain_id}")
        self.chain_id = chain_id


class ContractNotConfigured(VaultClientError):
    def __init__(self, role: str, chain_id: int) -> None:
        super().__init__(f"No {role} contract configured for chain {chain_id}")
        self.role = role
        self.chain_id = chain_id


class TransactionReverted(VaultClientError):
    def __init__(self, tx_hash: str, reason: Optional[str] = None) -> None:
        message = f"Transaction reverted: {tx_hash}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.tx_hash = tx_hash
        self.reason = reason


@dataclass(frozen=True)
class QueryError:
    """A failed event-log query. Returned to callers, never raised."""

    kind: str
    message: str

    SCOPE_TOO_LARGE = "scope_too_large"
    ACCESS_RESTRICTED = "access_restricted"
    UNAVAILABLE = "unavailable"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "QueryError":
        message = str(exc) or exc.__class__.__name__
        lowered = message.lower()
        if any(
            marker in lowered
            for marker in ("range", "too large", "too many", "limit exceeded", "10000 results")
        ):
            return cls(cls.SCOPE_TOO_LARGE, message)
        if any(
            marker in lowered
            for marker in ("not allowed", "forbidden", "unauthorized", "access", "not whitelisted", "403")
        ):
            return cls(cls.ACCESS_RESTRICTED, message)
        return cls(cls.UNAVAILABLE, message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}
