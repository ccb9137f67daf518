from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, Path, Query

from autoyield.config import settings
from autoyield.errors import (
    ContractNotConfigured,
    SurfaceBusy,
    TestControlsDisabled,
    ValidationError,
    VaultClientError,
)
from autoyield.execution.controls import ManualControls
from autoyield.execution.orchestrator import TransferOrchestrator
from autoyield.execution.surface import ActionSurface, OperationResult, SurfaceRegistry
from autoyield.models.schemas import (
    AmountRequest,
    MintRequest,
    OperationResponse,
    RebalanceHistoryResponse,
    RebalanceRequest,
    SetApyRequest,
    VaultOverviewResponse,
)
from autoyield.onchain.session import Session
from autoyield.onchain.vault_reader import VaultReader
from autoyield.onchain.wallet import WalletManager
from autoyield.services.overview_poller import OverviewPoller
from autoyield.services.rebalance_history import RebalanceHistoryReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vault", tags=["Vault"])

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

_reader: Optional[VaultReader] = None
_reconciler: Optional[RebalanceHistoryReconciler] = None
_wallet: Optional[WalletManager] = None
_poller: Optional[OverviewPoller] = None
registry = SurfaceRegistry()


def get_reader() -> VaultReader:
    global _reader
    if _reader is None:
        _reader = VaultReader()
    return _reader


def get_reconciler() -> RebalanceHistoryReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = RebalanceHistoryReconciler()
    return _reconciler


def get_wallet() -> WalletManager:
    global _wallet
    if _wallet is None:
        _wallet = WalletManager()
    return _wallet


def get_poller() -> OverviewPoller:
    global _poller
    if _poller is None:
        _poller = OverviewPoller(get_reader())
    return _poller


def _require_wallet() -> WalletManager:
    try:
        return get_wallet()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=f"Wallet configuration error: {exc}") from exc


def normalize_account(account: Optional[str]) -> Optional[str]:
    if account is None or account == "":
        return None
    if not ADDRESS_RE.match(account):
        raise HTTPException(status_code=422, detail="Invalid account address")
    return account


def _to_http_error(exc: VaultClientError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, SurfaceBusy):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TestControlsDisabled):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ContractNotConfigured):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _wallet_session(wallet: WalletManager, chain_id: Optional[int]) -> Session:
    session = Session.from_settings(wallet.address, chain_id)
    # Surfaces are kept per chain; only configured chains may create one.
    if session.chain_id not in settings.chain_contracts:
        raise HTTPException(status_code=503, detail=f"No contracts configured for chain {session.chain_id}")
    return session


def _with_listeners(surface: ActionSurface) -> ActionSurface:
    surface.confirmation_listeners.append(get_poller().on_write_confirmed)
    return surface


def _transfer_surface(session: Session, wallet: WalletManager) -> TransferOrchestrator:
    return registry.get_or_create(
        session,
        TransferOrchestrator.name,
        lambda: _with_listeners(TransferOrchestrator(session, wallet, get_reader())),
    )


def _controls_surface(session: Session, wallet: WalletManager) -> ManualControls:
    return registry.get_or_create(
        session,
        ManualControls.name,
        lambda: _with_listeners(ManualControls(session, wallet, get_reader())),
    )


def _operation_response(result: OperationResult) -> OperationResponse:
    return OperationResponse(
        success=result.success,
        action=result.action,
        state=result.state.value,
        txHash=result.tx_hash,
        approvalTxHash=result.approval_tx_hash,
        approvalIssued=result.approval_issued,
        error=result.error,
        balances=result.balances.to_dict() if result.balances else None,
        timestamp=result.timestamp.isoformat(),
    )


async def _run(action: Callable[[], Awaitable[OperationResult]]) -> OperationResponse:
    try:
        result = await action()
    except VaultClientError as exc:
        raise _to_http_error(exc) from exc
    return _operation_response(result)


@router.get("/overview", response_model=VaultOverviewResponse, summary="Vault balances, venues and APYs")
async def vault_overview(
    account: Optional[str] = Query(default=None, description="Depositor address (0x... format)"),
    chainId: Optional[int] = Query(default=None),
) -> VaultOverviewResponse:
    session = Session.from_settings(normalize_account(account), chainId)
    try:
        overview = get_reader().read_vault_overview(session)
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"Vault read failed: {exc}") from exc
    return VaultOverviewResponse(account=session.account, chainId=session.chain_id, **overview.to_dict())


@router.get("/overview/latest", summary="Last overview snapshot kept by the background poller")
async def latest_overview() -> dict:
    poller = get_poller()
    if poller.latest is None:
        poller.refresh_now()
    if poller.latest is None:
        raise HTTPException(status_code=503, detail=f"No overview snapshot yet: {poller.last_error}")
    return poller.snapshot()


@router.get("/balances", summary="Token balance, vault balance and allowance for an account")
async def account_balances(
    account: str = Query(..., description="Depositor address (0x... format)"),
    chainId: Optional[int] = Query(default=None),
) -> dict:
    session = Session.from_settings(normalize_account(account), chainId)
    try:
        balances = get_reader().read_account_balances(session)
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"Balance read failed: {exc}") from exc
    return balances.to_dict()


@router.post("/deposit", response_model=OperationResponse, summary="Approve if needed, then deposit")
async def deposit(request: AmountRequest) -> OperationResponse:
    wallet = _require_wallet()
    surface = _transfer_surface(_wallet_session(wallet, request.chainId), wallet)
    return await _run(lambda: surface.deposit(request.amount))


@router.post("/withdraw", response_model=OperationResponse, summary="Withdraw from the vault")
async def withdraw(request: AmountRequest) -> OperationResponse:
    wallet = _require_wallet()
    surface = _transfer_surface(_wallet_session(wallet, request.chainId), wallet)
    return await _run(lambda: surface.withdraw(request.amount))


@router.post("/mint", response_model=OperationResponse, summary="Mint test tokens (test chains only)")
async def mint_test_funds(request: MintRequest) -> OperationResponse:
    wallet = _require_wallet()
    surface = _transfer_surface(_wallet_session(wallet, request.chainId), wallet)
    return await _run(lambda: surface.mint_test_funds(request.amount))


@router.post("/rebalance", response_model=OperationResponse, summary="Ask the vault to rebalance now")
async def manual_rebalance(request: Optional[RebalanceRequest] = None) -> OperationResponse:
    wallet = _require_wallet()
    chain_id = request.chainId if request else None
    surface = _controls_surface(_wallet_session(wallet, chain_id), wallet)
    return await _run(surface.trigger_manual_rebalance)


@router.post(
    "/venues/{venue}/apy",
    response_model=OperationResponse,
    summary="Override a mock venue's APY (test chains only)",
)
async def set_venue_apy(
    request: SetApyRequest,
    venue: str = Path(..., description="Venue name: aave or compound"),
) -> OperationResponse:
    wallet = _require_wallet()
    surface = _controls_surface(_wallet_session(wallet, request.chainId), wallet)
    return await _run(lambda: surface.set_test_venue_apy(venue, request.apyPercent))


def _lookup_surface(surface: str, chain_id: Optional[int]) -> tuple[Session, Optional[ActionSurface]]:
    """Find a surface without creating one. Reads never grow the registry."""
    if surface not in (TransferOrchestrator.name, ManualControls.name):
        raise HTTPException(status_code=404, detail=f"Unknown surface: {surface}")
    wallet = _require_wallet()
    session = Session.from_settings(wallet.address, chain_id)
    return session, registry.get(session, surface)


def _require_surface(surface: str, chain_id: Optional[int]) -> ActionSurface:
    session, target = _lookup_surface(surface, chain_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail=f"No {surface} surface has run on chain {session.chain_id}",
        )
    return target


@router.get("/surfaces/{surface}", summary="Current state of an action surface")
async def surface_state(surface: str, chainId: Optional[int] = Query(default=None)) -> dict:
    _, target = _lookup_surface(surface, chainId)
    if target is None:
        return {"surface": surface, "state": "idle", "busy": False, "handle": None, "lastResult": None}
    return target.snapshot()


@router.post("/surfaces/transfer/amount", summary="Edit the transfer surface's pending amount")
async def set_transfer_amount(request: AmountRequest) -> dict:
    wallet = _require_wallet()
    surface = _transfer_surface(_wallet_session(wallet, request.chainId), wallet)
    surface.set_amount(request.amount or "")
    return surface.snapshot()


@router.post("/surfaces/{surface}/dismiss", summary="Acknowledge a stuck pending transaction")
async def dismiss_surface(surface: str, chainId: Optional[int] = Query(default=None)) -> dict:
    target = _require_surface(surface, chainId)
    target.dismiss()
    return target.snapshot()


@router.post("/surfaces/{surface}/retry", summary="Return a failed surface to idle")
async def retry_surface(surface: str, chainId: Optional[int] = Query(default=None)) -> dict:
    target = _require_surface(surface, chainId)
    try:
        target.retry()
    except VaultClientError as exc:
        raise _to_http_error(exc) from exc
    return target.snapshot()


@router.get("/history", response_model=RebalanceHistoryResponse, summary="Rebalance history, newest first")
async def rebalance_history(chainId: Optional[int] = Query(default=None)) -> RebalanceHistoryResponse:
    session = Session.from_settings(None, chainId)
    result = await get_reconciler().fetch_history(session)
    payload = result.to_dict()
    return RebalanceHistoryResponse(
        chainId=session.chain_id,
        vaultAddress=session.contracts.vault,
        source=payload["source"],
        error=payload["error"],
        events=payload["events"],
    )
