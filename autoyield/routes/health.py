from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Optional, Tuple

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from web3 import Web3

from autoyield.config import settings

router = APIRouter()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def check_node() -> Tuple[bool, Optional[float], Optional[int], Optional[str]]:
    start = time.perf_counter()
    try:
        web3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": 5}))
        block_number = int(web3.eth.block_number)
        latency_ms = (time.perf_counter() - start) * 1000
        return True, latency_ms, block_number, None
    except Exception as exc:  # pragma: no cover - exercised via integration
        latency_ms = (time.perf_counter() - start) * 1000
        return False, latency_ms, None, str(exc)


@router.get("/health/live")
async def liveness_check() -> dict:
    return {
        "status": "alive",
        "version": settings.api_version,
        "timestamp": utc_now_iso(),
    }


@router.get("/health/ready")
async def readiness_check():
    ok, latency_ms, block_number, _ = await check_node()
    payload = {
        "status": "ready" if ok else "not_ready",
        "version": settings.api_version,
        "timestamp": utc_now_iso(),
        "node": "ok" if ok else "error",
        "node_latency_ms": round(latency_ms, 2) if latency_ms is not None else None,
        "block_number": block_number,
    }
    if ok:
        return payload
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)


@router.get("/health")
async def health_check():
    """Basic health check. Always 200; use /health/ready for a strict node-aware probe."""
    ok, latency_ms, block_number, error = await check_node()
    payload = {
        "status": "ok" if ok else "degraded",
        "version": settings.api_version,
        "timestamp": utc_now_iso(),
        "node": "ok" if ok else "unavailable",
        "node_latency_ms": round(latency_ms, 2) if latency_ms is not None else None,
        "block_number": block_number,
    }
    if not ok:
        payload["node_error"] = error
    return payload
