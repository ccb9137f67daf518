"""Pass-through JSON-RPC relay to the configured backing node."""
from __future__ import annotations

import logging

import aiohttp
from fastapi import APIRouter, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send

from autoyield.config import rpc_url_safe, settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Relay"])

RELAY_PATH = "/api/rpc"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RELAY_TIMEOUT_SECONDS = 30


class RelayError(Exception):
    pass


class RelayAwareCORSMiddleware(CORSMiddleware):
    """App-wide CORS policy that leaves the relay to answer with its own open headers."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].rstrip("/") == RELAY_PATH:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


async def post_to_node(body: bytes) -> bytes:
    """Forward ``body`` unchanged and return the node's raw response body."""
    timeout = aiohttp.ClientTimeout(total=RELAY_TIMEOUT_SECONDS)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(
            settings.rpc_url,
            data=body,
            headers={"Content-Type": "application/json"},
        ) as response:
            if response.status < 200 or response.status >= 300:
                raise RelayError(f"RPC request failed: {response.status}")
            return await response.read()


@router.post("/rpc")
async def relay_rpc(request: Request) -> Response:
    body = await request.body()
    try:
        payload = await post_to_node(body)
    except Exception as exc:
        logger.error("RPC relay to %s failed: %s", rpc_url_safe(), exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "RPC request failed"},
            headers=CORS_HEADERS,
        )
    return Response(content=payload, media_type="application/json", headers=CORS_HEADERS)


@router.options("/rpc")
async def relay_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)
