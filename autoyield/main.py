from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI

# Configure root logger so all autoyield.* module loggers emit to console
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

from autoyield.config import rpc_url_safe, running_in_hosted_env, settings
from autoyield.routes import health, rpc, vault


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(__name__)
    logger.info("Node RPC: %s", rpc_url_safe())
    if running_in_hosted_env() and not settings.wallet_private_key:
        logger.warning("WALLET_PRIVATE_KEY not set in hosted env. Write endpoints will return 503.")

    # --- overview polling (non-fatal) ---
    poller = vault.get_poller()
    app.state.overview_poller = poller
    try:
        await poller.start()
    except Exception as exc:
        logger.error("Overview poller failed to start (non-fatal): %s", exc)

    yield

    await poller.stop()


app = FastAPI(
    title="AutoYield Vault API",
    description="Client backend for the AutoYield vault",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    rpc.RelayAwareCORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(rpc.router)
app.include_router(vault.router)


@app.get("/")
async def root() -> dict:
    return {"message": "AutoYield Vault API", "docs": "/docs"}
