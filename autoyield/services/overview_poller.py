"""Background refresh of the vault overview for the default session."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from autoyield.config import settings
from autoyield.onchain.session import Session
from autoyield.onchain.vault_reader import VaultOverview, VaultReader

logger = logging.getLogger(__name__)


class OverviewPoller:
    def __init__(
        self,
        reader: VaultReader,
        session: Optional[Session] = None,
        interval_seconds: Optional[int] = None,
    ) -> None:
        self.reader = reader
        self.session = session or Session.from_settings(None)
        self.interval_seconds = settings.overview_poll_seconds if interval_seconds is None else interval_seconds
        self.scheduler = AsyncIOScheduler()
        self.latest: Optional[VaultOverview] = None
        self.refreshed_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._running = False

    @property
    def enabled(self) -> bool:
        return self.interval_seconds > 0 and bool(self.session.contracts.vault)

    async def start(self) -> None:
        if self._running or not self.enabled:
            return
        logger.info("Starting overview poller every %ss", self.interval_seconds)
        self.scheduler.add_job(
            self.refresh,
            IntervalTrigger(seconds=self.interval_seconds),
            id="overview_poll",
            name="Vault Overview Poll",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping overview poller...")
        self.scheduler.shutdown(wait=False)
        self._running = False

    def refresh_now(self) -> Optional[VaultOverview]:
        try:
            overview = self.reader.read_vault_overview(self.session)
        except Exception as exc:
            # Keep serving the last good snapshot.
            self.last_error = str(exc)
            logger.warning("Overview refresh failed: %s", exc)
            return self.latest
        self.latest = overview
        self.refreshed_at = datetime.now(timezone.utc)
        self.last_error = None
        return overview

    async def refresh(self) -> Optional[VaultOverview]:
        return self.refresh_now()

    def on_write_confirmed(self, session: Session) -> None:
        """Re-read the snapshot after a confirmed write on the polled chain."""
        if session.chain_id != self.session.chain_id or self.latest is None:
            return
        self.refresh_now()

    def snapshot(self) -> dict:
        return {
            "chainId": self.session.chain_id,
            "enabled": self.enabled,
            "intervalSeconds": self.interval_seconds,
            "refreshedAt": self.refreshed_at.isoformat() if self.refreshed_at else None,
            "lastError": self.last_error,
            "overview": self.latest.to_dict() if self.latest else None,
        }
