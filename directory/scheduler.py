"""
directory/scheduler.py -- Periodic directory reconciliation.

SyncScheduler is owned by the FastAPI lifespan: start() on startup, stop() on
shutdown. The loop is an asyncio task; each pass runs in a worker thread via
asyncio.to_thread so blocking ldap3 and SQLAlchemy calls never stall request
handling.

Shutdown waits for an in-flight pass to finish instead of cancelling it, so a
reconciliation transaction is never interrupted halfway.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from core.config import Settings
from directory.sync import Reconciler

logger = logging.getLogger("licensedesk.scheduler")


class SyncScheduler:
    def __init__(self, settings: Settings, reconciler: Reconciler) -> None:
        self._settings = settings
        self._reconciler = reconciler
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Install the background loop once. Later calls are logged no-ops."""
        if not self._settings.directory_enabled:
            logger.warning("LDAP sync disabled: LDAP_URL / LDAP_BASE_DN are not set")
            return
        if self._task is not None:
            logger.info("LDAP sync scheduler already started")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="ldap-sync")
        logger.info(
            "LDAP sync scheduler started (every %s, on_startup=%s)",
            self._settings.ldap_sync_every,
            self._settings.ldap_sync_on_startup,
        )

    async def stop(self) -> None:
        """Stop scheduling new passes and wait for the current one to finish."""
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        logger.info("LDAP sync scheduler stopped")

    async def run_once(self) -> dict[str, tuple[int, int]]:
        return await asyncio.to_thread(self._reconciler.sync_all)

    async def _loop(self) -> None:
        assert self._stop_event is not None
        interval = self._settings.ldap_sync_every.total_seconds()
        if self._settings.ldap_sync_on_startup:
            await self._tick()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self._tick()

    async def _tick(self) -> None:
        try:
            await self.run_once()
        except Exception:
            # sync_all already logs per-entity failures; this catches anything
            # that escaped it so the loop keeps running.
            logger.exception("LDAP sync pass failed")
