"""Scheduled upkeep: stuck-job recovery and retention cleanup."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from app.services.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class PipelineMaintenance:
    """Run the stuck-job sweep and old-job cleanup together."""

    def __init__(self, orchestrator: PipelineOrchestrator, interval_seconds: int = 900) -> None:
        self._orchestrator = orchestrator
        self._interval_seconds = interval_seconds
        self._stopped = asyncio.Event()

    async def run_once(
        self,
        stuck_hours: Optional[float] = None,
        retention_days: Optional[int] = None,
    ) -> dict[str, int]:
        reset = await self._orchestrator.reset_stuck_jobs(stuck_hours)
        deleted = await self._orchestrator.cleanup_old_jobs(retention_days)
        return {"resetCount": reset, "deletedCount": deleted}

    async def run_periodically(self) -> None:
        """Loop until ``stop`` is called; a failed pass is logged and retried."""

        logger.info("Pipeline maintenance every %s seconds", self._interval_seconds)
        while not self._stopped.is_set():
            try:
                summary = await self.run_once()
                logger.info("Maintenance pass finished: %s", summary)
            except Exception:
                logger.exception("Maintenance pass failed")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                continue

    def stop(self) -> None:
        self._stopped.set()


__all__ = ["PipelineMaintenance"]
