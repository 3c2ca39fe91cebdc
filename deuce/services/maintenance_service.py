"""
Match maintenance worker: time-driven transitions of the match lifecycle.

Polls every few minutes and, in order:
expires overdue invitations, auto-approves unanswered results, escalates
stale disputes, expires finished suspensions and retries queued
recalculation jobs. Each sweep commits on its own so one failure does not
hold back the others.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from deuce.database import db
from deuce.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class MatchMaintenanceService:
    """Background service running the periodic match sweeps."""

    def __init__(
        self,
        engine,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self._session_factory = session_factory
        self.poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else engine.config.maintenance_poll_interval_seconds
        )
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background maintenance worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Match maintenance worker started")

    def stop(self) -> None:
        """Stop the background maintenance worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Match maintenance worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: run the sweeps, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in match maintenance worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass

    def _new_session(self) -> AsyncSession:
        # Looked up at call time so tests can swap the session factory
        factory = self._session_factory or db.AsyncSessionLocal
        return factory()

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Run every sweep once.

        Returns:
            Count of items each sweep handled; a failed sweep reports -1
        """
        now = now or utcnow()
        sweeps = [
            ("invitations_expired", lambda s: self.engine.invitations.sweep_expired_invitations(s, now)),
            ("results_auto_approved", lambda s: self.engine.results.auto_approve_results(s, now)),
            ("disputes_escalated", lambda s: self.engine.disputes.escalate_stale_disputes(s, now)),
            ("penalties_expired", lambda s: self.engine.penalties.expire_penalties(s, now)),
            ("recalculation_jobs_completed", lambda s: self.engine.recalculation.process_pending_jobs(s)),
        ]
        summary: Dict[str, int] = {}
        for name, sweep in sweeps:
            async with self._new_session() as session:
                try:
                    handled = await sweep(session)
                    await self.engine.commit(session)
                    summary[name] = len(handled) if isinstance(handled, list) else int(handled)
                except Exception as e:
                    logger.error(f"Maintenance sweep {name} failed: {e}", exc_info=True)
                    await session.rollback()
                    summary[name] = -1

        if any(count for count in summary.values()):
            logger.info(f"Match maintenance pass: {summary}")
        return summary
