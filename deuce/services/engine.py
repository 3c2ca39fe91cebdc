"""
Wiring of the match engine.

``MatchEngine`` builds every service with its collaborators. The API builds
one at startup; tests build their own with whatever collaborators they need.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from deuce.services.admin_match_service import AdminMatchService
from deuce.services.conflict_detector import ConflictDetector
from deuce.services.dispute_service import DisputeService
from deuce.services.engine_config import EngineConfig
from deuce.services.events import EventDispatcher
from deuce.services.invitation_service import InvitationService
from deuce.services.membership_service import DivisionMembershipOracle
from deuce.services.notification_service import (
    DatabaseNotificationSink,
    LoggingNotificationSink,
)
from deuce.services.penalty_service import PenaltyService
from deuce.services.rating_service import EloRatingEngine
from deuce.services.recalculation_service import RecalculationService
from deuce.services.result_service import ResultService
from deuce.services.scheduling_service import SchedulingService
from deuce.services.standings_service import BestNResultsEngine, MatchPointsStandingsEngine

logger = logging.getLogger(__name__)


class MatchEngine:
    """Container holding one instance of each match service."""

    def __init__(
        self,
        config: EngineConfig,
        membership,
        rating_engine,
        standings_engine,
        best_n_engine,
        notification_sink,
    ):
        self.config = config
        self.conflicts = ConflictDetector()
        self.recalculation = RecalculationService(
            config, rating_engine, standings_engine, best_n_engine
        )
        self.penalties = PenaltyService(config, self.recalculation)
        self.scheduling = SchedulingService(config, membership, self.conflicts)
        self.invitations = InvitationService(config, self.conflicts)
        self.disputes = DisputeService(config, self.recalculation)
        self.results = ResultService(config, self.recalculation, self.penalties, self.disputes)
        self.admin = AdminMatchService(config, self.recalculation, self.penalties)
        self.dispatcher = EventDispatcher(notification_sink)

    @classmethod
    def with_defaults(
        cls,
        config: Optional[EngineConfig] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ) -> "MatchEngine":
        """
        Engine with the bundled collaborators.

        Notifications are stored through ``session_factory`` when one is given
        and only logged otherwise.
        """
        config = config or EngineConfig()
        sink = (
            DatabaseNotificationSink(session_factory)
            if session_factory is not None
            else LoggingNotificationSink()
        )
        return cls(
            config=config,
            membership=DivisionMembershipOracle(),
            rating_engine=EloRatingEngine(config),
            standings_engine=MatchPointsStandingsEngine(),
            best_n_engine=BestNResultsEngine(config),
            notification_sink=sink,
        )

    async def commit(self, session: AsyncSession) -> int:
        """
        Commit the session and deliver the events it recorded.

        Returns:
            Number of events delivered
        """
        await session.commit()
        return await self.dispatcher.dispatch(session)
