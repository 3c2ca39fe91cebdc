"""
Runtime configuration for the match engine.
"""

from dataclasses import dataclass, replace

from deuce.utils import constants


@dataclass(frozen=True)
class EngineConfig:
    """Tunable windows and thresholds. Defaults come from ``deuce.utils.constants``."""

    invitation_expiry_hours: int = constants.INVITATION_EXPIRY_HOURS
    creation_conflict_window_hours: float = constants.CREATION_CONFLICT_WINDOW_HOURS
    acceptance_conflict_window_hours: float = constants.ACCEPTANCE_CONFLICT_WINDOW_HOURS
    late_cancellation_hours: float = constants.LATE_CANCELLATION_HOURS
    auto_approve_hours: float = constants.AUTO_APPROVE_HOURS
    dispute_escalation_hours: float = constants.DISPUTE_ESCALATION_HOURS
    maintenance_poll_interval_seconds: int = constants.MAINTENANCE_POLL_INTERVAL_SECONDS
    best_n_results: int = constants.BEST_N_RESULTS
    max_reschedules: int = constants.MAX_RESCHEDULES
    default_rating: float = constants.DEFAULT_RATING
    default_rating_deviation: float = constants.DEFAULT_RATING_DEVIATION
    min_rating_deviation: float = constants.MIN_RATING_DEVIATION
    rating_deviation_decay: float = constants.RATING_DEVIATION_DECAY
    k_factor: float = constants.K_FACTOR
    requires_confirmation: bool = constants.REQUIRES_CONFIRMATION
    late_cancellation_points_deduction: int = constants.LATE_CANCELLATION_POINTS_DEDUCTION
    late_cancellation_suspension_days: int = constants.LATE_CANCELLATION_SUSPENSION_DAYS
    recalculation_max_attempts: int = constants.RECALCULATION_MAX_ATTEMPTS

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)
