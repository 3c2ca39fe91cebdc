"""
SQLAlchemy ORM models for the league match engine.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship
from deuce.database.db import Base
from deuce.utils.datetime_utils import utcnow


class UserRole(str, enum.Enum):
    """User role enum."""

    USER = "USER"
    ADMIN = "ADMIN"


class Sport(str, enum.Enum):
    """Sport enum. Decides the score grammar."""

    TENNIS = "TENNIS"
    PADEL = "PADEL"
    PICKLEBALL = "PICKLEBALL"


class MatchType(str, enum.Enum):
    """Match type enum."""

    SINGLES = "SINGLES"
    DOUBLES = "DOUBLES"


class Set3Format(str, enum.Enum):
    """How a deciding third set is played."""

    MATCH_TIEBREAK = "MATCH_TIEBREAK"
    FULL_SET = "FULL_SET"


class MatchStatus(str, enum.Enum):
    """Match lifecycle status enum."""

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ONGOING = "ONGOING"
    UNFINISHED = "UNFINISHED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    VOID = "VOID"


class ParticipantRole(str, enum.Enum):
    """Participant role enum."""

    CREATOR = "CREATOR"
    OPPONENT = "OPPONENT"
    PARTNER = "PARTNER"
    INVITED = "INVITED"


class InvitationStatus(str, enum.Enum):
    """Invitation status enum. Also used for a participant's acceptance state."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class TimeSlotStatus(str, enum.Enum):
    """Proposed time slot status enum."""

    PROPOSED = "PROPOSED"
    VOTED = "VOTED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class CancellationReason(str, enum.Enum):
    """Reason given when a participant cancels a match."""

    PERSONAL_EMERGENCY = "PERSONAL_EMERGENCY"
    INJURY = "INJURY"
    WEATHER = "WEATHER"
    SCHEDULING_CONFLICT = "SCHEDULING_CONFLICT"
    ILLNESS = "ILLNESS"
    WORK_COMMITMENT = "WORK_COMMITMENT"
    FAMILY_EMERGENCY = "FAMILY_EMERGENCY"
    OTHER = "OTHER"


class WalkoverReason(str, enum.Enum):
    """Reason a walkover was reported."""

    NO_SHOW = "NO_SHOW"
    LATE_CANCELLATION = "LATE_CANCELLATION"
    INJURY = "INJURY"
    PERSONAL_EMERGENCY = "PERSONAL_EMERGENCY"
    OTHER = "OTHER"


class DisputeCategory(str, enum.Enum):
    """Dispute category enum."""

    WRONG_SCORE = "WRONG_SCORE"
    NO_SHOW = "NO_SHOW"
    BEHAVIOR = "BEHAVIOR"
    OTHER = "OTHER"


class DisputeStatus(str, enum.Enum):
    """Dispute status enum."""

    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class DisputePriority(str, enum.Enum):
    """Dispute priority enum."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DisputeResolutionAction(str, enum.Enum):
    """What an admin decided when resolving a dispute."""

    UPHOLD_ORIGINAL = "UPHOLD_ORIGINAL"
    UPHOLD_DISPUTER = "UPHOLD_DISPUTER"
    CUSTOM_SCORE = "CUSTOM_SCORE"
    VOID_MATCH = "VOID_MATCH"
    AWARD_WALKOVER = "AWARD_WALKOVER"
    REQUEST_MORE_INFO = "REQUEST_MORE_INFO"
    REJECT = "REJECT"


class MatchAdminActionType(str, enum.Enum):
    """Admin action audit type enum."""

    EDIT_RESULT = "EDIT_RESULT"
    VOID_MATCH = "VOID_MATCH"
    CONVERT_TO_WALKOVER = "CONVERT_TO_WALKOVER"
    OVERRIDE_DISPUTE = "OVERRIDE_DISPUTE"
    APPLY_PENALTY = "APPLY_PENALTY"
    EDIT_PARTICIPANTS = "EDIT_PARTICIPANTS"
    APPROVE_LATE_CANCELLATION = "APPROVE_LATE_CANCELLATION"
    DENY_LATE_CANCELLATION = "DENY_LATE_CANCELLATION"
    EDIT_SCHEDULE = "EDIT_SCHEDULE"
    REOPEN_MATCH = "REOPEN_MATCH"
    VERIFY_WALKOVER = "VERIFY_WALKOVER"


class PenaltyType(str, enum.Enum):
    """Penalty type enum."""

    WARNING = "WARNING"
    POINTS_DEDUCTION = "POINTS_DEDUCTION"
    SUSPENSION = "SUSPENSION"
    NONE = "NONE"


class PenaltySeverity(str, enum.Enum):
    """Penalty severity enum."""

    WARNING = "WARNING"
    POINTS_DEDUCTION = "POINTS_DEDUCTION"
    SUSPENSION = "SUSPENSION"
    PERMANENT_BAN = "PERMANENT_BAN"


class PenaltyStatus(str, enum.Enum):
    """Penalty status enum."""

    ACTIVE = "ACTIVE"
    APPEALED = "APPEALED"
    OVERTURNED = "OVERTURNED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"


class RecalculationStep(str, enum.Enum):
    """Derived-data step a recalculation job re-runs."""

    RATINGS = "ratings"
    STANDINGS = "standings"
    BEST_N = "best_n"


class RecalculationJobStatus(str, enum.Enum):
    """Recalculation job status enum."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class User(Base):
    """A league player or administrator."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True, unique=True)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class League(Base):
    """A league running one or more seasons."""

    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    sport = Column(Enum(Sport), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Season(Base):
    """A season within a league."""

    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    name = Column(String, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    league = relationship("League")


class Division(Base):
    """A group of players competing against each other within a season."""

    __tablename__ = "divisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    name = Column(String, nullable=False)
    sport = Column(Enum(Sport), nullable=False)
    set3_format = Column(Enum(Set3Format), default=Set3Format.MATCH_TIEBREAK, nullable=False)
    # None means use the engine-wide default
    requires_confirmation = Column(Boolean, nullable=True)
    best_n = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    season = relationship("Season")

    __table_args__ = (Index("idx_divisions_season", "season_id"),)


class DivisionMember(Base):
    """Membership of a user in a division."""

    __tablename__ = "division_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("division_id", "user_id", name="uq_division_member"),
        Index("idx_division_members_user", "user_id"),
    )


class Match(Base):
    """A match between two sides inside a division."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    sport = Column(Enum(Sport), nullable=False)
    match_type = Column(Enum(MatchType), nullable=False)
    set3_format = Column(Enum(Set3Format), default=Set3Format.MATCH_TIEBREAK, nullable=False)
    status = Column(Enum(MatchStatus), default=MatchStatus.SCHEDULED, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    scheduled_time = Column(DateTime(timezone=True), nullable=True)
    location = Column(String, nullable=True)
    venue = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    reschedule_count = Column(Integer, default=0, nullable=False)

    # Result (sets won per side, winner is "team1" / "team2")
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)
    outcome = Column(String, nullable=True)
    result_submitted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    result_submitted_at = Column(DateTime(timezone=True), nullable=True)
    result_confirmed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    result_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    is_auto_approved = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Flags
    is_disputed = Column(Boolean, default=False, nullable=False)
    requires_admin_review = Column(Boolean, default=False, nullable=False)
    is_walkover = Column(Boolean, default=False, nullable=False)
    walkover_reason = Column(Enum(WalkoverReason), nullable=True)

    # Cancellation
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Enum(CancellationReason), nullable=True)
    cancellation_comment = Column(Text, nullable=True)
    is_late_cancellation = Column(Boolean, default=False, nullable=False)

    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    participants = relationship(
        "MatchParticipant", back_populates="match", order_by="MatchParticipant.id"
    )
    scores = relationship("MatchScore", back_populates="match", order_by="MatchScore.set_number")

    __table_args__ = (
        Index("idx_matches_division_status", "division_id", "status"),
        Index("idx_matches_status_submitted", "status", "result_submitted_at"),
        Index("idx_matches_scheduled_time", "scheduled_time"),
    )


class MatchParticipant(Base):
    """A user's seat on a match, with their acceptance state."""

    __tablename__ = "match_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(Enum(ParticipantRole), nullable=False)
    team = Column(String, nullable=True)  # 'team1' or 'team2'
    invitation_status = Column(
        Enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False
    )
    joined_at = Column(DateTime(timezone=True), default=utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    match = relationship("Match", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_participant"),
        CheckConstraint("team IN ('team1', 'team2') OR team IS NULL", name="ck_participant_team"),
        Index("idx_match_participants_user", "user_id", "invitation_status"),
    )


class MatchInvitation(Base):
    """A time-limited invitation to join a match."""

    __tablename__ = "match_invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    inviter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    invitee_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    message = Column(Text, nullable=True)
    decline_reason = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_match_invitations_match", "match_id"),
        Index("idx_match_invitations_status_expiry", "status", "expires_at"),
    )


class MatchTimeSlot(Base):
    """A proposed start time participants vote on."""

    __tablename__ = "match_time_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    proposed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    proposed_time = Column(DateTime(timezone=True), nullable=False)
    location = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(Enum(TimeSlotStatus), default=TimeSlotStatus.PROPOSED, nullable=False)
    votes = Column(JSON, default=list, nullable=False)  # list of user ids
    vote_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_match_time_slots_match", "match_id"),
        Index("idx_match_time_slots_status_time", "status", "proposed_time"),
    )


class MatchScore(Base):
    """Score of one set (or pickleball game)."""

    __tablename__ = "match_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    set_number = Column(Integer, nullable=False)
    team1_games = Column(Integer, nullable=False)
    team2_games = Column(Integer, nullable=False)
    team1_tiebreak = Column(Integer, nullable=True)
    team2_tiebreak = Column(Integer, nullable=True)
    tiebreak_type = Column(String, nullable=True)  # 'SET' or 'MATCH'

    match = relationship("Match", back_populates="scores")

    __table_args__ = (
        UniqueConstraint("match_id", "set_number", name="uq_match_score_set"),
    )


class MatchResult(Base):
    """Per-player result row derived from a completed match."""

    __tablename__ = "match_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    team = Column(String, nullable=False)
    is_win = Column(Boolean, nullable=False)
    sets_won = Column(Integer, default=0, nullable=False)
    sets_lost = Column(Integer, default=0, nullable=False)
    games_won = Column(Integer, default=0, nullable=False)
    games_lost = Column(Integer, default=0, nullable=False)
    match_points = Column(Integer, default=0, nullable=False)
    is_walkover = Column(Boolean, default=False, nullable=False)
    counts_for_standings = Column(Boolean, default=False, nullable=False)
    result_sequence = Column(Integer, nullable=True)
    played_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_result_player"),
        Index("idx_match_results_division_user", "division_id", "user_id"),
    )


class MatchDispute(Base):
    """A participant's challenge against a submitted or completed result."""

    __tablename__ = "match_disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    raised_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    category = Column(Enum(DisputeCategory), nullable=False)
    reason = Column(Text, nullable=False)
    disputer_score = Column(JSON, nullable=True)
    evidence_url = Column(String, nullable=True)
    status = Column(Enum(DisputeStatus), default=DisputeStatus.OPEN, nullable=False)
    priority = Column(Enum(DisputePriority), default=DisputePriority.HIGH, nullable=False)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    review_started_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolution_action = Column(Enum(DisputeResolutionAction), nullable=True)
    admin_resolution = Column(Text, nullable=True)
    final_score = Column(JSON, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_match_disputes_match_status", "match_id", "status"),
        Index("idx_match_disputes_status_priority", "status", "priority"),
    )


class DisputeAdminNote(Base):
    """Admin note attached to a dispute."""

    __tablename__ = "dispute_admin_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dispute_id = Column(Integer, ForeignKey("match_disputes.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    note = Column(Text, nullable=False)
    is_internal_only = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class MatchWalkover(Base):
    """Walkover record for a match decided without play."""

    __tablename__ = "match_walkovers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, unique=True)
    reason = Column(Enum(WalkoverReason), nullable=False)
    reason_detail = Column(Text, nullable=True)
    defaulting_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    winning_team = Column(String, nullable=False)
    reported_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    admin_verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PlayerRating(Base):
    """A player's current rating within a season."""

    __tablename__ = "player_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    rating = Column(Float, nullable=False)
    rating_deviation = Column(Float, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    peak_rating = Column(Float, nullable=True)
    lowest_rating = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "season_id", name="uq_player_rating_season"),
    )


class RatingHistory(Base):
    """One rating change caused by one match, kept so it can be reversed."""

    __tablename__ = "rating_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_rating_id = Column(Integer, ForeignKey("player_ratings.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    rating_before = Column(Float, nullable=False)
    rating_after = Column(Float, nullable=False)
    deviation_before = Column(Float, nullable=False)
    deviation_after = Column(Float, nullable=False)
    rating_change = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_rating_history_match", "match_id"),
        Index("idx_rating_history_user", "user_id", "season_id"),
    )


class MatchAdminAction(Base):
    """Audit log entry for an admin intervention on a match."""

    __tablename__ = "match_admin_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    action_type = Column(Enum(MatchAdminActionType), nullable=False)
    reason = Column(Text, nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    triggered_recalculation = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_match_admin_actions_match", "match_id"),)


class PlayerPenalty(Base):
    """A disciplinary measure against a player."""

    __tablename__ = "player_penalties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=True)
    related_match_id = Column(Integer, ForeignKey("matches.id"), nullable=True)
    related_dispute_id = Column(Integer, ForeignKey("match_disputes.id"), nullable=True)
    penalty_type = Column(Enum(PenaltyType), nullable=False)
    severity = Column(Enum(PenaltySeverity), nullable=False)
    status = Column(Enum(PenaltyStatus), default=PenaltyStatus.ACTIVE, nullable=False)
    reason = Column(Text, nullable=False)
    evidence_url = Column(String, nullable=True)
    points_deducted = Column(Integer, default=0, nullable=False)
    suspension_days = Column(Integer, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    issued_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # None for system-issued
    appeal_reason = Column(Text, nullable=True)
    appeal_submitted_at = Column(DateTime(timezone=True), nullable=True)
    appeal_resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    appeal_resolved_at = Column(DateTime(timezone=True), nullable=True)
    appeal_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_player_penalties_user_status", "user_id", "status"),
        Index("idx_player_penalties_status_expiry", "status", "expires_at"),
    )


class DivisionStanding(Base):
    """Aggregated standings row for one player in one division."""

    __tablename__ = "division_standings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    position = Column(Integer, nullable=True)
    matches_played = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    sets_won = Column(Integer, default=0, nullable=False)
    sets_lost = Column(Integer, default=0, nullable=False)
    games_won = Column(Integer, default=0, nullable=False)
    games_lost = Column(Integer, default=0, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    points_deducted = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("division_id", "user_id", name="uq_division_standing"),
    )


class Notification(Base):
    """User notification written by the database notification sink."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_notifications_user_unread", "user_id", "is_read"),)


class RecalculationJob(Base):
    """Durable record of a derived-data step that still has to run."""

    __tablename__ = "recalculation_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    step = Column(Enum(RecalculationStep), nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=True)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(
        Enum(RecalculationJobStatus), default=RecalculationJobStatus.PENDING, nullable=False
    )
    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_recalculation_jobs_status", "status"),)
