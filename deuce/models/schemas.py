"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator

from deuce.database.models import (
    CancellationReason,
    DisputeCategory,
    DisputePriority,
    DisputeResolutionAction,
    DisputeStatus,
    MatchType,
    PenaltySeverity,
    PenaltyType,
    WalkoverReason,
)


class SetScoreInput(BaseModel):
    """Score of one set, or one pickleball game."""

    set_number: Optional[int] = Field(None, ge=1, le=5)
    team1_games: int = Field(..., ge=0)
    team2_games: int = Field(..., ge=0)
    team1_tiebreak: Optional[int] = Field(None, ge=0)
    team2_tiebreak: Optional[int] = Field(None, ge=0)
    tiebreak_type: Optional[str] = None


# ── Scheduling ──────────────────────────────────────────────────────────


class MatchCreate(BaseModel):
    """Request to create a match and invite its players."""

    division_id: int
    match_type: MatchType
    opponent_id: Optional[int] = None
    partner_id: Optional[int] = None
    opponent_partner_id: Optional[int] = None
    proposed_times: List[datetime] = Field(default_factory=list)
    location: Optional[str] = None
    venue: Optional[str] = None
    notes: Optional[str] = None
    message: Optional[str] = None


class DraftMatchUpdate(BaseModel):
    """Request to re-invite players for a draft match."""

    opponent_id: Optional[int] = None
    partner_id: Optional[int] = None
    opponent_partner_id: Optional[int] = None
    proposed_times: List[datetime] = Field(default_factory=list)
    location: Optional[str] = None
    message: Optional[str] = None


class JoinMatchRequest(BaseModel):
    team: Optional[str] = Field(None, pattern="^team[12]$")


class InvitationResponseRequest(BaseModel):
    """Accept or decline an invitation."""

    accept: bool
    decline_reason: Optional[str] = None


class TimeSlotCreate(BaseModel):
    proposed_time: datetime
    location: Optional[str] = None
    notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    proposed_times: List[datetime] = Field(..., min_length=1)
    reason: Optional[str] = None


class CancelMatchRequest(BaseModel):
    reason: CancellationReason
    comment: Optional[str] = None


# ── Results ─────────────────────────────────────────────────────────────


class ResultSubmission(BaseModel):
    """A participant's report of the score."""

    set_scores: List[SetScoreInput] = Field(..., min_length=1)
    is_unfinished: bool = False
    comment: Optional[str] = None


class ResultConfirmation(BaseModel):
    """Confirm a pending result, or deny it and open a dispute."""

    confirmed: bool
    dispute_reason: Optional[str] = None
    dispute_category: Optional[DisputeCategory] = None
    disputer_score: Optional[List[SetScoreInput]] = None
    evidence_url: Optional[str] = None

    @model_validator(mode="after")
    def validate_dispute_fields(self):
        """A denial must say why."""
        if not self.confirmed and (not self.dispute_reason or self.dispute_category is None):
            raise ValueError("Disputing a result requires dispute_reason and dispute_category")
        return self


class WalkoverSubmission(BaseModel):
    defaulting_user_id: int
    reason: WalkoverReason
    reason_detail: Optional[str] = None


# ── Disputes ────────────────────────────────────────────────────────────


class DisputeCreate(BaseModel):
    """Dispute the recorded result of a match."""

    category: DisputeCategory
    reason: str = Field(..., min_length=1)
    disputer_score: Optional[List[SetScoreInput]] = None
    evidence_url: Optional[str] = None


class DisputeNoteCreate(BaseModel):
    note: str = Field(..., min_length=1)
    is_internal_only: bool = True


class DisputeResolution(BaseModel):
    """Admin decision on a dispute."""

    action: DisputeResolutionAction
    reason: Optional[str] = None
    final_score: Optional[List[SetScoreInput]] = None

    @model_validator(mode="after")
    def validate_final_score(self):
        """Custom scores must come with the score itself."""
        if self.action == DisputeResolutionAction.CUSTOM_SCORE and not self.final_score:
            raise ValueError("CUSTOM_SCORE requires final_score")
        return self


class DisputeFilter(BaseModel):
    status: Optional[DisputeStatus] = None
    priority: Optional[DisputePriority] = None


# ── Admin ───────────────────────────────────────────────────────────────


class AdminReason(BaseModel):
    reason: str = Field(..., min_length=1)


class AdminResultEdit(BaseModel):
    set_scores: List[SetScoreInput] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class RosterEntry(BaseModel):
    user_id: int
    team: str = Field(..., pattern="^team[12]$")


class AdminParticipantsEdit(BaseModel):
    participants: List[RosterEntry] = Field(..., min_length=2, max_length=4)
    reason: str = Field(..., min_length=1)


class CancellationReview(BaseModel):
    """Approve or deny a late cancellation."""

    approved: bool
    reason: Optional[str] = None
    apply_penalty: bool = False
    penalty_severity: Optional[PenaltySeverity] = None


# ── Penalties ───────────────────────────────────────────────────────────


class PenaltyCreate(BaseModel):
    """Admin request to penalise a player."""

    user_id: int
    penalty_type: PenaltyType
    severity: PenaltySeverity
    reason: str = Field(..., min_length=1)
    division_id: Optional[int] = None
    related_match_id: Optional[int] = None
    related_dispute_id: Optional[int] = None
    points_deducted: Optional[int] = Field(None, ge=0)
    suspension_days: Optional[int] = Field(None, ge=1)
    evidence_url: Optional[str] = None


class AppealCreate(BaseModel):
    reason: str = Field(..., min_length=1)


class AppealDecision(BaseModel):
    overturn: bool
    notes: Optional[str] = None


class PenaltyResponse(BaseModel):
    """Penalty data."""

    id: int
    user_id: int
    division_id: Optional[int] = None
    penalty_type: str
    severity: str
    status: str
    reason: Optional[str] = None
    points_deducted: int = 0
    suspension_days: Optional[int] = None
    expires_at: Optional[str] = None
    related_match_id: Optional[int] = None
    related_dispute_id: Optional[int] = None
    issued_by: Optional[int] = None
    appeal_reason: Optional[str] = None
    appeal_notes: Optional[str] = None
    created_at: Optional[str] = None
