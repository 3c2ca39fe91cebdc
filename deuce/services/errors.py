"""
Error taxonomy for match engine operations.

Every error subclasses ``ValueError`` so callers that only know the
"service raised ValueError -> 400" convention keep working; the API layer
maps the finer subclasses to 403 / 404 / 409.
"""

from typing import Optional


class MatchEngineError(ValueError):
    """Base class for all engine errors."""


class ValidationError(MatchEngineError):
    """Input is malformed or violates a domain rule."""


class AuthorizationError(MatchEngineError):
    """The acting user is not allowed to perform the operation."""


class NotFoundError(MatchEngineError):
    """A referenced entity does not exist."""


class ConflictError(MatchEngineError):
    """The operation clashes with the current state of the data."""


class IllegalTransitionError(ConflictError):
    """A match status change that the lifecycle does not allow."""

    def __init__(self, source, target, kind=None):
        self.source = source
        self.target = target
        self.kind = kind
        source_name = getattr(source, "value", source)
        target_name = getattr(target, "value", target)
        super().__init__(f"Cannot move match from {source_name} to {target_name}")


class SchedulingConflictError(ConflictError):
    """A user already holds an accepted match close to the proposed time."""

    def __init__(self, user_id: int, conflicting_match_id: int, message: Optional[str] = None):
        self.user_id = user_id
        self.conflicting_match_id = conflicting_match_id
        super().__init__(
            message
            or f"User {user_id} already has match {conflicting_match_id} scheduled near this time"
        )


class CascadeStepError(MatchEngineError):
    """A derived-data step failed after the structural change was applied."""

    def __init__(self, step: str, match_id: Optional[int], cause: Exception):
        self.step = step
        self.match_id = match_id
        self.cause = cause
        super().__init__(f"Recalculation step '{step}' failed for match {match_id}: {cause}")


class InvitationExpiredError(ConflictError):
    """The invitation passed its expiry; it has been marked expired."""

    # The expiry mark is a real state change and must be committed even
    # though the operation failed.
    preserve_changes = True
