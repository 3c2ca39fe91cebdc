"""
Engine-wide defaults. Every value can be overridden through the environment.
"""

import os

# Pending invitations expire after this many hours
INVITATION_EXPIRY_HOURS = int(os.getenv("INVITATION_EXPIRY_HOURS", "48"))

# Scheduling conflict windows (hours either side of a proposed time)
CREATION_CONFLICT_WINDOW_HOURS = float(os.getenv("CREATION_CONFLICT_WINDOW_HOURS", "2"))
ACCEPTANCE_CONFLICT_WINDOW_HOURS = float(os.getenv("ACCEPTANCE_CONFLICT_WINDOW_HOURS", "3"))

# A cancellation closer than this to the match start is "late"
LATE_CANCELLATION_HOURS = float(os.getenv("LATE_CANCELLATION_HOURS", "4"))

# ONGOING results nobody answered are auto-approved after this long
AUTO_APPROVE_HOURS = float(os.getenv("AUTO_APPROVE_HOURS", "24"))

# OPEN disputes older than this are bumped to URGENT
DISPUTE_ESCALATION_HOURS = float(os.getenv("DISPUTE_ESCALATION_HOURS", "48"))

# Maintenance worker poll interval (seconds)
MAINTENANCE_POLL_INTERVAL_SECONDS = int(os.getenv("MAINTENANCE_POLL_INTERVAL_SECONDS", "300"))

# Best-N aggregate: how many results count per player per division
BEST_N_RESULTS = int(os.getenv("BEST_N_RESULTS", "6"))

MAX_RESCHEDULES = int(os.getenv("MAX_RESCHEDULES", "3"))

# Ratings
DEFAULT_RATING = float(os.getenv("DEFAULT_RATING", "1500"))
DEFAULT_RATING_DEVIATION = float(os.getenv("DEFAULT_RATING_DEVIATION", "350"))
MIN_RATING_DEVIATION = float(os.getenv("MIN_RATING_DEVIATION", "50"))
RATING_DEVIATION_DECAY = float(os.getenv("RATING_DEVIATION_DECAY", "0.95"))
K_FACTOR = float(os.getenv("K_FACTOR", "32"))

# Whether a submitted result waits for the opposing side to confirm
REQUIRES_CONFIRMATION = os.getenv("REQUIRES_CONFIRMATION", "true").lower() == "true"

# Admin penalties attached to denied late cancellations
LATE_CANCELLATION_POINTS_DEDUCTION = int(os.getenv("LATE_CANCELLATION_POINTS_DEDUCTION", "2"))
LATE_CANCELLATION_SUSPENSION_DAYS = int(os.getenv("LATE_CANCELLATION_SUSPENSION_DAYS", "7"))

# Recalculation outbox retries before a job is marked failed
RECALCULATION_MAX_ATTEMPTS = int(os.getenv("RECALCULATION_MAX_ATTEMPTS", "5"))
