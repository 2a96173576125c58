"""ORM models package export."""

from fiesta.models.audit_event import AuditEvent
from fiesta.models.dispute import (
    ACTIVE_DISPUTE_STATUSES,
    TERMINAL_DISPUTE_STATUSES,
    AdminAction,
    Dispute,
    DisputeMessage,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
)
from fiesta.models.experience import CancellationPolicy, Experience, ExperienceType
from fiesta.models.match import Cancellation, Match, MatchStatus, ParticipantRole
from fiesta.models.user import User, UserRole
from fiesta.models.wallet import TransactionStatus, TransactionType, WalletTransaction

__all__ = [
    "ACTIVE_DISPUTE_STATUSES",
    "AdminAction",
    "AuditEvent",
    "Cancellation",
    "CancellationPolicy",
    "Dispute",
    "DisputeMessage",
    "DisputeReason",
    "DisputeResolution",
    "DisputeStatus",
    "Experience",
    "ExperienceType",
    "Match",
    "MatchStatus",
    "ParticipantRole",
    "TERMINAL_DISPUTE_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "User",
    "UserRole",
    "WalletTransaction",
]
