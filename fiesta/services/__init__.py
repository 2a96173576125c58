"""Service layer exports."""
from fiesta.services import (
    audit_service,
    ledger_service,
    wallet_service,
    experience_service,
    cancellation_service,
    trust_service,
    match_service,
    dispute_service,
    notification_service,
    user_service,
    auth_service,
)

__all__ = [
    "audit_service",
    "auth_service",
    "cancellation_service",
    "dispute_service",
    "experience_service",
    "ledger_service",
    "match_service",
    "notification_service",
    "trust_service",
    "user_service",
    "wallet_service",
]
