"""Schema exports."""

from fiesta.schemas.audit import AuditEventRead
from fiesta.schemas.auth import Token
from fiesta.schemas.dispute import (
    CloseResolution,
    DisputeCreate,
    DisputeDetail,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputePage,
    DisputeRead,
    DisputeResolveRequest,
    DisputeStats,
    NoRefundResolution,
    PartialRefundResolution,
    RefundResolution,
    ResolutionDecision,
)
from fiesta.schemas.match import (
    CancellationPreview,
    CancellationRead,
    CancellationStats,
    ExpirySweepResult,
    MatchAccept,
    MatchCancel,
    MatchCancelResponse,
    MatchComplete,
    MatchCreate,
    MatchPage,
    MatchRead,
    MatchReject,
    MatchStats,
)
from fiesta.schemas.user import (
    BanRequest,
    StrikeRequest,
    UserCreate,
    UserPage,
    UserRead,
    UserTrustRead,
)
from fiesta.schemas.wallet import (
    ReconcileRead,
    TopUpCreate,
    WalletRead,
    WalletTransactionPage,
    WalletTransactionRead,
)

__all__ = [
    "AuditEventRead",
    "BanRequest",
    "CancellationPreview",
    "CancellationRead",
    "CancellationStats",
    "CloseResolution",
    "DisputeCreate",
    "DisputeDetail",
    "DisputeMessageCreate",
    "DisputeMessageRead",
    "DisputePage",
    "DisputeRead",
    "DisputeResolveRequest",
    "DisputeStats",
    "ExpirySweepResult",
    "MatchAccept",
    "MatchCancel",
    "MatchCancelResponse",
    "MatchComplete",
    "MatchCreate",
    "MatchPage",
    "MatchRead",
    "MatchReject",
    "MatchStats",
    "NoRefundResolution",
    "PartialRefundResolution",
    "ReconcileRead",
    "RefundResolution",
    "ResolutionDecision",
    "StrikeRequest",
    "Token",
    "TopUpCreate",
    "UserCreate",
    "UserPage",
    "UserRead",
    "UserTrustRead",
    "WalletRead",
    "WalletTransactionPage",
    "WalletTransactionRead",
]
