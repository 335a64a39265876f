"""数据模型模块"""

from trustcore.models.user import (
    AuthDevice,
    IdentityVerification,
    User,
    VerificationLevel,
    VerificationStatus,
)
from trustcore.models.otp import OTPCode, OTPRateLimit
from trustcore.models.evidence import (
    Evidence,
    EvidenceKind,
    EvidenceState,
    MutualVerification,
    MutualVerificationStatus,
    Report,
    ReportStatus,
)
from trustcore.models.risk import RiskSignal, RiskType, TrustScoreSnapshot

__all__ = [
    "User",
    "AuthDevice",
    "IdentityVerification",
    "VerificationStatus",
    "VerificationLevel",
    "OTPCode",
    "OTPRateLimit",
    "Evidence",
    "EvidenceKind",
    "EvidenceState",
    "Report",
    "ReportStatus",
    "MutualVerification",
    "MutualVerificationStatus",
    "RiskSignal",
    "RiskType",
    "TrustScoreSnapshot",
]
