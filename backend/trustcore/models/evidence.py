"""证据、举报与互相验证模型：TrustScore 的输入"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustcore.core.database import Base, str_enum, utc_now


class EvidenceKind(str, enum.Enum):
    """证据类型"""
    RECEIPT = "receipt"
    SCREENSHOT = "screenshot"
    PROFILE_LINK = "profile_link"


class EvidenceState(str, enum.Enum):
    """证据有效性"""
    VALID = "Valid"
    SUSPICIOUS = "Suspicious"
    INVALID = "Invalid"


class Evidence(Base):
    """用户提交的证据（收据、截图、主页链接）"""

    __tablename__ = "evidence"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    kind: Mapped[EvidenceKind] = mapped_column(str_enum(EvidenceKind, length=20))
    state: Mapped[EvidenceState] = mapped_column(
        str_enum(EvidenceState, length=20), default=EvidenceState.VALID
    )
    integrity_score: Mapped[int] = mapped_column(Integer, default=100)  # 0-100
    is_fraud_flagged: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    @property
    def counts_toward_score(self) -> bool:
        return self.state == EvidenceState.VALID and not self.is_fraud_flagged


class ReportStatus(str, enum.Enum):
    """举报状态"""
    PENDING = "Pending"
    UNDER_REVIEW = "UnderReview"
    VERIFIED = "Verified"
    DISMISSED = "Dismissed"


class Report(Base):
    """针对用户的安全举报"""

    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reported_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    reporter_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"))
    status: Mapped[ReportStatus] = mapped_column(
        str_enum(ReportStatus, length=20), default=ReportStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class MutualVerificationStatus(str, enum.Enum):
    """互相验证状态"""
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"


class MutualVerification(Base):
    """两个用户之间的互相验证（同行佐证）"""

    __tablename__ = "mutual_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_a_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    user_b_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    status: Mapped[MutualVerificationStatus] = mapped_column(
        str_enum(MutualVerificationStatus, length=20),
        default=MutualVerificationStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
