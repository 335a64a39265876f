"""风险信号与 TrustScore 快照模型"""

import enum
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from trustcore.core.database import Base, str_enum, utc_now

# PostgreSQL 上使用 JSONB，其它数据库退回 JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")


class RiskType(str, enum.Enum):
    """风险类型"""
    FAKE_RECEIPT = "FakeReceipt"
    FAKE_SCREENSHOT = "FakeScreenshot"
    COLLUSION = "Collusion"
    DEVICE_MISMATCH = "DeviceMismatch"
    IP_RISK = "IPRisk"
    REPORTED = "Reported"
    DUPLICATE_ACCOUNT = "DuplicateAccount"
    PROFILE_MISMATCH = "ProfileMismatch"
    SUSPICIOUS_LOGIN = "SuspiciousLogin"
    RAPID_ACCOUNT_CREATION = "RapidAccountCreation"
    ABNORMAL_ACTIVITY = "AbnormalActivity"
    PROFILE_CONCERN_FLAG = "ProfileConcernFlag"  # 内部软信号


class RiskSignal(Base):
    """风险信号（只追加；解决后仅 is_resolved 会变化）"""

    __tablename__ = "risk_signals"
    __table_args__ = (
        Index("ix_risk_signals_user_id_is_resolved", "user_id", "is_resolved"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    type: Mapped[RiskType] = mapped_column(str_enum(RiskType, length=40))
    severity: Mapped[int] = mapped_column(Integer)  # 1-10
    message: Mapped[str] = mapped_column(String(1000))
    metadata_json: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)


class TrustScoreSnapshot(Base):
    """TrustScore 历史快照（只追加，最新一条即当前分数）"""

    __tablename__ = "trust_score_snapshots"
    __table_args__ = (
        Index("ix_trust_score_snapshots_user_id_created_at", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"))
    score: Mapped[int] = mapped_column(Integer)  # 0-1000
    identity_score: Mapped[int] = mapped_column(Integer)
    evidence_score: Mapped[int] = mapped_column(Integer)
    behaviour_score: Mapped[int] = mapped_column(Integer)
    peer_score: Mapped[int] = mapped_column(Integer)  # 可为负，见 trust_score 服务
    breakdown_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
