"""用户模型"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustcore.core.database import Base, str_enum, utc_now


class User(Base):
    """用户表（只包含风控与信任评分需要的字段）"""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    # 注册指纹
    signup_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True, index=True)
    signup_device_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)

    # OAuth 身份
    apple_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    google_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    # 验证状态
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    has_passkey: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class AuthDevice(Base):
    """登录设备（一个设备可能被多个用户使用，只作为信号）"""

    __tablename__ = "auth_devices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True)
    device_id: Mapped[str] = mapped_column(String(200), index=True)
    last_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class VerificationStatus(str, enum.Enum):
    """身份验证状态"""
    PENDING = "Pending"
    VERIFIED = "Verified"
    FAILED = "Failed"
    NEEDS_RETRY = "NeedsRetry"


class VerificationLevel(str, enum.Enum):
    """身份验证等级"""
    BASIC = "Basic"
    ENHANCED = "Enhanced"


class IdentityVerification(Base):
    """第三方身份验证结果（只保存状态与引用 ID，不保存证件）"""

    __tablename__ = "identity_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), unique=True, index=True)
    provider_reference: Mapped[str] = mapped_column(String(255))
    status: Mapped[VerificationStatus] = mapped_column(
        str_enum(VerificationStatus, length=20), default=VerificationStatus.PENDING
    )
    level: Mapped[VerificationLevel] = mapped_column(
        str_enum(VerificationLevel, length=20), default=VerificationLevel.BASIC
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)
