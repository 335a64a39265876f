"""OTP (One-Time Password) 相关模型"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trustcore.core.database import Base, utc_now


class OTPCode(Base):
    """OTP 验证码模型

    只保存加盐哈希；记录从不删除，新码自然取代旧码（验证时只看最新一条）。
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        Index("ix_otp_codes_email_created_at", "email", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), index=True)  # 已规范化（小写）
    otp_hash: Mapped[str] = mapped_column(String(128))  # salt$hex
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    attempts: Mapped[int] = mapped_column(Integer, default=0)  # 0..max_attempts
    is_consumed: Mapped[bool] = mapped_column(Boolean, default=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_locked_out(self, max_attempts: int) -> bool:
        return self.attempts >= max_attempts


class OTPRateLimit(Base):
    """OTP 请求速率窗口（每个邮箱一行）"""

    __tablename__ = "otp_rate_limits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0)
    window_expires_at: Mapped[datetime] = mapped_column(DateTime)
