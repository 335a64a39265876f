"""OTP 验证码服务

状态机（每条 OTP）：
    Issued -> Consumed   正确验证且 attempts < max
    Issued -> LockedOut  第 max 次错误
    Issued -> Expired    超过 expires_at（验证时惰性判断）
三个终态都会让后续验证失败，即使提交的是正确的码。

所有状态都在数据库里，尝试次数、消费和速率窗口都用带条件的原子 UPDATE，
不依赖进程内锁，多实例部署下依然正确。
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustcore.core.config import get_settings
from trustcore.core.database import utc_now
from trustcore.core.exceptions import (
    RateLimitExceeded,
    ValidationError,
    translate_store_errors,
)
from trustcore.core.logging_config import mask_email
from trustcore.models.otp import OTPCode, OTPRateLimit
from trustcore.services.email_service import OtpEmailSender, email_service

logger = logging.getLogger(__name__)
settings = get_settings()


class OTPCheck(str, Enum):
    """验证结果（只用于日志，调用方只看到 True/False）"""
    OK = "ok"
    NO_ACTIVE_CODE = "no_active_code"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    LOCKED_OUT = "locked_out"
    MISMATCH = "mismatch"
    LOST_RACE = "lost_race"


def normalize_email(email: Optional[str]) -> str:
    """
    规范化邮箱（去空格、小写）并校验格式

    Raises:
        ValidationError: 邮箱格式无效
    """
    if not email or not email.strip():
        raise ValidationError("Email is required")

    normalized = email.strip().lower()
    try:
        validate_email(normalized, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}") from e
    return normalized


class OTPService:
    """OTP 验证码服务"""

    # 一次性写入竞争（唯一约束冲突）后的重试次数
    WINDOW_INSERT_RETRIES = 3

    def __init__(
        self,
        db: AsyncSession,
        email_sender: Optional[OtpEmailSender] = None,
        code_length: Optional[int] = None,
        expiry_minutes: Optional[int] = None,
        max_attempts: Optional[int] = None,
        rate_limit_max_requests: Optional[int] = None,
        rate_limit_window_minutes: Optional[int] = None,
    ):
        self.db = db
        self.email_sender = email_sender or email_service
        self.code_length = code_length or settings.otp_code_length
        self.expiry_minutes = expiry_minutes or settings.otp_expire_minutes
        self.max_attempts = max_attempts or settings.otp_max_attempts
        self.rate_limit_max_requests = rate_limit_max_requests or settings.otp_rate_limit_max_requests
        self.rate_limit_window_minutes = rate_limit_window_minutes or settings.otp_rate_limit_window_minutes
        self._pepper = settings.secret_key.encode("utf-8")

    # ------------------------------------------------------------------
    # 码生成与哈希
    # ------------------------------------------------------------------

    def _generate_code(self) -> str:
        """生成密码学安全的数字验证码（保留前导 0）"""
        return f"{secrets.randbelow(10 ** self.code_length):0{self.code_length}d}"

    def _digest(self, salt: str, code: str) -> str:
        return hmac.new(self._pepper, f"{salt}:{code}".encode("utf-8"), hashlib.sha256).hexdigest()

    def hash_code(self, code: str) -> str:
        """加盐哈希，格式 salt$hex"""
        salt = secrets.token_hex(16)
        return f"{salt}${self._digest(salt, code)}"

    def verify_code(self, code: str, stored_hash: str) -> bool:
        try:
            salt, expected = stored_hash.split("$", 1)
        except ValueError:
            return False
        return hmac.compare_digest(self._digest(salt, code), expected)

    # ------------------------------------------------------------------
    # 速率限制
    # ------------------------------------------------------------------

    async def _get_window(self, email: str) -> Optional[OTPRateLimit]:
        result = await self.db.execute(
            select(OTPRateLimit)
            .where(OTPRateLimit.email == email)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _reserve_request_slot(self, email: str, now: datetime) -> None:
        """
        占用速率窗口中的一个名额

        先检查后递增：窗口已满则不递增直接失败；窗口过期则重置为 1。

        Raises:
            RateLimitExceeded: 当前窗口已达到上限
        """
        window_expires_at = now + timedelta(minutes=self.rate_limit_window_minutes)

        for _ in range(self.WINDOW_INSERT_RETRIES):
            # 1. 当前窗口仍有名额：原子递增
            result = await self.db.execute(
                update(OTPRateLimit)
                .where(
                    OTPRateLimit.email == email,
                    OTPRateLimit.window_expires_at > now,
                    OTPRateLimit.request_count < self.rate_limit_max_requests,
                )
                .values(request_count=OTPRateLimit.request_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            # 2. 窗口已过期：原子重置
            result = await self.db.execute(
                update(OTPRateLimit)
                .where(
                    OTPRateLimit.email == email,
                    OTPRateLimit.window_expires_at <= now,
                )
                .values(request_count=1, window_expires_at=window_expires_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            # 3. 窗口存在且已满
            window = await self._get_window(email)
            if window is not None:
                retry_after = max(0, int((window.window_expires_at - now).total_seconds()))
                raise RateLimitExceeded(
                    max_requests=self.rate_limit_max_requests,
                    window_minutes=self.rate_limit_window_minutes,
                    retry_after_seconds=retry_after,
                )

            # 4. 第一次请求：新建窗口，并发插入时唯一约束冲突则重试
            # 此时事务里只有上面未命中的 UPDATE，回滚不会丢失任何写入
            self.db.add(
                OTPRateLimit(
                    email=email,
                    request_count=1,
                    window_expires_at=window_expires_at,
                )
            )
            try:
                await self.db.flush()
                return
            except IntegrityError:
                await self.db.rollback()
                logger.info(f"Concurrent rate limit window creation for {mask_email(email)}, retrying")

        raise RateLimitExceeded(
            max_requests=self.rate_limit_max_requests,
            window_minutes=self.rate_limit_window_minutes,
        )

    @translate_store_errors
    async def can_request_otp(self, email: str) -> bool:
        """只读检查：当前窗口是否还有名额"""
        email = normalize_email(email)
        window = await self._get_window(email)
        if window is None:
            return True
        if utc_now() >= window.window_expires_at:
            return True
        return window.request_count < self.rate_limit_max_requests

    # ------------------------------------------------------------------
    # 生成 / 验证 / 撤销
    # ------------------------------------------------------------------

    @translate_store_errors
    async def generate_otp(self, email: str) -> str:
        """
        创建 OTP 验证码并发送

        Returns:
            明文验证码（只交给邮件协作方，库中只存哈希）

        Raises:
            ValidationError: 邮箱格式无效
            RateLimitExceeded: 超过速率限制
        """
        email = normalize_email(email)
        now = utc_now()

        try:
            await self._reserve_request_slot(email, now)
        except RateLimitExceeded:
            await self.db.rollback()
            logger.warning(f"Rate limit exceeded for email {mask_email(email)}")
            raise

        code = self._generate_code()

        # 新码取代该邮箱所有仍有效的旧码
        await self.db.execute(
            update(OTPCode)
            .where(OTPCode.email == email, OTPCode.is_consumed.is_(False))
            .values(is_consumed=True)
            .execution_options(synchronize_session=False)
        )

        self.db.add(
            OTPCode(
                email=email,
                otp_hash=self.hash_code(code),
                created_at=now,
                expires_at=now + timedelta(minutes=self.expiry_minutes),
                attempts=0,
                is_consumed=False,
            )
        )
        await self.db.commit()

        # 邮件发送失败不影响 OTP 创建
        try:
            await self.email_sender.send_otp_email(email, code, self.expiry_minutes)
        except Exception as e:
            logger.error(f"Failed to send OTP email to {mask_email(email)}: {e}")

        logger.info(f"OTP generated for email {mask_email(email)}")
        return code

    async def _latest_otp(self, email: str) -> Optional[OTPCode]:
        result = await self.db.execute(
            select(OTPCode)
            .where(OTPCode.email == email)
            .order_by(OTPCode.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _check(self, email: str, code: str) -> OTPCheck:
        now = utc_now()
        otp = await self._latest_otp(email)

        if otp is None:
            return OTPCheck.NO_ACTIVE_CODE
        if otp.is_consumed:
            return OTPCheck.CONSUMED
        if otp.is_expired(now):
            return OTPCheck.EXPIRED
        if otp.is_locked_out(self.max_attempts):
            return OTPCheck.LOCKED_OUT

        if not self.verify_code(code, otp.otp_hash):
            # 错误：原子递增尝试次数，永远不会超过上限
            await self.db.execute(
                update(OTPCode)
                .where(
                    OTPCode.id == otp.id,
                    OTPCode.is_consumed.is_(False),
                    OTPCode.attempts < self.max_attempts,
                )
                .values(attempts=OTPCode.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            return OTPCheck.MISMATCH

        # 正确：条件消费，并发提交时只有一个请求能成功
        result = await self.db.execute(
            update(OTPCode)
            .where(
                OTPCode.id == otp.id,
                OTPCode.is_consumed.is_(False),
                OTPCode.attempts < self.max_attempts,
                OTPCode.expires_at > now,
            )
            .values(is_consumed=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return OTPCheck.LOST_RACE
        return OTPCheck.OK

    @translate_store_errors
    async def validate_otp(self, email: str, code: str) -> bool:
        """
        验证 OTP 验证码

        错码、过期、锁定、不存在都返回 False，不向调用方区分原因。

        Raises:
            ValidationError: 邮箱格式无效
        """
        email = normalize_email(email)
        code = (code or "").strip()

        outcome = await self._check(email, code)
        if outcome is OTPCheck.OK:
            logger.info(f"OTP validated successfully for email {mask_email(email)}")
            return True

        logger.warning(f"OTP validation failed for email {mask_email(email)}: {outcome.value}")
        return False

    @translate_store_errors
    async def revoke_otp(self, email: str) -> None:
        """立即使该邮箱的有效 OTP 失效"""
        email = normalize_email(email)
        await self.db.execute(
            update(OTPCode)
            .where(OTPCode.email == email, OTPCode.is_consumed.is_(False))
            .values(is_consumed=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"OTP revoked for email {mask_email(email)}")

    @translate_store_errors
    async def prune_rate_limit_windows(self) -> int:
        """
        清理已过期的速率窗口

        OTP 记录本身从不删除。

        Returns:
            删除的窗口数
        """
        result = await self.db.execute(
            delete(OTPRateLimit)
            .where(OTPRateLimit.window_expires_at <= utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0


def create_otp_service(db: AsyncSession, email_sender: Optional[OtpEmailSender] = None) -> OTPService:
    """创建 OTP 服务实例"""
    return OTPService(db=db, email_sender=email_sender)
