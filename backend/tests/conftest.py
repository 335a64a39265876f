"""测试夹具：内存 SQLite + 记录型邮件发送器"""

import uuid
from datetime import timedelta
from typing import List, Optional, Tuple

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import trustcore.models  # noqa: F401
from trustcore.core.database import Base, utc_now
from trustcore.models.user import AuthDevice, User


class RecordingEmailSender:
    """记录所有 OTP 邮件，fail=True 时模拟 SMTP 故障"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, str, int]] = []

    async def send_otp_email(self, email: str, code: str, expiry_minutes: int) -> bool:
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append((email, code, expiry_minutes))
        return True


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def make_user(db):
    """创建用户的工厂函数"""

    async def _make_user(
        email: Optional[str] = None,
        signup_ip: Optional[str] = None,
        signup_device_id: Optional[str] = None,
        created_days_ago: int = 0,
        **fields,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            signup_ip=signup_ip,
            signup_device_id=signup_device_id,
            created_at=utc_now() - timedelta(days=created_days_ago),
            **fields,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
def add_device(db):
    """登记登录设备"""

    async def _add_device(user: User, device_id: str, last_ip: Optional[str] = None) -> AuthDevice:
        device = AuthDevice(id=uuid.uuid4(), user_id=user.id, device_id=device_id, last_ip=last_ip)
        db.add(device)
        await db.commit()
        return device

    return _add_device


@pytest.fixture
def failing_email_sender():
    return RecordingEmailSender(fail=True)
