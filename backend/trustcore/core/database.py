"""数据库连接配置"""

from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy import Enum
from sqlalchemy.orm import DeclarativeBase

from trustcore.core.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    """ORM 模型基类"""
    pass


def str_enum(enum_cls, length: int = 20) -> Enum:
    """枚举列按值（而不是成员名）存为字符串"""
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


def utc_now() -> datetime:
    """当前 UTC 时间（不带时区，与 DateTime 列一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# 引擎与会话工厂（首次使用时创建）
_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """获取数据库引擎"""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_pre_ping=True,
        )
    return _engine


def async_session_maker() -> AsyncSession:
    """创建新的数据库会话"""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（请求作用域）"""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """创建所有表"""
    # 导入模型以注册 metadata
    import trustcore.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """关闭数据库连接"""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
