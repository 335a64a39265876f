"""Celery 定时任务"""

import asyncio
import logging

from trustcore.core.celery_app import celery_app
from trustcore.core.database import async_session_maker, close_db
from trustcore.services.otp_service import create_otp_service
from trustcore.services.trust_score import create_trust_score_calculator

logger = logging.getLogger(__name__)


async def _recalculate_trust_scores() -> int:
    try:
        async with async_session_maker() as db:
            calculator = create_trust_score_calculator(db)
            return await calculator.recalculate_all()
    finally:
        # 每次 asyncio.run 都是新的事件循环，连接池不能跨循环复用
        await close_db()


async def _prune_otp_rate_limits() -> int:
    try:
        async with async_session_maker() as db:
            service = create_otp_service(db)
            return await service.prune_rate_limit_windows()
    finally:
        await close_db()


@celery_app.task(name="trustcore.tasks.recalculate_trust_scores")
def recalculate_trust_scores() -> dict:
    """为所有用户追加新的 TrustScore 快照"""
    processed = asyncio.run(_recalculate_trust_scores())
    logger.info(f"Trust score recalculation finished: {processed} users")
    return {"processed": processed}


@celery_app.task(name="trustcore.tasks.prune_otp_rate_limits")
def prune_otp_rate_limits() -> dict:
    """清理已过期的 OTP 速率窗口"""
    deleted = asyncio.run(_prune_otp_rate_limits())
    logger.info(f"Pruned {deleted} expired OTP rate limit windows")
    return {"deleted": deleted}


__all__ = [
    "recalculate_trust_scores",
    "prune_otp_rate_limits",
]
