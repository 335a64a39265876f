"""风险信号账本

只追加的风险事件存储：
- raise_signal: 追加一条未解决的信号
- resolve: 标记为已解决（保留历史，退出实时聚合）
- aggregate_risk_score: 唯一的风险分公式，管理后台高风险列表与
  TrustScore 的 Behaviour 扣分都必须调用它

外部调用方（管理员处理、举报转化）只能通过这三个操作访问账本。
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustcore.core.config import get_settings
from trustcore.core.exceptions import (
    RiskSignalNotFoundError,
    ValidationError,
    translate_store_errors,
)
from trustcore.models.risk import RiskSignal, RiskType

logger = logging.getLogger(__name__)
settings = get_settings()

MIN_SEVERITY = 1
MAX_SEVERITY = 10

# 公式各部分上限
COUNT_POINTS_PER_SIGNAL = 10
COUNT_POINTS_CAP = 50
SEVERITY_POINTS_PER_LEVEL = 5
SEVERITY_POINTS_CAP = 50
MAX_RISK_SCORE = 100


class RiskLevel(str, Enum):
    """风险等级"""
    LOW = "LOW"           # < 20
    MILD = "MILD"         # 20-39
    ELEVATED = "ELEVATED"  # 40-59
    HIGH = "HIGH"         # 60-79
    CRITICAL = "CRITICAL"  # >= 80


def risk_score_formula(unresolved_count: int, severity_sum: int) -> int:
    """
    风险分公式

    clamp(min(count * 10, 50) + min(sum(severity) * 5, 50), 0, 100)
    """
    count_points = min(unresolved_count * COUNT_POINTS_PER_SIGNAL, COUNT_POINTS_CAP)
    severity_points = min(severity_sum * SEVERITY_POINTS_PER_LEVEL, SEVERITY_POINTS_CAP)
    return max(0, min(count_points + severity_points, MAX_RISK_SCORE))


def risk_level_for(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.ELEVATED
    if score >= 20:
        return RiskLevel.MILD
    return RiskLevel.LOW


class RiskSignalSchema(BaseModel):
    """风险信号 Schema"""
    id: str
    user_id: str
    type: RiskType
    severity: int
    message: str
    metadata: Optional[Dict[str, Any]] = None
    is_resolved: bool
    created_at: datetime

    @classmethod
    def from_model(cls, signal: RiskSignal) -> "RiskSignalSchema":
        return cls(
            id=str(signal.id),
            user_id=str(signal.user_id),
            type=signal.type,
            severity=signal.severity,
            message=signal.message,
            metadata=signal.metadata_json,
            is_resolved=signal.is_resolved,
            created_at=signal.created_at,
        )


class HighRiskUser(BaseModel):
    """高风险用户列表项"""
    user_id: str
    risk_score: int
    risk_level: RiskLevel
    active_signal_count: int
    severity_sum: int


class HighRiskUserListResponse(BaseModel):
    """高风险用户分页结果"""
    items: List[HighRiskUser]
    total: int
    page: int
    page_size: int
    min_risk_score: int


class RiskSignalLedger:
    """风险信号账本服务"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.high_risk_threshold = settings.risk_high_threshold

    async def _unresolved_totals(self, user_id: uuid.UUID) -> Tuple[int, int]:
        result = await self.db.execute(
            select(
                func.count(RiskSignal.id),
                func.coalesce(func.sum(RiskSignal.severity), 0),
            ).where(
                RiskSignal.user_id == user_id,
                RiskSignal.is_resolved.is_(False),
            )
        )
        count, severity_sum = result.one()
        return int(count), int(severity_sum)

    @translate_store_errors
    async def raise_signal(
        self,
        user_id: uuid.UUID,
        type: RiskType,
        severity: int,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RiskSignal:
        """
        追加一条未解决的风险信号

        Args:
            user_id: 用户 ID
            type: 风险类型
            severity: 严重程度（1-10）
            message: 说明
            metadata: 附加数据（IP、设备 ID 等）

        Raises:
            ValidationError: 未知的风险类型、severity 越界或 message 为空
        """
        try:
            risk_type = RiskType(type)
        except ValueError as e:
            raise ValidationError(f"Unknown risk type: {type}") from e
        if isinstance(severity, bool) or not isinstance(severity, int):
            raise ValidationError("Severity must be an integer")
        if severity < MIN_SEVERITY or severity > MAX_SEVERITY:
            raise ValidationError(f"Severity must be between {MIN_SEVERITY} and {MAX_SEVERITY}")
        if not message or not message.strip():
            raise ValidationError("Risk signal message is required")

        signal = RiskSignal(
            id=uuid.uuid4(),
            user_id=user_id,
            type=risk_type,
            severity=severity,
            message=message.strip()[:1000],
            metadata_json=metadata,
            is_resolved=False,
        )
        self.db.add(signal)
        await self.db.commit()

        new_score = await self.aggregate_risk_score(user_id)
        if new_score >= self.high_risk_threshold:
            logger.critical(f"CRITICAL RISK: user {user_id} risk score = {new_score}")
        else:
            logger.info(
                f"Risk signal {signal.type.value} (severity {severity}) raised for user {user_id}, "
                f"risk score now {new_score}"
            )
        return signal

    @translate_store_errors
    async def resolve(self, signal_id: uuid.UUID) -> RiskSignal:
        """
        标记信号为已解决

        已解决的信号仍保留在历史里，只是不再计入聚合分数。重复解决是幂等的。

        Raises:
            RiskSignalNotFoundError: 信号不存在
        """
        await self.db.execute(
            update(RiskSignal)
            .where(RiskSignal.id == signal_id, RiskSignal.is_resolved.is_(False))
            .values(is_resolved=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        result = await self.db.execute(
            select(RiskSignal)
            .where(RiskSignal.id == signal_id)
            .execution_options(populate_existing=True)
        )
        signal = result.scalar_one_or_none()
        if signal is None:
            raise RiskSignalNotFoundError(signal_id)

        logger.info(f"Risk signal {signal_id} resolved for user {signal.user_id}")
        return signal

    @translate_store_errors
    async def aggregate_risk_score(self, user_id: uuid.UUID) -> int:
        """用户当前的风险分（0-100），只统计未解决的信号"""
        count, severity_sum = await self._unresolved_totals(user_id)
        return risk_score_formula(count, severity_sum)

    @translate_store_errors
    async def get_active_signals(self, user_id: uuid.UUID) -> List[RiskSignal]:
        """未解决的信号，最新的在前"""
        result = await self.db.execute(
            select(RiskSignal)
            .where(RiskSignal.user_id == user_id, RiskSignal.is_resolved.is_(False))
            .order_by(RiskSignal.created_at.desc())
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def list_high_risk_users(
        self,
        min_risk_score: int = 70,
        page: int = 1,
        page_size: int = 20,
    ) -> HighRiskUserListResponse:
        """
        高风险用户列表（管理后台）

        分数由 risk_score_formula 计算，与 aggregate_risk_score 同源。

        Raises:
            ValidationError: 参数越界
        """
        if min_risk_score < 0 or min_risk_score > MAX_RISK_SCORE:
            raise ValidationError(f"min_risk_score must be between 0 and {MAX_RISK_SCORE}")
        if page < 1 or page_size < 1 or page_size > 100:
            raise ValidationError("Invalid pagination parameters")

        result = await self.db.execute(
            select(
                RiskSignal.user_id,
                func.count(RiskSignal.id),
                func.sum(RiskSignal.severity),
            )
            .where(RiskSignal.is_resolved.is_(False))
            .group_by(RiskSignal.user_id)
        )

        scored: List[HighRiskUser] = []
        for user_id, count, severity_sum in result.all():
            score = risk_score_formula(int(count), int(severity_sum or 0))
            if score < min_risk_score:
                continue
            scored.append(
                HighRiskUser(
                    user_id=str(user_id),
                    risk_score=score,
                    risk_level=risk_level_for(score),
                    active_signal_count=int(count),
                    severity_sum=int(severity_sum or 0),
                )
            )

        scored.sort(key=lambda u: (-u.risk_score, u.user_id))
        start = (page - 1) * page_size

        return HighRiskUserListResponse(
            items=scored[start:start + page_size],
            total=len(scored),
            page=page,
            page_size=page_size,
            min_risk_score=min_risk_score,
        )


def create_risk_ledger(db: AsyncSession) -> RiskSignalLedger:
    """创建风险账本实例"""
    return RiskSignalLedger(db=db)
