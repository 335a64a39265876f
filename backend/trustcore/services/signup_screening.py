"""注册筛查流程

注册路径上把重复检测和风险账本串起来：
- screen_signup: 在创建账号之前运行，只有邮箱完全一致才阻止
- record_findings: 账号创建之后，把提示性的命中写入风险账本
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trustcore.core.logging_config import mask_email
from trustcore.models.risk import RiskSignal, RiskType
from trustcore.services.duplicate_detection import (
    DeviceMatch,
    DuplicateCheckResult,
    DuplicateSignalDetector,
    EmailAlias,
    IPCluster,
    create_duplicate_detector,
)
from trustcore.services.risk_ledger import RiskSignalLedger, create_risk_ledger

logger = logging.getLogger(__name__)

# 各类命中写入账本时的严重程度
ALIAS_SEVERITY = 3
DEVICE_SEVERITY = 5
IP_CLUSTER_SEVERITY = 4


@dataclass
class ScreeningDecision:
    """注册筛查结果"""
    allowed: bool
    existing_user_id: Optional[uuid.UUID]
    result: DuplicateCheckResult


class SignupScreening:
    """注册筛查服务"""

    def __init__(
        self,
        db: AsyncSession,
        detector: Optional[DuplicateSignalDetector] = None,
        ledger: Optional[RiskSignalLedger] = None,
    ):
        self.db = db
        self.detector = detector or create_duplicate_detector(db)
        self.ledger = ledger or create_risk_ledger(db)

    async def screen_signup(
        self,
        email: str,
        device_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ScreeningDecision:
        """注册前检查：可疑不阻止，只有已存在的身份会阻止"""
        result = await self.detector.check_for_duplicates(email, device_id=device_id, ip_address=ip_address)

        if result.has_existing_user:
            logger.info(f"Signup blocked for {mask_email(email)}: existing account")
        elif result.is_suspicious:
            logger.warning(
                f"Suspicious signup for {mask_email(email)}: {'; '.join(result.reasons)}"
            )

        return ScreeningDecision(
            allowed=not result.has_existing_user,
            existing_user_id=result.existing_user_id,
            result=result,
        )

    async def record_findings(self, user_id: uuid.UUID, result: DuplicateCheckResult) -> List[RiskSignal]:
        """
        把提示性命中写入风险账本

        邮箱别名和设备命中记为 DuplicateAccount，IP 聚集记为 IPRisk。
        """
        similar = [str(u) for u in result.similar_users if u != user_id]
        raised: List[RiskSignal] = []

        for reason in result.signals:
            if isinstance(reason, EmailAlias):
                signal = await self.ledger.raise_signal(
                    user_id,
                    RiskType.DUPLICATE_ACCOUNT,
                    ALIAS_SEVERITY,
                    reason.render(),
                    {"base_email": reason.base_email, "similar_users": similar},
                )
            elif isinstance(reason, DeviceMatch):
                signal = await self.ledger.raise_signal(
                    user_id,
                    RiskType.DUPLICATE_ACCOUNT,
                    DEVICE_SEVERITY,
                    reason.render(),
                    {"account_count": reason.count, "similar_users": similar},
                )
            elif isinstance(reason, IPCluster):
                signal = await self.ledger.raise_signal(
                    user_id,
                    RiskType.IP_RISK,
                    IP_CLUSTER_SEVERITY,
                    reason.render(),
                    {"account_count": reason.count},
                )
            else:
                continue
            raised.append(signal)

        return raised


def create_signup_screening(db: AsyncSession) -> SignupScreening:
    """创建注册筛查服务实例"""
    return SignupScreening(db=db)
