"""TrustScore 计算引擎

总分 0-1000，由四个子分数相加：
1. Identity（最高 300）：邮箱、手机、Passkey、第三方身份验证等级
2. Evidence（最高 400）：有效且未被标记欺诈的证据的完整度分数之和
3. Behaviour（最高 300）：300 - 风险分 * 3，最低 0
4. Peer（剩余预算）：被核实的举报扣分，互相验证和长期无举报加分

快照和明细都来自同一个纯函数 build_breakdown，两者永远一致。
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustcore.core.config import get_settings
from trustcore.core.database import utc_now
from trustcore.core.exceptions import UserNotFoundError, translate_store_errors
from trustcore.models.evidence import (
    Evidence,
    MutualVerification,
    MutualVerificationStatus,
    Report,
    ReportStatus,
)
from trustcore.models.risk import TrustScoreSnapshot
from trustcore.models.user import (
    IdentityVerification,
    User,
    VerificationLevel,
    VerificationStatus,
)
from trustcore.services.risk_ledger import RiskSignalLedger

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_TOTAL_SCORE = 1000

# Identity
IDENTITY_MAX = 300
EMAIL_VERIFIED_POINTS = 50
PHONE_VERIFIED_POINTS = 30
PASSKEY_POINTS = 40
IDENTITY_LEVEL_POINTS = {
    VerificationLevel.BASIC: 150,
    VerificationLevel.ENHANCED: 180,
}

# Evidence
EVIDENCE_MAX = 400

# Behaviour
BEHAVIOUR_MAX = 300
BEHAVIOUR_POINTS_PER_RISK = 3

# Peer
REPORT_PENALTY = 75
REPORT_PENALTY_CAP = 300
MUTUAL_VERIFICATION_POINTS = 10
MUTUAL_VERIFICATION_CAP = 100
CLEAN_HISTORY_BONUSES = ((365, 50, "No verified reports for 1+ year"), (180, 25, "No verified reports for 6+ months"))


# 明细项状态
STATUS_COMPLETED = "completed"
STATUS_PARTIAL = "partial"
STATUS_MISSING = "missing"
STATUS_WARNING = "warning"


@dataclass
class ScoreItem:
    """明细项"""
    description: str
    points: int
    status: str


@dataclass
class ComponentBreakdown:
    """子分数明细"""
    score: int = 0
    max_score: Optional[int] = None
    items: List[ScoreItem] = field(default_factory=list)

    def add(self, description: str, points: int, status: str) -> None:
        self.items.append(ScoreItem(description=description, points=points, status=status))
        self.score += points


@dataclass
class TrustScoreBreakdown:
    """完整明细（与快照一一对应）"""
    identity: ComponentBreakdown
    evidence: ComponentBreakdown
    behaviour: ComponentBreakdown
    peer: ComponentBreakdown
    total_score: int
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrustScoreInputs:
    """评分输入（纯数据，方便单独测试规则）"""
    email_verified: bool = False
    phone_verified: bool = False
    has_passkey: bool = False
    identity_status: Optional[VerificationStatus] = None
    identity_level: Optional[VerificationLevel] = None
    evidence_integrity_scores: List[int] = field(default_factory=list)  # 只包含有效证据
    excluded_evidence_count: int = 0  # 可疑、无效或被标记欺诈
    aggregate_risk_score: int = 0
    verified_reports: int = 0
    confirmed_mutual_verifications: int = 0
    account_age_days: int = 0


def trust_label(score: int) -> str:
    """分数段标签，覆盖 [0, 1000] 无空隙无重叠"""
    if score >= 801:
        return "Very High Trust"
    if score >= 601:
        return "High Trust"
    if score >= 401:
        return "Moderate Trust"
    if score >= 201:
        return "Low Trust"
    return "High Risk"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def build_identity_breakdown(inputs: TrustScoreInputs) -> ComponentBreakdown:
    breakdown = ComponentBreakdown(max_score=IDENTITY_MAX)

    if inputs.identity_status == VerificationStatus.VERIFIED:
        level = inputs.identity_level or VerificationLevel.BASIC
        breakdown.add(f"Identity verified ({level.value})", IDENTITY_LEVEL_POINTS[level], STATUS_COMPLETED)
    elif inputs.identity_status in (VerificationStatus.PENDING, VerificationStatus.NEEDS_RETRY):
        breakdown.add("Identity verification in progress", 0, STATUS_PARTIAL)
    else:
        breakdown.add("Identity not verified", 0, STATUS_MISSING)

    if inputs.email_verified:
        breakdown.add("Email verified", EMAIL_VERIFIED_POINTS, STATUS_COMPLETED)
    else:
        breakdown.add("Email not verified", 0, STATUS_WARNING)

    if inputs.phone_verified:
        breakdown.add("Phone verified", PHONE_VERIFIED_POINTS, STATUS_COMPLETED)

    if inputs.has_passkey:
        breakdown.add("Passkey enabled", PASSKEY_POINTS, STATUS_COMPLETED)

    if breakdown.score > IDENTITY_MAX:
        breakdown.add("Identity cap reached", IDENTITY_MAX - breakdown.score, STATUS_PARTIAL)
    return breakdown


def build_evidence_breakdown(inputs: TrustScoreInputs) -> ComponentBreakdown:
    breakdown = ComponentBreakdown(max_score=EVIDENCE_MAX)

    scores = [max(0, min(s, 100)) for s in inputs.evidence_integrity_scores]
    if scores:
        breakdown.add(f"{_plural(len(scores), 'valid evidence item')}", sum(scores), STATUS_COMPLETED)
    if inputs.excluded_evidence_count:
        breakdown.add(
            f"{_plural(inputs.excluded_evidence_count, 'evidence item')} excluded (invalid or flagged)",
            0,
            STATUS_WARNING,
        )
    if not breakdown.items:
        breakdown.add("No evidence uploaded yet", 0, STATUS_MISSING)

    if breakdown.score > EVIDENCE_MAX:
        breakdown.add("Evidence cap reached", EVIDENCE_MAX - breakdown.score, STATUS_PARTIAL)
    return breakdown


def build_behaviour_breakdown(inputs: TrustScoreInputs) -> ComponentBreakdown:
    breakdown = ComponentBreakdown(max_score=BEHAVIOUR_MAX)
    breakdown.add("Behaviour baseline", BEHAVIOUR_MAX, STATUS_COMPLETED)

    risk = max(0, inputs.aggregate_risk_score)
    if risk > 0:
        deduction = min(risk * BEHAVIOUR_POINTS_PER_RISK, BEHAVIOUR_MAX)
        breakdown.add(f"Active risk signals (risk score {risk})", -deduction, STATUS_WARNING)
    return breakdown


def build_peer_breakdown(inputs: TrustScoreInputs, base_total: int) -> ComponentBreakdown:
    """
    Peer 子分数（有符号）

    最后按剩余预算截断到 [-base_total, 1000 - base_total]，
    保证总分就是四项之和且落在 [0, 1000]。
    """
    breakdown = ComponentBreakdown()

    if inputs.verified_reports > 0:
        penalty = min(inputs.verified_reports * REPORT_PENALTY, REPORT_PENALTY_CAP)
        breakdown.add(_plural(inputs.verified_reports, "verified safety report"), -penalty, STATUS_WARNING)
    else:
        breakdown.add("No verified safety reports", 0, STATUS_COMPLETED)
        for min_days, bonus, description in CLEAN_HISTORY_BONUSES:
            if inputs.account_age_days >= min_days:
                breakdown.add(description, bonus, STATUS_COMPLETED)
                break

    if inputs.confirmed_mutual_verifications > 0:
        points = min(inputs.confirmed_mutual_verifications * MUTUAL_VERIFICATION_POINTS, MUTUAL_VERIFICATION_CAP)
        breakdown.add(
            _plural(inputs.confirmed_mutual_verifications, "confirmed mutual verification"),
            points,
            STATUS_COMPLETED,
        )

    lower, upper = -base_total, MAX_TOTAL_SCORE - base_total
    bounded = max(lower, min(breakdown.score, upper))
    if bounded != breakdown.score:
        breakdown.add("Adjusted to the score budget", bounded - breakdown.score, STATUS_PARTIAL)
    return breakdown


def build_breakdown(inputs: TrustScoreInputs) -> TrustScoreBreakdown:
    """唯一的评分规则函数（纯函数）"""
    identity = build_identity_breakdown(inputs)
    evidence = build_evidence_breakdown(inputs)
    behaviour = build_behaviour_breakdown(inputs)
    peer = build_peer_breakdown(inputs, identity.score + evidence.score + behaviour.score)

    total = identity.score + evidence.score + behaviour.score + peer.score
    return TrustScoreBreakdown(
        identity=identity,
        evidence=evidence,
        behaviour=behaviour,
        peer=peer,
        total_score=total,
        label=trust_label(total),
    )


class IdentityStatusProvider:
    """第三方身份验证状态（只读取已同步到本地表的结果）"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_status(self, user_id: uuid.UUID) -> Optional[IdentityVerification]:
        result = await self.db.execute(
            select(IdentityVerification).where(IdentityVerification.user_id == user_id)
        )
        return result.scalar_one_or_none()


class TrustScoreCalculator:
    """TrustScore 计算服务"""

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[RiskSignalLedger] = None,
        identity_provider: Optional[IdentityStatusProvider] = None,
    ):
        self.db = db
        self.ledger = ledger or RiskSignalLedger(db)
        self.identity_provider = identity_provider or IdentityStatusProvider(db)

    async def _get_user(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def _gather_inputs(self, user: User) -> TrustScoreInputs:
        verification = await self.identity_provider.get_status(user.id)

        evidence_rows = await self.db.execute(select(Evidence).where(Evidence.user_id == user.id))
        evidence = list(evidence_rows.scalars().all())
        valid_scores = [e.integrity_score for e in evidence if e.counts_toward_score]

        reports_result = await self.db.execute(
            select(func.count(Report.id)).where(
                Report.reported_user_id == user.id,
                Report.status == ReportStatus.VERIFIED,
            )
        )
        mutual_result = await self.db.execute(
            select(func.count(MutualVerification.id)).where(
                or_(MutualVerification.user_a_id == user.id, MutualVerification.user_b_id == user.id),
                MutualVerification.status == MutualVerificationStatus.CONFIRMED,
            )
        )

        return TrustScoreInputs(
            email_verified=bool(user.is_email_verified),
            phone_verified=bool(user.is_phone_verified),
            has_passkey=bool(user.has_passkey),
            identity_status=verification.status if verification else None,
            identity_level=verification.level if verification else None,
            evidence_integrity_scores=valid_scores,
            excluded_evidence_count=len(evidence) - len(valid_scores),
            aggregate_risk_score=await self.ledger.aggregate_risk_score(user.id),
            verified_reports=int(reports_result.scalar_one()),
            confirmed_mutual_verifications=int(mutual_result.scalar_one()),
            account_age_days=max(0, (utc_now() - user.created_at).days),
        )

    @translate_store_errors
    async def get_breakdown(self, user_id: uuid.UUID) -> TrustScoreBreakdown:
        """
        获取分数明细（不保存）

        Raises:
            UserNotFoundError: 用户不存在
        """
        user = await self._get_user(user_id)
        return build_breakdown(await self._gather_inputs(user))

    @translate_store_errors
    async def calculate_and_save(self, user_id: uuid.UUID) -> TrustScoreSnapshot:
        """
        计算并追加一条新的快照（从不修改旧快照）

        Raises:
            UserNotFoundError: 用户不存在
        """
        breakdown = await self.get_breakdown(user_id)

        snapshot = TrustScoreSnapshot(
            id=uuid.uuid4(),
            user_id=user_id,
            score=breakdown.total_score,
            identity_score=breakdown.identity.score,
            evidence_score=breakdown.evidence.score,
            behaviour_score=breakdown.behaviour.score,
            peer_score=breakdown.peer.score,
            breakdown_json=breakdown.to_dict(),
            created_at=utc_now(),
        )
        self.db.add(snapshot)
        await self.db.commit()

        logger.info(
            f"TrustScore calculated for user {user_id}: {snapshot.score} "
            f"(Identity:{snapshot.identity_score} Evidence:{snapshot.evidence_score} "
            f"Behaviour:{snapshot.behaviour_score} Peer:{snapshot.peer_score})"
        )
        return snapshot

    @translate_store_errors
    async def get_current(self, user_id: uuid.UUID) -> TrustScoreSnapshot:
        """最新快照；还没有快照时先计算一次"""
        result = await self.db.execute(
            select(TrustScoreSnapshot)
            .where(TrustScoreSnapshot.user_id == user_id)
            .order_by(TrustScoreSnapshot.created_at.desc())
            .limit(1)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot is None:
            snapshot = await self.calculate_and_save(user_id)
        return snapshot

    @translate_store_errors
    async def get_history(self, user_id: uuid.UUID, months: Optional[int] = None) -> List[TrustScoreSnapshot]:
        """最近 months 个月（按 30 天计）的快照，从旧到新"""
        months = months if months is not None else settings.trust_score_history_months
        cutoff = utc_now() - timedelta(days=30 * months)

        result = await self.db.execute(
            select(TrustScoreSnapshot)
            .where(
                TrustScoreSnapshot.user_id == user_id,
                TrustScoreSnapshot.created_at >= cutoff,
            )
            .order_by(TrustScoreSnapshot.created_at.asc())
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def recalculate_all(self, batch_size: int = 200) -> int:
        """
        为所有用户追加新快照（定时任务）

        Returns:
            计算的用户数
        """
        processed = 0
        last_id: Optional[uuid.UUID] = None

        while True:
            query = select(User.id).order_by(User.id).limit(batch_size)
            if last_id is not None:
                query = query.where(User.id > last_id)
            user_ids = list((await self.db.execute(query)).scalars().all())
            if not user_ids:
                break

            for user_id in user_ids:
                await self.calculate_and_save(user_id)
                processed += 1
            last_id = user_ids[-1]

        logger.info(f"Recalculated TrustScore for {processed} users")
        return processed


def create_trust_score_calculator(db: AsyncSession) -> TrustScoreCalculator:
    """创建 TrustScore 计算服务实例"""
    return TrustScoreCalculator(db=db)
