"""重复账号 / 欺诈信号检测

注册与登录时运行的启发式规则，四条规则独立评估，命中的全部收集：
1. 邮箱完全一致       -> has_existing_user（唯一会阻止注册的规则）
2. 邮箱别名归一化一致  -> 仅提示
3. 设备指纹           -> 仅提示
4. IP 聚集            -> 仅提示

检测结果永远是成功值，是否阻止由调用方决定。
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustcore.core.config import Settings, get_settings
from trustcore.core.exceptions import translate_store_errors
from trustcore.core.logging_config import mask_email
from trustcore.models.user import AuthDevice, User
from trustcore.services.otp_service import normalize_email

logger = logging.getLogger(__name__)
settings = get_settings()


# ============================================================================
# 重复原因（带标签的变体，边界处再渲染成文本）
# ============================================================================

@dataclass(frozen=True)
class ExistingEmail:
    """邮箱已注册"""

    def render(self) -> str:
        return "Email already registered"


@dataclass(frozen=True)
class EmailAlias:
    """邮箱别名，base_email 为归一化后的地址"""
    base_email: str

    def render(self) -> str:
        return f"Email alias detected (base: {self.base_email})"


@dataclass(frozen=True)
class DeviceMatch:
    """设备指纹命中，count 为涉及的已有账号数"""
    count: int

    def render(self) -> str:
        if self.count == 1:
            return "Device fingerprint matches existing account"
        return f"Device used by {self.count} accounts"


@dataclass(frozen=True)
class IPCluster:
    """同一注册 IP 下的账号数"""
    count: int

    def render(self) -> str:
        return f"IP address used by {self.count} accounts"


@dataclass(frozen=True)
class ExistingOAuth:
    """OAuth 身份已注册（provider: Apple / Google）"""
    provider: str

    def render(self) -> str:
        return f"{self.provider} User ID already registered"


DuplicateReason = Union[ExistingEmail, EmailAlias, DeviceMatch, IPCluster, ExistingOAuth]

# 只有这些原因让结果变为可疑
ADVISORY_REASONS = (EmailAlias, DeviceMatch, IPCluster)


@dataclass
class DuplicateCheckResult:
    """重复检测结果"""
    existing_user_id: Optional[uuid.UUID] = None
    signals: List[DuplicateReason] = field(default_factory=list)
    similar_users: List[uuid.UUID] = field(default_factory=list)

    @property
    def has_existing_user(self) -> bool:
        return self.existing_user_id is not None

    @property
    def is_suspicious(self) -> bool:
        return any(isinstance(s, ADVISORY_REASONS) for s in self.signals)

    @property
    def reasons(self) -> List[str]:
        return [s.render() for s in self.signals]

    def add_similar(self, user_ids) -> None:
        for user_id in user_ids:
            if user_id not in self.similar_users:
                self.similar_users.append(user_id)

    def to_dict(self) -> dict:
        return {
            "is_suspicious": self.is_suspicious,
            "has_existing_user": self.has_existing_user,
            "existing_user_id": str(self.existing_user_id) if self.existing_user_id else None,
            "reasons": self.reasons,
            "similar_users": [str(u) for u in self.similar_users],
        }


# ============================================================================
# 邮箱别名规则（由配置驱动）
# ============================================================================

@dataclass(frozen=True)
class AliasRules:
    """
    邮箱本地部分归一化规则

    - tag_separator: 本地部分中 tag 的分隔符，例如 user+tag@
    - tag_domains: 支持 tag 的域名；为空集合表示所有域名
    - dot_insensitive_domains: 忽略本地部分 "." 的域名（如 gmail.com）
    - domain_map: 域名别名（如 googlemail.com -> gmail.com）
    """
    tag_separator: str = "+"
    tag_domains: FrozenSet[str] = frozenset({"gmail.com", "googlemail.com", "outlook.com", "hotmail.com"})
    dot_insensitive_domains: FrozenSet[str] = frozenset({"gmail.com"})
    domain_map: Dict[str, str] = field(default_factory=lambda: {"googlemail.com": "gmail.com"})

    @classmethod
    def from_settings(cls, config: Settings) -> "AliasRules":
        return cls(
            tag_separator=config.email_alias_tag_separator,
            tag_domains=frozenset(d.lower() for d in config.email_alias_tag_domains),
            dot_insensitive_domains=frozenset(d.lower() for d in config.email_alias_dot_insensitive_domains),
            domain_map={k.lower(): v.lower() for k, v in config.email_alias_domain_map.items()},
        )

    def canonical_domain(self, domain: str) -> str:
        return self.domain_map.get(domain, domain)

    def domain_group(self, domain: str) -> List[str]:
        """与 domain 归一化到同一个域名的所有写法"""
        canonical = self.canonical_domain(domain)
        group = {canonical}
        group.update(d for d, target in self.domain_map.items() if target == canonical)
        return sorted(group)

    def supports_tags(self, domain: str) -> bool:
        return not self.tag_domains or self.canonical_domain(domain) in self.tag_domains

    @staticmethod
    def split(email: str) -> Optional[tuple]:
        if not email:
            return None
        parts = email.strip().lower().split("@")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return None
        return parts[0], parts[1]

    def has_alias_tag(self, email: str) -> bool:
        parts = self.split(email)
        if parts is None:
            return False
        local, domain = parts
        if not self.supports_tags(domain):
            return False
        base, sep, _ = local.partition(self.tag_separator)
        return bool(sep) and bool(base)

    def canonicalize(self, email: str) -> str:
        """归一化邮箱：去 tag、按域名去点、合并域名别名"""
        parts = self.split(email)
        if parts is None:
            return email.strip().lower()
        local, domain = parts
        domain = self.canonical_domain(domain)

        if self.supports_tags(domain):
            base = local.split(self.tag_separator, 1)[0]
            if base:
                local = base
        if domain in self.dot_insensitive_domains:
            local = local.replace(".", "") or local

        return f"{local}@{domain}"


# ============================================================================
# 检测服务
# ============================================================================

class DuplicateSignalDetector:
    """重复账号检测服务"""

    def __init__(
        self,
        db: AsyncSession,
        alias_rules: Optional[AliasRules] = None,
        ip_cluster_threshold: Optional[int] = None,
    ):
        self.db = db
        self.alias_rules = alias_rules or AliasRules.from_settings(settings)
        self.ip_cluster_threshold = ip_cluster_threshold or settings.duplicate_ip_cluster_threshold

    # ---------------- 规则 1：邮箱完全一致 ----------------

    async def _check_exact_email(self, email: str, result: DuplicateCheckResult) -> None:
        existing = await self.db.execute(select(User.id).where(User.email == email))
        user_id = existing.scalar_one_or_none()
        if user_id is not None:
            result.existing_user_id = user_id
            result.signals.append(ExistingEmail())
            logger.warning(f"Duplicate email detected: {mask_email(email)}")

    # ---------------- 规则 2：邮箱别名 ----------------

    async def _check_alias(self, email: str, result: DuplicateCheckResult) -> None:
        parts = AliasRules.split(email)
        if parts is None:
            return
        canonical = self.alias_rules.canonicalize(email)
        canonical_local = canonical.split("@", 1)[0]
        domains = self.alias_rules.domain_group(parts[1])

        # 先按首字母和域名粗筛，再在内存中精确比较
        prefix = canonical_local[:1]
        rows = await self.db.execute(
            select(User.id, User.email).where(
                or_(*[User.email.like(f"{prefix}%@{d}") for d in domains]),
                User.email != email,
            )
        )
        matches = [
            user_id for user_id, existing_email in rows.all()
            if self.alias_rules.canonicalize(existing_email) == canonical
        ]
        if matches:
            result.signals.append(EmailAlias(base_email=canonical))
            result.add_similar(matches)
            logger.warning(f"Email alias detected: {mask_email(email)} -> {mask_email(canonical)}")

    # ---------------- 规则 3：设备指纹 ----------------

    async def _check_device(self, device_id: str, result: DuplicateCheckResult) -> None:
        signup_rows = await self.db.execute(
            select(User.id).where(User.signup_device_id == device_id)
        )
        signup_owners = list(signup_rows.scalars().all())

        device_rows = await self.db.execute(
            select(AuthDevice.user_id).where(AuthDevice.device_id == device_id).distinct()
        )
        device_owners = list(device_rows.scalars().all())

        # 注册设备命中，或登录设备表中有多个不同用户
        if not signup_owners and len(device_owners) <= 1:
            return

        owners: List[uuid.UUID] = []
        for user_id in signup_owners + device_owners:
            if user_id not in owners:
                owners.append(user_id)

        result.signals.append(DeviceMatch(count=len(owners)))
        result.add_similar(owners)
        logger.warning(f"Device {device_id} matches {len(owners)} existing account(s)")

    # ---------------- 规则 4：IP 聚集 ----------------

    async def _check_ip(self, ip_address: str, result: DuplicateCheckResult) -> None:
        count_result = await self.db.execute(
            select(func.count(func.distinct(User.id))).where(User.signup_ip == ip_address)
        )
        count = int(count_result.scalar_one())
        if count >= self.ip_cluster_threshold:
            result.signals.append(IPCluster(count=count))
            logger.warning(f"Suspicious IP detected: {ip_address} used by {count} accounts")

    # ---------------- 对外操作 ----------------

    @translate_store_errors
    async def check_for_duplicates(
        self,
        email: str,
        device_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """
        注册/登录时的重复检测

        Args:
            email: 候选邮箱
            device_id: 设备指纹（可选）
            ip_address: 请求 IP（可选）

        Returns:
            DuplicateCheckResult，所有命中的规则都会出现在 signals 中

        Raises:
            ValidationError: 邮箱为空或格式无效
        """
        email = normalize_email(email)
        result = DuplicateCheckResult()

        await self._check_exact_email(email, result)
        await self._check_alias(email, result)
        if device_id and device_id.strip():
            await self._check_device(device_id.strip(), result)
        if ip_address and ip_address.strip():
            await self._check_ip(ip_address.strip(), result)

        return result

    @translate_store_errors
    async def check_oauth_provider(
        self,
        apple_user_id: Optional[str] = None,
        google_user_id: Optional[str] = None,
    ) -> DuplicateCheckResult:
        """
        OAuth 身份精确查找

        OAuth ID 视同邮箱身份，命中即 has_existing_user。
        """
        result = DuplicateCheckResult()

        lookups = (
            ("Apple", User.apple_user_id, apple_user_id),
            ("Google", User.google_user_id, google_user_id),
        )
        for provider, column, value in lookups:
            if not value or not value.strip():
                continue
            existing = await self.db.execute(select(User.id).where(column == value.strip()))
            user_id = existing.scalar_one_or_none()
            if user_id is None:
                continue
            if result.existing_user_id is None:
                result.existing_user_id = user_id
            result.signals.append(ExistingOAuth(provider=provider))
            logger.info(f"Existing {provider} user ID found -> user {user_id}")

        return result

    async def is_email_alias(self, email: str) -> bool:
        """邮箱本地部分是否带有别名 tag（规则 2 的单独入口）"""
        return self.alias_rules.has_alias_tag(email)


def create_duplicate_detector(db: AsyncSession) -> DuplicateSignalDetector:
    """创建重复检测服务实例"""
    return DuplicateSignalDetector(db=db)
