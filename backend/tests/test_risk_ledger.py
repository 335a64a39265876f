"""风险信号账本测试"""

import logging
import uuid

import pytest
from sqlalchemy import select

from trustcore.core.exceptions import RiskSignalNotFoundError, ValidationError
from trustcore.models.risk import RiskSignal, RiskType
from trustcore.services.risk_ledger import (
    RiskLevel,
    RiskSignalSchema,
    RiskSignalLedger,
    risk_level_for,
    risk_score_formula,
)


@pytest.fixture
def ledger(db):
    return RiskSignalLedger(db)


class TestFormula:

    def test_zero_signals(self):
        assert risk_score_formula(0, 0) == 0

    def test_saturates_at_100(self):
        # 5 个信号，严重程度合计 20
        assert risk_score_formula(5, 20) == 100
        assert risk_score_formula(50, 500) == 100

    def test_partial_scores(self):
        assert risk_score_formula(1, 2) == 20
        assert risk_score_formula(2, 5) == 45
        assert risk_score_formula(6, 3) == 65

    def test_risk_levels(self):
        assert risk_level_for(0) is RiskLevel.LOW
        assert risk_level_for(20) is RiskLevel.MILD
        assert risk_level_for(45) is RiskLevel.ELEVATED
        assert risk_level_for(65) is RiskLevel.HIGH
        assert risk_level_for(100) is RiskLevel.CRITICAL


class TestRaiseSignal:

    async def test_raise_appends_unresolved_signal(self, db, ledger, make_user):
        user = await make_user()

        signal = await ledger.raise_signal(
            user.id, RiskType.DEVICE_MISMATCH, 4, "Login from new device", {"device_id": "D7"}
        )

        stored = (await db.execute(select(RiskSignal))).scalar_one()
        assert stored.id == signal.id
        assert stored.is_resolved is False
        assert stored.severity == 4
        assert stored.metadata_json == {"device_id": "D7"}
        assert await ledger.aggregate_risk_score(user.id) == 30

    async def test_accepts_type_value(self, ledger, make_user):
        user = await make_user()

        signal = await ledger.raise_signal(user.id, "IPRisk", 2, "Shared IP")

        assert signal.type is RiskType.IP_RISK

    @pytest.mark.parametrize("severity", [0, 11, -3, 2.5, True])
    async def test_rejects_out_of_range_severity(self, db, ledger, make_user, severity):
        user = await make_user()

        with pytest.raises(ValidationError):
            await ledger.raise_signal(user.id, RiskType.REPORTED, severity, "bad severity")

        assert (await db.execute(select(RiskSignal))).first() is None

    async def test_rejects_blank_message(self, ledger, make_user):
        user = await make_user()

        with pytest.raises(ValidationError):
            await ledger.raise_signal(user.id, RiskType.REPORTED, 3, "   ")

    async def test_rejects_unknown_type(self, db, ledger, make_user):
        user = await make_user()

        with pytest.raises(ValidationError):
            await ledger.raise_signal(user.id, "NotAType", 3, "Unknown type")

        assert (await db.execute(select(RiskSignal))).first() is None

    async def test_saturated_score_logged_as_critical(self, ledger, make_user, caplog):
        user = await make_user()

        with caplog.at_level(logging.INFO, logger="trustcore.services.risk_ledger"):
            for _ in range(5):
                await ledger.raise_signal(user.id, RiskType.FAKE_RECEIPT, 4, "Receipt metadata mismatch")

        assert await ledger.aggregate_risk_score(user.id) == 100
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)


class TestResolve:

    async def test_resolved_signal_leaves_aggregate(self, ledger, make_user):
        user = await make_user()
        first = await ledger.raise_signal(user.id, RiskType.COLLUSION, 6, "Circular verifications")
        await ledger.raise_signal(user.id, RiskType.REPORTED, 2, "Verified report")

        resolved = await ledger.resolve(first.id)

        assert resolved.is_resolved is True
        assert await ledger.aggregate_risk_score(user.id) == risk_score_formula(1, 2)

    async def test_resolved_signal_stays_in_history(self, db, ledger, make_user):
        user = await make_user()
        signal = await ledger.raise_signal(user.id, RiskType.COLLUSION, 6, "Circular verifications")

        await ledger.resolve(signal.id)

        rows = (await db.execute(select(RiskSignal.id, RiskSignal.is_resolved))).all()
        assert rows == [(signal.id, True)]

    async def test_resolve_is_idempotent(self, ledger, make_user):
        user = await make_user()
        signal = await ledger.raise_signal(user.id, RiskType.COLLUSION, 6, "Circular verifications")

        await ledger.resolve(signal.id)
        again = await ledger.resolve(signal.id)

        assert again.is_resolved is True
        assert await ledger.aggregate_risk_score(user.id) == 0

    async def test_resolve_unknown_signal(self, ledger):
        with pytest.raises(RiskSignalNotFoundError):
            await ledger.resolve(uuid.uuid4())


class TestQueries:

    async def test_active_signals_exclude_resolved(self, ledger, make_user):
        user = await make_user()
        kept = await ledger.raise_signal(user.id, RiskType.SUSPICIOUS_LOGIN, 3, "Impossible travel")
        dropped = await ledger.raise_signal(user.id, RiskType.SUSPICIOUS_LOGIN, 3, "Impossible travel")
        await ledger.resolve(dropped.id)

        active = await ledger.get_active_signals(user.id)

        assert [s.id for s in active] == [kept.id]

    async def test_list_high_risk_users(self, ledger, make_user):
        risky = await make_user()
        mild = await make_user()
        for _ in range(5):
            await ledger.raise_signal(risky.id, RiskType.FAKE_SCREENSHOT, 4, "Edited screenshot")
        await ledger.raise_signal(mild.id, RiskType.IP_RISK, 2, "Shared IP")

        page = await ledger.list_high_risk_users(min_risk_score=70)

        assert page.total == 1
        assert page.items[0].user_id == str(risky.id)
        assert page.items[0].risk_score == 100
        assert page.items[0].risk_level is RiskLevel.CRITICAL

        everyone = await ledger.list_high_risk_users(min_risk_score=0)
        assert [u.risk_score for u in everyone.items] == [100, 20]

    async def test_list_high_risk_users_validates_params(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.list_high_risk_users(min_risk_score=101)
        with pytest.raises(ValidationError):
            await ledger.list_high_risk_users(page=0)

    async def test_signal_schema(self, ledger, make_user):
        user = await make_user()
        signal = await ledger.raise_signal(
            user.id, RiskType.PROFILE_CONCERN_FLAG, 1, "Profile concern", {"source": "admin"}
        )

        schema = RiskSignalSchema.from_model(signal)

        assert schema.user_id == str(user.id)
        assert schema.type is RiskType.PROFILE_CONCERN_FLAG
        assert schema.metadata == {"source": "admin"}
        assert schema.is_resolved is False
