"""注册筛查流程测试"""

import pytest

from trustcore.models.risk import RiskType
from trustcore.services.risk_ledger import RiskSignalLedger
from trustcore.services.signup_screening import create_signup_screening


@pytest.fixture
def screening(db):
    return create_signup_screening(db)


async def test_existing_email_blocks_signup(screening, make_user):
    existing = await make_user(email="alice@example.com")

    decision = await screening.screen_signup("alice@example.com")

    assert decision.allowed is False
    assert decision.existing_user_id == existing.id


async def test_suspicion_alone_never_blocks(screening, make_user):
    user_a = await make_user(email="a@example.com", signup_device_id="D1")

    decision = await screening.screen_signup("b@example.com", device_id="D1")

    assert decision.allowed is True
    assert decision.existing_user_id is None
    assert decision.result.is_suspicious is True
    assert user_a.id in decision.result.similar_users


async def test_findings_written_to_ledger(db, screening, make_user):
    user_a = await make_user(email="a@example.com", signup_device_id="D1", signup_ip="192.0.2.10")
    for _ in range(2):
        await make_user(signup_ip="192.0.2.10")

    decision = await screening.screen_signup("b@example.com", device_id="D1", ip_address="192.0.2.10")
    user_b = await make_user(email="b@example.com", signup_device_id="D1", signup_ip="192.0.2.10")
    raised = await screening.record_findings(user_b.id, decision.result)

    assert [s.type for s in raised] == [RiskType.DUPLICATE_ACCOUNT, RiskType.IP_RISK]
    assert raised[0].message == "Device fingerprint matches existing account"
    assert raised[0].metadata_json["similar_users"] == [str(user_a.id)]
    assert raised[1].message == "IP address used by 3 accounts"

    ledger = RiskSignalLedger(db)
    assert await ledger.aggregate_risk_score(user_b.id) == 20 + 45


async def test_alias_finding_recorded(db, screening, make_user):
    await make_user(email="carol@hotmail.com")

    decision = await screening.screen_signup("carol+new@hotmail.com")
    user = await make_user(email="carol+new@hotmail.com")
    raised = await screening.record_findings(user.id, decision.result)

    assert decision.allowed is True
    assert len(raised) == 1
    assert raised[0].type is RiskType.DUPLICATE_ACCOUNT
    assert raised[0].metadata_json["base_email"] == "carol@hotmail.com"


async def test_clean_signup_records_nothing(screening, make_user):
    decision = await screening.screen_signup("fresh@example.com")
    user = await make_user(email="fresh@example.com")

    assert decision.allowed is True
    assert await screening.record_findings(user.id, decision.result) == []
