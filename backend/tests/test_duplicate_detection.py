"""重复账号检测测试"""

import pytest

from trustcore.core.exceptions import ValidationError
from trustcore.services.duplicate_detection import (
    AliasRules,
    DeviceMatch,
    DuplicateCheckResult,
    DuplicateSignalDetector,
    EmailAlias,
    ExistingEmail,
    ExistingOAuth,
    IPCluster,
)


@pytest.fixture
def detector(db):
    return DuplicateSignalDetector(db)


class TestExactEmail:

    async def test_existing_email_blocks(self, detector, make_user):
        user = await make_user(email="alice@example.com")

        result = await detector.check_for_duplicates("  Alice@Example.com ")

        assert result.has_existing_user is True
        assert result.existing_user_id == user.id
        assert result.reasons == ["Email already registered"]
        assert result.is_suspicious is False

    async def test_new_email_is_clean(self, detector, make_user):
        await make_user(email="alice@example.com")

        result = await detector.check_for_duplicates("bob@example.com")

        assert result.has_existing_user is False
        assert result.is_suspicious is False
        assert result.reasons == []
        assert result.similar_users == []


class TestEmailAlias:

    async def test_is_email_alias(self, detector):
        assert await detector.is_email_alias("user+alias@gmail.com") is True
        assert await detector.is_email_alias("user@example.com") is False
        assert await detector.is_email_alias("+alias@gmail.com") is False
        assert await detector.is_email_alias("not-an-email") is False

    async def test_tagged_alias_of_existing_user(self, detector, make_user):
        user = await make_user(email="carol@outlook.com")

        result = await detector.check_for_duplicates("carol+shop@outlook.com")

        assert result.has_existing_user is False
        assert result.is_suspicious is True
        assert "Email alias detected (base: carol@outlook.com)" in result.reasons
        assert result.similar_users == [user.id]

    async def test_gmail_dots_and_domain_folded(self, detector, make_user):
        user = await make_user(email="john.doe@gmail.com")

        result = await detector.check_for_duplicates("johndoe+promo@googlemail.com")

        assert EmailAlias(base_email="johndoe@gmail.com") in result.signals
        assert result.similar_users == [user.id]

    async def test_dots_significant_outside_gmail(self, detector, make_user):
        await make_user(email="john.doe@example.com")

        result = await detector.check_for_duplicates("johndoe@example.com")

        assert result.is_suspicious is False
        assert result.reasons == []

    async def test_exact_match_does_not_count_as_alias(self, detector, make_user):
        await make_user(email="dave@example.com")

        result = await detector.check_for_duplicates("dave@example.com")

        assert result.signals == [ExistingEmail()]

    async def test_tags_ignored_on_other_domains(self, detector, make_user):
        await make_user(email="carol@example.com")

        assert await detector.is_email_alias("user+x@example.com") is False
        assert await detector.is_email_alias("user+x@hotmail.com") is True

        result = await detector.check_for_duplicates("carol+shop@example.com")
        assert result.is_suspicious is False
        assert result.reasons == []

    def test_tag_domains_restrict_tag_stripping(self):
        rules = AliasRules(tag_domains=frozenset({"gmail.com"}))

        assert rules.has_alias_tag("user+x@gmail.com") is True
        assert rules.has_alias_tag("user+x@outlook.com") is False
        assert rules.canonicalize("user+x@example.com") == "user+x@example.com"
        assert rules.canonicalize("U.Ser+x@GoogleMail.com") == "user@gmail.com"

    def test_empty_tag_domains_allow_every_domain(self):
        rules = AliasRules(tag_domains=frozenset())

        assert rules.has_alias_tag("user+x@example.com") is True
        assert rules.canonicalize("user+x@example.com") == "user@example.com"

    @pytest.mark.parametrize("email", [None, "", "   ", "not-an-email"])
    async def test_malformed_email_rejected(self, detector, email):
        with pytest.raises(ValidationError):
            await detector.check_for_duplicates(email)


class TestDeviceFingerprint:

    async def test_two_users_sharing_device(self, detector, make_user, add_device):
        first = await make_user()
        second = await make_user()
        await add_device(first, "D1")
        await add_device(second, "D1")

        result = await detector.check_for_duplicates("new@example.com", device_id="D1")

        assert "Device used by 2 accounts" in result.reasons
        assert set(result.similar_users) == {first.id, second.id}
        assert result.is_suspicious is True
        assert result.has_existing_user is False

    async def test_single_login_device_owner_is_not_a_signal(self, detector, make_user, add_device):
        owner = await make_user()
        await add_device(owner, "D9")

        result = await detector.check_for_duplicates("new@example.com", device_id="D9")

        assert result.reasons == []

    async def test_signup_device_match(self, detector, make_user, add_device):
        user_a = await make_user(email="a@example.com", signup_device_id="D1")
        await add_device(user_a, "D1")

        result = await detector.check_for_duplicates("b@example.com", device_id="D1")

        assert result.is_suspicious is True
        assert "Device fingerprint matches existing account" in result.reasons
        assert user_a.id in result.similar_users

    async def test_blank_device_ignored(self, detector, make_user):
        await make_user(signup_device_id="D1")

        result = await detector.check_for_duplicates("b@example.com", device_id="  ")

        assert result.reasons == []


class TestIPCluster:

    async def test_three_accounts_on_one_ip(self, detector, make_user):
        for _ in range(3):
            await make_user(signup_ip="203.0.113.7")

        result = await detector.check_for_duplicates("new@example.com", ip_address="203.0.113.7")

        assert "IP address used by 3 accounts" in result.reasons
        assert IPCluster(count=3) in result.signals
        assert result.is_suspicious is True

    async def test_two_accounts_on_one_ip(self, detector, make_user):
        for _ in range(2):
            await make_user(signup_ip="203.0.113.7")

        result = await detector.check_for_duplicates("new@example.com", ip_address="203.0.113.7")

        assert result.reasons == []
        assert result.is_suspicious is False


class TestAllRulesEvaluated:

    async def test_every_rule_reported(self, detector, make_user):
        existing = await make_user(email="eve@example.com", signup_device_id="D2", signup_ip="198.51.100.1")
        for _ in range(2):
            await make_user(signup_ip="198.51.100.1")

        result = await detector.check_for_duplicates(
            "eve@example.com", device_id="D2", ip_address="198.51.100.1"
        )

        assert result.has_existing_user is True
        assert result.existing_user_id == existing.id
        assert result.signals == [ExistingEmail(), DeviceMatch(count=1), IPCluster(count=3)]
        assert result.is_suspicious is True


class TestOAuthProvider:

    async def test_existing_apple_id(self, detector, make_user):
        user = await make_user(apple_user_id="apple-123")

        result = await detector.check_oauth_provider(apple_user_id="apple-123")

        assert result.has_existing_user is True
        assert result.existing_user_id == user.id
        assert result.reasons == ["Apple User ID already registered"]

    async def test_existing_google_id(self, detector, make_user):
        user = await make_user(google_user_id="google-456")

        result = await detector.check_oauth_provider(google_user_id="google-456")

        assert result.existing_user_id == user.id
        assert result.signals == [ExistingOAuth(provider="Google")]

    async def test_unknown_ids(self, detector):
        result = await detector.check_oauth_provider(apple_user_id="nope", google_user_id=None)

        assert result.has_existing_user is False
        assert result.reasons == []


def test_result_to_dict():
    result = DuplicateCheckResult(signals=[DeviceMatch(count=4)])

    data = result.to_dict()

    assert data["is_suspicious"] is True
    assert data["has_existing_user"] is False
    assert data["reasons"] == ["Device used by 4 accounts"]
