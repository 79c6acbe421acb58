import pytest

from heatcare.core.exceptions import NotFound, NotVerified, PrimaryClaimProtected
from heatcare.models.heatmeter import HeatmeterClaim, VerificationMethod
from heatcare.services.registry import ClaimOutcome


def _verified_claim(registry, user, heatmeter_id):
    claim = registry.claim(user.id, heatmeter_id).claim
    registry.mark_verified(claim.id, VerificationMethod.OTP)
    return claim


def _primary_ids(db, user_id):
    return [
        c.id for c in db.query(HeatmeterClaim)
        .filter(HeatmeterClaim.user_id == user_id, HeatmeterClaim.is_primary.is_(True))
    ]


class TestClaim:
    def test_first_claim_is_primary_even_unverified(self, registry, user):
        result = registry.claim(user.id, "HM123456")

        assert result.outcome is ClaimOutcome.CREATED
        assert result.created
        assert result.claim.is_primary is True
        assert result.claim.verified_at is None
        assert result.claim.verification_method is None
        assert result.claim.is_owner is True

    def test_later_claims_are_not_primary(self, registry, user):
        registry.claim(user.id, "HM123456")
        second = registry.claim(user.id, "HM654321", is_owner=False).claim

        assert second.is_primary is False
        assert second.is_owner is False

    def test_repeated_claim_returns_existing_row(self, db, registry, user):
        first = registry.claim(user.id, "HM123456")
        again = registry.claim(user.id, "HM123456", is_owner=False)

        assert again.outcome is ClaimOutcome.ALREADY_EXISTS
        assert not again.created
        assert again.claim.id == first.claim.id
        assert again.claim.is_owner is True
        assert db.query(HeatmeterClaim).filter(HeatmeterClaim.user_id == user.id).count() == 1

    def test_claims_are_per_user(self, registry, user, other_user):
        mine = registry.claim(user.id, "HM123456").claim
        theirs = registry.claim(other_user.id, "HM123456").claim

        assert mine.id != theirs.id
        assert theirs.is_primary is True

    def test_list_only_returns_own_claims(self, registry, user, other_user):
        registry.claim(user.id, "HM1")
        registry.claim(user.id, "HM2")
        registry.claim(other_user.id, "HM3")

        assert [c.heatmeter_id for c in registry.list(user.id)] == ["HM1", "HM2"]
        assert [c.heatmeter_id for c in registry.list(other_user.id)] == ["HM3"]


class TestSetPrimary:
    def test_moves_primary_to_verified_claim(self, db, registry, user):
        hm1 = _verified_claim(registry, user, "HM1")
        hm2 = _verified_claim(registry, user, "HM2")

        registry.set_primary(user.id, hm2.id)

        db.refresh(hm1)
        db.refresh(hm2)
        assert hm1.is_primary is False
        assert hm2.is_primary is True

    def test_unverified_claim_cannot_become_primary(self, db, registry, user):
        hm1 = registry.claim(user.id, "HM1").claim
        hm2 = registry.claim(user.id, "HM2").claim

        with pytest.raises(NotVerified):
            registry.set_primary(user.id, hm2.id)

        assert _primary_ids(db, user.id) == [hm1.id]

    def test_at_most_one_primary_after_any_sequence(self, db, registry, user):
        claims = [_verified_claim(registry, user, f"HM{i}") for i in range(4)]
        for target in [claims[2], claims[0], claims[3], claims[3], claims[1]]:
            registry.set_primary(user.id, target.id)
            assert _primary_ids(db, user.id) == [target.id]

    def test_does_not_touch_other_users(self, db, registry, user, other_user):
        theirs = registry.claim(other_user.id, "HM9").claim
        _verified_claim(registry, user, "HM1")
        hm2 = _verified_claim(registry, user, "HM2")

        registry.set_primary(user.id, hm2.id)

        assert _primary_ids(db, other_user.id) == [theirs.id]

    def test_unknown_claim(self, registry, user, other_user):
        theirs = registry.claim(other_user.id, "HM9").claim
        with pytest.raises(NotFound):
            registry.set_primary(user.id, theirs.id)


class TestRemove:
    def test_only_claim_can_be_removed_even_if_primary(self, registry, user):
        hm1 = registry.claim(user.id, "HM1").claim
        assert hm1.is_primary and not hm1.is_verified

        registry.remove(user.id, hm1.id)

        assert registry.list(user.id) == []

    def test_primary_protected_while_other_claims_exist(self, registry, user):
        hm1 = registry.claim(user.id, "HM1").claim
        hm2 = registry.claim(user.id, "HM2").claim

        with pytest.raises(PrimaryClaimProtected):
            registry.remove(user.id, hm1.id)

        registry.remove(user.id, hm2.id)
        registry.remove(user.id, hm1.id)
        assert registry.list(user.id) == []

    def test_non_primary_can_be_removed(self, registry, user):
        registry.claim(user.id, "HM1")
        hm2 = registry.claim(user.id, "HM2").claim

        registry.remove(user.id, hm2.id)

        assert [c.heatmeter_id for c in registry.list(user.id)] == ["HM1"]

    def test_cannot_remove_someone_elses_claim(self, registry, user, other_user):
        theirs = registry.claim(other_user.id, "HM9").claim
        with pytest.raises(NotFound):
            registry.remove(user.id, theirs.id)


class TestMarkVerified:
    def test_sets_timestamp_and_method(self, registry, user, clock):
        claim = registry.claim(user.id, "HM1").claim

        registry.mark_verified(claim.id, VerificationMethod.INVOICE)

        claim = registry.get(user.id, claim.id)
        assert claim.verified_at == clock.now
        assert claim.verification_method is VerificationMethod.INVOICE

    def test_second_call_is_a_no_op(self, registry, user, clock):
        claim = registry.claim(user.id, "HM1").claim
        registry.mark_verified(claim.id, VerificationMethod.OTP)
        first_verified_at = registry.get(user.id, claim.id).verified_at

        clock.advance(hours=1)
        registry.mark_verified(claim.id, VerificationMethod.INVOICE)

        claim = registry.get(user.id, claim.id)
        assert claim.verified_at == first_verified_at
        assert claim.verification_method is VerificationMethod.OTP
