from datetime import datetime, timedelta, timezone

from basecoach.constants.subscription_tiers import UNLIMITED
from basecoach.models.subscription import ResourceType, Subscription, SubscriptionStatus, SubscriptionTier
from basecoach.services.limit_gate import can_create, quota_pk, slot_sk

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_subscription(tier=SubscriptionTier.FREE, trialing=False) -> Subscription:
    return Subscription(
        user_id="coach-1",
        tier=tier,
        status=SubscriptionStatus.TRIALING if trialing else SubscriptionStatus.ACTIVE,
        trial_ends_at=NOW + timedelta(days=14) if trialing else None,
        trial_used=trialing,
        created_at=NOW,
        updated_at=NOW,
    )


def test_free_tier_first_team_allowed():
    decision = can_create(make_subscription(), ResourceType.TEAMS, 0)

    assert decision.allowed
    assert decision.limit == 1
    assert decision.remaining == 1
    assert not decision.upgrade_required


def test_free_tier_second_team_denied():
    decision = can_create(make_subscription(), ResourceType.TEAMS, 1)

    assert not decision.allowed
    assert decision.limit == 1
    assert decision.remaining == 0
    assert decision.upgrade_required
    assert decision.tier == SubscriptionTier.FREE


def test_over_limit_count_never_goes_negative():
    decision = can_create(make_subscription(), ResourceType.PLAYERS, 20)

    assert not decision.allowed
    assert decision.remaining == 0


def test_unlimited_quota_always_allowed():
    decision = can_create(make_subscription(SubscriptionTier.PRO), ResourceType.PLAYERS, 500)

    assert decision.allowed
    assert decision.unlimited
    assert decision.limit == UNLIMITED
    assert decision.remaining == UNLIMITED


def test_trial_uses_trial_tier_limits():
    subscription = make_subscription(SubscriptionTier.PRO, trialing=True)
    decision = can_create(subscription, ResourceType.TEAMS, 3)

    assert subscription.billing_tier == SubscriptionTier.FREE
    assert decision.tier == SubscriptionTier.PRO
    assert decision.allowed
    assert decision.remaining == 2


def test_free_tier_has_no_ai_insights():
    decision = can_create(make_subscription(), ResourceType.AI_INSIGHTS, 0)

    assert not decision.allowed
    assert decision.limit == 0


def test_slot_keys():
    assert quota_pk(ResourceType.TEAMS, "coach-1") == "QUOTA#teams#coach-1"
    assert slot_sk(4) == "SLOT#000004"
