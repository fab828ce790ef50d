import pytest
from datetime import datetime, timedelta, timezone
from moto import mock_aws

from basecoach.models.subscription import (
    MilestoneKey,
    QuotaExceeded,
    ResourceType,
    SubscriptionStatus,
    SubscriptionTier,
)
from basecoach.services.entitlement_service import EntitlementService
from basecoach.services.resource_counter import DynamoResourceCounter
from basecoach.services.subscription_service import SubscriptionService
from tests.fixtures.ddb import (
    create_players_table,
    create_subscriptions_table,
    create_teams_table,
    put_player,
    put_team,
)

START = datetime(2025, 1, 1, tzinfo=timezone.utc)
ENDS = datetime(2025, 1, 15, tzinfo=timezone.utc)


def make_service():
    subscriptions = create_subscriptions_table()
    teams = create_teams_table()
    players = create_players_table()
    service = EntitlementService(
        store=SubscriptionService(subscriptions.name),
        counter=DynamoResourceCounter(teams.name, players.name),
    )
    return service, teams, players


@mock_aws
def test_counter_ignores_archived_and_inactive_rows():
    _, teams, players = make_service()
    counter = DynamoResourceCounter(teams.name, players.name)

    put_team(teams, "team-1", "coach-1")
    put_team(teams, "team-2", "coach-1", archived_at=START)
    put_team(teams, "team-3", "coach-2")
    put_team(teams, "team-4", "coach-1", is_active=False)
    put_team(teams, "team-5", "coach-1", is_active=True)
    put_player(players, "player-1", "team-1")
    put_player(players, "player-2", "team-1", archived_at=START)

    assert counter.count_teams("coach-1") == 2
    assert counter.count_players("team-1") == 1
    assert counter.count_players("team-9") == 0


@mock_aws
def test_get_subscription_creates_free_on_first_read():
    service, _, _ = make_service()

    subscription = service.get_subscription("coach-1", now=START)

    assert subscription.tier == SubscriptionTier.FREE
    assert subscription.status == SubscriptionStatus.ACTIVE


@mock_aws
def test_get_subscription_reconciles_expired_trial():
    service, _, _ = make_service()
    service.start_trial("coach-1", now=START)

    assert service.get_subscription("coach-1", now=ENDS - timedelta(minutes=1)).is_trialing

    subscription = service.get_subscription("coach-1", now=ENDS)
    assert subscription.tier == SubscriptionTier.FREE
    assert subscription.status == SubscriptionStatus.EXPIRED


@mock_aws
def test_free_coach_limited_to_one_team():
    service, teams, _ = make_service()

    def create_team():
        put_team(teams, "team-1", "coach-1")
        return "team-1"

    decision, team_id = service.create_within_limit("coach-1", ResourceType.TEAMS, create_team, now=START)
    assert decision.allowed
    assert team_id == "team-1"

    decision = service.can_create("coach-1", ResourceType.TEAMS, now=START)
    assert not decision.allowed
    assert decision.limit == 1
    assert decision.remaining == 0


@mock_aws
def test_trial_lifts_then_restores_team_limit():
    service, teams, _ = make_service()
    put_team(teams, "team-1", "coach-1")

    service.start_trial("coach-1", now=START)
    decision = service.can_create("coach-1", ResourceType.TEAMS, now=START + timedelta(days=1))
    assert decision.allowed
    assert decision.tier == SubscriptionTier.PRO
    assert decision.remaining == 4

    decision = service.can_create("coach-1", ResourceType.TEAMS, now=ENDS + timedelta(days=1))
    assert not decision.allowed
    assert decision.tier == SubscriptionTier.FREE


@mock_aws
def test_player_limit_needs_team():
    service, _, players = make_service()
    for n in range(15):
        put_player(players, f"player-{n}", "team-1")

    decision = service.can_create("coach-1", ResourceType.PLAYERS, scope_id="team-1", now=START)
    assert not decision.allowed
    assert decision.current_count == 15

    with pytest.raises(ValueError):
        service.can_create("coach-1", ResourceType.PLAYERS, now=START)


@mock_aws
def test_ai_insights_follow_tier_allowance():
    service, _, _ = make_service()

    with pytest.raises(QuotaExceeded) as excinfo:
        service.consume_ai_insight("coach-1", now=START)
    assert excinfo.value.decision.limit == 0

    service.set_tier("coach-1", SubscriptionTier.PRO, now=START)
    for used in range(5):
        decision = service.consume_ai_insight("coach-1", now=START)
        assert decision.allowed
        assert decision.current_count == used

    with pytest.raises(QuotaExceeded):
        service.consume_ai_insight("coach-1", now=START)

    decision = service.consume_ai_insight("coach-1", now=datetime(2025, 2, 1, tzinfo=timezone.utc))
    assert decision.current_count == 0


@mock_aws
def test_ai_insights_rejected_by_create_within_limit():
    service, _, _ = make_service()
    with pytest.raises(ValueError):
        service.create_within_limit("coach-1", ResourceType.AI_INSIGHTS, lambda: None, now=START)


@mock_aws
def test_milestones_through_facade():
    service, _, _ = make_service()
    service.start_trial("coach-1", now=START)
    three_left = ENDS - timedelta(days=3)

    assert service.pending_milestone("coach-1", now=three_left) == MilestoneKey.THREE_DAYS
    assert service.claim_milestone("coach-1", now=three_left) == MilestoneKey.THREE_DAYS
    assert service.claim_milestone("coach-1", now=three_left) is None
    assert service.acknowledge_milestone("coach-1", MilestoneKey.THREE_DAYS, now=three_left) is False

    assert service.claim_milestone("coach-1", now=ENDS + timedelta(hours=2)) == MilestoneKey.EXPIRED
    assert service.claim_milestone("coach-1", now=ENDS + timedelta(days=2)) is None


@mock_aws
def test_has_feature_follows_effective_tier():
    service, _, _ = make_service()

    assert not service.has_feature("coach-1", "pdf_export", now=START)
    service.start_trial("coach-1", now=START)
    assert service.has_feature("coach-1", "pdf_export", now=START)
    assert not service.has_feature("coach-1", "pdf_export", now=ENDS)


@mock_aws
def test_get_entitlements_while_trialing():
    service, _, _ = make_service()
    service.start_trial("coach-1", now=START)

    entitlements = service.get_entitlements("coach-1", now=ENDS - timedelta(days=2, hours=12))

    assert entitlements["subscription"]["tier"] == "pro"
    assert entitlements["subscription"]["billing_tier"] == "free"
    assert entitlements["limits"]["max_teams"] == 5
    assert entitlements["features"]["radar_charts"] is True
    assert entitlements["trial"]["days_remaining"] == 3
    assert entitlements["trial"]["phase"] == "urgent"
    assert entitlements["trial_available"] is False


@mock_aws
def test_get_entitlements_for_new_user():
    service, _, _ = make_service()

    entitlements = service.get_entitlements("coach-1", now=START)

    assert entitlements["trial"] is None
    assert entitlements["trial_available"] is True
    assert entitlements["limits"]["max_players_per_team"] == 15


@mock_aws
def test_history_through_facade():
    service, _, _ = make_service()
    service.get_subscription("coach-1", now=START)
    service.start_trial("coach-1", now=START + timedelta(hours=1))
    service.get_subscription("coach-1", now=ENDS + timedelta(hours=1))

    events = [entry.event for entry in service.get_subscription_history("coach-1")]

    assert events == ["trial_expired", "trial_started", "created"]


@mock_aws
def test_trial_with_utc_z_end_date_still_expires():
    service, teams, _ = make_service()
    service.store.table.put_item(
        Item={
            "PK": "USER#coach-1",
            "SK": "SUBSCRIPTION",
            "user_id": "coach-1",
            "subscription_tier": "pro",
            "subscription_status": "trialing",
            "trial_ends_at": "2025-01-15T00:00:00Z",
            "trial_used": True,
            "trial_id": "trial-1",
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-01T00:00:00Z",
        }
    )
    for n in range(3):
        put_team(teams, f"team-{n}", "coach-1")
    later = datetime(2025, 3, 1, tzinfo=timezone.utc)

    subscription = service.get_subscription("coach-1", now=later)
    assert subscription.tier == SubscriptionTier.FREE
    assert subscription.status == SubscriptionStatus.EXPIRED

    decision = service.can_create("coach-1", ResourceType.TEAMS, now=later)
    assert not decision.allowed
    assert decision.tier == SubscriptionTier.FREE
    assert decision.limit == 1
