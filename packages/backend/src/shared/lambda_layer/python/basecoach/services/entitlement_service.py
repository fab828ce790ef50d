"""
Entitlement Service: the single entry point UI collaborators call.

Every read goes through expiry reconciliation first, so callers always see
the post-reconciliation subscription.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from aws_lambda_powertools import Logger

from basecoach.models.subscription import (
    HistoryEntry,
    LimitDecision,
    MilestoneKey,
    QuotaExceeded,
    ResourceType,
    Subscription,
    SubscriptionTier,
)
from basecoach.services.limit_gate import LimitGate, can_create
from basecoach.services.resource_counter import DynamoResourceCounter, ResourceCounter
from basecoach.services.subscription_service import SubscriptionService
from basecoach.services.tier_catalog import features_for, has_feature, limits_for
from basecoach.services.trial_clock import as_utc, days_remaining, phase_for, utc_now
from basecoach.services.trial_lifecycle import TrialLifecycleManager

logger = Logger()


class EntitlementService:
    """Subscription, quota and trial-warning operations for one user at a time"""

    def __init__(
        self,
        store: Optional[SubscriptionService] = None,
        counter: Optional[ResourceCounter] = None,
        gate: Optional[LimitGate] = None,
        lifecycle: Optional[TrialLifecycleManager] = None,
    ):
        self.store = store or SubscriptionService()
        self.counter = counter or DynamoResourceCounter()
        self.gate = gate or LimitGate(self.store.table_name)
        self.lifecycle = lifecycle or TrialLifecycleManager(self.store)

    def get_subscription(self, user_id: str, now: Optional[datetime] = None) -> Subscription:
        now = as_utc(now or utc_now())
        subscription = self.store.get_or_create_subscription(user_id, now=now)
        return self.lifecycle.reconcile_expiry(subscription, now=now)

    def start_trial(self, user_id: str, now: Optional[datetime] = None) -> Subscription:
        now = as_utc(now or utc_now())
        self.get_subscription(user_id, now=now)
        return self.lifecycle.start_trial(user_id, now=now)

    def set_tier(self, user_id: str, tier: SubscriptionTier, now: Optional[datetime] = None) -> Subscription:
        return self.store.set_tier(user_id, SubscriptionTier(tier), now=now)

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    def _count_fn(
        self, subscription: Subscription, resource_type: ResourceType, scope_id: Optional[str], now: datetime
    ) -> Callable[[], int]:
        if resource_type == ResourceType.TEAMS:
            return lambda: self.counter.count_teams(subscription.user_id)
        if resource_type == ResourceType.PLAYERS:
            if not scope_id:
                raise ValueError("team_id is required to check the player limit")
            return lambda: self.counter.count_players(scope_id)
        return lambda: self._ai_insights_used(subscription, now)

    @staticmethod
    def _ai_insights_used(subscription: Subscription, now: datetime) -> int:
        reset_at = subscription.ai_insights_reset_at
        if reset_at is None or now >= as_utc(reset_at):
            return 0
        return subscription.ai_insights_used

    def can_create(
        self,
        user_id: str,
        resource_type: ResourceType,
        scope_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LimitDecision:
        """Quota decision against a count read now. Advisory: use create_within_limit to insert."""
        now = as_utc(now or utc_now())
        resource_type = ResourceType(resource_type)
        subscription = self.get_subscription(user_id, now=now)
        count_fn = self._count_fn(subscription, resource_type, scope_id, now)
        return can_create(subscription, resource_type, count_fn())

    def create_within_limit(
        self,
        user_id: str,
        resource_type: ResourceType,
        create_fn: Callable[[], Any],
        scope_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[LimitDecision, Any]:
        """
        Create a team or player only if the quota still allows it.

        Args:
            user_id: Coach creating the resource
            resource_type: TEAMS or PLAYERS
            create_fn: Inserts the resource into the roster store
            scope_id: Team id when creating a player

        Returns:
            (decision, create_fn result or None when denied)
        """
        now = as_utc(now or utc_now())
        resource_type = ResourceType(resource_type)
        if resource_type == ResourceType.AI_INSIGHTS:
            raise ValueError("AI insights are counted with consume_ai_insight")

        subscription = self.get_subscription(user_id, now=now)
        count_fn = self._count_fn(subscription, resource_type, scope_id, now)
        scope = user_id if resource_type == ResourceType.TEAMS else scope_id
        return self.gate.create_within_limit(subscription, resource_type, scope, count_fn, create_fn, now=now)

    def consume_ai_insight(self, user_id: str, now: Optional[datetime] = None) -> LimitDecision:
        """
        Count one AI insight against the monthly allowance.

        Raises:
            QuotaExceeded: when the allowance is used up or the tier has none
        """
        now = as_utc(now or utc_now())
        subscription = self.get_subscription(user_id, now=now)
        limit = limits_for(subscription.effective_tier).ai_insights_per_month

        updated = self.store.consume_ai_insight(user_id, limit, now=now)
        if updated is None:
            current = self.store.get_user_subscription(user_id) or subscription
            decision = can_create(current, ResourceType.AI_INSIGHTS, self._ai_insights_used(current, now))
            logger.warning(f"AI insight quota exceeded for user {user_id}: {decision.current_count}/{decision.limit}")
            raise QuotaExceeded(decision)

        # The decision that admitted this insight, i.e. before the increment
        return can_create(updated, ResourceType.AI_INSIGHTS, updated.ai_insights_used - 1)

    # ------------------------------------------------------------------
    # Trial milestones
    # ------------------------------------------------------------------

    def pending_milestone(self, user_id: str, now: Optional[datetime] = None) -> Optional[MilestoneKey]:
        now = as_utc(now or utc_now())
        subscription = self.get_subscription(user_id, now=now)
        return self.lifecycle.pending_milestone(subscription, now=now)

    def acknowledge_milestone(self, user_id: str, key: MilestoneKey, now: Optional[datetime] = None) -> bool:
        now = as_utc(now or utc_now())
        subscription = self.get_subscription(user_id, now=now)
        return self.lifecycle.acknowledge_milestone(subscription, MilestoneKey(key), now=now)

    def claim_milestone(self, user_id: str, now: Optional[datetime] = None) -> Optional[MilestoneKey]:
        now = as_utc(now or utc_now())
        subscription = self.get_subscription(user_id, now=now)
        return self.lifecycle.claim_milestone(subscription, now=now)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def has_feature(self, user_id: str, feature: str, now: Optional[datetime] = None) -> bool:
        subscription = self.get_subscription(user_id, now=now)
        return has_feature(subscription.effective_tier, feature)

    def get_entitlements(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Resolved subscription, limits, features and trial countdown for dashboards."""
        now = as_utc(now or utc_now())
        subscription = self.get_subscription(user_id, now=now)
        tier = subscription.effective_tier

        trial = None
        if subscription.is_trialing:
            days = days_remaining(subscription.trial_ends_at, now)
            trial = {
                "ends_at": subscription.trial_ends_at.isoformat(),
                "days_remaining": days,
                "phase": phase_for(days).value,
            }

        return {
            "subscription": subscription.model_dump(mode="json"),
            "limits": limits_for(tier).model_dump(mode="json"),
            "features": features_for(tier).model_dump(),
            "ai_insights_used": self._ai_insights_used(subscription, now),
            "trial": trial,
            "trial_available": subscription.tier == SubscriptionTier.FREE and not subscription.trial_used,
        }

    def get_subscription_history(self, user_id: str, limit: int = 50) -> List[HistoryEntry]:
        return self.store.get_history(user_id, limit=limit)
