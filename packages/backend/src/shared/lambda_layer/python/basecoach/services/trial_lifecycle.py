"""
Trial lifecycle: NoTrial -> Trialing -> Expired, driven by the wall clock.

Every transition is a conditional write in SubscriptionService, so any number
of entry points may call into this module at the same time and still
converge on one state.
"""

import uuid
from datetime import datetime
from typing import Optional
from aws_lambda_powertools import Logger

from basecoach.constants.subscription_tiers import TRIAL_TIER
from basecoach.models.subscription import (
    MilestoneKey,
    MilestoneLog,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    TrialAlreadyUsed,
    TrialNotEligible,
)
from basecoach.services.subscription_service import SubscriptionService
from basecoach.services.trial_clock import as_utc, days_remaining, milestone_for, trial_end_from, utc_now

logger = Logger()


def milestone_days(subscription: Subscription, now: datetime) -> Optional[int]:
    """Days left for milestone purposes: 0 once a trial has lapsed, None with no trial."""
    if subscription.is_trialing:
        return days_remaining(subscription.trial_ends_at, now)
    if subscription.status == SubscriptionStatus.EXPIRED and subscription.trial_id:
        return 0
    return None


def should_warn(subscription: Subscription, milestone_log: MilestoneLog, now: datetime) -> Optional[MilestoneKey]:
    """
    Decide whether a trial warning is due.

    Only exact milestone days (7, 3, 0) trigger, and only once per trial
    instance: a key already in the log of the current trial returns None.
    """
    days = milestone_days(subscription, now)
    if days is None:
        return None
    key = milestone_for(days)
    if key is None:
        return None
    if milestone_log.trial_id == subscription.trial_id and key in milestone_log:
        return None
    return key


class TrialLifecycleManager:
    """Starts, expires and announces trials"""

    def __init__(self, store: Optional[SubscriptionService] = None):
        self.store = store or SubscriptionService()

    def start_trial(self, user_id: str, now: Optional[datetime] = None) -> Subscription:
        """
        Start the one trial a user is entitled to.

        Raises:
            TrialAlreadyUsed: if the user consumed a trial before
            TrialNotEligible: if the user is on a paid tier
        """
        now = as_utc(now or utc_now())
        before = self.store.get_or_create_subscription(user_id, now=now)

        trial_id = str(uuid.uuid4())
        started = self.store.apply_trial_start(
            user_id,
            trial_tier=SubscriptionTier(TRIAL_TIER),
            trial_id=trial_id,
            trial_ends_at=trial_end_from(now),
            now=now,
        )
        if started is None:
            current = self.store.get_user_subscription(user_id) or before
            logger.warning(f"Trial refused for user {user_id} on {current.tier.value}/{current.status.value}")
            if current.trial_used:
                raise TrialAlreadyUsed(user_id)
            raise TrialNotEligible(user_id, reason=f"is on the {current.tier.value} tier")

        logger.info(f"Started trial {trial_id} for user {user_id}, ends {started.trial_ends_at.isoformat()}")
        self.store.record_history(
            user_id,
            event="trial_started",
            from_tier=before.tier,
            to_tier=started.tier,
            from_status=before.status,
            to_status=started.status,
            at=now,
        )
        return started

    def reconcile_expiry(self, subscription: Subscription, now: Optional[datetime] = None) -> Subscription:
        """
        Expire a trial whose end date has passed. A no-op otherwise.

        Idempotent: when another caller expired the trial first, its result
        is re-read and returned.
        """
        now = as_utc(now or utc_now())
        if not subscription.is_trialing or now < as_utc(subscription.trial_ends_at):
            return subscription

        user_id = subscription.user_id
        expired = self.store.apply_trial_expiry(user_id, subscription.trial_id, now)
        if expired is None:
            logger.info(f"Trial of user {user_id} already reconciled by another caller")
            return self.store.get_user_subscription(user_id) or subscription

        logger.info(f"Trial {subscription.trial_id} of user {user_id} expired, downgraded to free")
        self.store.record_history(
            user_id,
            event="trial_expired",
            from_tier=subscription.tier,
            to_tier=expired.tier,
            from_status=subscription.status,
            to_status=expired.status,
            at=now,
        )
        return expired

    def pending_milestone(self, subscription: Subscription, now: Optional[datetime] = None) -> Optional[MilestoneKey]:
        now = as_utc(now or utc_now())
        if milestone_days(subscription, now) is None:
            return None
        milestone_log = self.store.get_milestone_log(subscription.user_id, subscription.trial_id)
        return should_warn(subscription, milestone_log, now)

    def acknowledge_milestone(
        self, subscription: Subscription, key: MilestoneKey, now: Optional[datetime] = None
    ) -> bool:
        """Persist a milestone as shown for the current trial instance."""
        if not subscription.trial_id:
            logger.warning(f"Ignoring milestone {key} for user {subscription.user_id} without a trial")
            return False
        return self.store.put_milestone(subscription.user_id, subscription.trial_id, key, now=now)

    def claim_milestone(self, subscription: Subscription, now: Optional[datetime] = None) -> Optional[MilestoneKey]:
        """
        Decide and record in one conditional write, so concurrent surfaces
        show a milestone exactly once.
        """
        key = self.pending_milestone(subscription, now=now)
        if key is None:
            return None
        if not self.acknowledge_milestone(subscription, key, now=now):
            logger.info(f"Milestone {key.value} for user {subscription.user_id} claimed by another caller")
            return None
        return key
