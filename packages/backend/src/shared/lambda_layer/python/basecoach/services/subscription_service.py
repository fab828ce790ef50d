"""
Subscription Service for Base Coach entitlements

Owns the single subscription item per user in DynamoDB and every write to it.
Writes that race with other callers are conditional: a failed condition is
reported back to the caller (None / False), never raised.
"""

import os
import uuid
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from aws_lambda_powertools import Logger

from basecoach.constants.subscription_tiers import UNLIMITED
from basecoach.models.subscription import (
    DataIntegrityError,
    HistoryEntry,
    MilestoneKey,
    MilestoneLog,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
)
from basecoach.services.aws import get_dynamodb_resource, is_conditional_check_failure, storage_error
from basecoach.services.trial_clock import as_utc, parse_timestamp, utc_now

logger = Logger()

SUBSCRIPTION_SK = "SUBSCRIPTION"


def user_pk(user_id: str) -> str:
    return f"USER#{user_id}"


def milestone_prefix(trial_id: str) -> str:
    return f"MILESTONE#{trial_id}#"


def next_month_start(now: datetime) -> datetime:
    now = as_utc(now)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


class SubscriptionService:
    """Service for reading and mutating user subscriptions"""

    def __init__(self, table_name: Optional[str] = None):
        """
        Initialize subscription service

        Args:
            table_name: DynamoDB table name for subscriptions, defaults to
                the SUBSCRIPTIONS_TABLE_NAME environment variable
        """
        self.table_name = table_name or os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "bc-subscriptions-dev")
        self._dynamodb = None
        self._table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            self._dynamodb = get_dynamodb_resource()
        return self._dynamodb

    @property
    def table(self):
        """Lazy initialization of DynamoDB table"""
        if self._table is None:
            self._table = self.dynamodb.Table(self.table_name)
        return self._table

    # ------------------------------------------------------------------
    # Item conversion
    # ------------------------------------------------------------------

    def _to_item(self, subscription: Subscription) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "PK": user_pk(subscription.user_id),
            "SK": SUBSCRIPTION_SK,
            "user_id": subscription.user_id,
            "subscription_tier": subscription.tier.value,
            "subscription_status": subscription.status.value,
            "trial_used": subscription.trial_used,
            "ai_insights_used": Decimal(subscription.ai_insights_used),
            "created_at": as_utc(subscription.created_at).isoformat(),
            "updated_at": as_utc(subscription.updated_at).isoformat(),
        }
        if subscription.trial_ends_at:
            item["trial_ends_at"] = as_utc(subscription.trial_ends_at).isoformat()
        if subscription.trial_id:
            item["trial_id"] = subscription.trial_id
        if subscription.ai_insights_reset_at:
            item["ai_insights_reset_at"] = as_utc(subscription.ai_insights_reset_at).isoformat()
        return item

    def _from_item(self, item: Dict[str, Any]) -> Subscription:
        """
        Parse a DynamoDB item back to a Subscription.

        Malformed data never grants access: it is logged and read as an
        expired free subscription.
        """
        user_id = item["user_id"]
        try:
            trial_ends_at = item.get("trial_ends_at")
            reset_at = item.get("ai_insights_reset_at")
            return Subscription(
                user_id=user_id,
                tier=SubscriptionTier(item["subscription_tier"]),
                status=SubscriptionStatus(item["subscription_status"]),
                trial_ends_at=parse_timestamp(trial_ends_at) if trial_ends_at else None,
                trial_used=bool(item.get("trial_used", False)),
                trial_id=item.get("trial_id"),
                ai_insights_used=int(item.get("ai_insights_used", 0)),
                ai_insights_reset_at=parse_timestamp(reset_at) if reset_at else None,
                created_at=parse_timestamp(item["created_at"]),
                updated_at=parse_timestamp(item["updated_at"]),
            )
        except (DataIntegrityError, ValueError, KeyError, TypeError) as exc:
            logger.error(f"Data integrity error in subscription of user {user_id}: {str(exc)}")
            now = utc_now()
            return Subscription(
                user_id=user_id,
                tier=SubscriptionTier.FREE,
                status=SubscriptionStatus.EXPIRED,
                trial_used=item.get("trial_used") is not False,
                ai_insights_used=0,
                created_at=now,
                updated_at=now,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        """
        Get user subscription by user_id, as stored (no expiry reconciliation)

        Returns:
            Subscription or None if not found

        Raises:
            StorageUnavailable: if DynamoDB cannot be read
        """
        try:
            response = self.table.get_item(
                Key={"PK": user_pk(user_id), "SK": SUBSCRIPTION_SK},
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error getting subscription for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"reading subscription of {user_id}") from exc

        if "Item" not in response:
            return None
        return self._from_item(response["Item"])

    def create_user_subscription(self, user_id: str, now: Optional[datetime] = None) -> Subscription:
        """
        Create the FREE subscription of a new user.

        Safe to call more than once: the put only succeeds if no subscription
        exists yet, otherwise the existing one is returned untouched.
        """
        now = as_utc(now or utc_now())
        subscription = Subscription(user_id=user_id, created_at=now, updated_at=now)

        try:
            self.table.put_item(
                Item=self._to_item(subscription),
                ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                logger.info(f"Subscription already exists for user {user_id}")
                existing = self.get_user_subscription(user_id)
                if existing is not None:
                    return existing
            logger.error(f"Error creating subscription for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"creating subscription of {user_id}") from exc
        except BotoCoreError as exc:
            raise storage_error(exc, f"creating subscription of {user_id}") from exc

        logger.info(f"Created subscription for user {user_id}")
        self.record_history(
            user_id,
            event="created",
            from_tier=None,
            to_tier=subscription.tier,
            from_status=None,
            to_status=subscription.status,
            at=now,
        )
        return subscription

    def get_or_create_subscription(self, user_id: str, now: Optional[datetime] = None) -> Subscription:
        subscription = self.get_user_subscription(user_id)
        if subscription is None:
            subscription = self.create_user_subscription(user_id, now=now)
        return subscription

    def scan_trialing(self) -> List[Subscription]:
        """All subscriptions currently marked as trialing (reconciliation sweep)."""
        subscriptions: List[Subscription] = []
        scan_kwargs: Dict[str, Any] = {
            "FilterExpression": Attr("SK").eq(SUBSCRIPTION_SK)
            & Attr("subscription_status").eq(SubscriptionStatus.TRIALING.value),
        }
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                subscriptions.extend(self._from_item(item) for item in response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                scan_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error scanning trialing subscriptions: {str(exc)}")
            raise storage_error(exc, "scanning trialing subscriptions") from exc
        return subscriptions

    # ------------------------------------------------------------------
    # Conditional mutations
    # ------------------------------------------------------------------

    def _conditional_update(self, user_id: str, action: str, **update_kwargs) -> Optional[Subscription]:
        """Run an update_item; None when its condition did not hold."""
        try:
            response = self.table.update_item(
                Key={"PK": user_pk(user_id), "SK": SUBSCRIPTION_SK},
                ReturnValues="ALL_NEW",
                **update_kwargs,
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                return None
            logger.error(f"Error {action} for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"{action} for {user_id}") from exc
        except BotoCoreError as exc:
            logger.error(f"AWS connection error {action} for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"{action} for {user_id}") from exc
        return self._from_item(response["Attributes"])

    def apply_trial_start(
        self,
        user_id: str,
        trial_tier: SubscriptionTier,
        trial_id: str,
        trial_ends_at: datetime,
        now: datetime,
    ) -> Optional[Subscription]:
        """
        Move a never-trialed FREE subscription into a trial.

        Returns:
            The trialing subscription, or None if the user was not eligible
        """
        return self._conditional_update(
            user_id,
            "starting trial",
            UpdateExpression=(
                "SET subscription_tier = :trial_tier, subscription_status = :trialing, "
                "trial_ends_at = :ends, trial_used = :true, trial_id = :trial_id, updated_at = :now"
            ),
            ConditionExpression=(
                "attribute_exists(PK) AND subscription_tier = :free "
                "AND subscription_status <> :trialing "
                "AND (attribute_not_exists(trial_used) OR trial_used = :false)"
            ),
            ExpressionAttributeValues={
                ":trial_tier": trial_tier.value,
                ":trialing": SubscriptionStatus.TRIALING.value,
                ":ends": as_utc(trial_ends_at).isoformat(),
                ":true": True,
                ":false": False,
                ":trial_id": trial_id,
                ":free": SubscriptionTier.FREE.value,
                ":now": as_utc(now).isoformat(),
            },
        )

    def apply_trial_expiry(self, user_id: str, trial_id: Optional[str], now: datetime) -> Optional[Subscription]:
        """
        Expire a trial, only if it is still the trial instance the caller looked at.

        Matches on trial_id, never on the stored end date string, which may
        be in any ISO-8601 form parse_timestamp accepts.

        Returns:
            The expired subscription, or None if another caller changed it first
        """
        values: Dict[str, Any] = {
            ":free": SubscriptionTier.FREE.value,
            ":expired": SubscriptionStatus.EXPIRED.value,
            ":trialing": SubscriptionStatus.TRIALING.value,
            ":now": as_utc(now).isoformat(),
        }
        if trial_id:
            condition = "subscription_status = :trialing AND trial_id = :trial_id"
            values[":trial_id"] = trial_id
        else:
            condition = "subscription_status = :trialing AND attribute_not_exists(trial_id)"
        return self._conditional_update(
            user_id,
            "expiring trial",
            UpdateExpression=(
                "SET subscription_tier = :free, subscription_status = :expired, updated_at = :now "
                "REMOVE trial_ends_at"
            ),
            ConditionExpression=condition,
            ExpressionAttributeValues=values,
        )

    def set_tier(self, user_id: str, tier: SubscriptionTier, now: Optional[datetime] = None) -> Subscription:
        """
        Explicit upgrade or downgrade. Clears any running trial, keeps the
        trial-used marker.
        """
        now = as_utc(now or utc_now())
        tier = SubscriptionTier(tier)
        before = self.get_or_create_subscription(user_id, now=now)

        updated = self._conditional_update(
            user_id,
            "setting tier",
            UpdateExpression=(
                "SET subscription_tier = :tier, subscription_status = :active, updated_at = :now "
                "REMOVE trial_ends_at"
            ),
            ConditionExpression="attribute_exists(PK)",
            ExpressionAttributeValues={
                ":tier": tier.value,
                ":active": SubscriptionStatus.ACTIVE.value,
                ":now": now.isoformat(),
            },
        )
        if updated is None:
            raise DataIntegrityError(f"Subscription of user {user_id} vanished while setting tier")

        logger.info(f"Set tier for user {user_id} from {before.tier.value} to {tier.value}")
        self.record_history(
            user_id,
            event="tier_changed",
            from_tier=before.tier,
            to_tier=updated.tier,
            from_status=before.status,
            to_status=updated.status,
            at=now,
        )
        return updated

    def consume_ai_insight(self, user_id: str, limit: int, now: Optional[datetime] = None) -> Optional[Subscription]:
        """
        Atomically count one AI insight against the monthly limit.

        Rolls the monthly counter over first when its reset date has passed.

        Returns:
            The updated subscription, or None when the limit is reached
        """
        now = as_utc(now or utc_now())
        subscription = self.get_or_create_subscription(user_id, now=now)

        reset_at = subscription.ai_insights_reset_at
        if reset_at is None or now >= reset_at:
            seen = reset_at.isoformat() if reset_at else None
            condition = "attribute_not_exists(ai_insights_reset_at)" if seen is None else "ai_insights_reset_at = :seen"
            values = {
                ":zero": Decimal(0),
                ":next": next_month_start(now).isoformat(),
                ":now": now.isoformat(),
            }
            if seen is not None:
                values[":seen"] = seen
            rolled = self._conditional_update(
                user_id,
                "resetting AI insight usage",
                UpdateExpression="SET ai_insights_used = :zero, ai_insights_reset_at = :next, updated_at = :now",
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
            )
            if rolled is not None:
                logger.info(f"Reset monthly AI insight usage for user {user_id}")

        update_kwargs: Dict[str, Any] = {
            "UpdateExpression": "ADD ai_insights_used :one SET updated_at = :now",
            "ExpressionAttributeValues": {":one": Decimal(1), ":now": now.isoformat()},
        }
        if limit != UNLIMITED:
            update_kwargs["ConditionExpression"] = "ai_insights_used < :limit"
            update_kwargs["ExpressionAttributeValues"][":limit"] = Decimal(limit)
        return self._conditional_update(user_id, "recording AI insight usage", **update_kwargs)

    # ------------------------------------------------------------------
    # Milestone log
    # ------------------------------------------------------------------

    def get_milestone_log(self, user_id: str, trial_id: Optional[str]) -> MilestoneLog:
        """Milestones already shown for one trial instance."""
        if not trial_id:
            return MilestoneLog(trial_id=None)
        try:
            response = self.table.query(
                KeyConditionExpression=Key("PK").eq(user_pk(user_id))
                & Key("SK").begins_with(milestone_prefix(trial_id)),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error reading milestone log for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"reading milestone log of {user_id}") from exc

        keys = set()
        for item in response.get("Items", []):
            try:
                keys.add(MilestoneKey(item["milestone"]))
            except (KeyError, ValueError):
                logger.error(f"Ignoring malformed milestone item {item.get('SK')} for user {user_id}")
        return MilestoneLog(trial_id=trial_id, keys=frozenset(keys))

    def put_milestone(self, user_id: str, trial_id: str, key: MilestoneKey, now: Optional[datetime] = None) -> bool:
        """
        Record a milestone as shown. Write-once per key per trial instance.

        Returns:
            bool: True if this call recorded it, False if it was already there
        """
        now = as_utc(now or utc_now())
        key = MilestoneKey(key)
        try:
            self.table.put_item(
                Item={
                    "PK": user_pk(user_id),
                    "SK": f"{milestone_prefix(trial_id)}{key.value}",
                    "user_id": user_id,
                    "trial_id": trial_id,
                    "milestone": key.value,
                    "shown_at": now.isoformat(),
                },
                ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                return False
            logger.error(f"Error recording milestone {key.value} for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"recording milestone of {user_id}") from exc
        except BotoCoreError as exc:
            raise storage_error(exc, f"recording milestone of {user_id}") from exc

        logger.info(f"Recorded milestone {key.value} for user {user_id}, trial {trial_id}")
        return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def record_history(
        self,
        user_id: str,
        event: str,
        from_tier: Optional[SubscriptionTier],
        to_tier: SubscriptionTier,
        from_status: Optional[SubscriptionStatus],
        to_status: SubscriptionStatus,
        at: datetime,
    ) -> None:
        """Append a transition record. The transition itself is already durable."""
        at = as_utc(at)
        item = {
            "PK": user_pk(user_id),
            "SK": f"HISTORY#{at.isoformat()}#{uuid.uuid4()}",
            "user_id": user_id,
            "event": event,
            "to_tier": to_tier.value,
            "to_status": to_status.value,
            "at": at.isoformat(),
        }
        if from_tier is not None:
            item["from_tier"] = from_tier.value
        if from_status is not None:
            item["from_status"] = from_status.value
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error recording {event} history for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"recording history of {user_id}") from exc

    def get_history(self, user_id: str, limit: int = 50) -> List[HistoryEntry]:
        """Transitions of a user, newest first."""
        try:
            response = self.table.query(
                KeyConditionExpression=Key("PK").eq(user_pk(user_id)) & Key("SK").begins_with("HISTORY#"),
                ScanIndexForward=False,
                Limit=limit,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error reading history for user {user_id}: {str(exc)}")
            raise storage_error(exc, f"reading history of {user_id}") from exc

        return [
            HistoryEntry(
                user_id=item["user_id"],
                event=item["event"],
                from_tier=item.get("from_tier"),
                to_tier=item["to_tier"],
                from_status=item.get("from_status"),
                to_status=item["to_status"],
                at=parse_timestamp(item["at"]),
            )
            for item in response.get("Items", [])
        ]
