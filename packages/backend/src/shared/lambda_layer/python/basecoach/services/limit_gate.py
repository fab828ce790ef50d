"""
Limit gate: tier quotas checked at the moment a resource is created.

can_create() is the pure decision. create_within_limit() makes the check and
the insert one unit: the caller claims a numbered slot below the limit with a
conditional put, re-counts, and only then inserts. Two creations racing for
the last unit cannot both hold the same slot, so the quota never overshoots.
"""

import os
import uuid
from botocore.exceptions import BotoCoreError, ClientError
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple
from aws_lambda_powertools import Logger

from basecoach.constants.subscription_tiers import SLOT_LEASE_SECONDS, UNLIMITED
from basecoach.models.subscription import LimitDecision, ResourceType, StorageUnavailable, Subscription
from basecoach.services.aws import get_dynamodb_resource, is_conditional_check_failure, storage_error
from basecoach.services.tier_catalog import limits_for
from basecoach.services.trial_clock import as_utc, utc_now

logger = Logger()


def can_create(subscription: Subscription, resource_type: ResourceType, current_count: int) -> LimitDecision:
    """
    Check one more resource against the effective tier's quota.

    Args:
        subscription: Subscription after expiry reconciliation
        resource_type: Resource being created
        current_count: Count read right before the creation attempt

    Returns:
        LimitDecision: allowed flag, limit and remaining (-1 when unlimited)
    """
    resource_type = ResourceType(resource_type)
    tier = subscription.effective_tier
    limit = limits_for(tier).limit_for(resource_type)

    if limit == UNLIMITED:
        return LimitDecision(
            resource_type=resource_type,
            tier=tier,
            allowed=True,
            limit=UNLIMITED,
            remaining=UNLIMITED,
            current_count=current_count,
        )

    return LimitDecision(
        resource_type=resource_type,
        tier=tier,
        allowed=current_count < limit,
        limit=limit,
        remaining=max(0, limit - current_count),
        current_count=current_count,
    )


def quota_pk(resource_type: ResourceType, scope_id: str) -> str:
    return f"QUOTA#{ResourceType(resource_type).value}#{scope_id}"


def slot_sk(index: int) -> str:
    return f"SLOT#{index:06d}"


class LimitGate:
    """Serializes quota-gated creations through leased slot items"""

    def __init__(self, table_name: Optional[str] = None):
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

    def _put_slot(self, pk: str, index: int, claim_id: str, now: datetime) -> bool:
        now_epoch = int(now.timestamp())
        try:
            self.table.put_item(
                Item={
                    "PK": pk,
                    "SK": slot_sk(index),
                    "claim_id": claim_id,
                    "claimed_at": now.isoformat(),
                    "expires_at": Decimal(now_epoch + SLOT_LEASE_SECONDS),
                },
                ConditionExpression="attribute_not_exists(PK) OR expires_at < :now",
                ExpressionAttributeValues={":now": Decimal(now_epoch)},
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                return False
            logger.error(f"Error claiming {pk} {slot_sk(index)}: {str(exc)}")
            raise storage_error(exc, f"claiming quota slot {pk}") from exc
        except BotoCoreError as exc:
            raise storage_error(exc, f"claiming quota slot {pk}") from exc
        return True

    def _release_slot(self, pk: str, index: int, claim_id: str) -> None:
        try:
            self.table.delete_item(
                Key={"PK": pk, "SK": slot_sk(index)},
                ConditionExpression="claim_id = :claim_id",
                ExpressionAttributeValues={":claim_id": claim_id},
            )
        except ClientError as exc:
            if is_conditional_check_failure(exc):
                # Lease ran out and someone else holds the slot now
                logger.warning(f"Slot {pk} {slot_sk(index)} was taken over before release")
                return
            logger.error(f"Error releasing {pk} {slot_sk(index)}: {str(exc)}")
            raise storage_error(exc, f"releasing quota slot {pk}") from exc
        except BotoCoreError as exc:
            raise storage_error(exc, f"releasing quota slot {pk}") from exc

    def claim_slot(
        self,
        resource_type: ResourceType,
        scope_id: str,
        start_index: int,
        limit: int,
        count_fn: Callable[[], int],
        now: datetime,
    ) -> Optional[Tuple[int, str]]:
        """
        Claim the lowest free slot at or above start_index and below limit.

        After each successful claim the count is read again; a count beyond
        the slot means a concurrent creation already landed, so the slot is
        released and the search continues from the new count.

        Returns:
            (slot index, claim id), or None when no slot below the limit is free
        """
        pk = quota_pk(resource_type, scope_id)
        claim_id = str(uuid.uuid4())
        index = start_index
        while index < limit:
            if not self._put_slot(pk, index, claim_id, now):
                index += 1
                continue
            recount = count_fn()
            if recount <= index:
                logger.info(f"Claimed {pk} {slot_sk(index)}")
                return index, claim_id
            logger.info(f"Count moved to {recount} while holding {pk} {slot_sk(index)}, retrying")
            self._release_slot(pk, index, claim_id)
            index = recount
        return None

    def create_within_limit(
        self,
        subscription: Subscription,
        resource_type: ResourceType,
        scope_id: str,
        count_fn: Callable[[], int],
        create_fn: Callable[[], Any],
        now: Optional[datetime] = None,
    ) -> Tuple[LimitDecision, Any]:
        """
        Check the quota against a fresh count and create the resource as one unit.

        Args:
            subscription: Subscription after expiry reconciliation
            resource_type: TEAMS or PLAYERS
            scope_id: user id for teams, team id for players
            count_fn: returns the current count of the resource in scope
            create_fn: inserts the resource, only called when allowed

        Returns:
            (decision, result of create_fn or None when denied)
        """
        now = as_utc(now or utc_now())
        resource_type = ResourceType(resource_type)

        decision = can_create(subscription, resource_type, count_fn())
        if not decision.allowed:
            logger.warning(
                f"Denied {resource_type.value} creation for {scope_id}: "
                f"{decision.current_count}/{decision.limit} on {decision.tier.value}"
            )
            return decision, None
        if decision.unlimited:
            return decision, create_fn()

        claimed = self.claim_slot(resource_type, scope_id, decision.current_count, decision.limit, count_fn, now)
        if claimed is None:
            denied = decision.model_copy(update={"allowed": False, "remaining": 0})
            logger.warning(f"Denied {resource_type.value} creation for {scope_id}: no free slot below {decision.limit}")
            return denied, None

        index, claim_id = claimed
        try:
            result = create_fn()
        finally:
            try:
                self._release_slot(quota_pk(resource_type, scope_id), index, claim_id)
            except StorageUnavailable as exc:
                # The lease frees the slot; the create outcome stands
                logger.error(f"Could not release {quota_pk(resource_type, scope_id)} {slot_sk(index)}: {str(exc)}")
        return can_create(subscription, resource_type, index), result
