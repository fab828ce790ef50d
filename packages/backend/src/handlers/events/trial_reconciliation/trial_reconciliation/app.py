import os
from typing import Dict, Any
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from basecoach.models.subscription import SubscriptionStatus
from basecoach.services.subscription_service import SubscriptionService
from basecoach.services.trial_clock import utc_now
from basecoach.services.trial_lifecycle import TrialLifecycleManager

# Initialize the logger
logger = Logger()

subscriptions_table_name = os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "bc-subscriptions-dev")


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Scheduled (EventBridge) sweep that expires lapsed trials server side.

    Reads still reconcile lazily, this job only makes sure a coach who never
    opens the app is downgraded too. Safe to overlap with any number of
    concurrent reads.
    """
    now = utc_now()
    store = SubscriptionService(subscriptions_table_name)
    lifecycle = TrialLifecycleManager(store)

    trialing = store.scan_trialing()
    expired = 0
    for subscription in trialing:
        reconciled = lifecycle.reconcile_expiry(subscription, now=now)
        if reconciled.status == SubscriptionStatus.EXPIRED and subscription.is_trialing:
            expired += 1

    logger.info(f"Trial reconciliation done: {len(trialing)} trialing, {expired} expired")
    return {"checked": len(trialing), "expired": expired}
