from datetime import timedelta
from moto import mock_aws

from basecoach.models.subscription import SubscriptionStatus, SubscriptionTier
from basecoach.services.subscription_service import SubscriptionService
from basecoach.services.trial_clock import utc_now
from basecoach.services.trial_lifecycle import TrialLifecycleManager
from src.handlers.events.post_confirmation.post_confirmation import app as post_confirmation
from src.handlers.events.trial_reconciliation.trial_reconciliation import app as trial_reconciliation
from tests.fixtures.ddb import create_subscriptions_table


def cognito_event(user_id=None):
    attributes = {"email": "coach@example.com"}
    if user_id:
        attributes["sub"] = user_id
    return {
        "version": "1",
        "triggerSource": "PostConfirmation_ConfirmSignUp",
        "userPoolId": "us-east-1_test",
        "userName": "coach",
        "request": {"userAttributes": attributes},
        "response": {},
    }


@mock_aws
def test_post_confirmation_creates_free_subscription(lambda_context):
    table = create_subscriptions_table()
    # Module-level service may hold a client from another mock session
    post_confirmation.subscription_service = SubscriptionService(table.name)
    event = cognito_event("coach-1")

    result = post_confirmation.handler(event, lambda_context)

    assert result == event
    subscription = SubscriptionService(table.name).get_user_subscription("coach-1")
    assert subscription.tier == SubscriptionTier.FREE
    assert subscription.trial_used is False


@mock_aws
def test_post_confirmation_never_blocks_signup(lambda_context):
    create_subscriptions_table()
    post_confirmation.subscription_service = SubscriptionService("missing-table")

    event = cognito_event("coach-1")
    assert post_confirmation.handler(event, lambda_context) == event

    event = cognito_event()
    assert post_confirmation.handler(event, lambda_context) == event


@mock_aws
def test_trial_reconciliation_expires_lapsed_trials(lambda_context):
    table = create_subscriptions_table()
    store = SubscriptionService(table.name)
    lifecycle = TrialLifecycleManager(store)

    lifecycle.start_trial("lapsed", now=utc_now() - timedelta(days=15))
    lifecycle.start_trial("running", now=utc_now() - timedelta(days=2))
    store.create_user_subscription("free-coach")

    result = trial_reconciliation.handler({}, lambda_context)

    assert result == {"checked": 2, "expired": 1}
    assert store.get_user_subscription("lapsed").status == SubscriptionStatus.EXPIRED
    assert store.get_user_subscription("running").status == SubscriptionStatus.TRIALING

    assert trial_reconciliation.handler({}, lambda_context) == {"checked": 1, "expired": 0}
