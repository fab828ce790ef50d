import os
from typing import Dict, Any
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from basecoach.models.subscription import SubscriptionError
from basecoach.services.subscription_service import SubscriptionService

# Initialize the logger
logger = Logger()

# Initialize services
subscriptions_table_name = os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "bc-subscriptions-dev")

subscription_service = SubscriptionService(subscriptions_table_name)


def extract_user_id(event: Dict[str, Any]) -> str:
    """Extract the Cognito user id from a post-confirmation event."""
    try:
        user_id = event["request"]["userAttributes"]["sub"]
    except KeyError as e:
        logger.error(f"Missing required user attribute: {e}")
        raise ValueError(f"Invalid Cognito event structure: missing {e}")

    logger.info(f"Processing post-confirmation for user: {user_id}")
    return user_id


@logger.inject_lambda_context
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Cognito Post-Confirmation Lambda handler.

    Creates the FREE subscription of every newly confirmed coach. Creation is
    conditional, so Cognito retries never duplicate it.

    Input: Cognito Post-Confirmation trigger event
    Output: Same event (required by Cognito)
    """
    logger.info("Post-confirmation Lambda triggered", extra={
        "event_source": event.get("triggerSource", "unknown"),
        "user_pool_id": event.get("userPoolId", "unknown")
    })

    try:
        user_id = extract_user_id(event)
        subscription = subscription_service.create_user_subscription(user_id)
        logger.info(f"Subscription ready for user {user_id} on {subscription.tier.value}")
    except (ValueError, SubscriptionError) as e:
        # A failed trigger blocks the signup; the subscription is created
        # lazily on first read instead
        logger.error(f"Post-confirmation failed but allowing registration to proceed: {e}")

    # Cognito requires the original event back
    return event
