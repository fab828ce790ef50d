import json
import os
from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, Response, content_types
from aws_lambda_powertools.event_handler.api_gateway import CORSConfig
from aws_lambda_powertools.event_handler.exceptions import BadRequestError, ServiceError, UnauthorizedError
from aws_lambda_powertools.utilities.typing import LambdaContext
from typing import Any, Dict

from basecoach.models.subscription import (
    MilestoneKey,
    QuotaExceeded,
    ResourceType,
    StorageUnavailable,
    SubscriptionTier,
    TrialAlreadyUsed,
    TrialNotEligible,
)
from basecoach.services.entitlement_service import EntitlementService
from basecoach.services.subscription_service import SubscriptionService
from basecoach.services.tier_catalog import pricing_catalog
from basecoach.utils.auth import extract_user_id_from_event, is_admin

# Initialize the logger
logger = Logger()

# Retrieve environment variables
SUBSCRIPTIONS_TABLE_NAME = os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "bc-subscriptions-dev")

# Configure CORS
cors_config = CORSConfig(
    allow_origin="*",  # In production, specify your actual domain
)

# Initialize the APIGatewayRestResolver
app = APIGatewayRestResolver(cors=cors_config)


def _entitlement_service() -> EntitlementService:
    return EntitlementService(store=SubscriptionService(SUBSCRIPTIONS_TABLE_NAME))


def _current_user_id() -> str:
    user_id = extract_user_id_from_event(app.current_event.raw_event)
    if not user_id:
        logger.error("No user_id found in JWT token")
        raise UnauthorizedError("Authentication required")
    return user_id


@app.exception_handler(StorageUnavailable)
def handle_storage_unavailable(exc: StorageUnavailable) -> Response:
    # The UI treats 503 as "deny creation, hide trial upsell"
    logger.error(f"Storage unavailable: {str(exc)}")
    return Response(
        status_code=503,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps({"statusCode": 503, "message": "Subscription storage unavailable, please retry later"}),
    )


@app.exception_handler(QuotaExceeded)
def handle_quota_exceeded(exc: QuotaExceeded) -> Response:
    logger.warning(str(exc))
    return Response(
        status_code=402,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps({"message": "Upgrade required", **exc.decision.model_dump(mode="json")}),
    )


@app.get("/subscription")
def get_subscription() -> Dict[str, Any]:
    """
    Get the caller's subscription, limits, features and trial countdown
    """
    user_id = _current_user_id()
    return _entitlement_service().get_entitlements(user_id)


@app.post("/subscription/trial")
def start_trial() -> Dict[str, Any]:
    """
    Start the caller's 14-day trial
    """
    user_id = _current_user_id()
    try:
        subscription = _entitlement_service().start_trial(user_id)
    except TrialAlreadyUsed as exc:
        logger.warning(str(exc))
        raise ServiceError(409, "Trial already used")
    except TrialNotEligible as exc:
        logger.warning(str(exc))
        raise ServiceError(409, "Not eligible for a trial")

    return {
        "success": True,
        "message": f"Trial started, ends {subscription.trial_ends_at.isoformat()}",
        "subscription": subscription.model_dump(mode="json"),
    }


@app.post("/subscription/tier")
def set_tier() -> Dict[str, Any]:
    """
    Change a user's tier (billing webhook or admin)
    Expected body: {"user_id": "...", "tier": "free|pro|premium|enterprise"}
    """
    if not is_admin(app.current_event.raw_event):
        raise UnauthorizedError("Admin privileges required")

    try:
        body = app.current_event.json_body or {}
        if "tier" not in body or "user_id" not in body:
            raise BadRequestError("Missing required field: user_id and tier are required")
        user_id = str(body["user_id"])
        tier_value = str(body["tier"]).lower()
    except (TypeError, ValueError, KeyError) as exc:
        logger.error(f"Validation error: {str(exc)}")
        raise BadRequestError(f"Invalid request: {str(exc)}")

    try:
        tier = SubscriptionTier(tier_value)
    except ValueError:
        raise BadRequestError(f"Invalid tier. Must be one of: {', '.join(t.value for t in SubscriptionTier)}")

    subscription = _entitlement_service().set_tier(user_id, tier)
    return {
        "success": True,
        "message": f"Tier set to {tier.value}",
        "subscription": subscription.model_dump(mode="json"),
    }


@app.get("/subscription/limits/<resource_type>")
def get_limit(resource_type: str) -> Dict[str, Any]:
    """
    Check whether the caller may create one more resource right now
    Query: ?team_id=... (required for players)
    """
    user_id = _current_user_id()
    try:
        resource = ResourceType(resource_type)
    except ValueError:
        raise BadRequestError(f"Invalid resource type: {resource_type}")

    team_id = app.current_event.get_query_string_value(name="team_id", default_value=None)
    try:
        decision = _entitlement_service().can_create(user_id, resource, scope_id=team_id)
    except ValueError as exc:
        raise BadRequestError(str(exc))
    return decision.model_dump(mode="json")


@app.post("/subscription/ai-insights")
def consume_ai_insight() -> Dict[str, Any]:
    """
    Count one AI insight against the caller's monthly allowance
    Responds 402 when the allowance is used up
    """
    user_id = _current_user_id()
    decision = _entitlement_service().consume_ai_insight(user_id)
    return decision.model_dump(mode="json")


@app.get("/subscription/milestone")
def claim_milestone() -> Dict[str, Any]:
    """
    Trial warning due now, if any. Returned at most once per milestone.
    """
    user_id = _current_user_id()
    key = _entitlement_service().claim_milestone(user_id)
    return {"milestone": key.value if key else None}


@app.post("/subscription/milestone/<key>/ack")
def acknowledge_milestone(key: str) -> Dict[str, Any]:
    """
    Record a milestone as shown (for clients using the pending/ack flow)
    """
    user_id = _current_user_id()
    try:
        milestone = MilestoneKey(key)
    except ValueError:
        raise BadRequestError(f"Invalid milestone: {key}")
    recorded = _entitlement_service().acknowledge_milestone(user_id, milestone)
    return {"milestone": milestone.value, "recorded": recorded}


@app.get("/subscription/history")
def get_history() -> Dict[str, Any]:
    """
    The caller's subscription transitions, newest first
    """
    user_id = _current_user_id()
    entries = _entitlement_service().get_subscription_history(user_id)
    return {"history": [entry.model_dump(mode="json") for entry in entries]}


@app.get("/subscription/pricing")
def get_pricing() -> Dict[str, Any]:
    """
    Get pricing tiers and feature comparison
    """
    return pricing_catalog()


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
