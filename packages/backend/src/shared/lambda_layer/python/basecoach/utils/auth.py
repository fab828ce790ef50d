"""
Authentication utilities for extracting user information from API Gateway events.
"""
from typing import Dict, Any, Optional
from aws_lambda_powertools import Logger

logger = Logger()


def get_all_user_claims(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract all Cognito claims from an API Gateway event.

    When API Gateway uses Cognito authorization, it validates the JWT token
    and places the claims under requestContext.authorizer.claims.

    Args:
        event: API Gateway event dictionary

    Returns:
        Dictionary of JWT claims, empty when the request is unauthenticated
    """
    request_context = event.get("requestContext") or {}
    authorizer = request_context.get("authorizer") or {}
    return authorizer.get("claims") or {}


def extract_user_id_from_event(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract user_id (the Cognito `sub` claim) from an API Gateway event.

    Returns:
        User ID, or None if not found
    """
    user_id = get_all_user_claims(event).get("sub")
    if user_id:
        logger.debug(f"Successfully extracted user_id: {user_id}")
        return user_id
    logger.warning("No user_id found in JWT claims")
    return None


def is_admin(event: Dict[str, Any]) -> bool:
    """True when the caller belongs to the `admin` Cognito group."""
    groups = get_all_user_claims(event).get("cognito:groups") or ""
    if isinstance(groups, str):
        groups = [group.strip() for group in groups.replace(",", " ").split()]
    return "admin" in groups
