import boto3
import os
from boto3.resources.base import ServiceResource
from botocore.exceptions import BotoCoreError, ClientError
from functools import cache
from typing import Optional

from basecoach.models.subscription import StorageUnavailable


def get_region_name() -> Optional[str]:
    """
    Get the AWS region name from environment variable.
    Uses AWS_REGION if set, otherwise lets boto3 use its default region resolution.

    Returns:
        str: The AWS region name or None to let boto3 handle region resolution.
    """
    return os.getenv("AWS_REGION")


@cache
def get_dynamodb_resource() -> ServiceResource:
    """
    Get a DynamoDB resource instance.

    Returns:
        boto3.resources.base.ServiceResource: The DynamoDB resource.
    """
    region = get_region_name()
    if region:
        return boto3.resource("dynamodb", region_name=region)
    else:
        # Let boto3 use default region resolution
        return boto3.resource("dynamodb")


def is_conditional_check_failure(exc: ClientError) -> bool:
    return exc.response["Error"]["Code"] == "ConditionalCheckFailedException"


def storage_error(exc: Exception, action: str) -> StorageUnavailable:
    """Wrap a boto error raised while doing `action` into StorageUnavailable."""
    if isinstance(exc, ClientError):
        error_code = exc.response["Error"]["Code"]
        error_message = exc.response["Error"]["Message"]
        return StorageUnavailable(f"DynamoDB error while {action}: {error_code} - {error_message}")
    if isinstance(exc, BotoCoreError):
        return StorageUnavailable(f"AWS connection error while {action}: {str(exc)}")
    return StorageUnavailable(f"Unexpected storage error while {action}: {str(exc)}")
