from botocore.exceptions import BotoCoreError, ClientError

from basecoach.models.subscription import StorageUnavailable
from basecoach.services.aws import get_dynamodb_resource, is_conditional_check_failure, storage_error
from basecoach.services.limit_gate import LimitGate
from basecoach.services.subscription_service import SubscriptionService


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "PutItem")


def test_dynamodb_resource_is_shared():
    assert get_dynamodb_resource() is get_dynamodb_resource()
    assert SubscriptionService("table").dynamodb is LimitGate("table").dynamodb


def test_conditional_check_failure_detection():
    assert is_conditional_check_failure(client_error("ConditionalCheckFailedException"))
    assert not is_conditional_check_failure(client_error("ProvisionedThroughputExceededException"))


def test_storage_error_wraps_boto_errors():
    error = storage_error(client_error("ResourceNotFoundException"), "reading subscription")

    assert isinstance(error, StorageUnavailable)
    assert "ResourceNotFoundException" in str(error)
    assert isinstance(storage_error(BotoCoreError(), "reading subscription"), StorageUnavailable)
