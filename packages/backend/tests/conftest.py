import os
from dataclasses import dataclass

import pytest

# Handlers read their configuration at import time
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["SUBSCRIPTIONS_TABLE_NAME"] = "test-subscriptions-table"
os.environ["TEAMS_TABLE_NAME"] = "test-teams-table"
os.environ["PLAYERS_TABLE_NAME"] = "test-players-table"
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "basecoach-entitlements")


@dataclass
class FakeLambdaContext:
    function_name: str = "test-function"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:test-function"
    aws_request_id: str = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    return FakeLambdaContext()
