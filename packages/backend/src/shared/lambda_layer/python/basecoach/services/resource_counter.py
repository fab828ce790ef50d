"""
Fresh counts of quota-gated resources.

Teams and players are owned by the roster service; this module only counts
their active rows (not archived, and for teams not flagged inactive), read
fresh on every call and never cached.
"""

import os
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError
from typing import Any, Dict, Optional, Protocol
from aws_lambda_powertools import Logger

from basecoach.services.aws import get_dynamodb_resource, storage_error

logger = Logger()


class ResourceCounter(Protocol):
    def count_teams(self, user_id: str) -> int: ...

    def count_players(self, team_id: str) -> int: ...


class DynamoResourceCounter:
    """Counts teams per coach and players per team from the roster tables"""

    TEAMS_INDEX = "CoachIdIndex"
    PLAYERS_INDEX = "TeamIdIndex"

    def __init__(self, teams_table_name: Optional[str] = None, players_table_name: Optional[str] = None):
        self.teams_table_name = teams_table_name or os.environ.get("TEAMS_TABLE_NAME", "bc-teams-dev")
        self.players_table_name = players_table_name or os.environ.get("PLAYERS_TABLE_NAME", "bc-players-dev")
        self._dynamodb = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            self._dynamodb = get_dynamodb_resource()
        return self._dynamodb

    def _count(
        self, table_name: str, index_name: str, attribute: str, value: str, filter_expression: Optional[Any] = None
    ) -> int:
        if filter_expression is None:
            filter_expression = Attr("archived_at").not_exists()
        table = self.dynamodb.Table(table_name)
        query_kwargs: Dict[str, Any] = {
            "IndexName": index_name,
            "KeyConditionExpression": Key(attribute).eq(value),
            "FilterExpression": filter_expression,
            "Select": "COUNT",
        }
        total = 0
        try:
            while True:
                response = table.query(**query_kwargs)
                total += response["Count"]
                if "LastEvaluatedKey" not in response:
                    break
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Error counting {table_name} rows for {attribute}={value}: {str(exc)}")
            raise storage_error(exc, f"counting {table_name}") from exc
        return total

    def count_teams(self, user_id: str) -> int:
        # A team without the is_active flag counts as active
        active = Attr("archived_at").not_exists() & (Attr("is_active").not_exists() | Attr("is_active").eq(True))
        return self._count(self.teams_table_name, self.TEAMS_INDEX, "coach_id", user_id, filter_expression=active)

    def count_players(self, team_id: str) -> int:
        return self._count(self.players_table_name, self.PLAYERS_INDEX, "team_id", team_id)
