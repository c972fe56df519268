from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.config import Config

from ...settings import get_settings


@lru_cache(maxsize=4)
def _resource(region: str, endpoint_url: str | None):
    # botocore keeps its own adaptive retries; ddb_call only adds retries on throttling.
    config = Config(
        retries={"max_attempts": 10, "mode": "adaptive"},
        connect_timeout=2,
        read_timeout=10,
        user_agent_extra="audit-sync",
    )
    return boto3.resource("dynamodb", region_name=region, endpoint_url=endpoint_url, config=config)


def table_resource(table_name: str):
    """boto3 Table for the configured region (or a local DynamoDB endpoint)."""
    s = get_settings()
    return _resource(s.aws_region, s.dynamodb_endpoint_url or None).Table(table_name)
