"""CloudWatch business-event metrics for subscription lifecycle changes.

Emission is fire-and-forget: boto3 is synchronous, so put_metric_data runs on
a small thread pool and failures are logged, never raised into the caller.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import boto3
import structlog

logger = structlog.get_logger(__name__)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")


class BusinessMetrics:
    """Counts billing events under one CloudWatch namespace."""

    def __init__(self, namespace: str, region_name: str = "us-east-1", enabled: bool = True):
        self.namespace = namespace
        self.region_name = region_name
        self.enabled = enabled
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("cloudwatch", region_name=self.region_name)
        return self._client

    def _put_event(self, event_name: str, user_id: str | None) -> None:
        dimensions = [{"Name": "Event", "Value": event_name}]
        if user_id:
            dimensions.append({"Name": "UserId", "Value": user_id})
        try:
            self._get_client().put_metric_data(
                Namespace=self.namespace,
                MetricData=[{
                    "MetricName": "EventCount",
                    "Dimensions": dimensions,
                    "Value": 1.0,
                    "Unit": "Count",
                    "Timestamp": datetime.now(timezone.utc),
                }],
            )
        except Exception as e:
            logger.warning("business_event_emit_failed", error=str(e), metric_event=event_name)

    async def emit(self, event_name: str, user_id: str | None = None) -> None:
        """Schedule a count for ``event_name``. Returns without waiting."""
        if not self.enabled:
            return
        loop = asyncio.get_running_loop()
        loop.run_in_executor(_executor, self._put_event, event_name, user_id)
