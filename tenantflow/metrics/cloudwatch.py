"""CloudWatch business-event metrics for the onboarding workflow.

Fire-and-forget: emission is dispatched to a small thread pool (boto3 is
synchronous), failures are logged as warnings and never reach the caller.
Disabled unless ``metrics_enabled`` is set.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import boto3
import structlog

from tenantflow.core.config import get_settings

logger = structlog.get_logger(__name__)

NAMESPACE = "TenantFlow/Onboarding"

_cw_client = None
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")


def _get_client():
    global _cw_client
    if _cw_client is None:
        _cw_client = boto3.client("cloudwatch", region_name=get_settings().aws_region)
    return _cw_client


def _put_business_event(event_name: str, plan: str | None = None) -> None:
    """Synchronous put_metric_data. Runs in the thread pool."""
    dimensions = [{"Name": "Event", "Value": event_name}]
    if plan:
        dimensions.append({"Name": "Plan", "Value": plan})
    try:
        _get_client().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[{
                "MetricName": "EventCount",
                "Dimensions": dimensions,
                "Value": 1.0,
                "Unit": "Count",
                "Timestamp": datetime.now(timezone.utc),
            }],
        )
    except Exception as e:
        logger.warning("business_event_emit_failed", error=str(e), event_name=event_name)


async def emit_business_event(event_name: str, plan: str | None = None) -> None:
    """Emit an onboarding business event (started, completed, failed, cancelled)."""
    if not get_settings().metrics_enabled:
        return
    loop = asyncio.get_running_loop()
    loop.run_in_executor(_executor, _put_business_event, event_name, plan)
