from .tenants import Tenant
from .subscriptions import Subscription
from .usage_events import DocumentUsageEvent
from .usage_aggregates import DocumentUsageAggregate
from .workflow_usage import WorkflowUsageDaily
from .source_usage import SourceUsageAggregate, SourceUsageEvent

__all__ = [
    "Tenant",
    "Subscription",
    "DocumentUsageEvent",
    "DocumentUsageAggregate",
    "WorkflowUsageDaily",
    "SourceUsageEvent",
    "SourceUsageAggregate",
]
