"""
Batching and dispatch of update operations.

The rule engine emits operations in action order, possibly touching several
work items. The tracking system takes one JSON-Patch document per work item,
so operations are grouped by URL and each group is sent as a single request
with merged side-effect flags.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.errors import AutomationException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .rules.models import UpdateOperation


@dataclass
class UpdateBatch:
    """All operations for one work item with their effective flags."""
    url: str
    operations: List[UpdateOperation] = field(default_factory=list)
    suppress_notifications: bool = True
    bypass_rules: bool = False

    def patch_document(self) -> List[Dict[str, str]]:
        return [op.to_patch() for op in self.operations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "suppressNotifications": self.suppress_notifications,
            "bypassRules": self.bypass_rules,
            "operations": self.patch_document(),
        }


def group_operations(operations: List[UpdateOperation]) -> List[UpdateBatch]:
    """Group operations by work item URL, in first-seen order.

    Notifications stay suppressed unless some operation explicitly asked for
    them; rules are bypassed as soon as one operation asked for it.
    """
    grouped: Dict[str, List[UpdateOperation]] = {}
    for operation in operations:
        grouped.setdefault(operation.url, []).append(operation)

    return [
        UpdateBatch(
            url=url,
            operations=ops,
            suppress_notifications=not any(op.suppress_notifications is False for op in ops),
            bypass_rules=any(op.bypass_rules is True for op in ops),
        )
        for url, ops in grouped.items()
    ]


@dataclass
class DispatchResult:
    """Outcome of sending one batch."""
    url: str
    operations: int
    status: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"url": self.url, "operations": self.operations, "status": self.status}
        if self.error:
            data["error"] = self.error
        return data


class UpdateDispatcher:
    """Sends grouped update operations through a work tracking client."""

    def __init__(self, client, dry_run: bool = False, metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.dry_run = dry_run
        self.metrics = metrics
        self.logger = get_logger("workitems.dispatcher")

    async def dispatch(self, operations: List[UpdateOperation]) -> List[DispatchResult]:
        """Send one patch per work item.

        A failing batch is logged and reported; the remaining batches are
        still sent.
        """
        if not operations:
            self.logger.info("No operations to perform")
            return []

        results = []
        for batch in group_operations(operations):
            if self.dry_run:
                self.logger.info("Dry run, update not sent", url=batch.url, operations=batch.patch_document())
                results.append(DispatchResult(url=batch.url, operations=len(batch.operations), status="dry_run"))
                self._record("dry_run")
                continue

            self.logger.info(
                "Sending update operations",
                url=batch.url,
                operations=len(batch.operations),
                suppress_notifications=batch.suppress_notifications,
                bypass_rules=batch.bypass_rules
            )
            try:
                await self.client.send_update_operations(batch)
            except AutomationException as e:
                self.logger.error("Error sending update operations", url=batch.url, error=e.message)
                results.append(DispatchResult(
                    url=batch.url, operations=len(batch.operations), status="failed", error=e.message
                ))
                self._record("failed")
                continue

            self.logger.info("Update operations sent", url=batch.url)
            results.append(DispatchResult(url=batch.url, operations=len(batch.operations), status="sent"))
            self._record("sent")

        return results

    def _record(self, status: str):
        if self.metrics:
            self.metrics.record_update_batch(status)
