"""
Azure DevOps work tracking client.
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.circuit_breaker import CircuitBreakerOpenException, get_circuit_breaker
from shared.config import BaseConfig
from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception

from ..dispatch import UpdateBatch
from ..rules.models import WorkItem
from ..webhook import CHILD_RELATION, WorkItemWebhook

SERVICE_NAME = "azure_devops"
PATCH_CONTENT_TYPE = "application/json-patch+json"


class AzureDevOpsClient:
    """Reads work items and rule files and writes field updates.

    Authenticates with a personal access token over Basic auth. Transport
    errors are retried; every call goes through the shared ``azure_devops``
    circuit breaker.
    """

    def __init__(self, pat: str, config: Optional[BaseConfig] = None):
        config = config or BaseConfig()
        self.auth = httpx.BasicAuth("az", pat)
        self.api_version = config.devops_api_version
        self.timeout = config.devops_timeout_seconds
        self.logger = get_logger("workitems.devops_client")
        self.circuit_breaker = get_circuit_breaker(
            SERVICE_NAME,
            failure_threshold=config.circuit_breaker_failure_threshold,
            recovery_timeout=config.circuit_breaker_recovery_timeout
        )

        retry_config = RetryConfig(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=10.0,
            exponential_base=2.0,
            jitter=True
        )
        self._request = retry_on_exception((httpx.TransportError,), config=retry_config)(self._send)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, auth=self.auth) as client:
            response = await getattr(client, method)(url, **kwargs)
            response.raise_for_status()
            return response

    async def _call(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.circuit_breaker.call(self._request, method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method.upper()} {url} returned {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code}
            ) from e
        except RetryError as e:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method.upper()} {url} failed after {e.attempts} attempts",
                details={"url": url, "error": str(e.last_exception)}
            ) from e
        except CircuitBreakerOpenException as e:
            raise ExternalServiceError(SERVICE_NAME, str(e), details={"url": url}) from e

    async def get_work_item(self, url: str) -> Optional[WorkItem]:
        """Fetch a work item with its relations; None when it cannot be read."""
        try:
            response = await self._call(
                "get", url, params={"$expand": "relations", "api-version": self.api_version}
            )
            return WorkItem.model_validate(response.json())
        except ExternalServiceError as e:
            self.logger.error("Error fetching work item", url=url, error=e.message)
            return None
        except (ValueError, PydanticValidationError) as e:
            self.logger.error("Invalid work item payload", url=url, error=str(e))
            return None

    async def get_parent_work_item(self, webhook: WorkItemWebhook) -> Optional[WorkItem]:
        """Parent of the work item named by a service hook."""
        relation = webhook.parent_relation()
        if relation is None:
            self.logger.info("No parent relation found", work_item_id=webhook.work_item_id)
            return None
        return await self.get_work_item(relation.url)

    async def get_child_work_items(self, work_item: WorkItem) -> List[WorkItem]:
        """Children of a work item that could be fetched, in relation order."""
        relations = work_item.relations_of(CHILD_RELATION, name="Child")
        if not relations:
            self.logger.info("No child relations found", work_item_id=work_item.id)
            return []

        children = []
        for relation in relations:
            child = await self.get_work_item(relation.url)
            if child is not None:
                children.append(child)
        return children

    async def fetch_rules(self, url: str) -> str:
        """Download a rule file."""
        response = await self._call("get", url)
        self.logger.debug("Fetched rules", url=url, size=len(response.text))
        return response.text

    async def send_update_operations(self, batch: UpdateBatch) -> Dict[str, Any]:
        """PATCH one work item with a batch of field replacements."""
        params = {
            "suppressNotifications": "true" if batch.suppress_notifications else "false",
            "bypassRules": "true" if batch.bypass_rules else "false",
            "api-version": self.api_version,
        }
        response = await self._call(
            "patch",
            batch.url,
            params=params,
            json=batch.patch_document(),
            headers={"Content-Type": PATCH_CONTENT_TYPE}
        )
        return {"url": batch.url, "status_code": response.status_code}
