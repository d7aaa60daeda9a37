"""
Work Item Automation service.

Receives ``workitem.updated`` service hooks, evaluates the configured rules
against the updated work item, its parent and the parent's children, and
patches the work items the first matching rule touches.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from shared.base_service import BaseService
from shared.circuit_breaker import circuit_breaker_manager
from shared.errors import (
    AutomationException, RuleSyntaxError, UnsupportedEventError, ValidationError, WorkItemNotFoundError,
)
from shared.logging import set_work_item_context

from .adapters.devops_client import AzureDevOpsClient
from .dispatch import UpdateDispatcher
from .rules.engine import RuleEngine
from .rules.models import Rule, WorkItem
from .rules.parser import RuleParser
from .webhook import WorkItemWebhook

PAT_HEADER = "X-ADO-PAT"
RULES_HEADER = "X-ADO-RULES"


class RuleValidationRequest(BaseModel):
    rules: str
    strict: Optional[bool] = None


class RuleEvaluationRequest(BaseModel):
    """Dry-run input: rule text plus a fully materialised hierarchy."""
    rules: str
    strict: Optional[bool] = None
    triggering: WorkItem
    parent: Optional[WorkItem] = None
    children: List[WorkItem] = Field(default_factory=list)


class WorkItemAutomationService(BaseService):
    """Work item automation service implementation."""

    def __init__(self, config=None):
        super().__init__("workitems", 8020, config)

        self.rule_engine = RuleEngine()

        self._setup_workitem_routes()

    def create_client(self, pat: str) -> AzureDevOpsClient:
        """Client authenticated with the caller's token."""
        return AzureDevOpsClient(pat, self.config)

    def parse_rules(self, text: str, strict: Optional[bool] = None) -> List[Rule]:
        """Parse rule text, counting rejected texts."""
        parser = RuleParser(strict=self.config.dsl_strict if strict is None else strict)
        try:
            return parser.parse(text)
        except RuleSyntaxError:
            self.metrics.record_parse_error()
            raise

    async def load_rules(self, client: AzureDevOpsClient, rules_url: Optional[str]) -> str:
        """Rule text from the request header, the configured URL or the configured file."""
        url = rules_url or self.config.rules_url
        if url:
            return await client.fetch_rules(url)
        if self.config.rules_file:
            return await run_in_threadpool(Path(self.config.rules_file).read_text, encoding="utf-8")
        raise ValidationError(f"{RULES_HEADER} header is required", details={"header": RULES_HEADER})

    def _setup_workitem_routes(self):
        """Set up work item automation routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "workitems",
                "message": "Work Item Automation Service",
                "version": "1.0.0",
                "capabilities": ["webhook", "rule_validation", "dry_run"]
            }

        @self.app.post("/workitems/updated")
        async def work_item_updated(request: Request):
            """Apply the first matching rule to a work item update."""
            pat = request.headers.get(PAT_HEADER) or self.config.devops_pat
            if not pat:
                raise ValidationError(f"{PAT_HEADER} header is required", details={"header": PAT_HEADER})

            client = self.create_client(pat)
            rules_text = await self.load_rules(client, request.headers.get(RULES_HEADER))

            try:
                webhook = WorkItemWebhook.model_validate(await request.json())
            except (json.JSONDecodeError, PydanticValidationError) as e:
                raise ValidationError("Invalid service hook payload", details={"error": str(e)}) from e

            if not webhook.is_supported:
                raise UnsupportedEventError(webhook.event_type)

            set_work_item_context(work_item_id=webhook.work_item_id)
            self.logger.debug("Service hook received", event_type=webhook.event_type)

            parent = await client.get_parent_work_item(webhook)
            if parent is None:
                raise WorkItemNotFoundError(
                    f"Parent for work item {webhook.work_item_id} not found.",
                    details={"work_item_id": webhook.work_item_id}
                )

            parent_type = parent.fields.get("System.WorkItemType")
            if parent_type not in self.config.requirement_work_item_types:
                raise AutomationException(
                    "NOT_A_REQUIREMENT",
                    "Parent work item is not a requirement, nothing to do.",
                    {"parent_id": parent.id, "work_item_type": parent_type}
                )

            triggering = await client.get_work_item(webhook.triggering_url) if webhook.triggering_url else None
            if triggering is None:
                raise WorkItemNotFoundError(
                    f"Triggering work item {webhook.work_item_id} not found.",
                    details={"work_item_id": webhook.work_item_id}
                )

            children = await client.get_child_work_items(parent)
            self.logger.info(
                "Hierarchy loaded",
                triggering_id=triggering.id,
                parent_id=parent.id,
                children=len(children)
            )

            with self.metrics.time_operation("rule_evaluation_duration_seconds"):
                rules = self.parse_rules(rules_text)
                result = self.rule_engine.run(rules, triggering, parent, children)
            self.metrics.record_rule_evaluation(
                "matched" if result.matched else "no_match",
                operations=len(result.operations)
            )

            dispatcher = UpdateDispatcher(client, dry_run=self.config.dry_run, metrics=self.metrics)
            batches = await dispatcher.dispatch(result.operations)

            return {
                "matched_rule": result.rule_name,
                "operations": [op.to_record() for op in result.operations],
                "batches": [batch.to_dict() for batch in batches]
            }

        @self.app.post("/rules/validate")
        async def validate_rules(request: RuleValidationRequest):
            """Check rule text and return the parsed rules."""
            try:
                rules = self.parse_rules(request.rules, request.strict)
            except RuleSyntaxError as e:
                return {
                    "success": False,
                    "error": {"message": e.message, **e.details}
                }

            return {
                "success": True,
                "rules": [rule.to_dict() for rule in rules]
            }

        @self.app.post("/rules/evaluate")
        async def evaluate_rules(request: RuleEvaluationRequest):
            """Run rules against the given work items without sending anything."""
            start_time = time.time()
            rules = self.parse_rules(request.rules, request.strict)
            result = self.rule_engine.run(rules, request.triggering, request.parent, request.children)

            self.logger.info(
                "Dry-run evaluation completed",
                matched_rule=result.rule_name,
                operations=len(result.operations),
                evaluation_time_ms=(time.time() - start_time) * 1000
            )

            return {
                "matched_rule": result.rule_name,
                "operations": [op.to_record() for op in result.operations]
            }

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report circuit breaker state for the work tracking API."""
        return {
            name: "open" if state["state"] == "open" else "ok"
            for name, state in circuit_breaker_manager.get_all_states().items()
        }


def create_app():
    """Create work item automation service application."""
    service = WorkItemAutomationService()
    return service.app


if __name__ == "__main__":
    service = WorkItemAutomationService()
    service.run()
