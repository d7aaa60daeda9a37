"""
Unit tests for the Work Item Automation main service.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.concurrency import run_in_threadpool
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_config
from shared.errors import ExternalServiceError
from shared.test_helpers import SAMPLE_RULES, create_webhook_payload
from service_workitems.tests.factories import WorkItemFactory
from service_workitems.app.main import WorkItemAutomationService, create_app

HEADERS = {
    "X-ADO-PAT": "secret-pat",
    "X-ADO-RULES": "https://dev.azure.com/contoso/rules.txt",
}


class TestWorkItemAutomationService:
    """Test cases for WorkItemAutomationService."""

    @pytest.fixture
    def service(self):
        """Create WorkItemAutomationService instance."""
        return WorkItemAutomationService(get_config("workitems", 8020, devops_pat=None, rules_url=None))

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    @pytest.fixture
    def hierarchy(self):
        return WorkItemFactory.create_hierarchy()

    @pytest.fixture
    def devops_client(self, hierarchy):
        """Mock work tracking client serving the sample hierarchy."""
        mock = MagicMock()
        mock.fetch_rules = AsyncMock(return_value=SAMPLE_RULES)
        mock.get_parent_work_item = AsyncMock(return_value=hierarchy["parent"])
        mock.get_work_item = AsyncMock(return_value=hierarchy["children"][0])
        mock.get_child_work_items = AsyncMock(return_value=hierarchy["children"])
        mock.send_update_operations = AsyncMock(return_value={"status_code": 200})
        return mock

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "workitems"
        assert "webhook" in data["capabilities"]

    def test_create_app(self):
        """Test application factory."""
        app = create_app()

        assert app.title == "Workitems Service"

    def test_health_check(self, client):
        """Test health endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics_endpoint(self, client):
        """Test metrics endpoint."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "rule_evaluations_total" in response.text

    def test_webhook_applies_first_matching_rule(self, service, client, devops_client, hierarchy):
        """Test the full webhook flow with a matching rule."""
        parent = hierarchy["parent"]

        with patch.object(service, "create_client", return_value=devops_client) as create_client:
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["matched_rule"] == "Developer Task Started"
        assert data["operations"] == [
            {"url": parent.url, "op": "replace", "path": "/fields/System.State", "value": "Active"},
            {"url": parent.url, "op": "replace", "path": "/fields/System.AssignedTo", "value": "dev@contoso.com"},
            {"url": parent.url, "op": "replace", "path": "/fields/System.Tags", "value": "Sprint 12; In Development"},
        ]
        assert data["batches"] == [{"url": parent.url, "operations": 3, "status": "sent"}]

        create_client.assert_called_once_with("secret-pat")
        devops_client.fetch_rules.assert_awaited_once_with(HEADERS["X-ADO-RULES"])
        devops_client.get_work_item.assert_awaited_once_with(
            "https://dev.azure.com/contoso/_apis/wit/workItems/101"
        )
        devops_client.get_child_work_items.assert_awaited_once_with(parent)
        batch = devops_client.send_update_operations.await_args.args[0]
        assert batch.url == parent.url
        assert batch.suppress_notifications is True
        assert batch.bypass_rules is False

    def test_webhook_no_matching_rule(self, service, client, devops_client, hierarchy):
        """Test that nothing is sent when no rule applies."""
        devops_client.get_work_item = AsyncMock(return_value=hierarchy["children"][1])

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(102), headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"matched_rule": None, "operations": [], "batches": []}
        devops_client.send_update_operations.assert_not_called()

    def test_webhook_missing_pat(self, client):
        """Test that the token header is required."""
        response = client.post(
            "/workitems/updated",
            json=create_webhook_payload(101),
            headers={"X-ADO-RULES": HEADERS["X-ADO-RULES"]}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "X-ADO-PAT" in response.json()["message"]

    def test_webhook_missing_rules(self, service, client, devops_client):
        """Test that a rules source is required."""
        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post(
                "/workitems/updated",
                json=create_webhook_payload(101),
                headers={"X-ADO-PAT": "secret-pat"}
            )

        assert response.status_code == 400
        assert "X-ADO-RULES" in response.json()["message"]

    def test_webhook_rules_from_file(self, tmp_path, devops_client):
        """Test the configured rule file fallback."""
        rules_file = tmp_path / "rules.txt"
        rules_file.write_text(SAMPLE_RULES, encoding="utf-8")
        service = WorkItemAutomationService(
            get_config("workitems", 8020, devops_pat="configured-pat", rules_url=None, rules_file=str(rules_file))
        )
        client = TestClient(service.app)

        with patch.object(service, "create_client", return_value=devops_client) as create_client:
            response = client.post("/workitems/updated", json=create_webhook_payload(101))

        assert response.status_code == 200
        assert response.json()["matched_rule"] == "Developer Task Started"
        create_client.assert_called_once_with("configured-pat")
        devops_client.fetch_rules.assert_not_called()

    def test_webhook_rules_file_read_off_event_loop(self, tmp_path, devops_client):
        """Test that the configured rule file is read in the thread pool."""
        rules_file = tmp_path / "rules.txt"
        rules_file.write_text(SAMPLE_RULES, encoding="utf-8")
        service = WorkItemAutomationService(
            get_config("workitems", 8020, devops_pat="configured-pat", rules_url=None, rules_file=str(rules_file))
        )
        client = TestClient(service.app)

        with patch.object(service, "create_client", return_value=devops_client), \
                patch("service_workitems.app.main.run_in_threadpool", wraps=run_in_threadpool) as threadpool:
            response = client.post("/workitems/updated", json=create_webhook_payload(101))

        assert response.status_code == 200
        threadpool.assert_awaited_once()
        assert threadpool.await_args.kwargs == {"encoding": "utf-8"}

    def test_webhook_unsupported_event(self, service, client, devops_client):
        """Test that only update events are handled."""
        payload = create_webhook_payload(101, event_type="workitem.created")

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "UNSUPPORTED_EVENT"

    def test_webhook_invalid_payload(self, service, client, devops_client):
        """Test that a malformed body is rejected."""
        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json={"eventType": "workitem.updated"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_webhook_parent_not_found(self, service, client, devops_client):
        """Test a work item without a parent."""
        devops_client.get_parent_work_item = AsyncMock(return_value=None)

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "WORK_ITEM_NOT_FOUND"

    def test_webhook_parent_not_requirement(self, service, client, devops_client):
        """Test that only requirement parents are processed."""
        devops_client.get_parent_work_item = AsyncMock(
            return_value=WorkItemFactory.create(100, work_item_type="Epic")
        )

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["code"] == "NOT_A_REQUIREMENT"
        devops_client.get_child_work_items.assert_not_called()

    def test_webhook_triggering_not_found(self, service, client, devops_client):
        """Test that the updated work item must be readable."""
        devops_client.get_work_item = AsyncMock(return_value=None)

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 400
        assert "Triggering work item 101" in response.json()["message"]

    def test_webhook_rule_syntax_error(self, service, client, devops_client):
        """Test that broken rules are reported."""
        devops_client.fetch_rules = AsyncMock(return_value='rule "Broken":\n  set parent.State = "A"')

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "RULE_SYNTAX_ERROR"
        assert data["details"]["line_number"] == 2
        assert service.metrics.registry.get_sample_value("rule_parse_errors_total") == 1.0

    def test_webhook_rules_unavailable(self, service, client, devops_client):
        """Test that a failed rule download is a gateway error."""
        devops_client.fetch_rules = AsyncMock(side_effect=ExternalServiceError("azure_devops", "GET failed"))

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["code"] == "EXTERNAL_SERVICE_ERROR"

    def test_webhook_dry_run(self, devops_client):
        """Test that dry run evaluates without sending."""
        service = WorkItemAutomationService(get_config("workitems", 8020, dry_run=True))
        client = TestClient(service.app)

        with patch.object(service, "create_client", return_value=devops_client):
            response = client.post("/workitems/updated", json=create_webhook_payload(101), headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["batches"][0]["status"] == "dry_run"
        devops_client.send_update_operations.assert_not_called()

    def test_validate_rules_success(self, client):
        """Test rule validation endpoint with valid rules."""
        response = client.post("/rules/validate", json={"rules": SAMPLE_RULES})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [rule["name"] for rule in data["rules"]] == ["Developer Task Started", "Testing Started"]
        assert data["rules"][1]["then"][0]["options"]["suppress_notifications"] is False

    def test_validate_rules_error(self, client):
        """Test rule validation endpoint with a syntax error."""
        response = client.post("/rules/validate", json={"rules": 'rule "R":\n  when me.State equals "A"\n  then set parent.State = "A"'})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"]["line_number"] == 2
        assert "Unrecognised condition" in data["error"]["message"]

    def test_validate_rules_lenient(self, client):
        """Test rule validation endpoint in lenient mode."""
        rules = 'rule "R":\n  when me.State equals "A" and me.State is "B"\n  then set parent.State = "A"'

        response = client.post("/rules/validate", json={"rules": rules, "strict": False})

        assert response.json()["success"] is True
        assert len(response.json()["rules"][0]["when"]) == 1

    def test_evaluate_rules(self, client, hierarchy):
        """Test dry-run evaluation endpoint."""
        parent = hierarchy["parent"]
        children = hierarchy["children"]

        response = client.post("/rules/evaluate", json={
            "rules": SAMPLE_RULES,
            "triggering": children[0].model_dump(),
            "parent": parent.model_dump(),
            "children": [child.model_dump() for child in children],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["matched_rule"] == "Developer Task Started"
        assert len(data["operations"]) == 3

    def test_evaluate_rules_syntax_error(self, client, hierarchy):
        """Test dry-run evaluation with broken rules."""
        response = client.post("/rules/evaluate", json={
            "rules": 'rule "R": when me.Title matches "([" then set parent.State = "A"',
            "triggering": hierarchy["children"][0].model_dump(),
        })

        assert response.status_code == 400
        assert response.json()["code"] == "RULE_SYNTAX_ERROR"
