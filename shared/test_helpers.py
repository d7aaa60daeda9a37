"""
Test helper functions and factory methods for the Work Item Automation service.
"""

from typing import Any, Dict, List, Optional

ORGANIZATION_URL = "https://dev.azure.com/contoso/_apis/wit/workItems"


def work_item_url(work_item_id: int) -> str:
    """REST URL of a work item in the test organization."""
    return f"{ORGANIZATION_URL}/{work_item_id}"


def identity(unique_name: str, display_name: Optional[str] = None) -> Dict[str, Any]:
    """Identity composite as returned for System.AssignedTo."""
    return {
        "displayName": display_name or unique_name.split("@")[0].title(),
        "uniqueName": unique_name,
        "id": f"id-{unique_name}",
    }


class WorkItemPayloadFactory:
    """Factory for work item REST payloads."""

    @staticmethod
    def payload(work_item_id: int,
                title: str = "Work item",
                state: str = "New",
                work_item_type: str = "Task",
                parent_id: Optional[int] = None,
                child_ids: Optional[List[int]] = None,
                **fields) -> Dict[str, Any]:
        """Raw REST payload with hierarchy relations."""
        relations = []
        if parent_id is not None:
            relations.append({
                "rel": "System.LinkTypes.Hierarchy-Reverse",
                "url": work_item_url(parent_id),
                "attributes": {"isLocked": False, "name": "Parent"},
            })
        for child_id in child_ids or []:
            relations.append({
                "rel": "System.LinkTypes.Hierarchy-Forward",
                "url": work_item_url(child_id),
                "attributes": {"isLocked": False, "name": "Child"},
            })

        item_fields = {
            "System.Title": title,
            "System.State": state,
            "System.WorkItemType": work_item_type,
        }
        item_fields.update(fields)

        return {
            "id": work_item_id,
            "rev": 1,
            "url": work_item_url(work_item_id),
            "fields": item_fields,
            "relations": relations,
        }

    @classmethod
    def hierarchy(cls) -> Dict[str, Any]:
        """A user story (100) with a development task (101) and a test task (102)."""
        parent = cls.payload(
            100, title="Checkout flow", state="New", work_item_type="User Story",
            child_ids=[101, 102], **{"System.Tags": "Sprint 12"}
        )
        dev_task = cls.payload(
            101, title="Dev: implement checkout", state="Active", parent_id=100,
            **{"System.AssignedTo": identity("dev@contoso.com")}
        )
        test_task = cls.payload(
            102, title="Test: checkout scenarios", state="New", parent_id=100,
            **{"System.AssignedTo": identity("qa@contoso.com")}
        )
        return {"parent": parent, "children": [dev_task, test_task]}


def create_webhook_payload(work_item_id: int,
                           parent_id: Optional[int] = 100,
                           event_type: str = "workitem.updated") -> Dict[str, Any]:
    """Service hook body for an update of ``work_item_id``."""
    relations = []
    if parent_id is not None:
        relations.append({
            "rel": "System.LinkTypes.Hierarchy-Reverse",
            "url": work_item_url(parent_id),
            "attributes": {"isLocked": False, "name": "Parent"},
        })

    return {
        "subscriptionId": "00000000-0000-0000-0000-000000000000",
        "eventType": event_type,
        "resource": {
            "id": 7,
            "workItemId": work_item_id,
            "rev": 7,
            "fields": {"System.State": {"oldValue": "New", "newValue": "Active"}},
            "revision": {
                "id": work_item_id,
                "rev": 7,
                "fields": {"System.State": "Active", "System.WorkItemType": "Task"},
                "relations": relations,
            },
            "_links": {
                "self": {"href": f"{work_item_url(work_item_id)}/updates/7"},
                "parent": {"href": work_item_url(work_item_id)},
            },
        },
        "resourceContainers": {
            "project": {"id": "project-1", "baseUrl": "https://dev.azure.com/contoso/"}
        },
    }


SAMPLE_RULES = '''
# Propagate task progress to the parent story
rule "Developer Task Started":
    when me.Title contains "Dev" and me.State is "Active"
    then set parent.State = "Active"
         set parent.AssignedTo = me.AssignedTo
         add "In Development" to parent.Tags

rule "Testing Started":
    when me.Title starts with "Test" and me.State is "Active"
    then set with notifications parent.State = "Resolved"
'''
