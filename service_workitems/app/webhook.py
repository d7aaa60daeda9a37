"""
Service hook payload for ``workitem.updated`` events.

Only the parts the automation flow reads are modelled; everything else in
the payload is ignored.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .rules.models import WorkItemRelation

SUPPORTED_EVENT_TYPES = ("workitem.updated",)
PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"
CHILD_RELATION = "System.LinkTypes.Hierarchy-Forward"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Link(_Payload):
    href: str


class WebhookLinks(_Payload):
    self_link: Optional[Link] = Field(default=None, alias="self")
    parent: Optional[Link] = None


class WorkItemRevision(_Payload):
    """Work item state after the update, including its relations."""
    id: Optional[int] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    relations: List[WorkItemRelation] = Field(default_factory=list)

    @field_validator("fields", "relations", mode="before")
    @classmethod
    def _none_to_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "fields" else []
        return value


class WebhookResource(_Payload):
    work_item_id: int = Field(alias="workItemId")
    fields: Dict[str, Any] = Field(default_factory=dict)
    revision: WorkItemRevision = Field(default_factory=WorkItemRevision)
    links: WebhookLinks = Field(default_factory=WebhookLinks, alias="_links")


class ProjectContainer(_Payload):
    id: str
    base_url: Optional[str] = Field(default=None, alias="baseUrl")


class ResourceContainers(_Payload):
    project: Optional[ProjectContainer] = None


class WorkItemWebhook(_Payload):
    """A work item service hook notification."""

    event_type: str = Field(alias="eventType")
    resource: WebhookResource
    resource_containers: Optional[ResourceContainers] = Field(default=None, alias="resourceContainers")

    @property
    def is_supported(self) -> bool:
        return self.event_type in SUPPORTED_EVENT_TYPES

    @property
    def work_item_id(self) -> int:
        return self.resource.work_item_id

    @property
    def triggering_url(self) -> Optional[str]:
        """URL of the updated work item.

        The service hook exposes it as the ``parent`` link of the update
        resource, not of the work item hierarchy.
        """
        link = self.resource.links.parent
        return link.href if link else None

    def parent_relation(self) -> Optional[WorkItemRelation]:
        """First hierarchy link pointing at the work item's parent."""
        for relation in self.resource.revision.relations:
            if relation.rel == PARENT_RELATION and relation.name == "Parent":
                return relation
        return None
