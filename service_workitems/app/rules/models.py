"""
Rule and work item data models for the Work Item Automation service.

Rules are produced once by the parser and never mutated, so every rule
type is a frozen dataclass holding tuples. Work items and update operations
cross the HTTP boundary and are pydantic models.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Scope(str, Enum):
    """Which item(s) an object operand refers to."""
    IMPLICIT = "implicit"
    ME = "me"
    PARENT = "parent"
    CHILD = "child"
    CHILDREN = "children"


class ConditionOperator(str, Enum):
    """Comparison operators, valued with their DSL spelling."""
    MATCHES = "matches"
    NOT_MATCHES = "not matches"
    CONTAINS = "contains"
    STARTS_WITH = "starts with"
    ENDS_WITH = "ends with"
    IS = "is"
    IS_NOT = "is not"


class ActionOperator(str, Enum):
    """Action kinds."""
    SET = "set"
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ConstOperand:
    """A quoted literal."""
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "const", "value": self.value}


@dataclass(frozen=True)
class ObjectOperand:
    """A field of a work item selected by scope.

    ``conditions`` is only set for ``child(...)``/``children(...)`` selectors;
    unscoped fields inside them bind to the candidate being tested.
    """
    scope: Scope
    field: str
    conditions: Optional[Tuple["Condition", ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": "object", "scope": self.scope.value, "field": self.field}
        if self.conditions is not None:
            data["conditions"] = [c.to_dict() for c in self.conditions]
        return data


Operand = Union[ConstOperand, ObjectOperand]


@dataclass(frozen=True)
class Condition:
    """``<left> <operator> <right>``."""
    left: Operand
    operator: ConditionOperator
    right: Operand

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left": self.left.to_dict(),
            "operator": self.operator.value,
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class AlterOptions:
    """Side-effect flags requested with ``with <opts>``; None means not requested."""
    suppress_notifications: Optional[bool] = None
    bypass_rules: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suppress_notifications": self.suppress_notifications,
            "bypass_rules": self.bypass_rules,
        }


@dataclass(frozen=True)
class Action:
    """One ``set``/``add``/``remove`` statement of a then-clause."""
    operator: ActionOperator
    target: ObjectOperand
    value: Operand
    options: AlterOptions = field(default_factory=AlterOptions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator": self.operator.value,
            "options": self.options.to_dict(),
            "target": self.target.to_dict(),
            "value": self.value.to_dict(),
        }


@dataclass(frozen=True)
class Rule:
    """A named AND-of-conditions guard with an ordered list of actions."""
    name: str
    when: Tuple[Condition, ...]
    then: Tuple[Action, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "when": [c.to_dict() for c in self.when],
            "then": [a.to_dict() for a in self.then],
        }


class WorkItemRelation(BaseModel):
    """An outgoing link of a work item."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    rel: str
    url: str
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or {}

    @property
    def name(self) -> Optional[str]:
        return self.attributes.get("name")


class WorkItem(BaseModel):
    """A work item as returned by the work tracking REST API."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    url: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    relations: List[WorkItemRelation] = Field(default_factory=list)

    @field_validator("fields", "relations", mode="before")
    @classmethod
    def _none_to_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "fields" else []
        return value

    def relations_of(self, rel: str, name: Optional[str] = None) -> List[WorkItemRelation]:
        """Relations with the given type and, optionally, attribute name."""
        return [
            r for r in self.relations
            if r.rel == rel and (name is None or r.name == name)
        ]


class UpdateOperation(BaseModel):
    """A single field replace aimed at one work item."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    suppress_notifications: Optional[bool] = Field(default=None, alias="suppressNotifications")
    bypass_rules: Optional[bool] = Field(default=None, alias="bypassRules")
    op: Literal["replace"] = "replace"
    path: str
    value: str

    def to_patch(self) -> Dict[str, str]:
        """JSON-Patch entry for the work item update endpoint."""
        return {"op": self.op, "path": self.path, "value": self.value}

    def to_record(self) -> Dict[str, Any]:
        """Camel-cased record without unset flags."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class EvaluationContext:
    """The items an operand can reach.

    ``implicit`` is what an unscoped field resolves against: the triggering
    item at top level, the candidate under test inside a nested condition.
    """
    implicit: WorkItem
    triggering: WorkItem
    parent: Optional[WorkItem] = None
    children: Tuple[WorkItem, ...] = ()

    @classmethod
    def for_trigger(cls, triggering: WorkItem, parent: Optional[WorkItem] = None,
                    children=()) -> "EvaluationContext":
        return cls(
            implicit=triggering,
            triggering=triggering,
            parent=parent,
            children=tuple(children),
        )

    def with_implicit(self, item: WorkItem) -> "EvaluationContext":
        return replace(self, implicit=item)


@dataclass
class RuleRunResult:
    """Outcome of running a rule list against one trigger event."""
    rule_name: Optional[str] = None
    operations: List[UpdateOperation] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.rule_name is not None
