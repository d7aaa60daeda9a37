"""
Operand resolution against a work item hierarchy.
"""

from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from .models import Condition, ConstOperand, EvaluationContext, ObjectOperand, Operand, Scope, WorkItem

if TYPE_CHECKING:  # pragma: no cover
    from .evaluator import ConditionEvaluator

ID_FIELD = "id"
TAGS_FIELD = "System.Tags"
TAG_SEPARATOR = "; "

# DSL field names (matched case-insensitively) -> REST API field reference names.
FIELD_ALIASES: Dict[str, str] = {
    "id": ID_FIELD,
    "title": "System.Title",
    "state": "System.State",
    "assignedto": "System.AssignedTo",
    "tags": TAGS_FIELD,
    "reason": "System.Reason",
    "workitemtype": "System.WorkItemType",
    "areapath": "System.AreaPath",
    "teamproject": "System.TeamProject",
    "iterationpath": "System.IterationPath",
}


def canonical_field(name: str) -> str:
    """Map a DSL field name to its attribute key; unknown names pass through."""
    return FIELD_ALIASES.get(name.lower(), name)


def field_path(name: str) -> str:
    """JSON-Patch path for a DSL field name."""
    canonical = canonical_field(name)
    if canonical == ID_FIELD:
        canonical = "System.Id"
    return f"/fields/{canonical}"


def read_field(item: WorkItem, name: str) -> Any:
    """Value of a DSL field on an item, or None when it is not set."""
    canonical = canonical_field(name)
    if canonical == ID_FIELD:
        return item.id
    return item.fields.get(canonical)


def to_text(value: Any) -> str:
    """String form of a resolved value.

    Identity fields such as ``System.AssignedTo`` come back as objects; they
    compare and assign by their ``uniqueName``.
    """
    if isinstance(value, dict) and "uniqueName" in value:
        return str(value["uniqueName"])
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def split_tags(value: Any) -> List[str]:
    if not value:
        return []
    return str(value).split(TAG_SEPARATOR)


class OperandResolver:
    """Resolves operands to scalar values or to target work items.

    Nested ``child(...)``/``children(...)`` conditions are delegated back to
    the condition evaluator with the candidate bound as the implicit item.
    """

    def __init__(self, evaluator: "ConditionEvaluator"):
        self.evaluator = evaluator

    def resolve_value(self, operand: Operand, context: EvaluationContext) -> Any:
        """Scalar value of an operand, or None when it cannot be resolved."""
        if isinstance(operand, ConstOperand):
            return operand.value
        if isinstance(operand, ObjectOperand):
            item = self.resolve_item(operand, context)
            if item is None:
                return None
            return read_field(item, operand.field)
        raise TypeError(f"Unsupported operand type: {type(operand).__name__}")

    def resolve_item(self, operand: ObjectOperand, context: EvaluationContext) -> Optional[WorkItem]:
        """The single item an operand reads from.

        For ``children`` this is the first matching child.
        """
        scope = operand.scope
        if scope is Scope.ME:
            return context.triggering
        if scope is Scope.PARENT:
            return context.parent
        if scope is Scope.IMPLICIT:
            return context.implicit
        if scope is Scope.CHILD or scope is Scope.CHILDREN:
            return self.find_matching_child(operand.conditions, context)
        raise TypeError(f"Unsupported scope: {scope!r}")

    def resolve_targets(self, operand: ObjectOperand, context: EvaluationContext) -> List[WorkItem]:
        """Items an action writes to."""
        scope = operand.scope
        if scope is Scope.ME or scope is Scope.IMPLICIT:
            return [context.triggering]
        if scope is Scope.PARENT:
            return [context.parent] if context.parent is not None else []
        if scope is Scope.CHILD:
            child = self.find_matching_child(operand.conditions, context)
            return [child] if child is not None else []
        if scope is Scope.CHILDREN:
            return self.find_matching_children(operand.conditions, context)
        raise TypeError(f"Unsupported scope: {scope!r}")

    def find_matching_child(self, conditions: Optional[Sequence[Condition]],
                            context: EvaluationContext) -> Optional[WorkItem]:
        """First child meeting every condition; the first child when there are none."""
        if not conditions:
            return context.children[0] if context.children else None
        for child in context.children:
            if self.evaluator.evaluate_all(conditions, context.with_implicit(child)):
                return child
        return None

    def find_matching_children(self, conditions: Optional[Sequence[Condition]],
                               context: EvaluationContext) -> List[WorkItem]:
        """Every child meeting every condition; all children when there are none."""
        if not conditions:
            return list(context.children)
        return [
            child for child in context.children
            if self.evaluator.evaluate_all(conditions, context.with_implicit(child))
        ]
