"""
Action execution: turns a rule's then-clause into update operations.
"""

from typing import List, Optional

from shared.logging import get_logger

from .evaluator import ConditionEvaluator
from .models import Action, ActionOperator, EvaluationContext, UpdateOperation, WorkItem
from .resolver import TAG_SEPARATOR, TAGS_FIELD, canonical_field, field_path, read_field, split_tags, to_text


class ActionExecutor:
    """Produces ``UpdateOperation`` records for an action.

    Nothing is written here; the operations are handed to the dispatcher.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.logger = get_logger("workitems.action_executor")
        self.evaluator = evaluator or ConditionEvaluator()
        self.resolver = self.evaluator.resolver

    def execute(self, action: Action, context: EvaluationContext) -> List[UpdateOperation]:
        """Operations for one action, in target order."""
        targets = self.resolver.resolve_targets(action.target, context)
        if not targets:
            self.logger.debug("Action target not found", operator=action.operator.value,
                              scope=action.target.scope.value, field=action.target.field)
            return []

        # Values always read from the triggering side, whatever the target scope.
        value = self.resolver.resolve_value(action.value, context.with_implicit(context.triggering))
        if value is None:
            self.logger.debug("Action value not resolved", operator=action.operator.value,
                              field=action.target.field)
            return []
        text = to_text(value)

        if action.operator is ActionOperator.SET:
            return [self._operation(action, target, text) for target in targets]
        elif action.operator is ActionOperator.ADD:
            return self._add(action, targets, text)
        elif action.operator is ActionOperator.REMOVE:
            return self._remove(action, targets, text)

        raise TypeError(f"Unsupported action operator: {action.operator!r}")

    def _add(self, action: Action, targets: List[WorkItem], text: str) -> List[UpdateOperation]:
        if canonical_field(action.target.field) != TAGS_FIELD:
            return [self._operation(action, target, text) for target in targets]

        operations = []
        for target in targets:
            tags = split_tags(read_field(target, TAGS_FIELD))
            if text in tags:
                continue
            tags.append(text)
            operations.append(self._operation(action, target, TAG_SEPARATOR.join(tags)))
        return operations

    def _remove(self, action: Action, targets: List[WorkItem], text: str) -> List[UpdateOperation]:
        if canonical_field(action.target.field) != TAGS_FIELD:
            self.logger.warning("Remove is only supported for tags", field=action.target.field)
            return []

        operations = []
        for target in targets:
            tags = [tag for tag in split_tags(read_field(target, TAGS_FIELD)) if tag != text]
            operations.append(self._operation(action, target, TAG_SEPARATOR.join(tags)))
        return operations

    @staticmethod
    def _operation(action: Action, target: WorkItem, value: str) -> UpdateOperation:
        return UpdateOperation(
            url=target.url,
            suppress_notifications=action.options.suppress_notifications,
            bypass_rules=action.options.bypass_rules,
            path=field_path(action.target.field),
            value=value,
        )
