"""
Condition evaluation for work item rules.
"""

import re
from typing import Iterable, Optional

from shared.logging import get_logger

from .models import Condition, ConditionOperator, EvaluationContext
from .resolver import OperandResolver, to_text


class ConditionEvaluator:
    """Applies comparison operators to resolved operands.

    A condition whose operands cannot be resolved (missing field, no parent,
    no matching child) is false; it never raises.
    """

    def __init__(self):
        self.logger = get_logger("workitems.condition_evaluator")
        self.resolver = OperandResolver(self)

    def evaluate_all(self, conditions: Iterable[Condition], context: EvaluationContext) -> bool:
        """AND of all conditions, stopping at the first false one."""
        for condition in conditions:
            if not self.evaluate(condition, context):
                return False
        return True

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        """Evaluate a single condition."""
        left_value = self.resolver.resolve_value(condition.left, context)
        right_value = self.resolver.resolve_value(condition.right, context)

        if left_value is None or right_value is None:
            return False

        left = to_text(left_value)
        right = to_text(right_value)
        operator = condition.operator

        if operator is ConditionOperator.MATCHES or operator is ConditionOperator.NOT_MATCHES:
            pattern = self._compile(right)
            if pattern is None:
                return False
            found = pattern.search(left) is not None
            return found if operator is ConditionOperator.MATCHES else not found
        elif operator is ConditionOperator.CONTAINS:
            return right in left
        elif operator is ConditionOperator.STARTS_WITH:
            return left.startswith(right)
        elif operator is ConditionOperator.ENDS_WITH:
            return left.endswith(right)
        elif operator is ConditionOperator.IS:
            return left == right
        elif operator is ConditionOperator.IS_NOT:
            return left != right

        raise TypeError(f"Unsupported condition operator: {operator!r}")

    def _compile(self, pattern: str) -> Optional["re.Pattern[str]"]:
        try:
            return re.compile(pattern)
        except re.error as e:
            # Literal patterns are checked by the parser; this one came from a field value.
            self.logger.warning("Invalid regular expression in field value", pattern=pattern, error=str(e))
            return None
