"""
Rule engine for the Work Item Automation service.
"""

import time
from typing import Iterable, List, Optional, Sequence

from shared.logging import get_logger, set_work_item_context

from .actions import ActionExecutor
from .evaluator import ConditionEvaluator
from .models import EvaluationContext, Rule, RuleRunResult, UpdateOperation, WorkItem


class RuleEngine:
    """Evaluates parsed rules against a triggering item and its hierarchy.

    Holds no rule state: rule lists are passed in per call, so one engine
    can serve concurrent requests.
    """

    def __init__(self):
        self.logger = get_logger("workitems.rule_engine")
        self.evaluator = ConditionEvaluator()
        self.executor = ActionExecutor(self.evaluator)

    def evaluate_rule(self, rule: Rule, triggering: WorkItem, parent: Optional[WorkItem] = None,
                      children: Iterable[WorkItem] = ()) -> bool:
        """True when every condition of the rule holds."""
        context = EvaluationContext.for_trigger(triggering, parent, children)
        return self.evaluator.evaluate_all(rule.when, context)

    def execute_rule(self, rule: Rule, triggering: WorkItem, parent: Optional[WorkItem] = None,
                     children: Iterable[WorkItem] = ()) -> List[UpdateOperation]:
        """Operations of every action of the rule, in declaration order."""
        context = EvaluationContext.for_trigger(triggering, parent, children)
        operations: List[UpdateOperation] = []
        for action in rule.then:
            operations.extend(self.executor.execute(action, context))
        return operations

    def run(self, rules: Sequence[Rule], triggering: WorkItem, parent: Optional[WorkItem] = None,
            children: Iterable[WorkItem] = ()) -> RuleRunResult:
        """Execute the first rule whose conditions hold; later rules are not considered."""
        start_time = time.time()
        context = EvaluationContext.for_trigger(triggering, parent, children)

        for rule in rules:
            if not self.evaluator.evaluate_all(rule.when, context):
                continue

            set_work_item_context(work_item_id=triggering.id, rule_name=rule.name)
            operations: List[UpdateOperation] = []
            for action in rule.then:
                operations.extend(self.executor.execute(action, context))

            self.logger.info(
                "Rule matched",
                rule_name=rule.name,
                work_item_id=triggering.id,
                operations=len(operations),
                evaluation_time_ms=(time.time() - start_time) * 1000
            )
            return RuleRunResult(rule_name=rule.name, operations=operations)

        self.logger.info(
            "No rule matched",
            work_item_id=triggering.id,
            rules=len(rules),
            evaluation_time_ms=(time.time() - start_time) * 1000
        )
        return RuleRunResult()
