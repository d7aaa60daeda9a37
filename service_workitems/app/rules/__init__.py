"""
Rules package.

Compiles the work item automation DSL and evaluates it against a
triggering work item, its parent and the parent's children.

Modules of interest:
- models: Rule, Condition, Operand and Action types, work items, update operations.
- parser: DSL text to an ordered rule list.
- resolver: Scope and field resolution, field aliases.
- evaluator: Condition operators.
- actions: set/add/remove to update operations.
- engine: First-match rule execution.

Everything here is synchronous and free of I/O.
"""

from .engine import RuleEngine
from .parser import RuleParser, parse_rules

__all__ = ["RuleEngine", "RuleParser", "parse_rules"]
