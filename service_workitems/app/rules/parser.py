"""
Parser for the work item automation rule language.

A rule file is a sequence of blocks::

    # comments and blank lines are ignored
    rule "Developer Task Started":
        when me.Title contains "Dev" and me.State is "Active"
        then set parent.AssignedTo = me.AssignedTo
             set with notifications parent.State = "Active"
             add "Started" to parent.Tags

Conditions may continue over several lines until the ``then`` line; actions
continue until the next ``rule`` header. Separators (`` and ``, action
keywords, ``=``) are only recognised outside double quotes and outside the
parentheses of ``child(...)``/``children(...)`` selectors.
"""

import re
from typing import List, Optional, Tuple

from shared.errors import RuleSyntaxError
from shared.logging import get_logger

from .models import (
    Action, ActionOperator, AlterOptions, Condition, ConditionOperator,
    ConstOperand, ObjectOperand, Operand, Rule, Scope,
)

_RULE_KEYWORD = re.compile(r'^rule\b')
_RULE_HEADER = re.compile(r'^rule\s+"([^"]+)":\s*$')
_INLINE_HEADER = re.compile(r'^(rule\s+"[^"]+":)\s*(\S.*)$')
_WHEN = re.compile(r'^when(?:\s+|$)')
_THEN = re.compile(r'^then(?:\s+|$)')

# Longer operators first: "not matches" before "matches", "is not" before "is".
_OPERATOR_ORDER = (
    ConditionOperator.NOT_MATCHES,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
    ConditionOperator.MATCHES,
    ConditionOperator.CONTAINS,
    ConditionOperator.IS_NOT,
    ConditionOperator.IS,
)
_OPERATOR_PATTERN = re.compile(
    r'\b(' + '|'.join(op.value.replace(' ', r'\s+') for op in _OPERATOR_ORDER) + r')\b'
)

_ACTION_KEYWORDS = tuple(op.value for op in ActionOperator)
_ACTION_HEAD = re.compile(r'^(set|add|remove)(?:\s+(.*))?$', re.S)
_WITH_OPTIONS = re.compile(r'^with\s+')
_OPTION_TOKEN = re.compile(r'^(notifications|suppressNotifications|bypassRules)\b[\s,]*')
_ADD_BODY = re.compile(r'^"([^"]+)"\s+to\s+(.+)$')
_REMOVE_BODY = re.compile(r'^"([^"]+)"\s+from\s+(.+)$')

_SELECTOR_OPEN = re.compile(r'^(children|child)\(')
_SCOPED_FIELD = re.compile(r'^(me|parent|children|child)\.(.+)$')
_FIELD_NAME = re.compile(r'^[A-Za-z_][\w.\-]*$')

_Line = Tuple[int, str]


def _top_level_mask(text: str) -> List[bool]:
    """True for each character outside quotes and parentheses."""
    mask = []
    in_quotes = False
    depth = 0
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
            mask.append(False)
        elif in_quotes:
            mask.append(False)
        elif char == '(':
            depth += 1
            mask.append(False)
        elif char == ')':
            depth = max(0, depth - 1)
            mask.append(False)
        else:
            mask.append(depth == 0)
    return mask


def _find_closing_paren(text: str, open_index: int) -> Optional[int]:
    depth = 0
    in_quotes = False
    for index in range(open_index, len(text)):
        char = text[index]
        if char == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
            if depth == 0:
                return index
    return None


def split_conditions(text: str) -> List[str]:
    """Split condition text on `` and `` outside quotes and parentheses."""
    mask = _top_level_mask(text)
    parts = []
    start = 0
    index = 0
    while index < len(text):
        if mask[index] and text.startswith(' and ', index):
            parts.append(text[start:index].strip())
            index += len(' and ')
            start = index
        else:
            index += 1
    parts.append(text[start:].strip())
    return [part for part in parts if part]


def split_actions(text: str) -> List[str]:
    """Split action text at each ``set``/``add``/``remove`` keyword.

    A keyword starts a new action only at top level, when preceded by the
    start of the text or a space and followed by a space or the end.
    """
    mask = _top_level_mask(text)
    starts = [0]
    for index in range(1, len(text)):
        if not mask[index] or text[index - 1] != ' ':
            continue
        for keyword in _ACTION_KEYWORDS:
            end = index + len(keyword)
            if text.startswith(keyword, index) and (end == len(text) or text[end] == ' '):
                starts.append(index)
                break
    bounds = starts + [len(text)]
    chunks = [text[bounds[i]:bounds[i + 1]].strip() for i in range(len(starts))]
    return [chunk for chunk in chunks if chunk]


def _split_inline_then(text: str) -> List[str]:
    """Split ``when a is "b" then set ...`` written on one line."""
    mask = _top_level_mask(text)
    for index in range(1, len(text)):
        if mask[index] and text[index - 1] == ' ' and re.match(r'then\s', text[index:]):
            return [text[:index].strip(), text[index:]]
    return [text]


def find_operator(text: str) -> Optional["re.Match[str]"]:
    """Leftmost top-level comparison operator in ``text``."""
    mask = _top_level_mask(text)
    for match in _OPERATOR_PATTERN.finditer(text):
        if mask[match.start()]:
            return match
    return None


class RuleParser:
    """Converts rule DSL text into an ordered list of ``Rule`` objects.

    The parser keeps no state between calls. With ``strict=False`` condition
    and action text that matches no grammar is dropped with a warning
    instead of raising, which is how older rule files were treated.
    """

    def __init__(self, strict: bool = True):
        self.strict = strict
        self.logger = get_logger("workitems.rule_parser")

    def parse(self, text: str) -> List[Rule]:
        """Parse DSL text into rules, in declaration order."""
        lines = self._significant_lines(text)
        rules: List[Rule] = []
        index = 0

        while index < len(lines):
            number, line = lines[index]
            if not _RULE_KEYWORD.match(line):
                if self.strict:
                    raise RuleSyntaxError("Expected rule header", number, line)
                self.logger.warning("Skipping text outside of a rule", line_number=number, line=line)
                index += 1
                continue

            rule, index = self._parse_rule(lines, index)
            rules.append(rule)

        self.logger.debug("Parsed rules", count=len(rules), names=[r.name for r in rules])
        return rules

    @staticmethod
    def _significant_lines(text: str) -> List[_Line]:
        """Trimmed, non-comment lines with their 1-based line numbers.

        A header followed by its clauses on the same line, or a ``then``
        clause sharing a line with the conditions, is split into separate
        entries carrying the same line number.
        """
        lines: List[_Line] = []
        for number, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith('#'):
                continue
            inline = _INLINE_HEADER.match(line)
            if inline:
                lines.append((number, inline.group(1)))
                line = inline.group(2)
            lines.extend((number, piece) for piece in _split_inline_then(line) if piece)
        return lines

    def _parse_rule(self, lines: List[_Line], index: int) -> Tuple[Rule, int]:
        number, line = lines[index]
        header = _RULE_HEADER.match(line)
        if not header:
            raise RuleSyntaxError("Invalid rule syntax", number, line)
        name = header.group(1)
        index += 1

        if index >= len(lines) or not _WHEN.match(lines[index][1]):
            number, line = lines[index] if index < len(lines) else (number, line)
            raise RuleSyntaxError(f"Expected 'when' clause in rule \"{name}\"", number, line)

        when_number, when_line = lines[index]
        condition_parts = [_WHEN.sub('', when_line, count=1)]
        index += 1
        while index < len(lines) and not _THEN.match(lines[index][1]) \
                and not _RULE_KEYWORD.match(lines[index][1]):
            condition_parts.append(lines[index][1])
            index += 1

        if index >= len(lines) or not _THEN.match(lines[index][1]):
            number, line = lines[index] if index < len(lines) else lines[-1]
            raise RuleSyntaxError(f"Expected 'then' clause in rule \"{name}\"", number, line)

        then_number, then_line = lines[index]
        action_parts = [_THEN.sub('', then_line, count=1)]
        index += 1
        while index < len(lines) and not _RULE_KEYWORD.match(lines[index][1]):
            action_parts.append(lines[index][1])
            index += 1

        conditions = self._parse_conditions(' '.join(condition_parts).strip(), when_number)
        if not conditions:
            raise RuleSyntaxError(f"Rule \"{name}\" has no conditions", when_number, when_line)

        actions = self._parse_actions(' '.join(action_parts).strip(), then_number)
        if not actions:
            raise RuleSyntaxError(f"Rule \"{name}\" has no actions", then_number, then_line)

        return Rule(name=name, when=tuple(conditions), then=tuple(actions)), index

    def _unrecognised(self, kind: str, text: str, number: int) -> None:
        if self.strict:
            raise RuleSyntaxError(f"Unrecognised {kind}", number, text)
        self.logger.warning(f"Dropping unrecognised {kind}", line_number=number, text=text)

    def _parse_conditions(self, text: str, number: int) -> List[Condition]:
        conditions = []
        for chunk in split_conditions(text):
            condition = self.parse_condition(chunk, number)
            if condition is None:
                self._unrecognised("condition", chunk, number)
            else:
                conditions.append(condition)
        return conditions

    def parse_condition(self, text: str, number: int = 0) -> Optional[Condition]:
        """Parse ``<operand> <operator> <operand>``; None when no operator is found."""
        match = find_operator(text)
        if match is None:
            return None

        left_text = text[:match.start()].strip()
        right_text = text[match.end():].strip()
        if not left_text or not right_text:
            return None

        operator = ConditionOperator(' '.join(match.group(1).split()))
        right = self.parse_operand(right_text, number)
        if operator in (ConditionOperator.MATCHES, ConditionOperator.NOT_MATCHES) \
                and isinstance(right, ConstOperand):
            try:
                re.compile(right.value)
            except re.error as e:
                raise RuleSyntaxError(f"Invalid regular expression ({e})", number, text) from e

        return Condition(left=self.parse_operand(left_text, number), operator=operator, right=right)

    def _parse_actions(self, text: str, number: int) -> List[Action]:
        actions = []
        for chunk in split_actions(text):
            action = self.parse_action(chunk, number)
            if action is None:
                self._unrecognised("action", chunk, number)
            else:
                actions.append(action)
        return actions

    def parse_action(self, text: str, number: int = 0) -> Optional[Action]:
        """Parse one ``set``/``add``/``remove`` statement; None when it fits no grammar."""
        head = _ACTION_HEAD.match(text)
        if not head:
            return None
        operator = ActionOperator(head.group(1))
        options, body = self._parse_options(head.group(2) or '', number, text)

        if operator is ActionOperator.SET:
            mask = _top_level_mask(body)
            equals = next((i for i, char in enumerate(body) if char == '=' and mask[i]), None)
            if equals is None:
                return None
            target_text, value_text = body[:equals].strip(), body[equals + 1:].strip()
            if not target_text or not value_text:
                return None
            value = self.parse_operand(value_text, number)
        else:
            grammar = _ADD_BODY if operator is ActionOperator.ADD else _REMOVE_BODY
            match = grammar.match(body)
            if not match:
                return None
            value = ConstOperand(match.group(1))
            target_text = match.group(2).strip()

        target = self.parse_operand(target_text, number)
        if not isinstance(target, ObjectOperand):
            raise RuleSyntaxError(f"Cannot {operator.value} a literal value", number, text)

        return Action(operator=operator, target=target, value=value, options=options)

    @staticmethod
    def _parse_options(text: str, number: int, action_text: str) -> Tuple[AlterOptions, str]:
        """Consume a leading ``with <opts>`` segment."""
        if not _WITH_OPTIONS.match(text):
            return AlterOptions(), text

        rest = _WITH_OPTIONS.sub('', text, count=1)
        suppress_notifications = None
        bypass_rules = None
        consumed = False
        while True:
            token = _OPTION_TOKEN.match(rest)
            if not token:
                break
            consumed = True
            word = token.group(1)
            if word == "notifications":
                suppress_notifications = False
            elif word == "suppressNotifications":
                suppress_notifications = True
            else:
                bypass_rules = True
            rest = rest[token.end():]

        if not consumed:
            raise RuleSyntaxError("Expected an option after 'with'", number, action_text)

        return AlterOptions(suppress_notifications=suppress_notifications, bypass_rules=bypass_rules), rest

    def parse_operand(self, text: str, number: int = 0) -> Operand:
        """Parse a literal, a ``scope.Field`` reference or a bare field name."""
        text = text.strip()

        if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
            return ConstOperand(text[1:-1])

        selector = _SELECTOR_OPEN.match(text)
        if selector:
            close = _find_closing_paren(text, selector.end() - 1)
            if close is not None and text[close + 1:close + 2] == '.' and text[close + 2:]:
                inner = text[selector.end():close]
                conditions = self._parse_conditions(inner, number)
                if not conditions and self.strict:
                    raise RuleSyntaxError("Empty selector condition", number, text)
                return ObjectOperand(
                    scope=Scope(selector.group(1)),
                    field=text[close + 2:].strip(),
                    conditions=tuple(conditions),
                )
            if self.strict:
                raise RuleSyntaxError("Malformed child selector", number, text)

        scoped = _SCOPED_FIELD.match(text)
        if scoped:
            return ObjectOperand(scope=Scope(scoped.group(1)), field=scoped.group(2).strip())

        if self.strict and not _FIELD_NAME.match(text):
            raise RuleSyntaxError("Invalid operand", number, text)
        return ObjectOperand(scope=Scope.IMPLICIT, field=text)


def parse_rules(text: str, strict: bool = True) -> List[Rule]:
    """Parse DSL text into an ordered list of rules."""
    return RuleParser(strict=strict).parse(text)
