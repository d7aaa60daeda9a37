#!/usr/bin/env python3
"""
Rule file validation script for the Work Item Automation service.
Parses each rule file and reports syntax errors with their line numbers.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.errors import RuleSyntaxError
from shared.logging import configure_logging
from service_workitems.app.rules.models import Rule
from service_workitems.app.rules.parser import RuleParser


def validate_rule_file(path: Path, strict: bool = True) -> List[Rule]:
    """Parse a single rule file; raises RuleSyntaxError on the first problem."""
    text = path.read_text(encoding="utf-8")
    return RuleParser(strict=strict).parse(text)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate work item automation rule files.")
    parser.add_argument("files", nargs="+", type=Path, help="Rule files to validate")
    parser.add_argument("--json", action="store_true", help="Print the parsed rules as JSON")
    parser.add_argument("--lenient", action="store_true", help="Drop unrecognised conditions/actions instead of failing")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Validate every file given on the command line."""
    args = _parse_args(argv)
    configure_logging("validate_rules", "warning")

    total_errors = 0
    parsed = {}

    for path in args.files:
        try:
            rules = validate_rule_file(path, strict=not args.lenient)
        except OSError as e:
            print(f"❌ {path}: cannot read file ({e})")
            total_errors += 1
            continue
        except RuleSyntaxError as e:
            print(f"❌ {path}: {e.message}")
            total_errors += 1
            continue

        parsed[str(path)] = [rule.to_dict() for rule in rules]
        if not args.json:
            print(f"✅ {path}: {len(rules)} rule(s)")
            for rule in rules:
                print(f"   - {rule.name}: {len(rule.when)} condition(s), {len(rule.then)} action(s)")

    if args.json:
        print(json.dumps(parsed, indent=2))
    else:
        print(f"\nValidation complete: {total_errors} file(s) with errors")

    return 1 if total_errors else 0


if __name__ == "__main__":
    sys.exit(main())
