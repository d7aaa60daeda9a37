"""
Tests for the dependency direction between the shared layer and services.
"""

import ast
from pathlib import Path

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.test_helpers import WorkItemPayloadFactory

SHARED_DIR = Path(__file__).resolve().parents[2] / "shared"


def imported_modules(path: Path):
    tree = ast.parse(path.read_text(encoding="utf-8"))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield alias.name
        elif isinstance(node, ast.ImportFrom) and node.module:
            yield node.module


class TestSharedLayer:
    """The shared package must not depend on any service package."""

    @pytest.mark.parametrize("path", sorted(SHARED_DIR.glob("*.py")), ids=lambda p: p.name)
    def test_no_service_imports(self, path):
        offending = [name for name in imported_modules(path) if name.startswith("service_")]

        assert offending == []

    def test_hierarchy_is_plain_payloads(self):
        """Test that the shared factory hands out raw REST dictionaries."""
        hierarchy = WorkItemPayloadFactory.hierarchy()

        assert isinstance(hierarchy["parent"], dict)
        assert hierarchy["parent"]["fields"]["System.WorkItemType"] == "User Story"
        assert [child["id"] for child in hierarchy["children"]] == [101, 102]
