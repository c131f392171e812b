"""Root conftest.py for dp832.

Puts ``src/`` on the import path so the tests run from a plain checkout,
registers the custom markers and marks tests that drive the emulator or a
mock instead of a real instrument.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


PROJECT_ROOT = Path(__file__).parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line(
        "markers",
        "uses_mock: Test talks to a mock or the emulator (auto-detected or manually marked)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Test requiring a real DP832 on the bus",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


class FakeInstrumentDetector(ast.NodeVisitor):
    """AST visitor that spots mock or emulator use in a test function."""

    NAMES = frozenset({
        "MagicMock",
        "Mock",
        "patch",
        "MockTransport",
        "make_dp832_emulator",
        "emulator_factory",
        "monkeypatch",
    })

    def __init__(self) -> None:
        self.found = False

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in self.NAMES:
            self.found = True
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr in self.NAMES:
            self.found = True
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        for arg in node.args.args:
            if arg.arg in self.NAMES or "emulator" in arg.arg or "mock" in arg.arg:
                self.found = True
        self.generic_visit(node)


def _uses_fake_instrument(item: Item) -> bool:
    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        return False
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return False
    detector = FakeInstrumentDetector()
    detector.visit(tree)
    return detector.found


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that run against a mock or the emulator.

    Args:
        config: pytest configuration object.
        items: List of collected test items.
    """
    for item in items:
        if item.get_closest_marker("uses_mock"):
            continue
        if _uses_fake_instrument(item):
            item.add_marker(pytest.mark.uses_mock)


def pytest_report_header(config: Config) -> list[str]:
    """Add a project line to the pytest header."""
    return ["dp832 test suite"]
