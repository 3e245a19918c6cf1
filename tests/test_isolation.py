"""
Core Isolation Tests

The evaluation core (graph, evaluation, extraction, analysis) must stay
free of file I/O, plotting and the CLI configuration module; only
export.py and the CLI itself may touch those.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


PACKAGE_DIR = Path(__file__).parent.parent / 'beatgraph'

CORE_MODULES = [
    'analysis.py', 'context.py', 'debug.py', 'envelopes.py', 'evaluate.py',
    'events.py', 'extractor.py', 'generators.py', 'graph.py', 'inputs.py',
    'nodes.py', 'params.py', 'session.py', 'state.py', 'stats.py', 'timebase.py',
]

FORBIDDEN_IMPORTS = [
    'import json',
    'from json import',
    'import os',
    'from os import',
    'import pathlib',
    'from pathlib import',
    'import matplotlib',
    'import config',
    'from config import',
    'from beatgraph.config import',
]


class TestCoreIsolation:
    """Test that core modules have no forbidden dependencies."""

    @pytest.mark.parametrize('module', CORE_MODULES)
    def test_no_io_imports(self, module):
        with open(PACKAGE_DIR / module, 'r') as f:
            source = f.read()

        for forbidden in FORBIDDEN_IMPORTS:
            assert forbidden not in source, f"{module} should not import: {forbidden}"

    def test_every_module_checked(self):
        on_disk = {p.name for p in PACKAGE_DIR.glob('*.py')}
        assert on_disk - set(CORE_MODULES) == {'__init__.py', 'cli.py', 'config.py', 'export.py'}
