"""
Smoke test that the public entry points import cleanly.
"""

import archive_guard
from archive_guard.sdk import GovernedClient
from archive_guard.cli.main import app


def test_package_imports():
    assert archive_guard.__version__
    assert GovernedClient is not None
    assert app is not None
