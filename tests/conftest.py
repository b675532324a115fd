"""Pytest configuration for archrig tests."""
from pathlib import Path

import pytest


def pytest_sessionfinish(session, exitstatus):
    """Fail the run if --cov was requested but no coverage data was written.

    A suite that imports ``src/archrig`` by filesystem path instead of the
    installed ``archrig`` package reports 0% without failing.
    """
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    if not list(Path.cwd().glob(".coverage*")):
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'archrig' (the installed package), not 'src/archrig'.",
            returncode=1,
        )
