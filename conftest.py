"""
Pytest configuration for the StackVM test suite.

    python -m pytest            # everything
    python -m pytest -m cli     # command-line tests only
"""

import pytest

from cli import main


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "cli: tests that drive cli.main() and inspect stdout/stderr")


@pytest.fixture
def run_cli(capsys):
    """Call cli.main(argv) and return (exit_code, stdout, stderr)."""
    def _run(*argv):
        # Opcode members go in as plain integers
        code = main([a if isinstance(a, str) else str(int(a)) for a in argv])
        out, err = capsys.readouterr()
        return code, out, err
    return _run
