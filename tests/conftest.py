"""
Pytest configuration and fixtures for delegate tests.
"""

import sys
from pathlib import Path

import pytest

from functions_delegate.core.config import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Drop the cached Settings so env changes in one test don't leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Settings tuned for fast tests: real interpreter, short timeouts."""
    return Settings(
        python_executable=sys.executable,
        shutdown_grace_seconds=0.5,
        discovery_timeout_seconds=1.0,
        discovery_poll_interval_seconds=0.05,
        quit_request_timeout_seconds=0.5,
    )


@pytest.fixture
def source_dir(tmp_path) -> Path:
    """A Python functions source with a fake POSIX virtual environment."""
    src = tmp_path / "functions"
    src.mkdir()
    (src / "requirements.txt").write_text("firebase-functions\n")
    (src / "main.py").write_text("# user functions\n")

    activate = src / "venv" / "bin" / "activate"
    activate.parent.mkdir(parents=True)
    activate.write_text("export FD_VENV_ACTIVE=yes\n")
    return src

