"""Known Python runtime identifiers."""

from typing import Tuple

PYTHON_RUNTIMES: Tuple[str, ...] = ("python310", "python311", "python312")
LATEST_VERSION = "python312"


def is_valid_runtime(runtime: str) -> bool:
    return runtime in PYTHON_RUNTIMES
