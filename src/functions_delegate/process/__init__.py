"""Child process management with virtual environment activation."""

from .activation import ActivationStrategy, PosixActivation, WindowsActivation, select_activation
from .managed import ManagedProcess, run_in_environment

__all__ = [
    "ActivationStrategy",
    "PosixActivation",
    "WindowsActivation",
    "select_activation",
    "ManagedProcess",
    "run_in_environment",
]
