"""Virtual environment activation strategies.

Windows exposes activation as a batch script that is executed directly;
POSIX exposes a shell script that must be sourced into the running shell.
"""

import shlex
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence


class ActivationStrategy:
    """Turns a command into a shell line that runs inside a venv."""

    name = "base"

    def activate_script(self, venv_path: Path) -> Path:
        raise NotImplementedError

    def wrap(self, command_and_args: Sequence[str], venv_path: Path) -> str:
        raise NotImplementedError


class PosixActivation(ActivationStrategy):
    name = "posix"

    def activate_script(self, venv_path: Path) -> Path:
        return venv_path / "bin" / "activate"

    def wrap(self, command_and_args: Sequence[str], venv_path: Path) -> str:
        # exec so that signals sent to the shell pid reach the command itself
        script = shlex.quote(str(self.activate_script(venv_path)))
        return f". {script} && exec {shlex.join(command_and_args)}"


class WindowsActivation(ActivationStrategy):
    name = "windows"

    def activate_script(self, venv_path: Path) -> Path:
        return venv_path / "Scripts" / "activate.bat"

    def wrap(self, command_and_args: Sequence[str], venv_path: Path) -> str:
        script = subprocess.list2cmdline([str(self.activate_script(venv_path))])
        return f"{script} && {subprocess.list2cmdline(list(command_and_args))}"


def select_activation(platform: Optional[str] = None) -> ActivationStrategy:
    """Pick the activation strategy for ``platform`` (defaults to this host)."""
    platform = platform or sys.platform
    if platform == "win32":
        return WindowsActivation()
    return PosixActivation()
