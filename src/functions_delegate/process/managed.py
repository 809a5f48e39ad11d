"""Child processes bound to a project's virtual environment."""

import asyncio
import codecs
import os
import signal
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from functions_delegate.core.config import get_settings
from functions_delegate.process.activation import ActivationStrategy, select_activation

logger = structlog.get_logger()

READ_CHUNK_SIZE = 4096


class ManagedProcess:
    """A spawned child process with captured stdout.

    ``completion`` is a task that resolves to the full stdout text once the
    process exits, or raises if the process could not be started. stderr is
    inherited from the parent and never captured.
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: Union[str, Path],
        env: Mapping[str, str],
        shell_line: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.command: List[str] = list(command)
        self.cwd = str(cwd)
        self.env = dict(env)
        self.shell_line = shell_line
        self.options = options or {}
        self.process: Optional[asyncio.subprocess.Process] = None
        self.killed = False
        self._chunks: List[str] = []
        self._kill_requested = False
        self._started = asyncio.Event()
        self.completion: "asyncio.Task[str]" = asyncio.create_task(self._run())

    async def _spawn(self) -> asyncio.subprocess.Process:
        kwargs: Dict[str, Any] = {
            "cwd": self.cwd,
            "env": self.env,
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": None,
        }
        kwargs.update(self.options)
        if self.shell_line is not None:
            return await asyncio.create_subprocess_shell(self.shell_line, **kwargs)
        return await asyncio.create_subprocess_exec(*self.command, **kwargs)

    async def _run(self) -> str:
        try:
            self.process = await self._spawn()
        except OSError as e:
            logger.error("Failed to start subprocess", command=" ".join(self.command), cwd=self.cwd, error=str(e))
            raise
        finally:
            self._started.set()

        logger.debug("Subprocess started", command=" ".join(self.command), pid=self.process.pid)
        if self._kill_requested:
            self.kill()

        if self.process.stdout is not None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await self.process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._append(decoder.decode(chunk))
            self._append(decoder.decode(b"", final=True))

        returncode = await self.process.wait()
        logger.debug("Subprocess exited", pid=self.process.pid, returncode=returncode, killed=self.killed)
        return self.output

    def _append(self, text: str):
        if not text:
            return
        self._chunks.append(text)
        logger.debug("Subprocess output", pid=self.pid, output=text)

    @property
    def output(self) -> str:
        """stdout captured so far."""
        return "".join(self._chunks)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        if not self.process:
            return None
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def wait_started(self):
        """Wait until the spawn attempt has finished (successfully or not)."""
        await self._started.wait()

    def kill(self) -> bool:
        """Forcefully terminate the process (SIGKILL on POSIX).

        Returns True if a signal was sent. A kill requested before the process
        has spawned is applied as soon as it does.
        """
        if self.process is None:
            self._kill_requested = True
            return False
        if self.process.returncode is not None:
            return False
        try:
            if self.options.get("start_new_session") and hasattr(os, "killpg"):
                # take down the whole session, e.g. application server workers
                os.killpg(self.process.pid, signal.SIGKILL)
            else:
                self.process.kill()
        except ProcessLookupError:
            return False
        self.killed = True
        logger.info("Killed subprocess", pid=self.process.pid)
        return True


def run_in_environment(
    command_and_args: Sequence[str],
    working_dir: Union[str, Path],
    use_virtual_env: bool = True,
    env: Optional[Mapping[str, str]] = None,
    venv_dir: Optional[str] = None,
    activation: Optional[ActivationStrategy] = None,
    **options: Any,
) -> ManagedProcess:
    """Run a command with the project's virtual environment activated.

    Must be called from a running event loop; returns immediately. The child
    sees the parent environment with ``env`` merged over it (``env`` wins).
    Extra keyword ``options`` are passed to the asyncio subprocess factory.
    """
    if not command_and_args:
        raise ValueError("command_and_args must not be empty")

    child_env = {**os.environ, **(env or {})}
    shell_line = None
    if use_virtual_env:
        venv_path = Path(working_dir) / (venv_dir or get_settings().venv_dir)
        strategy = activation or select_activation()
        shell_line = strategy.wrap(command_and_args, venv_path)

    return ManagedProcess(
        command_and_args,
        cwd=working_dir,
        env=child_env,
        shell_line=shell_line,
        options=options,
    )
