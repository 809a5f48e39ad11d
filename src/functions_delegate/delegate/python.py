"""Python runtime delegate: build, serve and discover user functions."""

import asyncio
import shutil
import sys
import threading
from pathlib import Path
from typing import Mapping, Optional, Sequence, Set, Union

import httpx
import structlog

from functions_delegate.core.config import Settings, get_settings
from functions_delegate.core.exceptions import (
    AdminServerBusyError,
    BuildError,
    InvalidRuntimeError,
    ModuleResolutionError,
)
from functions_delegate.core.models import DelegateContext, DiscoveredInterface
from functions_delegate.core.runtimes import LATEST_VERSION, is_valid_runtime
from functions_delegate.delegate.base import RuntimeDelegate, ShutdownFn
from functions_delegate.discovery import detect_from_port, detect_from_yaml
from functions_delegate.process.managed import ManagedProcess, run_in_environment
from functions_delegate.utils.ports import release_port, reserve_port
from functions_delegate.utils.timer import DeferredAction

logger = structlog.get_logger()

REQUIREMENTS_FILE = "requirements.txt"
QUIT_PATH = "/__/quitquitquit"

# Source directories (resolved) that currently have a live admin server
_active_admin_dirs: Set[str] = set()
_active_admin_lock = threading.Lock()


def _release_admin_dir(key: str) -> None:
    with _active_admin_lock:
        _active_admin_dirs.discard(key)


def _abandoned_admin_exited(task: asyncio.Task, key: str) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Abandoned admin server failed to start", error=str(task.exception()))
    _release_admin_dir(key)


class PythonDelegate(RuntimeDelegate):
    """Runtime delegate for Python function sources."""

    name = "python"

    def __init__(
        self,
        project_id: str,
        source_dir: Union[str, Path],
        runtime: str,
        settings: Optional[Settings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.project_id = project_id
        self.source_dir = Path(source_dir)
        self.runtime = runtime
        self.settings = settings or get_settings()
        self._http_transport = http_transport
        self._modules_dir: Optional[Path] = None
        self._modules_dir_lock = asyncio.Lock()

    @staticmethod
    def is_applicable(source_dir: Union[str, Path]) -> bool:
        """A Python functions source ships a requirements.txt."""
        return (Path(source_dir) / REQUIREMENTS_FILE).is_file()

    @property
    def venv_path(self) -> Path:
        return self.source_dir / self.settings.venv_dir

    @property
    def admin_dir(self) -> Path:
        # Generated code lives inside the venv so it never collides with user files
        return self.venv_path / self.settings.admin_folder

    @property
    def admin_file(self) -> Path:
        return self.admin_dir / f"{self.settings.admin_module}.py"

    def _run(
        self,
        command_and_args: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        **options,
    ) -> ManagedProcess:
        return run_in_environment(
            command_and_args,
            self.source_dir,
            use_virtual_env=True,
            env=env,
            venv_dir=self.settings.venv_dir,
            **options,
        )

    def _http_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._http_transport)

    async def modules_dir(self) -> Path:
        """Directory of the functions framework package inside the venv.

        Resolved once per delegate; concurrent first callers share one lookup.
        """
        if self._modules_dir is not None:
            return self._modules_dir
        async with self._modules_dir_lock:
            if self._modules_dir is None:
                self._modules_dir = await self._resolve_modules_dir()
        return self._modules_dir

    async def _resolve_modules_dir(self) -> Path:
        module = self.settings.framework_module
        script = f"import os, {module}; print(os.path.dirname({module}.__file__))"
        child = self._run([self.settings.python_executable, "-c", script])
        try:
            out = await child.completion
        except OSError as e:
            raise ModuleResolutionError(
                f"Failed to run Python in {self.venv_path}: {e}", module=module, venv_path=str(self.venv_path)
            ) from e

        path = out.strip()
        if child.returncode != 0 or not path:
            logger.error("Failed to resolve functions framework", module=module,
                         venv=str(self.venv_path), returncode=child.returncode)
            raise ModuleResolutionError(
                f"Could not import {module} from {self.venv_path}. "
                f"Make sure it is listed in {REQUIREMENTS_FILE} and installed in the virtual environment.",
                module=module,
                venv_path=str(self.venv_path),
            )

        logger.debug("Resolved functions framework", module=module, path=path)
        return Path(path)

    async def validate(self) -> None:
        pass

    async def watch(self) -> ShutdownFn:
        # Watching is not supported for Python sources
        async def stop() -> None:
            return None

        return stop

    async def build(self) -> Path:
        """Generate the admin entrypoint from the user's code.

        Returns:
            Path of the generated admin module

        Raises:
            ModuleResolutionError: Framework package not installed
            BuildError: Code generator failed
        """
        codegen = (await self.modules_dir()) / self.settings.codegen_file
        self.admin_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Generating admin entrypoint", codegen=str(codegen), entry=self.settings.entry_file)
        child = self._run([self.settings.python_executable, str(codegen), self.settings.entry_file])
        try:
            out = await child.completion
        except OSError as e:
            raise BuildError(f"Failed to start code generator {codegen}: {e}", path=str(codegen)) from e

        if child.returncode != 0:
            raise BuildError(
                f"Code generation failed with exit code {child.returncode}",
                exit_code=child.returncode,
                path=str(codegen),
            )

        with open(self.admin_file, "w", encoding="utf-8", newline="") as f:
            f.write(out)
        logger.info("Generated admin entrypoint", path=str(self.admin_file), size=len(out))
        return self.admin_file

    async def serve_admin(self, port: int, envs: Optional[Mapping[str, str]] = None) -> ShutdownFn:
        """Serve the generated admin entrypoint on ``admin_host:port``.

        Returns an async shutdown function. Shutdown asks the server to quit,
        kills it if it is still alive after the grace window, removes the
        generated directory and resolves once the process has exited.

        Raises:
            AdminServerBusyError: Another admin server is alive for this source dir
        """
        key = str(self.source_dir.resolve())
        with _active_admin_lock:
            if key in _active_admin_dirs:
                raise AdminServerBusyError(key)
            _active_admin_dirs.add(key)

        command = [
            self.settings.app_server,
            "-b",
            f"{self.settings.admin_host}:{port}",
            "--chdir",
            self.settings.venv_dir,
            self.settings.admin_target,
        ]
        options = {} if sys.platform == "win32" else {"start_new_session": True}
        child: Optional[ManagedProcess] = None
        try:
            child = self._run(command, env=dict(envs or {}), **options)
            await child.wait_started()
        except BaseException:
            # Interrupted before the caller got a shutdown function
            if child is None:
                _release_admin_dir(key)
            else:
                child.kill()
                child.completion.add_done_callback(lambda task: _abandoned_admin_exited(task, key))
            raise

        logger.info("Started admin server", port=port, pid=child.pid, target=self.settings.admin_target)

        shutdown_task: Optional[asyncio.Future] = None

        async def shutdown() -> None:
            nonlocal shutdown_task
            if shutdown_task is None:
                shutdown_task = asyncio.ensure_future(self._shutdown_admin(child, port, key))
            await asyncio.shield(shutdown_task)

        return shutdown

    async def _request_quit(self, port: int) -> None:
        url = f"http://{self.settings.admin_host}:{port}{QUIT_PATH}"
        try:
            async with self._http_client(self.settings.quit_request_timeout_seconds) as client:
                await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Quit request failed, relying on forced kill", port=port, error=str(e))

    async def _shutdown_admin(self, child: ManagedProcess, port: int, key: str) -> None:
        try:
            await self._request_quit(port)
            killer = DeferredAction(self.settings.shutdown_grace_seconds, child.kill, name="admin-server-kill")
            killer.start()
            try:
                await child.completion
            except OSError as e:
                logger.warning("Admin server never started", port=port, error=str(e))
            finally:
                killer.cancel()
                shutil.rmtree(self.admin_dir, ignore_errors=True)
            logger.info("Admin server stopped", port=port, pid=child.pid,
                        returncode=child.returncode, forced=killer.fired)
        finally:
            _release_admin_dir(key)

    async def discover_build(self, envs: Optional[Mapping[str, str]] = None) -> DiscoveredInterface:
        """Discover the functions declared by the user's code.

        Reads the manifest from the source tree when possible; otherwise boots
        the admin server and asks it, always shutting the server down.
        """
        discovered = detect_from_yaml(self.source_dir, self.project_id, self.runtime, self.settings.manifest_file)
        if discovered is not None:
            return discovered

        port = reserve_port(self.settings.discovery_start_port)
        try:
            shutdown = await self.serve_admin(port, envs)
            try:
                async with self._http_client(self.settings.discovery_timeout_seconds) as client:
                    discovered = await detect_from_port(
                        port,
                        self.project_id,
                        self.runtime,
                        timeout=self.settings.discovery_timeout_seconds,
                        client=client,
                        poll_interval=self.settings.discovery_poll_interval_seconds,
                        host=self.settings.admin_host,
                    )
            finally:
                await shutdown()
        finally:
            release_port(port)
        return discovered


def try_create_delegate(context: DelegateContext, settings: Optional[Settings] = None) -> Optional[PythonDelegate]:
    """Create a Python delegate if the source directory holds Python code.

    Raises:
        InvalidRuntimeError: Declared runtime is not a Python runtime
    """
    if not PythonDelegate.is_applicable(context.source_dir):
        logger.debug("Customer code is not Python code.", source_dir=context.source_dir)
        return None

    runtime = context.runtime or LATEST_VERSION
    if not is_valid_runtime(runtime):
        raise InvalidRuntimeError(runtime)
    return PythonDelegate(context.project_id, context.source_dir, runtime, settings=settings)
