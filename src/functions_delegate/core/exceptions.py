"""Custom exceptions for the functions delegate."""

from typing import Optional


class FunctionsDelegateError(Exception):
    """Base exception for all delegate errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class NotApplicableError(FunctionsDelegateError):
    """No runtime delegate recognises the source directory."""

    def __init__(self, message: str, source_dir: Optional[str] = None):
        super().__init__(message, code="not_applicable")
        self.source_dir = source_dir


class InvalidRuntimeError(FunctionsDelegateError):
    """Declared runtime identifier is not a valid Python runtime."""

    def __init__(self, runtime: str):
        super().__init__(f"Runtime {runtime} is not a valid Python runtime", code="invalid_runtime")
        self.runtime = runtime


class ModuleResolutionError(FunctionsDelegateError):
    """Functions framework package could not be located in the virtual environment."""

    def __init__(self, message: str, module: str, venv_path: Optional[str] = None):
        super().__init__(message, code="module_resolution")
        self.module = module
        self.venv_path = venv_path


class BuildError(FunctionsDelegateError):
    """Code generation failed."""

    def __init__(self, message: str, exit_code: Optional[int] = None, path: Optional[str] = None):
        super().__init__(message, code="build_failed")
        self.exit_code = exit_code
        self.path = path


class PortExhaustionError(FunctionsDelegateError):
    """No free local port could be reserved."""

    def __init__(self, message: str, start_port: Optional[int] = None):
        super().__init__(message, code="port_exhaustion")
        self.start_port = start_port


class AdminServerBusyError(FunctionsDelegateError):
    """An admin server is already alive for this source directory."""

    def __init__(self, source_dir: str):
        super().__init__(f"An admin server is already running for {source_dir}", code="admin_busy")
        self.source_dir = source_dir


class DiscoveryError(FunctionsDelegateError):
    """Function discovery failed."""

    def __init__(self, message: str, port: Optional[int] = None, code: Optional[str] = "discovery_failed"):
        super().__init__(message, code=code)
        self.port = port


class DiscoveryTimeoutError(DiscoveryError):
    """Running admin server did not answer the introspection request in time."""

    def __init__(self, message: str, port: Optional[int] = None, timeout: Optional[float] = None):
        super().__init__(message, port=port, code="discovery_timeout")
        self.timeout = timeout


class ManifestError(DiscoveryError):
    """Function manifest could not be parsed."""
    pass
