"""Functions Delegate - build, serve and discover Python cloud functions."""

__version__ = "0.1.0"

from functions_delegate.core.config import Settings
from functions_delegate.core.models import DelegateContext, DiscoveredInterface, FunctionEndpoint
from functions_delegate.delegate import PythonDelegate, get_runtime_delegate, try_create_delegate

__all__ = [
    "Settings",
    "DelegateContext",
    "DiscoveredInterface",
    "FunctionEndpoint",
    "PythonDelegate",
    "get_runtime_delegate",
    "try_create_delegate",
    "__version__",
]
