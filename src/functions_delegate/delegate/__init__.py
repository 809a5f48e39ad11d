"""Runtime delegates and the registry that picks one for a source directory."""

from typing import Callable, List, Optional

import structlog

from functions_delegate.core.config import Settings
from functions_delegate.core.exceptions import NotApplicableError
from functions_delegate.core.models import DelegateContext

from .base import RuntimeDelegate, ShutdownFn
from .python import PythonDelegate, try_create_delegate

logger = structlog.get_logger()

DelegateFactory = Callable[..., Optional[RuntimeDelegate]]

DELEGATE_FACTORIES: List[DelegateFactory] = [try_create_delegate]


def get_runtime_delegate(context: DelegateContext, settings: Optional[Settings] = None) -> RuntimeDelegate:
    """Return the first delegate that recognises ``context.source_dir``.

    Raises:
        NotApplicableError: No delegate recognises the source directory
        InvalidRuntimeError: A delegate recognised it but the runtime is invalid
    """
    for factory in DELEGATE_FACTORIES:
        delegate = factory(context, settings=settings)
        if delegate is not None:
            logger.debug("Selected runtime delegate", delegate=delegate.name, runtime=delegate.runtime)
            return delegate

    raise NotApplicableError(
        f"Could not detect the language of the functions source in {context.source_dir}",
        source_dir=context.source_dir,
    )


__all__ = [
    "DELEGATE_FACTORIES",
    "PythonDelegate",
    "RuntimeDelegate",
    "ShutdownFn",
    "get_runtime_delegate",
    "try_create_delegate",
]
