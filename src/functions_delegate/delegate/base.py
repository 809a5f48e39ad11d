"""Base interface shared by runtime delegates."""

from typing import Awaitable, Callable, Mapping, Optional

from functions_delegate.core.models import DiscoveredInterface

ShutdownFn = Callable[[], Awaitable[None]]


class RuntimeDelegate:
    """Language-specific glue between the CLI and user function code."""

    name: str = "base"
    runtime: str

    async def validate(self) -> None:
        """Check the source directory before building."""
        raise NotImplementedError

    async def build(self) -> object:
        raise NotImplementedError

    async def watch(self) -> ShutdownFn:
        """Start rebuilding on source changes; returns a function that stops watching."""
        raise NotImplementedError

    async def discover_build(self, envs: Optional[Mapping[str, str]] = None) -> DiscoveredInterface:
        raise NotImplementedError
