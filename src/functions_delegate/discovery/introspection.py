"""Function discovery by querying a running admin server."""

import asyncio
import time
from typing import Optional

import httpx
import structlog

from functions_delegate.core.config import get_settings
from functions_delegate.core.exceptions import DiscoveryError, DiscoveryTimeoutError
from functions_delegate.core.models import DiscoveredInterface
from functions_delegate.discovery.manifest import parse_manifest

logger = structlog.get_logger()

MANIFEST_PATH = "/__/functions.yaml"

# Lower bound for a single request once the deadline is nearly spent
MIN_REQUEST_TIMEOUT = 0.1


async def detect_from_port(
    port: int,
    project_id: str,
    runtime: str,
    timeout: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
    poll_interval: Optional[float] = None,
    host: Optional[str] = None,
) -> DiscoveredInterface:
    """Poll the admin server until it serves its function manifest.

    Connection failures are retried until ``timeout`` elapses since the server
    may still be booting. Any other failure is final. Each request gets only
    the time left until the deadline, so a hung read cannot outlast it.

    Raises:
        DiscoveryTimeoutError: Server never answered within the timeout
        DiscoveryError: Server answered with an error
        ManifestError: Server answered with an invalid manifest
    """
    settings = get_settings()
    timeout = timeout if timeout is not None else settings.discovery_timeout_seconds
    poll_interval = poll_interval if poll_interval is not None else settings.discovery_poll_interval_seconds
    host = host or settings.admin_host
    url = f"http://{host}:{port}{MANIFEST_PATH}"

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=2.0))

    deadline = time.monotonic() + timeout
    attempts = 0
    try:
        while True:
            attempts += 1
            try:
                request_timeout = max(deadline - time.monotonic(), MIN_REQUEST_TIMEOUT)
                response = await client.get(url, timeout=request_timeout)
                break
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if time.monotonic() >= deadline:
                    logger.error("Admin server did not answer", port=port, attempts=attempts, error=str(e))
                    raise DiscoveryTimeoutError(
                        f"Timed out after {timeout}s waiting for the admin server on port {port}",
                        port=port,
                        timeout=timeout,
                    ) from e
                await asyncio.sleep(poll_interval)
            except httpx.HTTPError as e:
                raise DiscoveryError(f"Failed to query admin server on port {port}: {e}", port=port) from e
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code != 200:
        raise DiscoveryError(
            f"Failed to load function definition from source: {response.text}",
            port=port,
        )

    discovered = parse_manifest(response.text, project_id=project_id, runtime=runtime)
    logger.info("Discovered functions from admin server", port=port, attempts=attempts,
                endpoint_count=len(discovered.endpoints))
    return discovered
