"""Declarative function manifest (functions.yaml) parsing."""

from pathlib import Path
from typing import Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from functions_delegate.core.config import get_settings
from functions_delegate.core.exceptions import ManifestError
from functions_delegate.core.models import DiscoveredInterface

logger = structlog.get_logger()


def parse_manifest(text: str, project_id: str, runtime: str) -> DiscoveredInterface:
    """Parse manifest YAML text into a DiscoveredInterface.

    Raises:
        ManifestError: If the text is not valid YAML or not a valid manifest
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"Function manifest is not valid YAML: {e}") from e

    if not isinstance(document, dict):
        raise ManifestError("Function manifest must be a mapping")

    endpoints = document.get("endpoints")
    if endpoints is not None and not isinstance(endpoints, dict):
        raise ManifestError("Function manifest endpoints must be a mapping of endpoint id to definition")
    for endpoint_id, definition in (endpoints or {}).items():
        if definition is not None and not isinstance(definition, dict):
            raise ManifestError(f"Endpoint {endpoint_id!r} must be a mapping")

    try:
        return DiscoveredInterface.from_manifest(document, project_id=project_id, runtime=runtime)
    except ValidationError as e:
        raise ManifestError(f"Invalid function manifest: {e}") from e


def detect_from_yaml(
    source_dir: Union[str, Path],
    project_id: str,
    runtime: str,
    manifest_file: Optional[str] = None,
) -> Optional[DiscoveredInterface]:
    """Read the function interface straight from the source tree.

    Returns None when the manifest is absent or unparsable so that callers
    can fall back to asking a running admin server.
    """
    path = Path(source_dir) / (manifest_file or get_settings().manifest_file)
    if not path.is_file():
        logger.debug("Could not find functions manifest, falling back to admin server", path=str(path))
        return None

    try:
        text = path.read_text(encoding="utf-8")
        discovered = parse_manifest(text, project_id=project_id, runtime=runtime)
    except (OSError, UnicodeDecodeError, ManifestError) as e:
        logger.warning("Ignoring unreadable functions manifest", path=str(path), error=str(e))
        return None

    logger.info("Loaded functions manifest", path=str(path), endpoint_count=len(discovered.endpoints))
    return discovered
