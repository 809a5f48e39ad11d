"""Function interface discovery."""

from .introspection import detect_from_port
from .manifest import detect_from_yaml, parse_manifest

__all__ = ["detect_from_port", "detect_from_yaml", "parse_manifest"]
