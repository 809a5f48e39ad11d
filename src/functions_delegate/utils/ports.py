"""Local port selection for admin servers."""

import socket
import threading
from typing import Set

import structlog

from functions_delegate.core.exceptions import PortExhaustionError

logger = structlog.get_logger()

MAX_PORT = 65535

# Ports handed out to live admin servers in this process
_reserved_ports: Set[int] = set()
_reserved_lock = threading.Lock()


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check if a port is available for binding."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            return True
    except OSError:
        return False


def _ephemeral_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def reserve_port(start_port: int = 8081, end_port: int = MAX_PORT, host: str = "127.0.0.1") -> int:
    """Reserve the first free port at or above ``start_port``.

    A reserved port is never returned again until ``release_port`` is called,
    even if nothing has bound it yet. Falls back to an OS-assigned port when
    the whole range is taken.
    """
    with _reserved_lock:
        for port in range(start_port, end_port + 1):
            if port in _reserved_ports:
                continue
            if is_port_free(port, host):
                _reserved_ports.add(port)
                logger.debug("Reserved port", port=port)
                return port

        try:
            port = _ephemeral_port(host)
        except OSError as e:
            raise PortExhaustionError(
                f"No free ports found starting at {start_port}: {e}", start_port=start_port
            ) from e
        if port in _reserved_ports:
            raise PortExhaustionError(
                f"No free ports found starting at {start_port}", start_port=start_port
            )
        _reserved_ports.add(port)
        logger.debug("Reserved OS-assigned port", port=port, start_port=start_port)
        return port


def release_port(port: int) -> None:
    with _reserved_lock:
        _reserved_ports.discard(port)


def reserved_ports() -> Set[int]:
    with _reserved_lock:
        return set(_reserved_ports)
