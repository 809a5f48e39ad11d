"""Tests for port reservation and deferred actions."""

import asyncio
import socket
from unittest.mock import patch

import pytest

from functions_delegate.core.exceptions import PortExhaustionError
from functions_delegate.utils import ports
from functions_delegate.utils.ports import is_port_free, release_port, reserve_port, reserved_ports
from functions_delegate.utils.timer import DeferredAction


class TestReservePort:

    def test_reserved_port_is_not_reused(self):
        first = reserve_port(18081)
        second = reserve_port(18081)
        try:
            assert first != second
            assert {first, second} <= reserved_ports()
        finally:
            release_port(first)
            release_port(second)

    def test_release_makes_port_available_again(self):
        port = reserve_port(18181)
        release_port(port)

        again = reserve_port(port)
        try:
            assert again == port
        finally:
            release_port(again)

    def test_skips_bound_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            busy = sock.getsockname()[1]
            assert not is_port_free(busy)

            port = reserve_port(busy, busy + 50)
            try:
                assert port != busy
            finally:
                release_port(port)

    def test_falls_back_to_os_assigned_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            busy = sock.getsockname()[1]

            port = reserve_port(busy, busy)
            try:
                assert port != busy
                assert port > 0
            finally:
                release_port(port)

    def test_exhaustion_raises(self):
        with patch.object(ports, "is_port_free", return_value=False), \
                patch.object(ports, "_ephemeral_port", side_effect=OSError("no ports")):
            with pytest.raises(PortExhaustionError) as exc_info:
                reserve_port(18281, 18290)

        assert exc_info.value.start_port == 18281


class TestDeferredAction:

    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        calls = []
        action = DeferredAction(0.05, lambda: calls.append("fired")).start()

        await action.wait()

        assert calls == ["fired"]
        assert action.fired is True
        assert action.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_prevents_callback(self):
        calls = []
        action = DeferredAction(0.05, lambda: calls.append("fired")).start()

        assert action.pending
        assert action.cancel() is True
        await action.wait()
        await asyncio.sleep(0.1)

        assert calls == []
        assert action.fired is False
        assert not action.pending

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        action = DeferredAction(0.01, lambda: None)

        assert action.cancel() is True
        await action.wait()

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self):
        def explode():
            raise PermissionError("operation not permitted")

        action = DeferredAction(0.01, explode, name="kill").start()

        await action.wait()

        assert action.fired is True
        assert action._task.exception() is None
