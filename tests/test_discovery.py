"""Tests for manifest and admin-server discovery."""

import textwrap

import httpx
import pytest

from functions_delegate.core.exceptions import DiscoveryError, DiscoveryTimeoutError, ManifestError
from functions_delegate.discovery import detect_from_port, detect_from_yaml, parse_manifest

MANIFEST = textwrap.dedent(
    """
    specVersion: v1alpha1
    requiredAPIs:
      - api: cloudscheduler.googleapis.com
        reason: Needed for scheduled functions.
    endpoints:
      on_request:
        entryPoint: on_request
        platform: gcfv2
        region: us-east1
        availableMemoryMb: 512
        httpsTrigger: {}
      nightly:
        entryPoint: nightly
        scheduleTrigger:
          schedule: every day 00:00
        labels:
          team: data
    """
)


class TestParseManifest:

    def test_parses_endpoints(self):
        discovered = parse_manifest(MANIFEST, project_id="demo", runtime="python312")

        assert discovered.project_id == "demo"
        assert discovered.runtime == "python312"
        assert set(discovered.endpoints) == {"on_request", "nightly"}

        http_fn = discovered.endpoints["on_request"]
        assert http_fn.trigger_type == "httpsTrigger"
        assert http_fn.region == ["us-east1"]
        assert http_fn.available_memory_mb == 512

        nightly = discovered.endpoints["nightly"]
        assert nightly.trigger_type == "scheduleTrigger"
        assert nightly.trigger == {"schedule": "every day 00:00"}
        assert nightly.platform == "gcfv2"
        assert nightly.labels == {"team": "data"}

        assert discovered.required_apis[0].api == "cloudscheduler.googleapis.com"

    def test_invalid_yaml(self):
        with pytest.raises(ManifestError):
            parse_manifest("endpoints: [unclosed", "demo", "python312")

    def test_not_a_mapping(self):
        with pytest.raises(ManifestError):
            parse_manifest("- a\n- b\n", "demo", "python312")

    def test_unsupported_spec_version(self):
        with pytest.raises(ManifestError):
            parse_manifest("specVersion: v2\nendpoints: {}\n", "demo", "python312")

    def test_endpoint_without_trigger(self):
        text = "specVersion: v1alpha1\nendpoints:\n  fn:\n    entryPoint: fn\n"
        with pytest.raises(ManifestError, match="exactly one trigger"):
            parse_manifest(text, "demo", "python312")

    def test_endpoint_with_two_triggers(self):
        text = (
            "specVersion: v1alpha1\nendpoints:\n  fn:\n    entryPoint: fn\n"
            "    httpsTrigger: {}\n    callableTrigger: {}\n"
        )
        with pytest.raises(ManifestError):
            parse_manifest(text, "demo", "python312")

    def test_endpoints_must_be_a_mapping(self):
        text = "specVersion: v1alpha1\nendpoints:\n  - entryPoint: fn\n    httpsTrigger: {}\n"
        with pytest.raises(ManifestError, match="endpoints must be a mapping"):
            parse_manifest(text, "demo", "python312")

    def test_endpoint_definition_must_be_a_mapping(self):
        text = "specVersion: v1alpha1\nendpoints:\n  fn: main.fn\n"
        with pytest.raises(ManifestError, match="'fn' must be a mapping"):
            parse_manifest(text, "demo", "python312")


class TestDetectFromYaml:

    def test_absent_manifest_returns_none(self, tmp_path):
        assert detect_from_yaml(tmp_path, "demo", "python312") is None

    def test_reads_manifest(self, tmp_path):
        (tmp_path / "functions.yaml").write_text(MANIFEST)

        discovered = detect_from_yaml(tmp_path, "demo", "python312")

        assert discovered is not None
        assert len(discovered.endpoints) == 2

    def test_unparsable_manifest_returns_none(self, tmp_path):
        (tmp_path / "functions.yaml").write_text("endpoints: [unclosed")

        assert detect_from_yaml(tmp_path, "demo", "python312") is None

    @pytest.mark.parametrize(
        "content",
        [
            b"specVersion: v1alpha1\nendpoints:\n  - entryPoint: fn\n    httpsTrigger: {}\n",
            b"specVersion: v1alpha1\nendpoints:\n  fn: main.fn\n",
            b"specVersion: v1alpha1\nendpoints: {}\n# \xff\xfe\n",
        ],
        ids=["endpoints-list", "endpoint-string", "not-utf8"],
    )
    def test_malformed_manifest_returns_none(self, tmp_path, content):
        (tmp_path / "functions.yaml").write_bytes(content)

        assert detect_from_yaml(tmp_path, "demo", "python312") is None

    def test_custom_manifest_name(self, tmp_path):
        (tmp_path / "custom.yaml").write_text(MANIFEST)

        assert detect_from_yaml(tmp_path, "demo", "python312", manifest_file="custom.yaml") is not None


class TestDetectFromPort:

    @pytest.mark.asyncio
    async def test_reads_manifest_from_admin_server(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, text=MANIFEST)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            discovered = await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client)

        assert len(discovered.endpoints) == 2
        assert seen[0].path == "/__/functions.yaml"
        assert seen[0].port == 8081

    @pytest.mark.asyncio
    async def test_retries_until_server_is_up(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, text=MANIFEST)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            discovered = await detect_from_port(
                8081, "demo", "python312", timeout=5.0, client=client, poll_interval=0.01
            )

        assert attempts["count"] == 3
        assert "nightly" in discovered.endpoints

    @pytest.mark.asyncio
    async def test_times_out_when_server_never_answers(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DiscoveryTimeoutError) as exc_info:
                await detect_from_port(
                    9999, "demo", "python312", timeout=0.2, client=client, poll_interval=0.02
                )

        assert exc_info.value.port == 9999
        assert exc_info.value.timeout == 0.2

    @pytest.mark.asyncio
    async def test_error_status_is_discovery_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="ImportError: no module named main")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DiscoveryError, match="ImportError") as exc_info:
                await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client)

        assert not isinstance(exc_info.value, DiscoveryTimeoutError)

    @pytest.mark.asyncio
    async def test_invalid_manifest_from_server(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="just a string")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ManifestError):
                await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client)

    @pytest.mark.asyncio
    async def test_malformed_endpoints_from_server(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="specVersion: v1alpha1\nendpoints:\n  - fn\n")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DiscoveryError, match="endpoints must be a mapping"):
                await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client)

    @pytest.mark.asyncio
    async def test_queries_admin_host(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            return httpx.Response(200, text=MANIFEST)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client)
            await detect_from_port(8081, "demo", "python312", timeout=1.0, client=client, host="127.0.0.1")

        assert seen == ["localhost", "127.0.0.1"]

    @pytest.mark.asyncio
    async def test_request_timeout_shrinks_to_remaining_deadline(self):
        read_timeouts = []

        def handler(request: httpx.Request) -> httpx.Response:
            read_timeouts.append(request.extensions["timeout"]["read"])
            if len(read_timeouts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, text=MANIFEST)

        async with httpx.AsyncClient(timeout=60.0, transport=httpx.MockTransport(handler)) as client:
            await detect_from_port(8081, "demo", "python312", timeout=2.0, client=client, poll_interval=0.02)

        assert len(read_timeouts) == 3
        assert all(t <= 2.0 for t in read_timeouts)
        assert read_timeouts[0] > read_timeouts[1] > read_timeouts[2]
