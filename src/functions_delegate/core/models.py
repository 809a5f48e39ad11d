"""Core data models for the functions delegate."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator, validator

TRIGGER_KEYS = (
    "httpsTrigger",
    "callableTrigger",
    "eventTrigger",
    "scheduleTrigger",
    "taskQueueTrigger",
    "blockingTrigger",
)

SUPPORTED_SPEC_VERSIONS = ("v1alpha1",)


class DelegateContext(BaseModel):
    """Inputs for a single build invocation."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., description="Cloud project identifier")
    source_dir: str = Field(..., description="Functions source directory")
    runtime: Optional[str] = Field(None, description="Declared runtime identifier")


class RequiredApi(BaseModel):
    model_config = ConfigDict(frozen=True)

    api: str
    reason: Optional[str] = None


class FunctionEndpoint(BaseModel):
    """A single function declared by user code."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Endpoint id (manifest key)")
    entry_point: str = Field(..., alias="entryPoint")
    platform: str = Field("gcfv2", pattern="^(gcfv1|gcfv2)$")
    region: List[str] = Field(default_factory=lambda: ["us-central1"])
    trigger_type: str = Field(..., description="Manifest key of the trigger, e.g. httpsTrigger")
    trigger: Dict[str, Any] = Field(default_factory=dict)
    available_memory_mb: Optional[int] = Field(None, alias="availableMemoryMb")
    timeout_seconds: Optional[int] = Field(None, alias="timeoutSeconds")
    min_instances: Optional[int] = Field(None, alias="minInstances")
    max_instances: Optional[int] = Field(None, alias="maxInstances")
    labels: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def extract_trigger(cls, data: Any) -> Any:
        """Collapse the single ``*Trigger`` key into trigger_type/trigger."""
        if not isinstance(data, dict) or "trigger_type" in data:
            return data
        found = [key for key in TRIGGER_KEYS if key in data]
        if len(found) != 1:
            raise ValueError(f"Endpoint must declare exactly one trigger, found: {found or 'none'}")
        data = dict(data)
        data["trigger_type"] = found[0]
        data["trigger"] = data.pop(found[0]) or {}
        return data

    @validator("region", pre=True)
    def coerce_region(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            return [v]
        return v


class DiscoveredInterface(BaseModel):
    """Functions discovered from user code for one build attempt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    spec_version: str = Field(..., alias="specVersion")
    project_id: str
    runtime: str
    endpoints: Dict[str, FunctionEndpoint] = Field(default_factory=dict)
    required_apis: List[RequiredApi] = Field(default_factory=list, alias="requiredAPIs")
    params: List[Dict[str, Any]] = Field(default_factory=list)

    @validator("spec_version")
    def validate_spec_version(cls, v: str) -> str:
        if v not in SUPPORTED_SPEC_VERSIONS:
            raise ValueError(f"Unsupported manifest specVersion: {v}")
        return v

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any], project_id: str, runtime: str) -> "DiscoveredInterface":
        """Build from a parsed ``functions.yaml`` document."""
        endpoints = {
            endpoint_id: FunctionEndpoint.model_validate({"id": endpoint_id, **(definition or {})})
            for endpoint_id, definition in (manifest.get("endpoints") or {}).items()
        }
        return cls(
            specVersion=manifest.get("specVersion"),
            project_id=project_id,
            runtime=runtime,
            endpoints=endpoints,
            requiredAPIs=manifest.get("requiredAPIs") or [],
            params=manifest.get("params") or [],
        )
