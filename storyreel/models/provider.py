"""
Provider Data Models
Capabilities and per-model configuration schemas for video generation backends
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any, Literal, Type
from enum import Enum

from ..utils.exceptions import ValidationError

# camelCase keys accepted on the wire, keyed to schema field names
WIRE_CONFIG_KEYS = {
    "aspectRatio": "aspect_ratio",
    "durationSeconds": "duration",
}


class DurationMode(str, Enum):
    FIXED = "fixed"
    VARIABLE = "variable"


class ProviderCapabilities(BaseModel):
    aspect_ratios: List[str]
    resolutions: List[str]
    durations: List[int]
    duration_mode: DurationMode = DurationMode.FIXED
    features: List[str] = Field(default_factory=list)
    cost_per_second: float
    avg_processing_seconds: int


class ProviderModelConfig(BaseModel):
    """A registered generation model"""
    id: str
    endpoint: str
    name: str
    provider: Literal["fal", "amazon"]
    capabilities: ProviderCapabilities
    config_schema: Type[BaseModel]
    defaults: Dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly description for the catalogue endpoint"""
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "endpoint": self.endpoint,
            "capabilities": self.capabilities.model_dump(mode="json"),
            "defaults": dict(self.defaults),
            "schema": self.config_schema.model_json_schema(),
        }


# ============================================================================
# Per-model configuration schemas
# ============================================================================

class NovaReelConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    aspect_ratio: Literal["16:9"] = "16:9"
    duration: Literal[6] = 6
    seed: int = Field(default=0, ge=0, le=2147483646)


class FalTextToVideoConfig(BaseModel):
    """Fields shared by the fal.ai text-to-video endpoints"""
    model_config = ConfigDict(extra="forbid")

    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "16:9"
    duration: str = "5"

    @field_validator("duration", mode="before")
    @classmethod
    def duration_as_string(cls, value):
        # fal.ai expects "5", callers often pass 5
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value


class KlingConfig(FalTextToVideoConfig):
    duration: Literal["5", "10"] = "5"
    camera_control: Optional[
        Literal["down_back", "forward_up", "right_turn_forward", "left_turn_forward"]
    ] = None


class PikaConfig(FalTextToVideoConfig):
    duration: Literal["5"] = "5"
    negative_prompt: str = ""
    resolution: Literal["720p"] = "720p"
    seed: int = Field(default=0, ge=0)


class PixverseConfig(FalTextToVideoConfig):
    duration: Literal["5", "8"] = "5"
    negative_prompt: str = ""
    resolution: Literal["720p"] = "720p"
    style: Optional[Literal["anime", "3d_animation", "clay", "comic", "cyberpunk"]] = None
    seed: int = Field(default=0, ge=0)


class ProviderRequest(BaseModel):
    """Everything a backend needs to generate one scene clip"""
    provider_model_id: str
    prompt: str
    config: Dict[str, Any] = Field(default_factory=dict)
    job_id: str
    user_id: str
    video_id: str
    scene_number: int
    attempt: int = 1


def normalize_provider_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Rename wire keys (`durationSeconds`, `aspectRatio`) to schema field names

    Raises:
        ValidationError: a wire key and its field name carry different values
    """
    normalized: Dict[str, Any] = {}
    conflicts = []
    for key, value in (config or {}).items():
        name = WIRE_CONFIG_KEYS.get(key, key)
        if name in normalized and str(normalized[name]) != str(value):
            conflicts.append({"field": key, "message": f"conflicts with {name}={normalized[name]!r}"})
            continue
        normalized[name] = value

    if conflicts:
        raise ValidationError("Provider config sets the same field twice", field_errors=conflicts)
    return normalized
