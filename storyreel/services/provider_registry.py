"""
Provider Registry
Catalogue of video generation models with capability checks and config validation
"""

from typing import Dict, Any, List, Optional, Iterable

import pydantic

from ..models.provider import (
    normalize_provider_config,
    ProviderModelConfig,
    ProviderCapabilities,
    DurationMode,
    NovaReelConfig,
    KlingConfig,
    PikaConfig,
    PixverseConfig,
)
from ..utils.exceptions import NotFoundError, ValidationError, IncompatibleCapabilityError
from ..utils.logger import get_logger

logger = get_logger()


PROVIDER_MODELS: List[ProviderModelConfig] = [
    ProviderModelConfig(
        id="nova-reel",
        endpoint="amazon.nova-reel-v1:0",
        name="Amazon Nova Reel",
        provider="amazon",
        capabilities=ProviderCapabilities(
            aspect_ratios=["16:9"],
            resolutions=["1280x720"],
            durations=[6],
            duration_mode=DurationMode.FIXED,
            features=["seed"],
            cost_per_second=0.08,
            avg_processing_seconds=300,
        ),
        config_schema=NovaReelConfig,
        defaults={"aspect_ratio": "16:9", "duration": 6, "seed": 0},
    ),
    ProviderModelConfig(
        id="kling-1.6",
        endpoint="fal-ai/kling-video/v1.6/standard/text-to-video",
        name="Kling 1.6 Standard",
        provider="fal",
        capabilities=ProviderCapabilities(
            aspect_ratios=["16:9", "9:16", "1:1"],
            resolutions=["720p"],
            durations=[5, 10],
            duration_mode=DurationMode.VARIABLE,
            features=["camera_control"],
            cost_per_second=0.03,
            avg_processing_seconds=90,
        ),
        config_schema=KlingConfig,
        defaults={"duration": "5", "aspect_ratio": "16:9"},
    ),
    ProviderModelConfig(
        id="pika-v2.2",
        endpoint="fal-ai/pika/v2.2/text-to-video",
        name="Pika 2.2",
        provider="fal",
        capabilities=ProviderCapabilities(
            aspect_ratios=["16:9", "9:16", "1:1"],
            resolutions=["720p"],
            durations=[5],
            duration_mode=DurationMode.FIXED,
            features=["negative_prompt", "seed"],
            cost_per_second=0.08,
            avg_processing_seconds=120,
        ),
        config_schema=PikaConfig,
        defaults={
            "resolution": "720p",
            "negative_prompt": "",
            "seed": 0,
            "duration": "5",
            "aspect_ratio": "16:9",
        },
    ),
    ProviderModelConfig(
        id="pixverse-v4",
        endpoint="fal-ai/pixverse/v4/text-to-video",
        name="PixVerse v4",
        provider="fal",
        capabilities=ProviderCapabilities(
            aspect_ratios=["16:9", "9:16", "1:1"],
            resolutions=["720p"],
            durations=[5, 8],
            duration_mode=DurationMode.VARIABLE,
            features=["negative_prompt", "seed", "style"],
            cost_per_second=0.04,
            avg_processing_seconds=120,
        ),
        config_schema=PixverseConfig,
        defaults={
            "resolution": "720p",
            "negative_prompt": "",
            "seed": 0,
            "duration": "5",
            "aspect_ratio": "16:9",
        },
    ),
]


class ProviderRegistry:
    """Read-only lookup of provider models, shared by all workers"""

    def __init__(self, models: Optional[Iterable[ProviderModelConfig]] = None):
        self._models: Dict[str, ProviderModelConfig] = {}
        for model in (PROVIDER_MODELS if models is None else models):
            if model.id in self._models:
                raise ValueError(f"Duplicate provider model id: {model.id}")
            self._models[model.id] = model
        logger.info(f"Provider registry loaded {len(self._models)} models")

    def get_model(self, model_id: str) -> ProviderModelConfig:
        """
        Look up a registered model

        Raises:
            NotFoundError: model_id is not registered
        """
        model = self._models.get(model_id)
        if model is None:
            raise NotFoundError("provider model", model_id, available=sorted(self._models))
        return model

    def list_models(self) -> List[ProviderModelConfig]:
        return list(self._models.values())

    def models_for_provider(self, provider: str) -> List[ProviderModelConfig]:
        return [m for m in self._models.values() if m.provider == provider]

    def check_compatibility(
        self,
        model_id: str,
        aspect_ratio: Optional[str],
        duration: Optional[Any] = None
    ) -> None:
        """
        Verify the model can produce the requested shape

        Raises:
            IncompatibleCapabilityError: aspect ratio or duration is not supported
        """
        caps = self.get_model(model_id).capabilities

        if aspect_ratio is not None and aspect_ratio not in caps.aspect_ratios:
            raise IncompatibleCapabilityError(model_id, "aspect_ratio", aspect_ratio, caps.aspect_ratios)

        if duration is not None:
            seconds = _as_seconds(duration)
            if seconds is None:
                raise ValidationError(
                    f"Invalid duration {duration!r} for model '{model_id}'",
                    field_errors=[{"field": "duration", "message": "must be a number of seconds"}],
                )
            if seconds not in caps.durations:
                raise IncompatibleCapabilityError(model_id, "duration", duration, caps.durations)

    def validate_config(self, model_id: str, user_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Merge user config over the model defaults and validate it

        User values win over defaults. Capabilities are checked before the
        schema so an unsupported aspect ratio is reported as such. The
        returned dict validates to itself when passed back in.

        Raises:
            NotFoundError: unknown model
            IncompatibleCapabilityError: capability mismatch
            ValidationError: schema violation, with one entry per field
        """
        model = self.get_model(model_id)
        merged = {**model.defaults, **normalize_provider_config(user_config)}

        self.check_compatibility(model_id, merged.get("aspect_ratio"), merged.get("duration"))

        try:
            validated = model.config_schema.model_validate(merged)
        except pydantic.ValidationError as e:
            field_errors = [
                {
                    "field": ".".join(str(part) for part in err["loc"]) or "config",
                    "message": err["msg"],
                }
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid configuration for model '{model_id}'",
                field_errors=field_errors,
                model_id=model_id,
            ) from e

        return validated.model_dump(mode="json", exclude_none=True)

    def clip_duration(self, model_id: str, config: Optional[Dict[str, Any]] = None) -> float:
        """Seconds of footage one generation request yields"""
        model = self.get_model(model_id)
        value = (config or {}).get("duration", model.defaults.get("duration"))
        seconds = _as_seconds(value) if value is not None else None
        return float(seconds if seconds is not None else model.capabilities.durations[0])


def _as_seconds(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer():
        return None
    return int(number)
