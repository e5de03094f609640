import pytest

from storyreel.services.provider_registry import ProviderRegistry, PROVIDER_MODELS
from storyreel.utils.exceptions import (
    IncompatibleCapabilityError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def registry():
    return ProviderRegistry()


def test_catalogue_is_loaded(registry):
    ids = {m.id for m in registry.list_models()}
    assert ids == {"nova-reel", "kling-1.6", "pika-v2.2", "pixverse-v4"}
    assert [m.id for m in registry.models_for_provider("amazon")] == ["nova-reel"]


def test_duplicate_ids_are_rejected():
    with pytest.raises(ValueError):
        ProviderRegistry([PROVIDER_MODELS[0], PROVIDER_MODELS[0]])


def test_unknown_model(registry):
    with pytest.raises(NotFoundError) as exc_info:
        registry.get_model("sora")
    assert exc_info.value.code == "NOT_FOUND"


def test_defaults_are_filled_in(registry):
    config = registry.validate_config("pika-v2.2", {})
    assert config == {
        "aspect_ratio": "16:9",
        "duration": "5",
        "negative_prompt": "",
        "resolution": "720p",
        "seed": 0,
    }


def test_user_values_override_defaults(registry):
    config = registry.validate_config("kling-1.6", {"aspect_ratio": "9:16", "duration": 10})
    assert config["aspect_ratio"] == "9:16"
    assert config["duration"] == "10"


def test_wire_keys_are_accepted(registry):
    config = registry.validate_config("kling-1.6", {"aspectRatio": "9:16", "durationSeconds": 10})
    assert config["aspect_ratio"] == "9:16"
    assert config["duration"] == "10"


def test_wire_duration_is_checked_against_capabilities(registry):
    with pytest.raises(IncompatibleCapabilityError):
        registry.validate_config("pika-v2.2", {"durationSeconds": 10})


def test_wire_key_contradicting_field_name(registry):
    with pytest.raises(ValidationError) as exc_info:
        registry.validate_config("kling-1.6", {"duration": "5", "durationSeconds": 10})
    assert exc_info.value.field_errors[0]["field"] == "durationSeconds"


@pytest.mark.parametrize("model_id,user_config", [
    ("nova-reel", {"seed": 42}),
    ("kling-1.6", {"camera_control": "forward_up"}),
    ("pixverse-v4", {"style": "anime", "duration": "8", "aspect_ratio": "1:1"}),
])
def test_validate_config_is_idempotent(registry, model_id, user_config):
    once = registry.validate_config(model_id, user_config)
    twice = registry.validate_config(model_id, once)
    assert once == twice


def test_unsupported_aspect_ratio_is_not_substituted(registry):
    with pytest.raises(IncompatibleCapabilityError) as exc_info:
        registry.validate_config("nova-reel", {"aspect_ratio": "9:16"})
    err = exc_info.value
    assert err.code == "INCOMPATIBLE_CAPABILITY"
    assert err.details["supported"] == ["16:9"]
    assert err.field_errors[0]["field"] == "aspect_ratio"


def test_unsupported_duration(registry):
    with pytest.raises(IncompatibleCapabilityError):
        registry.validate_config("kling-1.6", {"duration": "7"})


def test_non_numeric_duration(registry):
    with pytest.raises(ValidationError):
        registry.validate_config("kling-1.6", {"duration": "long"})


def test_unknown_field_reports_field_name(registry):
    with pytest.raises(ValidationError) as exc_info:
        registry.validate_config("kling-1.6", {"motion_strength": 3})
    fields = [e["field"] for e in exc_info.value.field_errors]
    assert "motion_strength" in fields


def test_invalid_enum_value(registry):
    with pytest.raises(ValidationError) as exc_info:
        registry.validate_config("pixverse-v4", {"style": "watercolor"})
    assert exc_info.value.field_errors[0]["field"] == "style"


def test_clip_duration(registry):
    assert registry.clip_duration("nova-reel") == 6.0
    assert registry.clip_duration("kling-1.6", {"duration": "10"}) == 10.0


def test_summary_is_json_friendly(registry):
    summary = registry.get_model("pika-v2.2").summary()
    assert summary["provider"] == "fal"
    assert summary["capabilities"]["durations"] == [5]
    assert "properties" in summary["schema"]
