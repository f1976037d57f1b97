import pytest

from train_dispatch.domains.orchestration.schemas.training_config import TrainingConfig, merge_training_config
from train_dispatch.errors import ConfigValidationError, ValidationError


def test_partial_config_keeps_every_default(presets):
    config = merge_training_config({"BATCH_SIZE": 128}, presets)

    defaults = TrainingConfig().declared_fields()
    merged = config.declared_fields()
    assert merged["BATCH_SIZE"] == 128
    for name, value in defaults.items():
        if name != "BATCH_SIZE":
            assert merged[name] == value


def test_known_mode_applies_its_preset(presets):
    config = merge_training_config({"mode": 3}, presets)

    assert config.TRAINING_MODE == "3"
    for name, value in presets["3"].items():
        assert getattr(config, name) == value


def test_unknown_mode_falls_back_to_mode_one(presets):
    fallback = merge_training_config({"mode": 99}, presets)
    baseline = merge_training_config({}, presets)

    assert fallback.TRAINING_MODE == "1"
    assert fallback.declared_fields() == baseline.declared_fields()


def test_request_fields_override_the_preset(presets):
    config = merge_training_config({"mode": "3", "EPOCHS": 10}, presets)

    assert config.EPOCHS == 10
    assert config.LSTM_LAYERS == presets["3"]["LSTM_LAYERS"]


def test_training_mode_key_selects_preset(presets):
    config = merge_training_config({"TRAINING_MODE": "2"}, presets)

    assert config.TRAINING_MODE == "2"
    assert config.EPOCHS == presets["2"]["EPOCHS"]


def test_unknown_fields_pass_through(presets):
    config = merge_training_config({"NOTE": "night run", "mode": 1}, presets)

    assert config.extra_fields() == {"NOTE": "night run", "mode": 1}
    assert config.model_dump()["NOTE"] == "night run"


def test_merged_config_is_immutable(presets):
    config = merge_training_config({}, presets)

    with pytest.raises(Exception):
        config.BATCH_SIZE = 1


def test_wrong_field_type_is_a_validation_error(presets):
    with pytest.raises(ConfigValidationError):
        merge_training_config({"BATCH_SIZE": "lots"}, presets)


def test_non_object_body_is_rejected(presets):
    with pytest.raises(ValidationError):
        merge_training_config(["BATCH_SIZE", 1], presets)
