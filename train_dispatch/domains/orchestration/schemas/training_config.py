import logging
from typing import Any, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from train_dispatch.errors import ConfigValidationError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MODE = "1"

# Field names double as the environment variables the remote trainer reads,
# except for the toggles below.
ENV_NAME_OVERRIDES = {
    "AUTO_SHUTDOWN_ENABLED": "AUTO_SHUTDOWN",
    "CLEANUP_CSV_ENABLED": "CLEANUP_CSV",
}


class TrainingConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    BATCH_SIZE: int = 512
    MIXED_PRECISION: int = 0
    GPU_OPTIMIZED: int = 1
    LSTM_LAYERS: int = 2
    LSTM_UNITS: int = 16
    DENSE_UNITS: int = 64
    DROPOUT_RNN: float = 0.5
    DROPOUT_DENSE: float = 0.6
    L2_REG: float = 0.01
    EARLY_STOPPING_PATIENCE: int = 8
    EARLY_STOPPING_MIN_DELTA: float = 0.001
    EPOCHS: int = 600
    DATA_AUGMENTATION: int = 1
    REMOVE_DUPLICATES: int = 1
    AUGMENTATION_FACTOR: int = 2
    TRAIN_SPLIT: float = 0.6
    VAL_SPLIT: float = 0.2
    TEST_SPLIT: float = 0.2
    GENERATE_NEURAL_DIAGRAM: int = 0
    TRAINING_MODE: str = DEFAULT_MODE
    RESTRICTED_LABELS: list[str] = Field(default_factory=list)
    CANTIDAD: int = 0
    TOMATCANTIDA: bool = False
    MAX_SAMPLES_PER_SIGN: int = 0
    AUTO_SHUTDOWN_ENABLED: bool = False
    CLEANUP_CSV_ENABLED: bool = False

    def declared_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in type(self).model_fields}

    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


def resolve_mode(request_config: Mapping[str, Any], presets: Mapping[str, Mapping[str, Any]]) -> str:
    """Mode key requested by the caller, or the default mode when it has no preset."""
    requested = request_config.get("mode", request_config.get("TRAINING_MODE", DEFAULT_MODE))
    mode = str(requested)
    if mode not in presets:
        logger.warning(f"Unknown training mode {mode!r}, falling back to mode {DEFAULT_MODE}")
        return DEFAULT_MODE
    return mode


def merge_training_config(
        request_config: Mapping[str, Any],
        presets: Mapping[str, Mapping[str, Any]]
) -> TrainingConfig:
    """Defaults, then the mode preset, then the caller's fields; extra keys pass through."""

    if not isinstance(request_config, Mapping):
        raise ValidationError("Invalid JSON body. Send an object with the training parameters.")

    mode = resolve_mode(request_config, presets)
    merged = {
        **presets.get(mode, {}),
        **request_config,
        "TRAINING_MODE": mode,
    }

    try:
        return TrainingConfig(**merged)
    except pydantic.ValidationError as e:
        raise ConfigValidationError(f"Invalid training configuration: {e}") from e
