import logging
from functools import lru_cache
from pathlib import Path

import yaml

from train_dispatch.errors import ConfigurationError

logger = logging.getLogger(__name__)


@lru_cache
def load_training_presets(path: Path) -> dict[str, dict]:

    if not path.exists():
        raise ConfigurationError(f"Training presets file {path} does not exist.")

    with open(path, 'r') as file:
        data = yaml.safe_load(file) or {}

    modes = data.get('modes') or {}
    if not isinstance(modes, dict):
        raise ConfigurationError(f"Training presets file {path} must map 'modes' to an object.")

    presets = {str(mode): dict(overrides or {}) for mode, overrides in modes.items()}
    logger.info(f"Loaded {len(presets)} training modes from {path}")
    return presets
