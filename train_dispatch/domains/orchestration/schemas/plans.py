from pydantic import BaseModel, ConfigDict

from train_dispatch.domains.orchestration.schemas.constants import TransferDirection
from train_dispatch.domains.orchestration.schemas.training_config import TrainingConfig


class BulkTransferPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: TransferDirection
    units: tuple[str, ...]
    source_url: str
    backup_url: str
    local_dir: str
    file_pattern: str = "*.csv"


class RemoteEnvironment(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: str = "ubuntu"
    workdir: str = "/home/ubuntu/entrenador"
    log_path: str = "/home/ubuntu/train.log"
    entrypoint: str = "run_training.py"
    max_runtime_seconds: int = 7200
    log_tail_seconds: int = 180


class TrainingLaunchPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    config: TrainingConfig
    remote: RemoteEnvironment = RemoteEnvironment()
