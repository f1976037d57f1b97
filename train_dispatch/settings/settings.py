from pathlib import Path
from pydantic_settings import BaseSettings

from decouple import config

ENV: str = config('ENV', default="local")
AWS_REGION: str = config('AWS_REGION', default="us-east-1")
FASTAPI_HOST: str = config('FASTAPI_HOST', default="127.0.0.1")
FASTAPI_PORT: int = config('FASTAPI_PORT', default=8000, cast=int)
API_PREFIX: str = config('API_PREFIX', default="")

S3_BUCKET: str = config('S3_BUCKET', default="")
BUCKET_SECRET_ID: str = config('BUCKET_SECRET_ID', default="bucket")
SECRET_CACHE_TTL_SECONDS: int = config('SECRET_CACHE_TTL_SECONDS', default=300, cast=int)
S3_SOURCE_PREFIX: str = config('S3_SOURCE_PREFIX', default="csv/")
S3_BACKUP_PREFIX: str = config('S3_BACKUP_PREFIX', default="csv/backup/")
TRANSFER_FILE_PATTERN: str = config('TRANSFER_FILE_PATTERN', default="*.csv")
NODE_LOCAL_DATA_DIR: str = config('NODE_LOCAL_DATA_DIR', default="/home/ubuntu/sign_language_project/data/csv/")

DOWNLOAD_NODE_ID: str = config('DOWNLOAD_NODE_ID', default="")
ROLLBACK_NODE_ID: str = config('ROLLBACK_NODE_ID', default="")
TRAINING_NODE_ID: str = config('TRAINING_NODE_ID', default="")

DOWNLOAD_TIMEOUT_SECONDS: int = config('DOWNLOAD_TIMEOUT_SECONDS', default=3600, cast=int)
ROLLBACK_TIMEOUT_SECONDS: int = config('ROLLBACK_TIMEOUT_SECONDS', default=60, cast=int)
TRAINING_MAX_RUNTIME_SECONDS: int = config('TRAINING_MAX_RUNTIME_SECONDS', default=7200, cast=int)
DISPATCH_TIMEOUT_MARGIN_SECONDS: int = config('DISPATCH_TIMEOUT_MARGIN_SECONDS', default=300, cast=int)

SSM_DOCUMENT_NAME: str = config('SSM_DOCUMENT_NAME', default="AWS-RunShellScript")
SSM_LOG_GROUP: str = config('SSM_LOG_GROUP', default="/ssm/training-jobs")
SSM_MAX_PAYLOAD_BYTES: int = config('SSM_MAX_PAYLOAD_BYTES', default=64 * 1024, cast=int)

READINESS_MAX_ATTEMPTS: int = config('READINESS_MAX_ATTEMPTS', default=15, cast=int)
READINESS_POLL_INTERVAL_SECONDS: float = config('READINESS_POLL_INTERVAL_SECONDS', default=10.0, cast=float)
READINESS_TIMEOUT_SECONDS: float = config('READINESS_TIMEOUT_SECONDS', default=0.0, cast=float)

TRAINING_USER: str = config('TRAINING_USER', default="ubuntu")
TRAINING_WORKDIR: str = config('TRAINING_WORKDIR', default="/home/ubuntu/entrenador")
TRAINING_LOG_PATH: str = config('TRAINING_LOG_PATH', default="/home/ubuntu/train.log")
TRAINING_ENTRYPOINT: str = config('TRAINING_ENTRYPOINT', default="run_training.py")
TRAINING_LOG_TAIL_SECONDS: int = config('TRAINING_LOG_TAIL_SECONDS', default=180, cast=int)

CLOUDWATCH_LOG_GROUP: str = config('CLOUDWATCH_LOG_GROUP', default="")

ROOT_DIR = Path(__file__).parent.parent.parent

PACKAGE_DIR = ROOT_DIR / 'train_dispatch'
TRAINING_PRESETS_PATH = PACKAGE_DIR / 'domains' / 'orchestration' / 'presets' / 'training_modes.yml'
LOGGING_CONF_PATH = ROOT_DIR / 'logging.conf'


class BaseConfig(BaseSettings):
    root_dir: Path = ROOT_DIR
    logging_conf_path: Path = LOGGING_CONF_PATH
    training_presets_path: Path = config('TRAINING_PRESETS_PATH', default=str(TRAINING_PRESETS_PATH), cast=Path)

    env: str = ENV
    aws_region: str = AWS_REGION
    fastapi_host: str = FASTAPI_HOST
    fastapi_port: int = FASTAPI_PORT
    api_prefix: str = API_PREFIX

    s3_bucket: str = S3_BUCKET
    bucket_secret_id: str = BUCKET_SECRET_ID
    secret_cache_ttl_seconds: int = SECRET_CACHE_TTL_SECONDS
    s3_source_prefix: str = S3_SOURCE_PREFIX
    s3_backup_prefix: str = S3_BACKUP_PREFIX
    transfer_file_pattern: str = TRANSFER_FILE_PATTERN
    node_local_data_dir: str = NODE_LOCAL_DATA_DIR

    download_node_id: str = DOWNLOAD_NODE_ID
    rollback_node_id: str = ROLLBACK_NODE_ID
    training_node_id: str = TRAINING_NODE_ID

    download_timeout_seconds: int = DOWNLOAD_TIMEOUT_SECONDS
    rollback_timeout_seconds: int = ROLLBACK_TIMEOUT_SECONDS
    training_max_runtime_seconds: int = TRAINING_MAX_RUNTIME_SECONDS
    dispatch_timeout_margin_seconds: int = DISPATCH_TIMEOUT_MARGIN_SECONDS

    ssm_document_name: str = SSM_DOCUMENT_NAME
    ssm_log_group: str = SSM_LOG_GROUP
    ssm_max_payload_bytes: int = SSM_MAX_PAYLOAD_BYTES

    readiness_max_attempts: int = READINESS_MAX_ATTEMPTS
    readiness_poll_interval_seconds: float = READINESS_POLL_INTERVAL_SECONDS
    readiness_timeout_seconds: float = READINESS_TIMEOUT_SECONDS

    training_user: str = TRAINING_USER
    training_workdir: str = TRAINING_WORKDIR
    training_log_path: str = TRAINING_LOG_PATH
    training_entrypoint: str = TRAINING_ENTRYPOINT
    training_log_tail_seconds: int = TRAINING_LOG_TAIL_SECONDS

    cloudwatch_log_group: str = CLOUDWATCH_LOG_GROUP

    @property
    def training_dispatch_timeout_seconds(self) -> int:
        return self.training_max_runtime_seconds + self.dispatch_timeout_margin_seconds

class Settings(BaseConfig):
    pass

settings = Settings()
