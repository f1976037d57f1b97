from functools import partial
import logging
from typing import Any, Callable, Mapping, Optional

from train_dispatch.clients.ec2_client import get_ec2_client
from train_dispatch.clients.s3_client import get_s3_client
from train_dispatch.clients.secrets_client import SecretsClient, get_secrets_client
from train_dispatch.clients.ssm_client import get_ssm_client
from train_dispatch.domains.orchestration.schemas.constants import TransferDirection, WorkflowKind
from train_dispatch.domains.orchestration.schemas.dispatch import DispatchResult, ExecutionOptions
from train_dispatch.domains.orchestration.schemas.plans import BulkTransferPlan, RemoteEnvironment, TrainingLaunchPlan
from train_dispatch.domains.orchestration.schemas.training_config import merge_training_config
from train_dispatch.domains.orchestration.services import command_builder
from train_dispatch.domains.orchestration.services.discovery import PrefixLister, discover_work_units
from train_dispatch.domains.orchestration.services.dispatch_gateway import DispatchGateway
from train_dispatch.domains.orchestration.services.presets import load_training_presets
from train_dispatch.domains.orchestration.services.readiness import NodeReadinessDriver
from train_dispatch.errors import ConfigurationError, NoUnitsFound
from train_dispatch.settings.settings import Settings, settings

logger = logging.getLogger(__name__)

SHELL_PREVIEW_CHARS = 100


class Orchestrator():
    def __init__(
            self,
            config: Settings,
            storage: PrefixLister,
            secrets: Optional[SecretsClient],
            readiness: NodeReadinessDriver,
            gateway: DispatchGateway,
            presets_loader: Callable[[], Mapping[str, Mapping[str, Any]]]
    ):
        self.config = config
        self.storage = storage
        self.secrets = secrets
        self.readiness = readiness
        self.gateway = gateway
        self.presets_loader = presets_loader

    def run_bulk_transfer(self, direction: TransferDirection) -> DispatchResult:
        bucket = self._bucket()
        source_prefix = self.config.s3_source_prefix
        backup_prefix = self.config.s3_backup_prefix
        backup_root = backup_prefix.rstrip("/").split("/")[-1]

        list_prefix = source_prefix if direction == TransferDirection.FORWARD else backup_prefix
        units = discover_work_units(self.storage, bucket, list_prefix, exclude=backup_root)
        if not units:
            raise NoUnitsFound(f"No valid work unit folders found in s3://{bucket}/{list_prefix}.")

        node_id = self._node_id(direction)
        plan = BulkTransferPlan(
            direction=direction,
            units=tuple(units),
            source_url=f"s3://{bucket}/{source_prefix}",
            backup_url=f"s3://{bucket}/{backup_prefix}",
            local_dir=self.config.node_local_data_dir,
            file_pattern=self.config.transfer_file_pattern
        )
        batch = command_builder.build(WorkflowKind.BULK_TRANSFER, plan)

        if direction == TransferDirection.REVERSE:
            self.readiness.ensure_ready(node_id)
            timeout_seconds = self.config.rollback_timeout_seconds
            summary = f"Rollback command (restoring {len(units)} units in S3) started successfully."
        else:
            timeout_seconds = self.config.download_timeout_seconds
            summary = f"Download and backup started successfully for {len(units)} units."

        logger.info(f"[BULK-TRANSFER/{direction.value}] Sending to {node_id}. Processing: {', '.join(units)}")
        result = self.gateway.submit(
            node_id,
            batch,
            self._execution_options(timeout_seconds, f"bulk transfer {direction.value}"),
            summary=summary,
            units=units
        )

        details = {}
        if direction == TransferDirection.FORWARD:
            details["shell_command_start"] = batch.script()[:SHELL_PREVIEW_CHARS] + "..."
        return result.model_copy(update={"details": details})

    def run_training_launch(self, request_config: Mapping[str, Any]) -> DispatchResult:
        logger.info('--- Starting training orchestration ---')

        config = merge_training_config(request_config, self.presets_loader())
        logger.info(f"[TRAINING] Configuration to use: {config.model_dump_json()}")

        plan = TrainingLaunchPlan(config=config, remote=self._remote_environment())
        batch = command_builder.build(WorkflowKind.TRAINING_LAUNCH, plan)

        node_id = self._require(self.config.training_node_id, "TRAINING_NODE_ID")
        runtime = self.config.training_max_runtime_seconds
        timeout_seconds = self.config.training_dispatch_timeout_seconds
        if timeout_seconds <= runtime:
            raise ConfigurationError(
                f"Dispatch timeout {timeout_seconds}s must exceed the training runtime of {runtime}s."
            )

        self.readiness.ensure_ready(node_id)

        result = self.gateway.submit(
            node_id,
            batch,
            self._execution_options(timeout_seconds, f"training mode {config.TRAINING_MODE}"),
            summary=f"Training commands sent to {node_id} (timeout {runtime}s)."
        )
        logger.info(f"--- Training started. CommandId: {result.correlation_id} ---")

        return result.model_copy(update={"details": {
            "commands_length": len(batch),
            "received_config": config.model_dump(mode="json"),
        }})

    def _bucket(self) -> str:
        if self.config.s3_bucket:
            return self.config.s3_bucket
        if self.secrets is None:
            raise ConfigurationError("S3_BUCKET is not set and no secret store is configured.")
        return self.secrets.get_secret(self.config.bucket_secret_id)

    def _node_id(self, direction: TransferDirection) -> str:
        if direction == TransferDirection.FORWARD:
            return self._require(self.config.download_node_id, "DOWNLOAD_NODE_ID")
        return self._require(self.config.rollback_node_id or self.config.training_node_id, "ROLLBACK_NODE_ID")

    def _require(self, node_id: str, name: str) -> str:
        if not node_id:
            raise ConfigurationError(f"{name} is not configured.")
        return node_id

    def _execution_options(self, timeout_seconds: int, comment: str) -> ExecutionOptions:
        return ExecutionOptions(
            timeout_seconds=timeout_seconds,
            log_group=self.config.ssm_log_group or None,
            document_name=self.config.ssm_document_name,
            comment=comment
        )

    def _remote_environment(self) -> RemoteEnvironment:
        return RemoteEnvironment(
            user=self.config.training_user,
            workdir=self.config.training_workdir,
            log_path=self.config.training_log_path,
            entrypoint=self.config.training_entrypoint,
            max_runtime_seconds=self.config.training_max_runtime_seconds,
            log_tail_seconds=self.config.training_log_tail_seconds
        )


def get_orchestrator() -> Orchestrator:
    ec2_client = get_ec2_client()
    readiness = NodeReadinessDriver(
        ec2_client,
        max_attempts=settings.readiness_max_attempts,
        poll_interval_seconds=settings.readiness_poll_interval_seconds,
        timeout_seconds=settings.readiness_timeout_seconds
    )
    return Orchestrator(
        settings,
        get_s3_client(),
        get_secrets_client(),
        readiness,
        DispatchGateway(get_ssm_client(), settings.ssm_max_payload_bytes),
        partial(load_training_presets, settings.training_presets_path)
    )
