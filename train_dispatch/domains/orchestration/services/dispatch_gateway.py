import logging
from typing import Optional, Protocol, Sequence

from train_dispatch.domains.orchestration.schemas.dispatch import CommandBatch, DispatchResult, ExecutionOptions
from train_dispatch.errors import PayloadTooLarge

logger = logging.getLogger(__name__)


class ExecutionChannel(Protocol):
    def send_command(
            self,
            node_id: str,
            document_name: str,
            commands: Sequence[str],
            timeout_seconds: int,
            log_group: Optional[str] = None,
            comment: Optional[str] = None
    ) -> str: ...


class DispatchGateway():
    def __init__(self, channel: ExecutionChannel, max_payload_bytes: int):
        self.channel = channel
        self.max_payload_bytes = max_payload_bytes

    def submit(
            self,
            node_id: str,
            batch: CommandBatch,
            options: ExecutionOptions,
            summary: str = "",
            units: Sequence[str] = ()
    ) -> DispatchResult:
        """Hand the batch to the channel and return as soon as it is accepted."""

        size = batch.payload_size()
        if size > self.max_payload_bytes:
            logger.error(f"[SSM] Batch for {node_id} is {size} bytes, limit is {self.max_payload_bytes}")
            raise PayloadTooLarge(
                f"Command batch is {size} bytes, above the {self.max_payload_bytes} byte channel limit."
            )

        logger.info(f"[SSM] Sending {len(batch)} command lines ({size} bytes) to {node_id}")
        command_id = self.channel.send_command(
            node_id,
            options.document_name,
            batch.lines,
            options.timeout_seconds,
            log_group=options.log_group,
            comment=options.comment
        )
        logger.info(f"[SSM] Command accepted for {node_id}. CommandId: {command_id}")

        return DispatchResult(
            correlation_id=command_id,
            node_id=node_id,
            summary=summary,
            units_processed=list(units)
        )
