from functools import lru_cache
import logging
from typing import Any, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from train_dispatch.errors import ChannelUnavailable
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)


class SSMClient():
    def __init__(self, ssm_client: Any):
        self.ssm_client = ssm_client

    def send_command(
            self,
            node_id: str,
            document_name: str,
            commands: Sequence[str],
            timeout_seconds: int,
            log_group: Optional[str] = None,
            comment: Optional[str] = None
    ) -> str:
        params = {
            "DocumentName": document_name,
            "InstanceIds": [node_id],
            "Parameters": {
                "commands": list(commands),
                "executionTimeout": [str(timeout_seconds)],
            },
            "TimeoutSeconds": timeout_seconds,
        }
        if log_group:
            params["CloudWatchOutputConfig"] = {
                "CloudWatchLogGroupName": log_group,
                "CloudWatchOutputEnabled": True,
            }
        if comment:
            params["Comment"] = comment[:100]

        try:
            response = self.ssm_client.send_command(**params)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[SSM] send_command to {node_id} failed: {e}")
            raise ChannelUnavailable(f"Error sending command to {node_id}: {e}") from e

        return response["Command"]["CommandId"]


@lru_cache
def get_ssm_client() -> SSMClient:
    return SSMClient(boto3.client("ssm", region_name=settings.aws_region))
