from functools import lru_cache
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from train_dispatch.domains.orchestration.schemas.constants import NodeState
from train_dispatch.errors import ComputeUnavailable, NodeNotFound
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"}


class EC2Client():
    def __init__(self, ec2_client: Any):
        self.ec2_client = ec2_client

    def describe(self, node_id: str) -> NodeState:
        try:
            data = self.ec2_client.describe_instances(InstanceIds=[node_id])
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                raise NodeNotFound(f"EC2 instance {node_id} does not exist.") from e
            raise ComputeUnavailable(f"Error describing EC2 instance {node_id}: {e}") from e
        except BotoCoreError as e:
            raise ComputeUnavailable(f"Error describing EC2 instance {node_id}: {e}") from e

        instances = [
            instance
            for reservation in data.get("Reservations") or []
            for instance in reservation.get("Instances") or []
        ]
        if not instances:
            logger.error(f"[EC2] No instance found with id {node_id}")
            raise NodeNotFound(f"EC2 instance {node_id} does not exist.")

        raw_state = instances[0]["State"]["Name"]
        state = NodeState.from_platform(raw_state)
        if state == NodeState.UNKNOWN:
            logger.warning(f"[EC2] Instance {node_id} reported unhandled state {raw_state}")
        return state

    def start(self, node_id: str) -> None:
        try:
            self.ec2_client.start_instances(InstanceIds=[node_id])
        except (BotoCoreError, ClientError) as e:
            raise ComputeUnavailable(f"Error starting EC2 instance {node_id}: {e}") from e


@lru_cache
def get_ec2_client() -> EC2Client:
    return EC2Client(boto3.client("ec2", region_name=settings.aws_region))
