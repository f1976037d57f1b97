import logging
import socket
import threading
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from train_dispatch.settings.settings import settings


class CloudWatchLogHandler(logging.Handler):
    """Ships each log record to a CloudWatch Logs stream."""

    def __init__(self, logs_client: Any, log_group: str, log_stream: str, level=logging.INFO):
        super().__init__(level)
        self.logs_client = logs_client
        self.log_group = log_group
        self.log_stream = log_stream
        self.stream_ready = False
        self.lock = threading.Lock()

    def _ensure_stream(self):
        if self.stream_ready:
            return
        try:
            self.logs_client.create_log_stream(logGroupName=self.log_group, logStreamName=self.log_stream)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                raise
        self.stream_ready = True

    def emit(self, record: logging.LogRecord):
        try:
            message = self.format(record)
            with self.lock:
                self._ensure_stream()
                self.logs_client.put_log_events(
                    logGroupName=self.log_group,
                    logStreamName=self.log_stream,
                    logEvents=[{"timestamp": int(record.created * 1000), "message": message}]
                )
        except Exception:
            self.handleError(record)


def setup_cloudwatch_logging(logs_client: Optional[Any] = None) -> Optional[CloudWatchLogHandler]:
    if not settings.cloudwatch_log_group:
        logging.info('CLOUDWATCH_LOG_GROUP not set, cloudwatch logging disabled')
        return None

    client = logs_client or boto3.client("logs", region_name=settings.aws_region)
    handler = CloudWatchLogHandler(
        client,
        settings.cloudwatch_log_group,
        f"{settings.env}-{socket.gethostname()}"
    )
    handler.setFormatter(logging.Formatter('%(levelname)s [%(name)s] %(message)s'))

    # package logger only: botocore records must never reach this handler
    logger = logging.getLogger("train_dispatch")
    logger.addHandler(handler)
    return handler
