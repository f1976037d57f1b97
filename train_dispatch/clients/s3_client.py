from functools import lru_cache
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from train_dispatch.errors import StorageUnavailable
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)


class S3Client():
    def __init__(self, s3_client: Any):
        self.s3_client = s3_client

    def list_common_prefixes(self, bucket: str, prefix: str, delimiter: str = "/") -> list[str]:
        prefixes = []
        logger.info(f"[S3-DISCOVERY] Listing prefixes in s3://{bucket}/{prefix}")

        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter=delimiter):
                for common_prefix in page.get("CommonPrefixes") or []:
                    prefixes.append(common_prefix["Prefix"])
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[S3-DISCOVERY] Error listing s3://{bucket}/{prefix}: {e}")
            raise StorageUnavailable(f"Error listing bucket {bucket}: {e}") from e

        return prefixes


@lru_cache
def get_s3_client() -> S3Client:
    return S3Client(boto3.client("s3", region_name=settings.aws_region))
