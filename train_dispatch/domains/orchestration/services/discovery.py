import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class PrefixLister(Protocol):
    def list_common_prefixes(self, bucket: str, prefix: str, delimiter: str = "/") -> list[str]: ...


def unit_name(common_prefix: str, parent_prefix: str) -> str:
    # 'csv/agua/' under 'csv/' -> 'agua'
    name = common_prefix[len(parent_prefix):] if common_prefix.startswith(parent_prefix) else common_prefix
    return name.strip("/")


def discover_work_units(
        storage: PrefixLister,
        bucket: str,
        prefix: str,
        exclude: Optional[str] = None
) -> list[str]:
    """Work unit names directly under prefix, in listing order, without the excluded one."""

    prefixes = storage.list_common_prefixes(bucket, prefix, "/")
    units = [unit_name(common_prefix, prefix) for common_prefix in prefixes]
    units = [unit for unit in units if unit and unit != exclude]

    logger.info(f"[S3-DISCOVERY] Units found under s3://{bucket}/{prefix}: {', '.join(units) or 'none'}")
    return units
