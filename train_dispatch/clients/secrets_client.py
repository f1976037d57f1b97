import base64
from functools import lru_cache
import json
import logging
import threading
import time
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from train_dispatch.errors import SecretUnavailable
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)

PREFERRED_SECRET_KEYS = ("value", "secret", "bucket")


class CachedSecret():
    def __init__(self, value: str, fetched_at: float):
        self.value = value
        self.fetched_at = fetched_at


class SecretCache():
    """Time-boxed cache of fetched secrets, one lock per secret id so only one fetch runs at a time."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, CachedSecret] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def _fresh(self, key: str) -> Optional[CachedSecret]:
        entry = self._entries.get(key)
        if entry and (self.clock() - entry.fetched_at) < self.ttl_seconds:
            return entry
        return None

    def get_or_fetch(self, key: str, fetch: Callable[[], str]) -> str:
        entry = self._fresh(key)
        if entry:
            logger.debug(f"Secret {key} served from cache, age {self.clock() - entry.fetched_at:.0f}s")
            return entry.value

        with self._lock_for(key):
            # another thread may have refreshed while we waited
            entry = self._fresh(key)
            if entry:
                return entry.value

            value = fetch()
            self._entries[key] = CachedSecret(value, self.clock())
            return value


class SecretsClient():
    def __init__(self, secrets_client: Any, cache: SecretCache):
        self.secrets_client = secrets_client
        self.cache = cache

    def get_secret(self, secret_id: str) -> str:
        return self.cache.get_or_fetch(secret_id, lambda: self._fetch(secret_id))

    def _fetch(self, secret_id: str) -> str:
        logger.info(f"Fetching secret {secret_id} from Secrets Manager")
        try:
            result = self.secrets_client.get_secret_value(SecretId=secret_id)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error fetching secret {secret_id}: {e}")
            raise SecretUnavailable(f"Error loading secret {secret_id}: {e}") from e

        raw = result.get("SecretString")
        if not raw and result.get("SecretBinary"):
            binary = result["SecretBinary"]
            raw = base64.b64decode(binary).decode("utf-8") if isinstance(binary, str) else binary.decode("utf-8")

        value = _extract_secret_value(raw or "")
        if not value:
            raise SecretUnavailable(f"Secret {secret_id} is empty or has an invalid format.")

        logger.info(f"Secret {secret_id} loaded")
        return value


def _extract_secret_value(raw: str) -> str:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw.strip()

    if isinstance(parsed, dict):
        for key in PREFERRED_SECRET_KEYS:
            if isinstance(parsed.get(key), str) and parsed[key].strip():
                return parsed[key].strip()
        return ""

    return raw.strip()


@lru_cache
def get_secrets_client() -> SecretsClient:
    return SecretsClient(
        boto3.client("secretsmanager", region_name=settings.aws_region),
        SecretCache(settings.secret_cache_ttl_seconds)
    )
