from __future__ import annotations

import logging

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

QUEUE_NAME = "processing_jobs"


class ProcessingQueue:
    """Redis list used to wake the processing worker.

    Delivery is best effort. The catalog lease is the source of truth, so a lost
    or duplicated message only changes how soon a record is picked up.
    """

    def __init__(self, client: Redis | None, name: str = QUEUE_NAME) -> None:
        self.client = client
        self.name = name

    @classmethod
    def from_url(cls, redis_url: str | None = settings.REDIS_URL) -> "ProcessingQueue":
        if not redis_url:
            return cls(None)
        return cls(Redis.from_url(redis_url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def push(self, photo_id: str) -> None:
        if self.client is None:
            return

        try:
            self.client.rpush(self.name, photo_id)
        except RedisError as exc:
            logger.warning("processing queue push failed photo_id=%s error=%s", photo_id, exc)

    def pop(self, timeout: int = 1) -> str | None:
        if self.client is None:
            return None

        try:
            result = self.client.blpop(self.name, timeout=timeout)
        except RedisError as exc:
            logger.warning("processing queue pop failed error=%s", exc)
            return None

        if not result:
            return None

        _, photo_id = result
        return photo_id
