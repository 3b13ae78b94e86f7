"""Real-time lesson events over Redis Pub/Sub."""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from redis.exceptions import RedisError

from src.core.redis import lesson_events_channel


if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class LessonEventType(str, Enum):
    """Events pushed to the learner's channel."""

    LESSON_COMPLETED = "lesson_completed"
    LESSON_UNLOCKED = "lesson_unlocked"
    LESSON_LOCKED = "lesson_locked"
    LESSON_RESET = "lesson_reset"


class LessonEventPublisher:
    """Publishes lesson events. A missing or failing Redis never fails the caller."""

    def __init__(self, redis: "Redis | None" = None):
        self.redis = redis

    async def publish(
        self,
        event_type: LessonEventType,
        user_id: UUID,
        lesson_id: UUID,
        **data: Any,
    ) -> None:
        if not self.redis:
            return

        message = {
            "type": event_type.value,
            "data": {
                "user_id": str(user_id),
                "lesson_id": str(lesson_id),
                "occurred_at": datetime.now(UTC).isoformat(),
                **data,
            },
        }

        try:
            await self.redis.publish(lesson_events_channel(user_id), json.dumps(message))
        except RedisError as e:
            logger.warning(
                "lesson_event_publish_failed",
                event_type=event_type.value,
                user_id=str(user_id),
                error=str(e),
            )
