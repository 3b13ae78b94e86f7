"""Pause budget tracking.

Every learner pause and every admin grant is a compare-and-set against the
row that was read. A lost race re-reads and tries again, so concurrent
pauses can never push `pauses_used` past `max_pauses`.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from .errors import ConflictError, NotFoundError, ValidationError
from .models import LessonProgress, LessonProgressState, utc_now
from .policy import PlaybackPolicy
from .repository import GovernanceRepository


logger = structlog.get_logger(__name__)

# Upper bound on re-reads after a lost compare-and-set
MAX_CAS_ATTEMPTS = 16


@dataclass(frozen=True)
class PauseResult:
    """Outcome of a pause request."""

    accepted: bool
    remaining: int
    auto_skip: bool = False
    auto_skip_at: datetime | None = None


class PauseBudgetTracker:
    """Counts pauses per (user, lesson) and applies admin grants."""

    def __init__(
        self,
        repository: GovernanceRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.clock = clock

    async def _load(
        self, user_id: UUID, course_id: UUID, lesson_id: UUID
    ) -> LessonProgress:
        progress = await self.repository.get_progress(user_id, course_id, lesson_id)
        if progress is None:
            raise NotFoundError("Lesson has not been started")
        return progress

    async def record_pause(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: UUID,
        policy: PlaybackPolicy,
    ) -> PauseResult:
        """Count one pause if the budget allows it.

        Once the budget is exhausted and the policy auto-skips, the first
        rejected pause records `auto_skip_at`; later rejections report the
        same deadline.

        Raises:
            NotFoundError: If the learner has no progress row
            ValidationError: If the lesson finished before the pause landed
            ConflictError: If the lesson is admin-locked or the row keeps changing
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            progress = await self._load(user_id, course_id, lesson_id)
            if progress.admin_locked:
                raise ConflictError("Lesson was locked by an admin")
            if not progress.in_session:
                raise ValidationError("Lesson is not being played")

            if progress.pauses_used < progress.max_pauses:
                used = progress.pauses_used + 1
                applied = await self.repository.compare_and_set_pauses(
                    progress, used, LessonProgressState.PAUSED
                )
                if applied:
                    remaining = progress.max_pauses - used
                    logger.info(
                        "pause_recorded",
                        user_id=str(user_id),
                        lesson_id=str(lesson_id),
                        pauses_used=used,
                        remaining=remaining,
                    )
                    return PauseResult(accepted=True, remaining=remaining)
                continue

            if not policy.auto_skip_on_max_pauses:
                logger.info(
                    "pause_rejected",
                    user_id=str(user_id),
                    lesson_id=str(lesson_id),
                    pauses_used=progress.pauses_used,
                )
                return PauseResult(accepted=False, remaining=0)

            if progress.auto_skip_at is None:
                deadline = policy.auto_skip_deadline(self.clock())
                if not await self.repository.set_auto_skip_at_if_unset(
                    progress, deadline
                ):
                    continue
                logger.info(
                    "auto_skip_scheduled",
                    user_id=str(user_id),
                    lesson_id=str(lesson_id),
                    auto_skip_at=deadline.isoformat(),
                )
            else:
                deadline = progress.auto_skip_at

            return PauseResult(
                accepted=False, remaining=0, auto_skip=True, auto_skip_at=deadline
            )

        logger.warning(
            "pause_contention_exhausted", user_id=str(user_id), lesson_id=str(lesson_id)
        )
        raise ConflictError("Too many concurrent updates, please retry")

    async def grant_pause(
        self, user_id: UUID, course_id: UUID, lesson_id: UUID, extra: int
    ) -> LessonProgress:
        """Raise the pause budget by `extra`.

        `pauses_used` is untouched and any pending auto-skip is cancelled.

        Raises:
            ValidationError: If extra is not positive
            NotFoundError: If the learner has no progress row
        """
        if extra <= 0:
            raise ValidationError("Extra pauses must be a positive number")

        for _ in range(MAX_CAS_ATTEMPTS):
            progress = await self._load(user_id, course_id, lesson_id)
            new_max = progress.max_pauses + extra
            if await self.repository.compare_and_set_max_pauses(progress, new_max):
                progress.max_pauses = new_max
                progress.auto_skip_at = None
                logger.info(
                    "pause_granted",
                    user_id=str(user_id),
                    lesson_id=str(lesson_id),
                    extra=extra,
                    max_pauses=new_max,
                )
                return progress

        raise ConflictError("Too many concurrent updates, please retry")
