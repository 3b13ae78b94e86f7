"""Per-lesson access codes.

Admins generate one code per lesson, either permanent or valid for a number
of minutes. Enforcement is a separate flag so a code can be prepared before
it is switched on, and a cleared code keeps enforcement on (fail closed).
"""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import structlog

from .errors import NotFoundError, ValidationError
from .models import AccessCode, AccessCodeFailure, AccessCodeType, utc_now
from .repository import GovernanceRepository


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccessCodeVerification:
    """Outcome of checking a supplied code."""

    valid: bool
    reason: AccessCodeFailure | None = None


def generate_numeric_code(length: int) -> str:
    """Random numeric code of `length` digits without a leading zero."""
    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(length - 1))
    return first + rest


class AccessCodeManager:
    """Issues, toggles, clears and verifies lesson access codes."""

    def __init__(
        self,
        repository: GovernanceRepository,
        code_length: int = 6,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.code_length = code_length
        self.clock = clock

    async def _require_lesson(self, lesson_id: UUID) -> None:
        if await self.repository.get_lesson(lesson_id) is None:
            raise NotFoundError("Lesson not found")

    async def generate(
        self,
        lesson_id: UUID,
        code_type: AccessCodeType,
        expires_in_minutes: int | None = None,
    ) -> AccessCode:
        """Create or replace the lesson's code and enable enforcement.

        Args:
            lesson_id: Lesson UUID
            code_type: Permanent or temporary
            expires_in_minutes: Lifetime of a temporary code, must be > 0

        Raises:
            ValidationError: If a temporary code has no positive lifetime
            NotFoundError: If the lesson does not exist
        """
        code_type = AccessCodeType(code_type)
        if code_type == AccessCodeType.TEMPORARY and (
            expires_in_minutes is None or expires_in_minutes <= 0
        ):
            raise ValidationError("Temporary codes need a positive expiry in minutes")

        await self._require_lesson(lesson_id)

        now = self.clock()
        expires_at = None
        if code_type == AccessCodeType.TEMPORARY:
            expires_at = now + timedelta(minutes=expires_in_minutes)

        access_code = AccessCode(
            lesson_id=lesson_id,
            code=generate_numeric_code(self.code_length),
            code_type=code_type,
            expires_at=expires_at,
            generated_at=now,
            enabled=True,
        )
        await self.repository.put_access_code(access_code)

        logger.info(
            "access_code_generated",
            lesson_id=str(lesson_id),
            code_type=code_type.value,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return access_code

    async def toggle(self, lesson_id: UUID, enabled: bool) -> AccessCode:
        """Switch enforcement on or off without touching the stored code."""
        await self._require_lesson(lesson_id)

        current = await self.repository.get_access_code(lesson_id)
        if current is None:
            current = AccessCode(lesson_id=lesson_id, enabled=enabled)
            await self.repository.put_access_code(current)
        else:
            await self.repository.set_access_code_enabled(lesson_id, enabled)
            current.enabled = enabled

        logger.info("access_code_toggled", lesson_id=str(lesson_id), enabled=enabled)
        return current

    async def clear(self, lesson_id: UUID) -> None:
        """Delete the stored code. Enforcement, if on, now denies everyone."""
        await self._require_lesson(lesson_id)
        await self.repository.clear_access_code(lesson_id)
        logger.info("access_code_cleared", lesson_id=str(lesson_id))

    async def info(self, lesson_id: UUID) -> AccessCode:
        """Admin view of the lesson's code configuration.

        A lesson with no row yet is reported as disabled with no code.
        """
        await self._require_lesson(lesson_id)
        current = await self.repository.get_access_code(lesson_id)
        return current or AccessCode(lesson_id=lesson_id)

    async def verify(self, lesson_id: UUID, supplied_code: str) -> AccessCodeVerification:
        """Check a supplied code. Does not consume it.

        Raises:
            ValidationError: If the supplied code is empty
            NotFoundError: If the lesson does not exist
        """
        supplied = (supplied_code or "").strip()
        if not supplied:
            raise ValidationError("Access code is required")

        await self._require_lesson(lesson_id)

        current = await self.repository.get_access_code(lesson_id)
        if current is None or not current.enabled or not current.has_code:
            return AccessCodeVerification(False, AccessCodeFailure.NOT_CONFIGURED)

        if current.is_expired(self.clock()):
            logger.info("access_code_expired", lesson_id=str(lesson_id))
            return AccessCodeVerification(False, AccessCodeFailure.EXPIRED)

        if not secrets.compare_digest(
            supplied.encode("utf-8"), current.code.encode("utf-8")
        ):
            logger.info("access_code_incorrect", lesson_id=str(lesson_id))
            return AccessCodeVerification(False, AccessCodeFailure.INCORRECT)

        return AccessCodeVerification(True)

    async def is_enforced(self, lesson_id: UUID) -> bool:
        """True if the lesson requires a code to start."""
        current = await self.repository.get_access_code(lesson_id)
        return current is not None and current.enabled
