"""Attendance gate for onsite courses."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog

from .errors import NotFoundError, ValidationError
from .models import AttendanceOutcome, AttendanceRecord, AttendanceStatus, utc_now
from .repository import GovernanceRepository


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AttendanceMark:
    """One entry of a bulk attendance update."""

    user_id: UUID
    status: AttendanceStatus
    notes: str | None = None


class AttendanceGate:
    """Resolves whether a learner attended today's session."""

    def __init__(
        self,
        repository: GovernanceRepository,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.timezone = ZoneInfo(timezone)
        self.clock = clock

    def today(self) -> date:
        """Current calendar day in the platform timezone."""
        return self.clock().astimezone(self.timezone).date()

    async def is_eligible(
        self, course_id: UUID, user_id: UUID, today: date | None = None
    ) -> AttendanceOutcome:
        """Check today's attendance for a learner.

        When several sessions fall on the same day, the latest scheduled one
        decides.

        Returns:
            NO_SESSION if nothing is scheduled, NOT_MARKED if the learner is not
            marked present, ELIGIBLE otherwise
        """
        session = await self.repository.get_today_session(
            course_id, today or self.today()
        )
        if session is None:
            return AttendanceOutcome.NO_SESSION

        record = await self.repository.get_attendance(session.session_id, user_id)
        if record is None or not record.is_present:
            return AttendanceOutcome.NOT_MARKED

        return AttendanceOutcome.ELIGIBLE

    async def mark(
        self,
        session_id: UUID,
        user_id: UUID,
        status: AttendanceStatus,
        marked_by: UUID,
        notes: str | None = None,
    ) -> AttendanceRecord:
        """Record a learner as present or absent.

        Raises:
            ValidationError: If status is PENDING
            NotFoundError: If the learner is not registered for the session
        """
        status = AttendanceStatus(status)
        if status == AttendanceStatus.PENDING:
            raise ValidationError("Attendance can only be marked present or absent")

        record = AttendanceRecord(
            session_id=session_id,
            user_id=user_id,
            status=status,
            marked_at=self.clock(),
            marked_by=marked_by,
            notes=notes,
        )
        if not await self.repository.update_attendance(record):
            raise NotFoundError("Learner is not registered for this session")

        logger.info(
            "attendance_marked",
            session_id=str(session_id),
            user_id=str(user_id),
            status=status.value,
            marked_by=str(marked_by),
        )
        return record

    async def list_session_attendance(
        self, session_id: UUID
    ) -> list[AttendanceRecord]:
        """Roster of a session: every registered learner and their status."""
        return await self.repository.list_attendance(session_id)

    async def mark_many(
        self,
        session_id: UUID,
        marks: list[AttendanceMark],
        marked_by: UUID,
    ) -> list[AttendanceRecord]:
        """Mark several learners of one session.

        Every status is checked before anything is written. Learners that are
        not registered for the session are skipped.

        Returns:
            The records that were written

        Raises:
            ValidationError: If any mark is PENDING
        """
        statuses = [AttendanceStatus(mark.status) for mark in marks]
        if AttendanceStatus.PENDING in statuses:
            raise ValidationError("Attendance can only be marked present or absent")

        now = self.clock()
        written: list[AttendanceRecord] = []
        skipped = 0
        for mark, status in zip(marks, statuses, strict=True):
            record = AttendanceRecord(
                session_id=session_id,
                user_id=mark.user_id,
                status=status,
                marked_at=now,
                marked_by=marked_by,
                notes=mark.notes,
            )
            if await self.repository.update_attendance(record):
                written.append(record)
            else:
                skipped += 1

        logger.info(
            "attendance_bulk_marked",
            session_id=str(session_id),
            marked=len(written),
            skipped=skipped,
            marked_by=str(marked_by),
        )
        return written
