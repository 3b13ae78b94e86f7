"""Cassandra storage for governance rows.

The engine only talks to storage through this class. Writes that must not
lose a concurrent update use lightweight transactions (`IF ...`) and report
whether they were applied; callers decide what a lost race means.

Every write to `lesson_progress` is conditional. Cassandra does not order a
plain write against a lightweight transaction on the same row.
"""

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from .models import (
    AccessCode,
    AccessCodeType,
    AttendanceRecord,
    CourseDeliveryMode,
    CourseSequence,
    CourseSession,
    Lesson,
    LessonProgress,
    LessonProgressState,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class GovernanceRepository:
    """Reads and writes progress, access code and attendance rows."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Catalogue projection
        self._get_lesson = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_lookup WHERE lesson_id = ?
        """)

        self._get_course_lessons = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_lessons WHERE course_id = ?
        """)

        self._get_course_delivery = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_delivery WHERE course_id = ?
        """)

        # Lesson progress
        self._get_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
        """)

        self._get_course_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND course_id = ?
        """)

        progress_columns = """
            (user_id, course_id, lesson_id, state, pauses_used, max_pauses,
             last_position_seconds, time_spent_seconds, completed, forced,
             admin_locked, auto_skip_at, started_at, completed_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """

        self._insert_progress_if_absent = self.session.prepare(
            f"INSERT INTO {self.keyspace}.lesson_progress {progress_columns} "
            "IF NOT EXISTS"
        )

        self._cas_pauses_used = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET pauses_used = ?, state = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF pauses_used = ? AND max_pauses = ? AND admin_locked = false
               AND completed = false
        """)

        self._cas_max_pauses = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET max_pauses = ?, auto_skip_at = null, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF max_pauses = ?
        """)

        self._set_auto_skip_at = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET auto_skip_at = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF auto_skip_at = null AND completed = false
        """)

        self._set_state_if_unlocked = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET state = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF admin_locked = false
        """)

        self._complete_if_unlocked = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET state = ?, completed = true, forced = ?, time_spent_seconds = ?,
                last_position_seconds = ?, completed_at = ?, auto_skip_at = null,
                updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF admin_locked = false
        """)

        self._save_position = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET time_spent_seconds = ?, last_position_seconds = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF admin_locked = false AND completed = false
        """)

        self._lock_progress = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET admin_locked = true, state = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)

        self._reset_progress = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_progress
            SET state = ?, pauses_used = 0, max_pauses = ?,
                last_position_seconds = 0, time_spent_seconds = 0,
                completed = false, forced = false, admin_locked = false,
                auto_skip_at = null, started_at = null, completed_at = null,
                updated_at = ?
            WHERE user_id = ? AND course_id = ? AND lesson_id = ?
            IF EXISTS
        """)

        # Access codes
        self._get_access_code = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_access_codes WHERE lesson_id = ?
        """)

        self._upsert_access_code = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_access_codes
            (lesson_id, code, code_type, expires_at, generated_at, enabled)
            VALUES (?, ?, ?, ?, ?, ?)
        """)

        self._set_access_code_enabled = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_access_codes
            SET enabled = ? WHERE lesson_id = ?
        """)

        self._clear_access_code = self.session.prepare(f"""
            UPDATE {self.keyspace}.lesson_access_codes
            SET code = null, code_type = ?, expires_at = null, generated_at = null
            WHERE lesson_id = ?
        """)

        # Sessions and attendance
        self._get_today_session = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_sessions_by_date
            WHERE course_id = ? AND session_date = ?
            LIMIT 1
        """)

        self._get_attendance = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.session_attendance
            WHERE session_id = ? AND user_id = ?
        """)

        self._list_attendance = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.session_attendance WHERE session_id = ?
        """)

        self._update_attendance = self.session.prepare(f"""
            UPDATE {self.keyspace}.session_attendance
            SET status = ?, marked_at = ?, marked_by = ?, notes = ?
            WHERE session_id = ? AND user_id = ?
            IF EXISTS
        """)

    # ==========================================================================
    # Catalogue
    # ==========================================================================

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        """Get catalogue data for a lesson."""
        result = await self.session.aexecute(self._get_lesson, [lesson_id])
        row = result.one()
        return Lesson.from_row(row) if row else None

    async def get_lesson_sequence(self, course_id: UUID) -> CourseSequence | None:
        """Get the ordered lessons and delivery mode of a course."""
        result = await self.session.aexecute(self._get_course_delivery, [course_id])
        course_row = result.one()
        if not course_row:
            return None

        rows = await self.session.aexecute(self._get_course_lessons, [course_id])
        lessons = [
            Lesson(
                lesson_id=row.lesson_id,
                course_id=course_id,
                order_index=row.order_index,
                title=row.title or "",
                max_pauses=row.max_pauses,
            )
            for row in rows
        ]
        return CourseSequence(
            course_id=course_id,
            lessons=lessons,
            delivery_mode=CourseDeliveryMode(
                course_row.delivery_mode or CourseDeliveryMode.SELF_PACED.value
            ),
        )

    # ==========================================================================
    # Lesson Progress
    # ==========================================================================

    async def get_progress(
        self, user_id: UUID, course_id: UUID, lesson_id: UUID
    ) -> LessonProgress | None:
        """Get progress for one lesson."""
        result = await self.session.aexecute(
            self._get_progress, [user_id, course_id, lesson_id]
        )
        row = result.one()
        return LessonProgress.from_row(row) if row else None

    async def get_course_progress(
        self, user_id: UUID, course_id: UUID
    ) -> dict[UUID, LessonProgress]:
        """Get every progress row of a learner in a course, by lesson."""
        rows = await self.session.aexecute(
            self._get_course_progress, [user_id, course_id]
        )
        return {row.lesson_id: LessonProgress.from_row(row) for row in rows}

    def _progress_values(self, progress: LessonProgress) -> list:
        return [
            progress.user_id,
            progress.course_id,
            progress.lesson_id,
            progress.state.value,
            progress.pauses_used,
            progress.max_pauses,
            progress.last_position_seconds,
            progress.time_spent_seconds,
            progress.completed,
            progress.forced,
            progress.admin_locked,
            progress.auto_skip_at,
            progress.started_at,
            progress.completed_at,
            progress.updated_at,
        ]

    async def insert_progress_if_absent(self, progress: LessonProgress) -> bool:
        """Create a progress row unless one already exists.

        Returns:
            True if this call created the row
        """
        result = await self.session.aexecute(
            self._insert_progress_if_absent, self._progress_values(progress)
        )
        return bool(result.was_applied)

    async def compare_and_set_pauses(
        self,
        progress: LessonProgress,
        new_pauses_used: int,
        new_state: LessonProgressState,
    ) -> bool:
        """Set pauses_used only if the row still matches what was read.

        The condition covers pauses_used, max_pauses, the admin lock and the
        completed flag, so a concurrent pause, grant, lock or completion makes
        this write fail instead of being overwritten.

        Returns:
            True if the write was applied
        """
        result = await self.session.aexecute(
            self._cas_pauses_used,
            [
                new_pauses_used,
                new_state.value,
                datetime.now(UTC),
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
                progress.pauses_used,
                progress.max_pauses,
            ],
        )
        return bool(result.was_applied)

    async def compare_and_set_max_pauses(
        self, progress: LessonProgress, new_max_pauses: int
    ) -> bool:
        """Raise max_pauses (clearing any auto-skip deadline) if unchanged."""
        result = await self.session.aexecute(
            self._cas_max_pauses,
            [
                new_max_pauses,
                datetime.now(UTC),
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
                progress.max_pauses,
            ],
        )
        return bool(result.was_applied)

    async def set_auto_skip_at_if_unset(
        self, progress: LessonProgress, auto_skip_at: datetime
    ) -> bool:
        """Record the auto-skip deadline unless one is pending or the lesson ended."""
        result = await self.session.aexecute(
            self._set_auto_skip_at,
            [
                auto_skip_at,
                datetime.now(UTC),
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    async def set_state_if_unlocked(
        self, progress: LessonProgress, state: LessonProgressState
    ) -> bool:
        """Change lifecycle state unless an admin lock is in force."""
        result = await self.session.aexecute(
            self._set_state_if_unlocked,
            [
                state.value,
                datetime.now(UTC),
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    async def complete_if_unlocked(self, progress: LessonProgress) -> bool:
        """Persist a terminal completion unless an admin lock raced it."""
        result = await self.session.aexecute(
            self._complete_if_unlocked,
            [
                progress.state.value,
                progress.forced,
                progress.time_spent_seconds,
                progress.last_position_seconds,
                progress.completed_at,
                progress.updated_at,
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    async def save_position(self, progress: LessonProgress) -> bool:
        """Store playback position and time spent of an unfinished attempt.

        Returns:
            False if the lesson was locked or finished since it was read
        """
        result = await self.session.aexecute(
            self._save_position,
            [
                progress.time_spent_seconds,
                progress.last_position_seconds,
                progress.updated_at,
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    async def lock_progress(
        self, progress: LessonProgress, state: LessonProgressState
    ) -> bool:
        """Set the admin lock and state only, leaving every other column.

        Returns:
            False if the row does not exist
        """
        result = await self.session.aexecute(
            self._lock_progress,
            [
                state.value,
                datetime.now(UTC),
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    async def reset_progress(self, progress: LessonProgress) -> bool:
        """Overwrite an existing row with a fresh attempt.

        Only `state` and `max_pauses` are taken from `progress`; every other
        column goes back to its initial value.

        Returns:
            False if the row does not exist
        """
        result = await self.session.aexecute(
            self._reset_progress,
            [
                progress.state.value,
                progress.max_pauses,
                progress.updated_at,
                progress.user_id,
                progress.course_id,
                progress.lesson_id,
            ],
        )
        return bool(result.was_applied)

    # ==========================================================================
    # Access Codes
    # ==========================================================================

    async def get_access_code(self, lesson_id: UUID) -> AccessCode | None:
        """Get the access code row of a lesson."""
        result = await self.session.aexecute(self._get_access_code, [lesson_id])
        row = result.one()
        return AccessCode.from_row(row) if row else None

    async def put_access_code(self, access_code: AccessCode) -> None:
        """Create or replace the access code row of a lesson."""
        await self.session.aexecute(
            self._upsert_access_code,
            [
                access_code.lesson_id,
                access_code.code,
                access_code.code_type.value,
                access_code.expires_at,
                access_code.generated_at,
                access_code.enabled,
            ],
        )

    async def set_access_code_enabled(self, lesson_id: UUID, enabled: bool) -> None:
        """Flip enforcement without touching the stored code."""
        await self.session.aexecute(
            self._set_access_code_enabled, [enabled, lesson_id]
        )

    async def clear_access_code(self, lesson_id: UUID) -> None:
        """Remove the stored code, keeping the enforcement flag."""
        await self.session.aexecute(
            self._clear_access_code,
            [AccessCodeType.PERMANENT.value, lesson_id],
        )

    # ==========================================================================
    # Sessions and Attendance
    # ==========================================================================

    async def get_today_session(
        self, course_id: UUID, today: date
    ) -> CourseSession | None:
        """Get the latest session scheduled for a course on a given day."""
        result = await self.session.aexecute(
            self._get_today_session, [course_id, today]
        )
        row = result.one()
        return CourseSession.from_row(row) if row else None

    async def get_attendance(
        self, session_id: UUID, user_id: UUID
    ) -> AttendanceRecord | None:
        """Get a learner's attendance row for a session."""
        result = await self.session.aexecute(
            self._get_attendance, [session_id, user_id]
        )
        row = result.one()
        return AttendanceRecord.from_row(row) if row else None

    async def list_attendance(self, session_id: UUID) -> list[AttendanceRecord]:
        """Get every registered learner's attendance row for a session."""
        rows = await self.session.aexecute(self._list_attendance, [session_id])
        return [AttendanceRecord.from_row(row) for row in rows]

    async def update_attendance(self, record: AttendanceRecord) -> bool:
        """Update an existing attendance row.

        Returns:
            False if the learner is not registered for the session
        """
        result = await self.session.aexecute(
            self._update_attendance,
            [
                record.status.value,
                record.marked_at,
                record.marked_by,
                record.notes,
                record.session_id,
                record.user_id,
            ],
        )
        return bool(result.was_applied)
