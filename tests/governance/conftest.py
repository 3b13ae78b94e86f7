"""Shared fixtures for governance tests.

`InMemoryGovernanceStore` implements the repository interface with the same
conditional-write semantics as the Cassandra statements, so engine rules and
races can be exercised without a cluster.
"""

import asyncio
from copy import copy
from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from src.auth.permissions import Principal, UserRole
from src.governance.access_codes import AccessCodeManager
from src.governance.attendance import AttendanceGate
from src.governance.events import LessonEventPublisher
from src.governance.models import (
    AccessCode,
    AccessCodeType,
    AttendanceRecord,
    AttendanceStatus,
    CourseDeliveryMode,
    CourseSequence,
    CourseSession,
    Lesson,
    LessonProgress,
    LessonProgressState,
)
from src.governance.pauses import PauseBudgetTracker
from src.governance.policy import PlaybackPolicy
from src.governance.service import ProgressGovernanceEngine


NOW = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryGovernanceStore:
    """Dict-backed stand-in for GovernanceRepository."""

    def __init__(self):
        self.lessons: dict[UUID, Lesson] = {}
        self.courses: dict[UUID, CourseDeliveryMode] = {}
        self.progress: dict[tuple[UUID, UUID], LessonProgress] = {}
        self.access_codes: dict[UUID, AccessCode] = {}
        self.sessions: list[CourseSession] = []
        self.attendance: dict[tuple[UUID, UUID], AttendanceRecord] = {}

    # Seeding helpers

    def add_course(
        self,
        lesson_count: int = 3,
        delivery_mode: CourseDeliveryMode = CourseDeliveryMode.SELF_PACED,
        max_pauses: int | None = None,
    ) -> CourseSequence:
        course_id = uuid4()
        self.courses[course_id] = delivery_mode
        for index in range(lesson_count):
            lesson = Lesson(
                lesson_id=uuid4(),
                course_id=course_id,
                order_index=index,
                title=f"Lesson {index + 1}",
                max_pauses=max_pauses,
            )
            self.lessons[lesson.lesson_id] = lesson
        return self._sequence(course_id)

    def add_session(
        self, course_id: UUID, scheduled_at: datetime = NOW
    ) -> CourseSession:
        session = CourseSession(
            session_id=uuid4(),
            course_id=course_id,
            session_date=scheduled_at.date(),
            scheduled_at=scheduled_at,
        )
        self.sessions.append(session)
        return session

    def register(
        self,
        session_id: UUID,
        user_id: UUID,
        status: AttendanceStatus = AttendanceStatus.PENDING,
    ) -> None:
        self.attendance[(session_id, user_id)] = AttendanceRecord(
            session_id=session_id, user_id=user_id, status=status
        )

    def row(self, user_id: UUID, lesson_id: UUID) -> LessonProgress | None:
        return self.progress.get((user_id, lesson_id))

    def _sequence(self, course_id: UUID) -> CourseSequence:
        return CourseSequence(
            course_id=course_id,
            lessons=[
                copy(lesson)
                for lesson in self.lessons.values()
                if lesson.course_id == course_id
            ],
            delivery_mode=self.courses[course_id],
        )

    # Catalogue

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        lesson = self.lessons.get(lesson_id)
        return copy(lesson) if lesson else None

    async def get_lesson_sequence(self, course_id: UUID) -> CourseSequence | None:
        if course_id not in self.courses:
            return None
        return self._sequence(course_id)

    # Lesson progress

    async def get_progress(
        self, user_id: UUID, course_id: UUID, lesson_id: UUID
    ) -> LessonProgress | None:
        # Yield so concurrent callers interleave between read and write
        await asyncio.sleep(0)
        row = self.progress.get((user_id, lesson_id))
        return copy(row) if row else None

    async def get_course_progress(
        self, user_id: UUID, course_id: UUID
    ) -> dict[UUID, LessonProgress]:
        return {
            lesson_id: copy(row)
            for (owner, lesson_id), row in self.progress.items()
            if owner == user_id and row.course_id == course_id
        }

    async def insert_progress_if_absent(self, progress: LessonProgress) -> bool:
        key = (progress.user_id, progress.lesson_id)
        if key in self.progress:
            return False
        self.progress[key] = copy(progress)
        return True

    async def compare_and_set_pauses(
        self,
        progress: LessonProgress,
        new_pauses_used: int,
        new_state: LessonProgressState,
    ) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if (
            current is None
            or current.pauses_used != progress.pauses_used
            or current.max_pauses != progress.max_pauses
            or current.admin_locked
            or current.completed
        ):
            return False
        current.pauses_used = new_pauses_used
        current.state = new_state
        return True

    async def compare_and_set_max_pauses(
        self, progress: LessonProgress, new_max_pauses: int
    ) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None or current.max_pauses != progress.max_pauses:
            return False
        current.max_pauses = new_max_pauses
        current.auto_skip_at = None
        return True

    async def set_auto_skip_at_if_unset(
        self, progress: LessonProgress, auto_skip_at: datetime
    ) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None or current.auto_skip_at is not None or current.completed:
            return False
        current.auto_skip_at = auto_skip_at
        return True

    async def set_state_if_unlocked(
        self, progress: LessonProgress, state: LessonProgressState
    ) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None or current.admin_locked:
            return False
        current.state = state
        return True

    async def complete_if_unlocked(self, progress: LessonProgress) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None or current.admin_locked:
            return False
        current.state = progress.state
        current.completed = True
        current.forced = progress.forced
        current.time_spent_seconds = progress.time_spent_seconds
        current.last_position_seconds = progress.last_position_seconds
        current.completed_at = progress.completed_at
        current.auto_skip_at = None
        return True

    async def save_position(self, progress: LessonProgress) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None or current.admin_locked or current.completed:
            return False
        current.time_spent_seconds = progress.time_spent_seconds
        current.last_position_seconds = progress.last_position_seconds
        current.updated_at = progress.updated_at
        return True

    async def lock_progress(
        self, progress: LessonProgress, state: LessonProgressState
    ) -> bool:
        current = self.progress.get((progress.user_id, progress.lesson_id))
        if current is None:
            return False
        current.admin_locked = True
        current.state = state
        return True

    async def reset_progress(self, progress: LessonProgress) -> bool:
        key = (progress.user_id, progress.lesson_id)
        if key not in self.progress:
            return False
        self.progress[key] = LessonProgress(
            user_id=progress.user_id,
            course_id=progress.course_id,
            lesson_id=progress.lesson_id,
            state=progress.state,
            max_pauses=progress.max_pauses,
            updated_at=progress.updated_at,
        )
        return True

    # Access codes

    async def get_access_code(self, lesson_id: UUID) -> AccessCode | None:
        code = self.access_codes.get(lesson_id)
        return copy(code) if code else None

    async def put_access_code(self, access_code: AccessCode) -> None:
        self.access_codes[access_code.lesson_id] = copy(access_code)

    async def set_access_code_enabled(self, lesson_id: UUID, enabled: bool) -> None:
        code = self.access_codes.setdefault(lesson_id, AccessCode(lesson_id))
        code.enabled = enabled

    async def clear_access_code(self, lesson_id: UUID) -> None:
        code = self.access_codes.setdefault(lesson_id, AccessCode(lesson_id))
        code.code = None
        code.code_type = AccessCodeType.PERMANENT
        code.expires_at = None
        code.generated_at = None

    # Sessions and attendance

    async def get_today_session(
        self, course_id: UUID, today: date
    ) -> CourseSession | None:
        sessions = sorted(
            (
                s
                for s in self.sessions
                if s.course_id == course_id and s.session_date == today
            ),
            key=lambda s: s.scheduled_at,
            reverse=True,
        )
        return sessions[0] if sessions else None

    async def get_attendance(
        self, session_id: UUID, user_id: UUID
    ) -> AttendanceRecord | None:
        record = self.attendance.get((session_id, user_id))
        return copy(record) if record else None

    async def list_attendance(self, session_id: UUID) -> list[AttendanceRecord]:
        return [
            copy(record)
            for (owner, _), record in self.attendance.items()
            if owner == session_id
        ]

    async def update_attendance(self, record: AttendanceRecord) -> bool:
        key = (record.session_id, record.user_id)
        if key not in self.attendance:
            return False
        self.attendance[key] = copy(record)
        return True


def make_principal(
    role: UserRole = UserRole.LEARNER, permissions: list[str] | None = None
) -> Principal:
    return Principal.from_claims(uuid4(), role.value, permissions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryGovernanceStore:
    return InMemoryGovernanceStore()


@pytest.fixture
def policy() -> PlaybackPolicy:
    return PlaybackPolicy(
        max_default_pauses=3, auto_skip_on_max_pauses=True, auto_skip_delay_seconds=30
    )


@pytest.fixture
def learner() -> Principal:
    return make_principal(UserRole.LEARNER)


@pytest.fixture
def admin() -> Principal:
    return make_principal(UserRole.ADMIN)


@pytest.fixture
def facilitator() -> Principal:
    return make_principal(UserRole.FACILITATOR)


@pytest.fixture
def access_codes(store, clock) -> AccessCodeManager:
    return AccessCodeManager(store, code_length=6, clock=clock)


@pytest.fixture
def attendance(store, clock) -> AttendanceGate:
    return AttendanceGate(store, timezone="UTC", clock=clock)


@pytest.fixture
def pauses(store, clock) -> PauseBudgetTracker:
    return PauseBudgetTracker(store, clock=clock)


@pytest.fixture
def engine(store, access_codes, attendance, pauses, clock) -> ProgressGovernanceEngine:
    return ProgressGovernanceEngine(
        repository=store,
        access_codes=access_codes,
        attendance=attendance,
        pauses=pauses,
        events=LessonEventPublisher(None),
        clock=clock,
    )


@pytest.fixture
def course(store) -> CourseSequence:
    """Three-lesson self-paced course."""
    return store.add_course(lesson_count=3)

