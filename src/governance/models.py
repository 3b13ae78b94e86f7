"""Database models for lesson access and progress governance.

Cassandra table definitions for:
- Lesson progress: One row per (user, lesson), partitioned by (user, course)
- Access codes: One row per lesson
- Course sessions and attendance: Onsite courses only
- Catalogue projection: Course delivery mode and ordered lessons (read-only)

Every status is a closed enum; rows store the enum value and entities
convert back on read so an unknown string fails loudly instead of
propagating.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


class LessonProgressState(str, Enum):
    """Lifecycle of a lesson for one learner."""

    LOCKED = "locked"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"  # auto-skipped or locked mid-session


class UnlockState(str, Enum):
    """Sequence-derived view of a lesson."""

    LOCKED = "locked"
    ACTIVE = "active"
    COMPLETED = "completed"


class AccessCodeType(str, Enum):
    """Access code lifetime."""

    PERMANENT = "permanent"
    TEMPORARY = "temporary"


class AccessCodeFailure(str, Enum):
    """Why a supplied access code was not accepted."""

    EXPIRED = "expired"
    INCORRECT = "incorrect"
    NOT_CONFIGURED = "not-configured"


class AttendanceStatus(str, Enum):
    """Facilitator-recorded attendance for one session."""

    PENDING = "pending"
    PRESENT = "present"
    ABSENT = "absent"


class AttendanceOutcome(str, Enum):
    """Attendance gate result. Each value maps to a different remediation."""

    NO_SESSION = "no-session"
    NOT_MARKED = "not-marked"
    ELIGIBLE = "eligible"


class CourseDeliveryMode(str, Enum):
    """How a course is delivered."""

    SELF_PACED = "self"
    ONSITE = "onsite"


class DenialReason(str, Enum):
    """Specific reason a learner action was refused."""

    SEQUENCE_LOCKED = "SequenceLocked"
    ATTENDANCE_MISSING = "AttendanceMissing"
    ATTENDANCE_NO_SESSION = "AttendanceNoSession"
    ACCESS_CODE_REQUIRED = "AccessCodeRequired"
    ACCESS_CODE_EXPIRED = "AccessCodeExpired"
    ACCESS_CODE_INCORRECT = "AccessCodeIncorrect"
    PAUSE_BUDGET_EXHAUSTED = "PauseBudgetExhausted"
    LESSON_ALREADY_COMPLETED = "LessonAlreadyCompleted"


# States in which a learner is inside a playback attempt
SESSION_STATES = frozenset(
    {LessonProgressState.IN_PROGRESS, LessonProgressState.PAUSED}
)


# ==============================================================================
# Helper Functions
# ==============================================================================


def utc_now() -> datetime:
    """Current UTC time. Services take this as their default clock."""
    return datetime.now(UTC)


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Lesson progress: partitioned by (user_id, course_id) so a whole course
# is read in one query; lesson_id is the clustering key
LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    user_id UUID,
    course_id UUID,
    lesson_id UUID,
    state TEXT,
    pauses_used INT,
    max_pauses INT,
    last_position_seconds INT,
    time_spent_seconds INT,
    completed BOOLEAN,
    forced BOOLEAN,
    admin_locked BOOLEAN,
    auto_skip_at TIMESTAMP,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), lesson_id)
)
"""

LESSON_ACCESS_CODES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_access_codes (
    lesson_id UUID PRIMARY KEY,
    code TEXT,
    code_type TEXT,
    expires_at TIMESTAMP,
    generated_at TIMESTAMP,
    enabled BOOLEAN
)
"""

# Onsite sessions per course and day, latest of the day first
COURSE_SESSIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_sessions_by_date (
    course_id UUID,
    session_date DATE,
    scheduled_at TIMESTAMP,
    session_id UUID,
    title TEXT,
    PRIMARY KEY ((course_id, session_date), scheduled_at, session_id)
) WITH CLUSTERING ORDER BY (scheduled_at DESC, session_id ASC)
"""

SESSION_ATTENDANCE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.session_attendance (
    session_id UUID,
    user_id UUID,
    status TEXT,
    marked_at TIMESTAMP,
    marked_by UUID,
    notes TEXT,
    PRIMARY KEY (session_id, user_id)
)
"""

# Catalogue projection written by the course catalogue
COURSE_DELIVERY_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_delivery (
    course_id UUID PRIMARY KEY,
    title TEXT,
    delivery_mode TEXT
)
"""

COURSE_LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_lessons (
    course_id UUID,
    order_index INT,
    lesson_id UUID,
    title TEXT,
    max_pauses INT,
    PRIMARY KEY (course_id, order_index, lesson_id)
) WITH CLUSTERING ORDER BY (order_index ASC, lesson_id ASC)
"""

LESSON_LOOKUP_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_lookup (
    lesson_id UUID PRIMARY KEY,
    course_id UUID,
    order_index INT,
    title TEXT,
    max_pauses INT
)
"""

GOVERNANCE_TABLES_CQL = [
    LESSON_PROGRESS_TABLE_CQL,
    LESSON_ACCESS_CODES_TABLE_CQL,
    COURSE_SESSIONS_TABLE_CQL,
    SESSION_ATTENDANCE_TABLE_CQL,
    COURSE_DELIVERY_TABLE_CQL,
    COURSE_LESSONS_TABLE_CQL,
    LESSON_LOOKUP_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Lesson:
    """Catalogue view of a lesson, as far as governance needs it.

    Attributes:
        lesson_id: Lesson UUID
        course_id: Owning course UUID
        order_index: Position in the course sequence
        title: Display title
        max_pauses: Per-lesson pause budget (None = use policy default)
    """

    def __init__(
        self,
        lesson_id: UUID,
        course_id: UUID,
        order_index: int,
        title: str = "",
        max_pauses: int | None = None,
    ):
        self.lesson_id = lesson_id
        self.course_id = course_id
        self.order_index = order_index
        self.title = title
        self.max_pauses = max_pauses

    @classmethod
    def from_row(cls, row: Any) -> "Lesson":
        """Create Lesson instance from Cassandra row."""
        return cls(
            lesson_id=row.lesson_id,
            course_id=row.course_id,
            order_index=row.order_index or 0,
            title=row.title or "",
            max_pauses=row.max_pauses,
        )

    def __repr__(self) -> str:
        return f"<Lesson {self.lesson_id} #{self.order_index}>"


class CourseSequence:
    """Ordered lessons of a course plus its delivery mode."""

    def __init__(
        self,
        course_id: UUID,
        lessons: list[Lesson],
        delivery_mode: CourseDeliveryMode = CourseDeliveryMode.SELF_PACED,
    ):
        self.course_id = course_id
        self.lessons = sorted(lessons, key=lambda lesson: lesson.order_index)
        self.delivery_mode = delivery_mode

    @property
    def lesson_ids(self) -> list[UUID]:
        return [lesson.lesson_id for lesson in self.lessons]

    @property
    def is_onsite(self) -> bool:
        return self.delivery_mode == CourseDeliveryMode.ONSITE

    def index_of(self, lesson_id: UUID) -> int:
        """Position of a lesson in the sequence. Raises ValueError if absent."""
        return self.lesson_ids.index(lesson_id)

    def next_lesson_id(self, lesson_id: UUID) -> UUID | None:
        """Lesson that follows `lesson_id`, or None at the end of the course."""
        index = self.index_of(lesson_id)
        if index + 1 < len(self.lessons):
            return self.lessons[index + 1].lesson_id
        return None

    def __len__(self) -> int:
        return len(self.lessons)


class LessonProgress:
    """Progress of one learner on one lesson.

    Attributes:
        user_id: Learner UUID
        course_id: Course UUID (partition key)
        lesson_id: Lesson UUID
        state: Lifecycle state
        pauses_used: Pauses accepted so far
        max_pauses: Current pause budget (lesson default plus admin grants)
        last_position_seconds: Playback position for resume
        time_spent_seconds: Listening time reported at completion
        completed: Lesson counts as finished for sequencing
        forced: Completion came from auto-skip rather than a voluntary finish
        admin_locked: Admin lock in force until an explicit reset
        auto_skip_at: Server-side deadline after which a forced finish is honoured
        started_at: First start timestamp
        completed_at: Completion timestamp
        updated_at: Last mutation timestamp
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        lesson_id: UUID,
        state: LessonProgressState = LessonProgressState.ACTIVE,
        pauses_used: int = 0,
        max_pauses: int = 0,
        last_position_seconds: int = 0,
        time_spent_seconds: int = 0,
        completed: bool = False,
        forced: bool = False,
        admin_locked: bool = False,
        auto_skip_at: datetime | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.lesson_id = lesson_id
        self.state = LessonProgressState(state)
        self.pauses_used = pauses_used
        self.max_pauses = max_pauses
        self.last_position_seconds = last_position_seconds
        self.time_spent_seconds = time_spent_seconds
        self.completed = completed
        self.forced = forced
        self.admin_locked = admin_locked
        self.auto_skip_at = ensure_utc_aware(auto_skip_at)
        self.started_at = ensure_utc_aware(started_at)
        self.completed_at = ensure_utc_aware(completed_at)
        self.updated_at = ensure_utc_aware(updated_at) or datetime.now(UTC)

    @property
    def pauses_remaining(self) -> int:
        return max(0, self.max_pauses - self.pauses_used)

    @property
    def satisfies_prerequisite(self) -> bool:
        """True if this lesson lets the next one unlock.

        Only a finished lesson counts. A forced auto-skip finish is stored
        with completed=true; an admin lock mid-session is not a finish.
        """
        return self.completed

    @property
    def in_session(self) -> bool:
        return self.state in SESSION_STATES

    @classmethod
    def from_row(cls, row: Any) -> "LessonProgress":
        """Create LessonProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            lesson_id=row.lesson_id,
            state=LessonProgressState(row.state or LessonProgressState.ACTIVE.value),
            pauses_used=row.pauses_used or 0,
            max_pauses=row.max_pauses or 0,
            last_position_seconds=row.last_position_seconds or 0,
            time_spent_seconds=row.time_spent_seconds or 0,
            completed=bool(row.completed),
            forced=bool(row.forced),
            admin_locked=bool(row.admin_locked),
            auto_skip_at=row.auto_skip_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "lesson_id": self.lesson_id,
            "state": self.state.value,
            "pauses_used": self.pauses_used,
            "max_pauses": self.max_pauses,
            "last_position_seconds": self.last_position_seconds,
            "time_spent_seconds": self.time_spent_seconds,
            "completed": self.completed,
            "forced": self.forced,
            "admin_locked": self.admin_locked,
            "auto_skip_at": self.auto_skip_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<LessonProgress user={self.user_id} lesson={self.lesson_id} "
            f"{self.state.value} pauses={self.pauses_used}/{self.max_pauses}>"
        )


class AccessCode:
    """Per-lesson access code configuration.

    A row may exist with no code: enforcement can be switched on before a
    code is generated, and clearing a code keeps the enforcement flag.
    """

    def __init__(
        self,
        lesson_id: UUID,
        code: str | None = None,
        code_type: AccessCodeType = AccessCodeType.PERMANENT,
        expires_at: datetime | None = None,
        generated_at: datetime | None = None,
        enabled: bool = False,
    ):
        self.lesson_id = lesson_id
        self.code = code
        self.code_type = AccessCodeType(code_type)
        self.expires_at = ensure_utc_aware(expires_at)
        self.generated_at = ensure_utc_aware(generated_at)
        self.enabled = enabled

    @property
    def has_code(self) -> bool:
        return bool(self.code)

    def is_expired(self, now: datetime) -> bool:
        """Temporary codes expire at `expires_at`; permanent codes never do."""
        return (
            self.code_type == AccessCodeType.TEMPORARY
            and self.expires_at is not None
            and self.expires_at <= now
        )

    @classmethod
    def from_row(cls, row: Any) -> "AccessCode":
        """Create AccessCode instance from Cassandra row."""
        return cls(
            lesson_id=row.lesson_id,
            code=row.code,
            code_type=AccessCodeType(row.code_type or AccessCodeType.PERMANENT.value),
            expires_at=row.expires_at,
            generated_at=row.generated_at,
            enabled=bool(row.enabled),
        )

    def __repr__(self) -> str:
        return (
            f"<AccessCode lesson={self.lesson_id} {self.code_type.value} "
            f"enabled={self.enabled} has_code={self.has_code}>"
        )


class CourseSession:
    """A scheduled onsite session."""

    def __init__(
        self,
        session_id: UUID,
        course_id: UUID,
        session_date: date,
        scheduled_at: datetime,
        title: str = "",
    ):
        self.session_id = session_id
        self.course_id = course_id
        self.session_date = session_date
        self.scheduled_at = ensure_utc_aware(scheduled_at)
        self.title = title

    @classmethod
    def from_row(cls, row: Any) -> "CourseSession":
        """Create CourseSession instance from Cassandra row.

        Cassandra DATE columns come back as `cassandra.util.Date`.
        """
        session_date = row.session_date
        if hasattr(session_date, "date"):
            session_date = session_date.date()
        return cls(
            session_id=row.session_id,
            course_id=row.course_id,
            session_date=session_date,
            scheduled_at=row.scheduled_at,
            title=row.title or "",
        )


class AttendanceRecord:
    """Attendance of one learner at one session."""

    def __init__(
        self,
        session_id: UUID,
        user_id: UUID,
        status: AttendanceStatus = AttendanceStatus.PENDING,
        marked_at: datetime | None = None,
        marked_by: UUID | None = None,
        notes: str | None = None,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.status = AttendanceStatus(status)
        self.marked_at = ensure_utc_aware(marked_at)
        self.marked_by = marked_by
        self.notes = notes

    @property
    def is_present(self) -> bool:
        return self.status == AttendanceStatus.PRESENT

    @classmethod
    def from_row(cls, row: Any) -> "AttendanceRecord":
        """Create AttendanceRecord instance from Cassandra row."""
        return cls(
            session_id=row.session_id,
            user_id=row.user_id,
            status=AttendanceStatus(row.status or AttendanceStatus.PENDING.value),
            marked_at=row.marked_at,
            marked_by=row.marked_by,
            notes=row.notes,
        )
