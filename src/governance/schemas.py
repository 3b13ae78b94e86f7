"""Pydantic schemas for lesson access and progress governance.

Request and response models for:
- Lesson start, pause, resume, position saves and completion
- Course progress
- Access code administration and verification
- Admin overrides, the session roster and attendance marking
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .access_codes import AccessCodeVerification
from .attendance import AttendanceMark
from .errors import DENIAL_MESSAGES
from .models import (
    AccessCodeFailure,
    AccessCodeType,
    AttendanceOutcome,
    AttendanceRecord,
    AttendanceStatus,
    DenialReason,
    LessonProgress,
    LessonProgressState,
    UnlockState,
)
from .pauses import PauseResult
from .service import (
    AccessCodeStatus,
    CompletionResult,
    CourseProgress,
    StartDecision,
)


# ==============================================================================
# Progress Schemas
# ==============================================================================


class LessonProgressResponse(BaseModel):
    """Lesson progress of one learner."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    course_id: UUID
    lesson_id: UUID
    state: LessonProgressState
    pauses_used: int
    max_pauses: int
    pauses_remaining: int
    last_position_seconds: int = Field(description="Resume position")
    time_spent_seconds: int = 0
    completed: bool = False
    forced: bool = Field(
        default=False, description="Completion came from auto-skip"
    )
    admin_locked: bool = False
    auto_skip_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: LessonProgress) -> "LessonProgressResponse":
        """Create response from entity."""
        return cls(**entity.to_dict(), pauses_remaining=entity.pauses_remaining)


# ==============================================================================
# Learner Playback Schemas
# ==============================================================================


class StartLessonRequest(BaseModel):
    """Request to start a lesson."""

    access_code: str | None = Field(
        default=None, max_length=32, description="Code for code-protected lessons"
    )


class StartLessonResponse(BaseModel):
    """Start decision. A denial carries the reason and its remediation."""

    granted: bool
    reason: DenialReason | None = None
    message: str | None = None
    progress: LessonProgressResponse | None = None

    @classmethod
    def from_decision(cls, decision: StartDecision) -> "StartLessonResponse":
        return cls(
            granted=decision.granted,
            reason=decision.reason,
            message=DENIAL_MESSAGES[decision.reason] if decision.reason else None,
            progress=LessonProgressResponse.from_entity(decision.progress)
            if decision.progress
            else None,
        )


class PauseLessonResponse(BaseModel):
    """Pause outcome."""

    accepted: bool
    remaining: int
    auto_skip: bool = False
    auto_skip_at: datetime | None = None
    reason: DenialReason | None = None

    @classmethod
    def from_result(cls, result: PauseResult) -> "PauseLessonResponse":
        return cls(
            accepted=result.accepted,
            remaining=result.remaining,
            auto_skip=result.auto_skip,
            auto_skip_at=result.auto_skip_at,
            reason=None if result.accepted else DenialReason.PAUSE_BUDGET_EXHAUSTED,
        )


class CompleteLessonRequest(BaseModel):
    """Request to finish a lesson."""

    time_spent_seconds: int = Field(..., ge=0)
    last_position_seconds: int = Field(..., ge=0)
    auto_skip: bool = Field(
        default=False, description="Client reports an auto-skip countdown finished"
    )


class SavePositionRequest(BaseModel):
    """Periodic save of where the learner is in a lesson."""

    time_spent_seconds: int = Field(..., ge=0)
    last_position_seconds: int = Field(..., ge=0)


class CompleteLessonResponse(BaseModel):
    """Persisted completion and the next lesson's unlock."""

    progress: LessonProgressResponse
    next_lesson_id: UUID | None = None
    next_lesson_unlocked: bool = False

    @classmethod
    def from_result(cls, result: CompletionResult) -> "CompleteLessonResponse":
        return cls(
            progress=LessonProgressResponse.from_entity(result.progress),
            next_lesson_id=result.next_lesson_id,
            next_lesson_unlocked=result.next_lesson_unlocked,
        )


# ==============================================================================
# Course Progress Schemas
# ==============================================================================


class LessonStatusSummary(BaseModel):
    """Compact lesson status for listing."""

    lesson_id: UUID
    order_index: int
    title: str = ""
    unlock_state: UnlockState
    state: LessonProgressState | None = None
    pauses_used: int = 0
    max_pauses: int | None = None
    time_spent_seconds: int = 0
    last_position_seconds: int = 0
    forced: bool = False


class CourseProgressResponse(BaseModel):
    """Resolved progress of a learner across a course."""

    course_id: UUID
    completed_lessons: int
    total_lessons: int
    percentage: float = Field(description="0-100 percentage")
    lessons: list[LessonStatusSummary] = []

    @classmethod
    def from_result(cls, result: CourseProgress) -> "CourseProgressResponse":
        lessons = []
        for status in result.lessons:
            progress = status.progress
            lessons.append(
                LessonStatusSummary(
                    lesson_id=status.lesson.lesson_id,
                    order_index=status.lesson.order_index,
                    title=status.lesson.title,
                    unlock_state=status.unlock_state,
                    state=progress.state if progress else None,
                    pauses_used=progress.pauses_used if progress else 0,
                    max_pauses=progress.max_pauses
                    if progress
                    else status.lesson.max_pauses,
                    time_spent_seconds=progress.time_spent_seconds if progress else 0,
                    last_position_seconds=progress.last_position_seconds
                    if progress
                    else 0,
                    forced=progress.forced if progress else False,
                )
            )
        return cls(
            course_id=result.course_id,
            completed_lessons=result.completed_lessons,
            total_lessons=result.total_lessons,
            percentage=result.percentage,
            lessons=lessons,
        )


# ==============================================================================
# Access Code Schemas
# ==============================================================================


class GenerateAccessCodeRequest(BaseModel):
    """Request to generate a lesson access code."""

    code_type: AccessCodeType = AccessCodeType.PERMANENT
    expires_in_minutes: int | None = Field(
        default=None, description="Required (> 0) for temporary codes"
    )

    @model_validator(mode="after")
    def validate_expiry(self) -> "GenerateAccessCodeRequest":
        if self.code_type == AccessCodeType.TEMPORARY and (
            self.expires_in_minutes is None or self.expires_in_minutes <= 0
        ):
            msg = "expires_in_minutes must be positive for temporary codes"
            raise ValueError(msg)
        return self


class ToggleAccessCodeRequest(BaseModel):
    """Request to switch access code enforcement."""

    enabled: bool


class AccessCodeResponse(BaseModel):
    """Admin view of a lesson's access code."""

    lesson_id: UUID
    code: str | None = None
    code_type: AccessCodeType
    expires_at: datetime | None = None
    generated_at: datetime | None = None
    enabled: bool
    is_expired: bool = False

    @classmethod
    def from_status(cls, status: AccessCodeStatus) -> "AccessCodeResponse":
        entity = status.access_code
        return cls(
            lesson_id=entity.lesson_id,
            code=entity.code,
            code_type=entity.code_type,
            expires_at=entity.expires_at,
            generated_at=entity.generated_at,
            enabled=entity.enabled,
            is_expired=status.is_expired,
        )


class VerifyAccessCodeRequest(BaseModel):
    """Request to check an access code."""

    code: str = Field(..., min_length=1, max_length=32)


class VerifyAccessCodeResponse(BaseModel):
    """Verification outcome."""

    valid: bool
    reason: AccessCodeFailure | None = None

    @classmethod
    def from_result(
        cls, result: AccessCodeVerification
    ) -> "VerifyAccessCodeResponse":
        return cls(valid=result.valid, reason=result.reason)


# ==============================================================================
# Admin Override Schemas
# ==============================================================================


class GrantPauseRequest(BaseModel):
    """Request to grant extra pauses."""

    extra: int = Field(default=1, gt=0, le=100)


# ==============================================================================
# Attendance Schemas
# ==============================================================================


class AttendanceStatusResponse(BaseModel):
    """The caller's attendance outcome for today."""

    course_id: UUID
    outcome: AttendanceOutcome


class MarkAttendanceRequest(BaseModel):
    """Facilitator marks a learner for a session."""

    status: AttendanceStatus
    notes: str | None = Field(default=None, max_length=500)


class AttendanceRecordResponse(BaseModel):
    """Stored attendance row."""

    model_config = ConfigDict(from_attributes=True)

    session_id: UUID
    user_id: UUID
    status: AttendanceStatus
    marked_at: datetime | None = None
    marked_by: UUID | None = None
    notes: str | None = None

    @classmethod
    def from_entity(cls, entity: AttendanceRecord) -> "AttendanceRecordResponse":
        """Create response from entity."""
        return cls.model_validate(entity)


class BulkAttendanceEntry(BaseModel):
    """One learner in a bulk attendance update."""

    user_id: UUID
    status: AttendanceStatus
    notes: str | None = Field(default=None, max_length=500)

    def to_mark(self) -> AttendanceMark:
        return AttendanceMark(user_id=self.user_id, status=self.status, notes=self.notes)


class BulkAttendanceRequest(BaseModel):
    """Facilitator marks several learners of a session at once."""

    attendances: list[BulkAttendanceEntry] = Field(..., min_length=1, max_length=500)


class BulkAttendanceResponse(BaseModel):
    """Rows written by a bulk update. Unregistered learners are left out."""

    updated: int
    records: list[AttendanceRecordResponse] = []

    @classmethod
    def from_records(cls, records: list[AttendanceRecord]) -> "BulkAttendanceResponse":
        return cls(
            updated=len(records),
            records=[AttendanceRecordResponse.from_entity(r) for r in records],
        )


class SessionAttendanceResponse(BaseModel):
    """Roster of a session with per-status counts."""

    session_id: UUID
    total: int
    present: int
    absent: int
    pending: int
    attendance: list[AttendanceRecordResponse] = []

    @classmethod
    def from_records(
        cls, session_id: UUID, records: list[AttendanceRecord]
    ) -> "SessionAttendanceResponse":
        def count(status: AttendanceStatus) -> int:
            return sum(1 for r in records if r.status == status)

        return cls(
            session_id=session_id,
            total=len(records),
            present=count(AttendanceStatus.PRESENT),
            absent=count(AttendanceStatus.ABSENT),
            pending=count(AttendanceStatus.PENDING),
            attendance=[AttendanceRecordResponse.from_entity(r) for r in records],
        )
