"""Lesson access and progress governance.

Business logic for:
- Deciding whether a learner may start a lesson (sequence, attendance and
  access code gates, in that order)
- Pause, resume and completion of a playback attempt, including forced
  completion once an exhausted pause budget's auto-skip deadline passes
- Admin overrides: grant pauses, reset and lock
- Mid-session position saves
- Access code administration, the session roster and attendance marking

Every public method takes the acting `Principal` and checks its capability
once, before touching storage. Playback rules arrive as an explicit
`PlaybackPolicy` per call.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

import structlog

from src.auth.permissions import Capability, Principal

from .access_codes import AccessCodeManager, AccessCodeVerification
from .attendance import AttendanceGate, AttendanceMark
from .errors import (
    ConflictError,
    DeniedError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from .events import LessonEventPublisher, LessonEventType
from .models import (
    AccessCode,
    AccessCodeFailure,
    AccessCodeType,
    AttendanceOutcome,
    AttendanceRecord,
    AttendanceStatus,
    CourseSequence,
    DenialReason,
    Lesson,
    LessonProgress,
    LessonProgressState,
    UnlockState,
    utc_now,
)
from .pauses import PauseBudgetTracker, PauseResult
from .policy import PlaybackPolicy
from .repository import GovernanceRepository
from .sequence import resolve_unlock_state, resolve_unlock_states


logger = structlog.get_logger(__name__)


ATTENDANCE_DENIALS: dict[AttendanceOutcome, DenialReason] = {
    AttendanceOutcome.NO_SESSION: DenialReason.ATTENDANCE_NO_SESSION,
    AttendanceOutcome.NOT_MARKED: DenialReason.ATTENDANCE_MISSING,
}

ACCESS_CODE_DENIALS: dict[AccessCodeFailure, DenialReason] = {
    AccessCodeFailure.NOT_CONFIGURED: DenialReason.ACCESS_CODE_REQUIRED,
    AccessCodeFailure.EXPIRED: DenialReason.ACCESS_CODE_EXPIRED,
    AccessCodeFailure.INCORRECT: DenialReason.ACCESS_CODE_INCORRECT,
}


def ensure_capability(principal: Principal, capability: Capability) -> None:
    """Raise ForbiddenError unless the principal holds the capability."""
    if not principal.can(capability):
        logger.warning(
            "capability_denied",
            user_id=str(principal.user_id),
            role=principal.role.value,
            capability=capability.value,
        )
        raise ForbiddenError


# ==============================================================================
# Results
# ==============================================================================


@dataclass(frozen=True)
class StartDecision:
    """Whether playback may begin, and why not if it may not."""

    granted: bool
    reason: DenialReason | None = None
    progress: LessonProgress | None = None

    @classmethod
    def deny(cls, reason: DenialReason) -> "StartDecision":
        return cls(granted=False, reason=reason)


@dataclass(frozen=True)
class CompletionResult:
    """Persisted completion plus the effect on the next lesson."""

    progress: LessonProgress
    next_lesson_id: UUID | None = None
    next_lesson_unlocked: bool = False


@dataclass(frozen=True)
class AccessCodeStatus:
    """A lesson's access code and whether it has expired, as of now."""

    access_code: AccessCode
    is_expired: bool


@dataclass(frozen=True)
class LessonStatus:
    lesson: Lesson
    unlock_state: UnlockState
    progress: LessonProgress | None = None


@dataclass(frozen=True)
class CourseProgress:
    course_id: UUID
    lessons: list[LessonStatus] = field(default_factory=list)

    @property
    def total_lessons(self) -> int:
        return len(self.lessons)

    @property
    def completed_lessons(self) -> int:
        return sum(
            1
            for status in self.lessons
            if status.unlock_state == UnlockState.COMPLETED
        )

    @property
    def percentage(self) -> float:
        if not self.lessons:
            return 0.0
        return round(self.completed_lessons / self.total_lessons * 100, 2)


# ==============================================================================
# Progress Governance Engine
# ==============================================================================


class ProgressGovernanceEngine:
    """Orchestrates the gates, the pause tracker and admin overrides."""

    def __init__(
        self,
        repository: GovernanceRepository,
        access_codes: AccessCodeManager,
        attendance: AttendanceGate,
        pauses: PauseBudgetTracker,
        events: LessonEventPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.access_codes = access_codes
        self.attendance = attendance
        self.pauses = pauses
        self.events = events or LessonEventPublisher()
        self.clock = clock

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _load_lesson(self, lesson_id: UUID) -> tuple[Lesson, CourseSequence]:
        """Get a lesson and the sequence of its course.

        Raises:
            NotFoundError: If the lesson or its course is unknown
        """
        lesson = await self.repository.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson not found")

        sequence = await self.repository.get_lesson_sequence(lesson.course_id)
        if sequence is None or lesson_id not in sequence.lesson_ids:
            raise NotFoundError("Course not found for lesson")

        return lesson, sequence

    async def _load_progress(
        self, user_id: UUID, lesson: Lesson
    ) -> LessonProgress:
        progress = await self.repository.get_progress(
            user_id, lesson.course_id, lesson.lesson_id
        )
        if progress is None:
            raise NotFoundError("Lesson has not been started")
        return progress

    def _new_progress(
        self,
        user_id: UUID,
        lesson: Lesson,
        state: LessonProgressState,
        policy: PlaybackPolicy,
    ) -> LessonProgress:
        now = self.clock()
        return LessonProgress(
            user_id=user_id,
            course_id=lesson.course_id,
            lesson_id=lesson.lesson_id,
            state=state,
            max_pauses=policy.pause_budget_for(lesson),
            updated_at=now,
        )

    @staticmethod
    def _sequence_state(
        sequence: CourseSequence,
        progress: dict[UUID, LessonProgress],
        lesson_id: UUID,
    ) -> LessonProgressState:
        """Active or Locked, as derived from the sequence alone."""
        unlock = resolve_unlock_state(sequence.lesson_ids, progress, lesson_id)
        if unlock == UnlockState.LOCKED:
            return LessonProgressState.LOCKED
        return LessonProgressState.ACTIVE

    # ==========================================================================
    # Learner Operations
    # ==========================================================================

    async def _evaluate_gates(
        self,
        user_id: UUID,
        lesson: Lesson,
        sequence: CourseSequence,
        access_code: str | None,
    ) -> StartDecision:
        progress = await self.repository.get_course_progress(user_id, lesson.course_id)
        row = progress.get(lesson.lesson_id)

        # (a) sequence
        unlock = resolve_unlock_state(sequence.lesson_ids, progress, lesson.lesson_id)
        if unlock == UnlockState.COMPLETED:
            return StartDecision.deny(DenialReason.LESSON_ALREADY_COMPLETED)
        if unlock == UnlockState.LOCKED:
            return StartDecision.deny(DenialReason.SEQUENCE_LOCKED)

        # (b) attendance, onsite courses only
        if sequence.is_onsite:
            outcome = await self.attendance.is_eligible(lesson.course_id, user_id)
            if outcome != AttendanceOutcome.ELIGIBLE:
                return StartDecision.deny(ATTENDANCE_DENIALS[outcome])

        # (c) access code, when enforced
        if await self.access_codes.is_enforced(lesson.lesson_id):
            if not access_code or not access_code.strip():
                return StartDecision.deny(DenialReason.ACCESS_CODE_REQUIRED)
            verification = await self.access_codes.verify(lesson.lesson_id, access_code)
            if not verification.valid:
                return StartDecision.deny(ACCESS_CODE_DENIALS[verification.reason])

        return StartDecision(granted=True, progress=row)

    async def can_start(
        self,
        principal: Principal,
        lesson_id: UUID,
        access_code: str | None = None,
    ) -> StartDecision:
        """Evaluate the entry gates without changing any state."""
        ensure_capability(principal, Capability.PLAY_LESSONS)
        lesson, sequence = await self._load_lesson(lesson_id)
        return await self._evaluate_gates(
            principal.user_id, lesson, sequence, access_code
        )

    async def start_lesson(
        self,
        principal: Principal,
        lesson_id: UUID,
        policy: PlaybackPolicy,
        access_code: str | None = None,
    ) -> StartDecision:
        """Start (or restart) a playback attempt.

        Gate failures are returned as a denied decision, not raised, so the
        caller can render the remediation for the specific reason.

        Raises:
            NotFoundError: If the lesson is unknown
            ConflictError: If an admin lock lands while starting
        """
        ensure_capability(principal, Capability.PLAY_LESSONS)
        user_id = principal.user_id
        lesson, sequence = await self._load_lesson(lesson_id)

        decision = await self._evaluate_gates(user_id, lesson, sequence, access_code)
        if not decision.granted:
            logger.info(
                "lesson_start_denied",
                user_id=str(user_id),
                lesson_id=str(lesson_id),
                reason=decision.reason.value,
            )
            return decision

        progress = decision.progress
        if progress is None:
            progress = self._new_progress(
                user_id, lesson, LessonProgressState.IN_PROGRESS, policy
            )
            progress.started_at = progress.updated_at
            if not await self.repository.insert_progress_if_absent(progress):
                # A concurrent start created the row first
                progress = await self._load_progress(user_id, lesson)

        if progress.state != LessonProgressState.IN_PROGRESS:
            if not await self.repository.set_state_if_unlocked(
                progress, LessonProgressState.IN_PROGRESS
            ):
                raise ConflictError("Lesson was locked by an admin")
            progress.state = LessonProgressState.IN_PROGRESS

        logger.info(
            "lesson_started",
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            course_id=str(lesson.course_id),
        )
        return StartDecision(granted=True, progress=progress)

    async def pause_lesson(
        self,
        principal: Principal,
        lesson_id: UUID,
        policy: PlaybackPolicy,
    ) -> PauseResult:
        """Spend one pause of the budget.

        Raises:
            NotFoundError: If the lesson or progress row is unknown
            ValidationError: If the lesson is not being played
        """
        ensure_capability(principal, Capability.PLAY_LESSONS)
        lesson, _ = await self._load_lesson(lesson_id)
        progress = await self._load_progress(principal.user_id, lesson)
        if not progress.in_session:
            raise ValidationError("Lesson is not being played")

        return await self.pauses.record_pause(
            principal.user_id, lesson.course_id, lesson_id, policy
        )

    async def resume_lesson(
        self, principal: Principal, lesson_id: UUID
    ) -> LessonProgress:
        """Continue a paused attempt. Entry gates are not re-run."""
        ensure_capability(principal, Capability.PLAY_LESSONS)
        lesson, _ = await self._load_lesson(lesson_id)
        progress = await self._load_progress(principal.user_id, lesson)

        if progress.state == LessonProgressState.IN_PROGRESS:
            return progress
        if progress.state != LessonProgressState.PAUSED:
            raise ValidationError("Only a paused lesson can be resumed")

        if not await self.repository.set_state_if_unlocked(
            progress, LessonProgressState.IN_PROGRESS
        ):
            raise ConflictError("Lesson was locked by an admin")
        progress.state = LessonProgressState.IN_PROGRESS
        return progress

    async def complete_lesson(
        self,
        principal: Principal,
        lesson_id: UUID,
        time_spent_seconds: int,
        last_position_seconds: int,
        auto_skip: bool = False,
    ) -> CompletionResult:
        """Finish a playback attempt and re-evaluate the next lesson.

        The completion is forced (state Interrupted, forced=True) only when
        the stored auto-skip deadline has passed on the server clock.

        Raises:
            ValidationError: Negative durations, lesson not being played, or
                an auto-skip claimed before its deadline
            DeniedError: If the lesson is already completed
            ConflictError: If an admin lock is in force or lands concurrently
        """
        ensure_capability(principal, Capability.PLAY_LESSONS)
        if time_spent_seconds < 0 or last_position_seconds < 0:
            raise ValidationError("Durations must not be negative")

        user_id = principal.user_id
        lesson, sequence = await self._load_lesson(lesson_id)
        progress = await self._load_progress(user_id, lesson)

        if progress.admin_locked:
            raise ConflictError("Lesson was locked by an admin")
        if progress.completed:
            raise DeniedError(DenialReason.LESSON_ALREADY_COMPLETED)
        if not progress.in_session:
            raise ValidationError("Lesson is not being played")

        now = self.clock()
        forced = progress.auto_skip_at is not None and now >= progress.auto_skip_at
        if auto_skip and not forced:
            raise ValidationError("Auto-skip deadline has not been reached")

        progress.state = (
            LessonProgressState.INTERRUPTED if forced else LessonProgressState.COMPLETED
        )
        progress.completed = True
        progress.forced = forced
        progress.time_spent_seconds = time_spent_seconds
        progress.last_position_seconds = last_position_seconds
        progress.completed_at = now
        progress.auto_skip_at = None
        progress.updated_at = now

        if not await self.repository.complete_if_unlocked(progress):
            raise ConflictError("Lesson was locked by an admin")

        logger.info(
            "lesson_completed",
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            forced=forced,
            time_spent_seconds=time_spent_seconds,
        )
        await self.events.publish(
            LessonEventType.LESSON_COMPLETED, user_id, lesson_id, forced=forced
        )

        next_lesson_id = sequence.next_lesson_id(lesson_id)
        next_unlocked = False
        if next_lesson_id is not None:
            course_progress = await self.repository.get_course_progress(
                user_id, lesson.course_id
            )
            next_unlocked = (
                resolve_unlock_state(sequence.lesson_ids, course_progress, next_lesson_id)
                == UnlockState.ACTIVE
            )
            if next_unlocked:
                await self.events.publish(
                    LessonEventType.LESSON_UNLOCKED, user_id, next_lesson_id
                )

        return CompletionResult(
            progress=progress,
            next_lesson_id=next_lesson_id,
            next_lesson_unlocked=next_unlocked,
        )

    async def save_position(
        self,
        principal: Principal,
        lesson_id: UUID,
        time_spent_seconds: int,
        last_position_seconds: int,
    ) -> LessonProgress:
        """Store where the learner is in a lesson without finishing it.

        Raises:
            ValidationError: Negative durations or lesson not being played
            ConflictError: If an admin lock is in force, or a lock or a
                completion lands concurrently
        """
        ensure_capability(principal, Capability.PLAY_LESSONS)
        if time_spent_seconds < 0 or last_position_seconds < 0:
            raise ValidationError("Durations must not be negative")

        lesson, _ = await self._load_lesson(lesson_id)
        progress = await self._load_progress(principal.user_id, lesson)
        if progress.admin_locked:
            raise ConflictError("Lesson was locked by an admin")
        if not progress.in_session:
            raise ValidationError("Lesson is not being played")

        progress.time_spent_seconds = time_spent_seconds
        progress.last_position_seconds = last_position_seconds
        progress.updated_at = self.clock()
        if not await self.repository.save_position(progress):
            raise ConflictError("Lesson was locked or finished concurrently")

        logger.debug(
            "lesson_position_saved",
            user_id=str(principal.user_id),
            lesson_id=str(lesson_id),
            last_position_seconds=last_position_seconds,
        )
        return progress

    async def course_progress(
        self, principal: Principal, course_id: UUID
    ) -> CourseProgress:
        """Resolved unlock state and progress of every lesson in a course."""
        ensure_capability(principal, Capability.PLAY_LESSONS)
        sequence = await self.repository.get_lesson_sequence(course_id)
        if sequence is None:
            raise NotFoundError("Course not found")

        progress = await self.repository.get_course_progress(
            principal.user_id, course_id
        )
        states = resolve_unlock_states(sequence.lesson_ids, progress)
        return CourseProgress(
            course_id=course_id,
            lessons=[
                LessonStatus(
                    lesson=lesson,
                    unlock_state=states[lesson.lesson_id],
                    progress=progress.get(lesson.lesson_id),
                )
                for lesson in sequence.lessons
            ],
        )

    async def verify_access_code(
        self, principal: Principal, lesson_id: UUID, code: str
    ) -> AccessCodeVerification:
        """Check a code ahead of starting, without starting."""
        ensure_capability(principal, Capability.PLAY_LESSONS)
        return await self.access_codes.verify(lesson_id, code)

    async def attendance_status(
        self, principal: Principal, course_id: UUID
    ) -> AttendanceOutcome:
        """The caller's attendance outcome for today's session."""
        ensure_capability(principal, Capability.PLAY_LESSONS)
        if await self.repository.get_lesson_sequence(course_id) is None:
            raise NotFoundError("Course not found")
        return await self.attendance.is_eligible(course_id, principal.user_id)

    # ==========================================================================
    # Admin Overrides
    # ==========================================================================

    async def grant_pause(
        self,
        principal: Principal,
        user_id: UUID,
        lesson_id: UUID,
        extra: int,
        policy: PlaybackPolicy,
    ) -> LessonProgress:
        """Give a learner extra pauses on a lesson.

        A learner without a progress row gets one, with the lesson's budget
        plus `extra`.
        """
        ensure_capability(principal, Capability.MANAGE_PROGRESS)
        if extra <= 0:
            raise ValidationError("Extra pauses must be a positive number")

        lesson, sequence = await self._load_lesson(lesson_id)
        existing = await self.repository.get_progress(
            user_id, lesson.course_id, lesson_id
        )
        if existing is None:
            course_progress = await self.repository.get_course_progress(
                user_id, lesson.course_id
            )
            state = self._sequence_state(sequence, course_progress, lesson_id)
            await self.repository.insert_progress_if_absent(
                self._new_progress(user_id, lesson, state, policy)
            )

        progress = await self.pauses.grant_pause(
            user_id, lesson.course_id, lesson_id, extra
        )
        logger.info(
            "admin_pause_granted",
            admin_id=str(principal.user_id),
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            extra=extra,
        )
        return progress

    async def reset_lesson(
        self,
        principal: Principal,
        user_id: UUID,
        lesson_id: UUID,
        policy: PlaybackPolicy,
    ) -> LessonProgress:
        """Roll a learner's lesson back to a fresh, sequence-derived state.

        Clears pauses, completion, the forced marker, any admin lock and any
        pending auto-skip, and restores the lesson's default pause budget.

        Raises:
            NotFoundError: If the lesson or the learner's progress is unknown
        """
        ensure_capability(principal, Capability.MANAGE_PROGRESS)
        lesson, sequence = await self._load_lesson(lesson_id)

        course_progress = await self.repository.get_course_progress(
            user_id, lesson.course_id
        )
        previous = course_progress.get(lesson_id)
        if previous is None:
            raise NotFoundError("Learner has no progress on this lesson")

        progress = self._new_progress(user_id, lesson, LessonProgressState.ACTIVE, policy)
        course_progress[lesson_id] = progress
        progress.state = self._sequence_state(sequence, course_progress, lesson_id)

        if not await self.repository.reset_progress(progress):
            raise NotFoundError("Learner has no progress on this lesson")

        logger.info(
            "lesson_reset",
            admin_id=str(principal.user_id),
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            previous_state=previous.state.value,
            state=progress.state.value,
        )
        await self.events.publish(
            LessonEventType.LESSON_RESET, user_id, lesson_id, state=progress.state.value
        )
        return progress

    async def lock_lesson(
        self,
        principal: Principal,
        user_id: UUID,
        lesson_id: UUID,
        policy: PlaybackPolicy,
    ) -> LessonProgress:
        """Lock a lesson for a learner until an explicit reset.

        A lock during playback records Interrupted; otherwise Locked. Only
        the lock flag and state are written. A learner without a progress
        row gets a locked one.
        """
        ensure_capability(principal, Capability.MANAGE_PROGRESS)
        lesson, _ = await self._load_lesson(lesson_id)

        progress = await self.repository.get_progress(
            user_id, lesson.course_id, lesson_id
        )
        created = False
        if progress is None:
            progress = self._new_progress(
                user_id, lesson, LessonProgressState.LOCKED, policy
            )
            progress.admin_locked = True
            created = await self.repository.insert_progress_if_absent(progress)
            if not created:
                # A concurrent start created the row first
                progress = await self._load_progress(user_id, lesson)

        if not created:
            state = (
                LessonProgressState.INTERRUPTED
                if progress.in_session
                else LessonProgressState.LOCKED
            )
            if not await self.repository.lock_progress(progress, state):
                raise NotFoundError("Learner has no progress on this lesson")
            progress.state = state
            progress.admin_locked = True

        logger.info(
            "lesson_locked",
            admin_id=str(principal.user_id),
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            state=progress.state.value,
        )
        await self.events.publish(LessonEventType.LESSON_LOCKED, user_id, lesson_id)
        return progress

    # ==========================================================================
    # Access Code Administration
    # ==========================================================================

    def _access_code_status(self, access_code: AccessCode) -> AccessCodeStatus:
        return AccessCodeStatus(
            access_code=access_code, is_expired=access_code.is_expired(self.clock())
        )

    async def generate_access_code(
        self,
        principal: Principal,
        lesson_id: UUID,
        code_type: AccessCodeType,
        expires_in_minutes: int | None = None,
    ) -> AccessCodeStatus:
        ensure_capability(principal, Capability.MANAGE_ACCESS_CODES)
        access_code = await self.access_codes.generate(
            lesson_id, code_type, expires_in_minutes
        )
        return self._access_code_status(access_code)

    async def toggle_access_code(
        self, principal: Principal, lesson_id: UUID, enabled: bool
    ) -> AccessCodeStatus:
        ensure_capability(principal, Capability.MANAGE_ACCESS_CODES)
        access_code = await self.access_codes.toggle(lesson_id, enabled)
        return self._access_code_status(access_code)

    async def clear_access_code(self, principal: Principal, lesson_id: UUID) -> None:
        ensure_capability(principal, Capability.MANAGE_ACCESS_CODES)
        await self.access_codes.clear(lesson_id)

    async def access_code_info(
        self, principal: Principal, lesson_id: UUID
    ) -> AccessCodeStatus:
        ensure_capability(principal, Capability.MANAGE_ACCESS_CODES)
        access_code = await self.access_codes.info(lesson_id)
        return self._access_code_status(access_code)

    # ==========================================================================
    # Attendance
    # ==========================================================================

    async def mark_attendance(
        self,
        principal: Principal,
        session_id: UUID,
        user_id: UUID,
        status: AttendanceStatus,
        notes: str | None = None,
    ) -> AttendanceRecord:
        ensure_capability(principal, Capability.MARK_ATTENDANCE)
        return await self.attendance.mark(
            session_id, user_id, status, marked_by=principal.user_id, notes=notes
        )

    async def session_attendance(
        self, principal: Principal, session_id: UUID
    ) -> list[AttendanceRecord]:
        """Roster of a session for the facilitator."""
        ensure_capability(principal, Capability.MARK_ATTENDANCE)
        return await self.attendance.list_session_attendance(session_id)

    async def mark_attendance_bulk(
        self,
        principal: Principal,
        session_id: UUID,
        marks: list[AttendanceMark],
    ) -> list[AttendanceRecord]:
        """Mark several learners at once. Unregistered learners are skipped."""
        ensure_capability(principal, Capability.MARK_ATTENDANCE)
        return await self.attendance.mark_many(
            session_id, marks, marked_by=principal.user_id
        )
