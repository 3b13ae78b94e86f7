"""Lesson governance API endpoints.

Provides routes for:
- Lesson playback (start, pause, resume, position saves, complete)
- Course progress and attendance status for the caller
- Access code verification
- Admin overrides (grant pause, reset, lock) and access code management
- Facilitator session roster and attendance marking
"""

from uuid import UUID

from fastapi import APIRouter, status

from src.auth.dependencies import CurrentPrincipal

from .dependencies import (
    GovernanceEngineDep,
    PlaybackPolicyDep,
    handle_governance_error,
)
from .errors import GovernanceError
from .schemas import (
    AccessCodeResponse,
    AttendanceRecordResponse,
    AttendanceStatusResponse,
    BulkAttendanceRequest,
    BulkAttendanceResponse,
    CompleteLessonRequest,
    CompleteLessonResponse,
    CourseProgressResponse,
    GenerateAccessCodeRequest,
    GrantPauseRequest,
    LessonProgressResponse,
    MarkAttendanceRequest,
    PauseLessonResponse,
    SavePositionRequest,
    SessionAttendanceResponse,
    StartLessonRequest,
    StartLessonResponse,
    ToggleAccessCodeRequest,
    VerifyAccessCodeRequest,
    VerifyAccessCodeResponse,
)


router = APIRouter(prefix="/v1", tags=["lessons"])
admin_router = APIRouter(prefix="/v1/admin", tags=["admin-governance"])
sessions_router = APIRouter(prefix="/v1/sessions", tags=["attendance"])


# ==============================================================================
# Lesson Playback Endpoints
# ==============================================================================


@router.post(
    "/lessons/{lesson_id}/start",
    response_model=StartLessonResponse,
    summary="Start a lesson",
)
async def start_lesson(
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
    policy: PlaybackPolicyDep,
    data: StartLessonRequest | None = None,
) -> StartLessonResponse:
    """Start playback if every gate allows it.

    A refused start is a normal response with `granted=false` and the
    specific reason, not an error.
    """
    try:
        decision = await engine.start_lesson(
            principal,
            lesson_id,
            policy,
            access_code=data.access_code if data else None,
        )
        return StartLessonResponse.from_decision(decision)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.post(
    "/lessons/{lesson_id}/pause",
    response_model=PauseLessonResponse,
    summary="Pause a lesson",
)
async def pause_lesson(
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
    policy: PlaybackPolicyDep,
) -> PauseLessonResponse:
    """Spend one pause. Reports the auto-skip deadline once exhausted."""
    try:
        result = await engine.pause_lesson(principal, lesson_id, policy)
        return PauseLessonResponse.from_result(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.post(
    "/lessons/{lesson_id}/resume",
    response_model=LessonProgressResponse,
    summary="Resume a paused lesson",
)
async def resume_lesson(
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> LessonProgressResponse:
    try:
        progress = await engine.resume_lesson(principal, lesson_id)
        return LessonProgressResponse.from_entity(progress)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.put(
    "/lessons/{lesson_id}/position",
    response_model=LessonProgressResponse,
    summary="Save playback position",
)
async def save_position(
    lesson_id: UUID,
    data: SavePositionRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> LessonProgressResponse:
    """Store the resume position of an unfinished attempt."""
    try:
        progress = await engine.save_position(
            principal,
            lesson_id,
            time_spent_seconds=data.time_spent_seconds,
            last_position_seconds=data.last_position_seconds,
        )
        return LessonProgressResponse.from_entity(progress)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.post(
    "/lessons/{lesson_id}/complete",
    response_model=CompleteLessonResponse,
    summary="Complete a lesson",
)
async def complete_lesson(
    lesson_id: UUID,
    data: CompleteLessonRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> CompleteLessonResponse:
    """Finish the lesson and report whether the next lesson unlocked."""
    try:
        result = await engine.complete_lesson(
            principal,
            lesson_id,
            time_spent_seconds=data.time_spent_seconds,
            last_position_seconds=data.last_position_seconds,
            auto_skip=data.auto_skip,
        )
        return CompleteLessonResponse.from_result(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.post(
    "/lessons/{lesson_id}/access-code/verify",
    response_model=VerifyAccessCodeResponse,
    summary="Verify a lesson access code",
)
async def verify_access_code(
    lesson_id: UUID,
    data: VerifyAccessCodeRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> VerifyAccessCodeResponse:
    try:
        result = await engine.verify_access_code(principal, lesson_id, data.code)
        return VerifyAccessCodeResponse.from_result(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


# ==============================================================================
# Course Endpoints
# ==============================================================================


@router.get(
    "/courses/{course_id}/progress",
    response_model=CourseProgressResponse,
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> CourseProgressResponse:
    """Unlock state and progress of every lesson in the course."""
    try:
        result = await engine.course_progress(principal, course_id)
        return CourseProgressResponse.from_result(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@router.get(
    "/courses/{course_id}/attendance/me",
    response_model=AttendanceStatusResponse,
    summary="Get my attendance for today",
)
async def get_my_attendance(
    course_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> AttendanceStatusResponse:
    try:
        outcome = await engine.attendance_status(principal, course_id)
        return AttendanceStatusResponse(course_id=course_id, outcome=outcome)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


# ==============================================================================
# Admin Progress Overrides
# ==============================================================================


@admin_router.post(
    "/progress/{user_id}/{lesson_id}/grant-pause",
    response_model=LessonProgressResponse,
    summary="Grant extra pauses",
)
async def grant_pause(
    user_id: UUID,
    lesson_id: UUID,
    data: GrantPauseRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
    policy: PlaybackPolicyDep,
) -> LessonProgressResponse:
    try:
        progress = await engine.grant_pause(
            principal, user_id, lesson_id, data.extra, policy
        )
        return LessonProgressResponse.from_entity(progress)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@admin_router.post(
    "/progress/{user_id}/{lesson_id}/reset",
    response_model=LessonProgressResponse,
    summary="Reset a learner's lesson",
)
async def reset_lesson(
    user_id: UUID,
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
    policy: PlaybackPolicyDep,
) -> LessonProgressResponse:
    try:
        progress = await engine.reset_lesson(principal, user_id, lesson_id, policy)
        return LessonProgressResponse.from_entity(progress)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@admin_router.post(
    "/progress/{user_id}/{lesson_id}/lock",
    response_model=LessonProgressResponse,
    summary="Lock a learner's lesson",
)
async def lock_lesson(
    user_id: UUID,
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
    policy: PlaybackPolicyDep,
) -> LessonProgressResponse:
    try:
        progress = await engine.lock_lesson(principal, user_id, lesson_id, policy)
        return LessonProgressResponse.from_entity(progress)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


# ==============================================================================
# Admin Access Code Management
# ==============================================================================


@admin_router.post(
    "/lessons/{lesson_id}/access-code",
    response_model=AccessCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate an access code",
)
async def generate_access_code(
    lesson_id: UUID,
    data: GenerateAccessCodeRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> AccessCodeResponse:
    """Create or replace the lesson's code. Enforcement is switched on."""
    try:
        result = await engine.generate_access_code(
            principal, lesson_id, data.code_type, data.expires_in_minutes
        )
        return AccessCodeResponse.from_status(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@admin_router.patch(
    "/lessons/{lesson_id}/access-code",
    response_model=AccessCodeResponse,
    summary="Enable or disable access code enforcement",
)
async def toggle_access_code(
    lesson_id: UUID,
    data: ToggleAccessCodeRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> AccessCodeResponse:
    try:
        result = await engine.toggle_access_code(principal, lesson_id, data.enabled)
        return AccessCodeResponse.from_status(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@admin_router.delete(
    "/lessons/{lesson_id}/access-code",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear the access code",
)
async def clear_access_code(
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> None:
    try:
        await engine.clear_access_code(principal, lesson_id)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@admin_router.get(
    "/lessons/{lesson_id}/access-code",
    response_model=AccessCodeResponse,
    summary="Get access code info",
)
async def get_access_code(
    lesson_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> AccessCodeResponse:
    try:
        result = await engine.access_code_info(principal, lesson_id)
        return AccessCodeResponse.from_status(result)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


# ==============================================================================
# Facilitator Attendance
# ==============================================================================


@sessions_router.get(
    "/{session_id}/attendance",
    response_model=SessionAttendanceResponse,
    summary="Get session roster",
)
async def get_session_attendance(
    session_id: UUID,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> SessionAttendanceResponse:
    try:
        records = await engine.session_attendance(principal, session_id)
        return SessionAttendanceResponse.from_records(session_id, records)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@sessions_router.put(
    "/{session_id}/attendance",
    response_model=BulkAttendanceResponse,
    summary="Mark attendance in bulk",
)
async def mark_attendance_bulk(
    session_id: UUID,
    data: BulkAttendanceRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> BulkAttendanceResponse:
    """Mark several learners. Learners not registered for the session are skipped."""
    try:
        records = await engine.mark_attendance_bulk(
            principal, session_id, [entry.to_mark() for entry in data.attendances]
        )
        return BulkAttendanceResponse.from_records(records)
    except GovernanceError as e:
        raise handle_governance_error(e) from e


@sessions_router.put(
    "/{session_id}/attendance/{user_id}",
    response_model=AttendanceRecordResponse,
    summary="Mark attendance",
)
async def mark_attendance(
    session_id: UUID,
    user_id: UUID,
    data: MarkAttendanceRequest,
    principal: CurrentPrincipal,
    engine: GovernanceEngineDep,
) -> AttendanceRecordResponse:
    try:
        record = await engine.mark_attendance(
            principal, session_id, user_id, data.status, data.notes
        )
        return AttendanceRecordResponse.from_entity(record)
    except GovernanceError as e:
        raise handle_governance_error(e) from e
