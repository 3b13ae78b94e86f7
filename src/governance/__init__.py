"""Lesson access and progress governance module.

Provides:
- Sequential lesson unlocking
- Pause budgets with auto-skip on exhaustion
- Per-lesson access codes
- Attendance gating for onsite courses
- Admin overrides (grant pause, reset, lock)
"""

from .models import (
    GOVERNANCE_TABLES_CQL,
    AccessCode,
    AccessCodeType,
    AttendanceRecord,
    AttendanceStatus,
    CourseSequence,
    DenialReason,
    Lesson,
    LessonProgress,
    LessonProgressState,
    UnlockState,
)


__all__ = [
    "GOVERNANCE_TABLES_CQL",
    "AccessCode",
    "AccessCodeType",
    "AttendanceRecord",
    "AttendanceStatus",
    "CourseSequence",
    "DenialReason",
    "Lesson",
    "LessonProgress",
    "LessonProgressState",
    "UnlockState",
]
