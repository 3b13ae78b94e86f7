"""Sequential unlock resolution.

Pure functions: given a course's ordered lessons and a learner's progress
rows, derive each lesson's unlock state. Nothing here reads or writes
storage.
"""

from collections.abc import Mapping, Sequence
from uuid import UUID

from .models import LessonProgress, UnlockState


def resolve_unlock_states(
    lesson_ids: Sequence[UUID],
    progress: Mapping[UUID, LessonProgress],
) -> dict[UUID, UnlockState]:
    """Resolve the unlock state of every lesson in a course.

    Rules, per lesson i:
    - admin-locked rows are Locked, whatever their completion;
    - rows with completed=true are Completed;
    - lesson 0 is Active;
    - lesson i>0 is Active when lesson i-1 has completed=true,
      Locked otherwise.

    Args:
        lesson_ids: Lesson UUIDs in course order
        progress: Progress rows by lesson UUID (missing = never started)

    Returns:
        Unlock state per lesson UUID
    """
    states: dict[UUID, UnlockState] = {}
    previous: LessonProgress | None = None

    for index, lesson_id in enumerate(lesson_ids):
        row = progress.get(lesson_id)

        if row is not None and row.admin_locked:
            states[lesson_id] = UnlockState.LOCKED
        elif row is not None and row.completed:
            states[lesson_id] = UnlockState.COMPLETED
        elif index == 0 or (previous is not None and previous.satisfies_prerequisite):
            states[lesson_id] = UnlockState.ACTIVE
        else:
            states[lesson_id] = UnlockState.LOCKED

        previous = row

    return states


def resolve_unlock_state(
    lesson_ids: Sequence[UUID],
    progress: Mapping[UUID, LessonProgress],
    lesson_id: UUID,
) -> UnlockState:
    """Unlock state of a single lesson. Raises KeyError if not in the sequence."""
    return resolve_unlock_states(lesson_ids, progress)[lesson_id]
