"""Tests for sequential unlock resolution."""

from uuid import UUID, uuid4

import pytest

from src.governance.models import LessonProgress, LessonProgressState, UnlockState
from src.governance.sequence import resolve_unlock_state, resolve_unlock_states


USER_ID = uuid4()
COURSE_ID = uuid4()


def progress_row(lesson_id: UUID, **kwargs) -> LessonProgress:
    return LessonProgress(
        user_id=USER_ID, course_id=COURSE_ID, lesson_id=lesson_id, **kwargs
    )


@pytest.fixture
def lesson_ids() -> list[UUID]:
    return [uuid4() for _ in range(4)]


class TestResolveUnlockStates:
    """Tests for resolve_unlock_states."""

    def test_fresh_course_unlocks_only_first_lesson(self, lesson_ids) -> None:
        states = resolve_unlock_states(lesson_ids, {})
        assert states[lesson_ids[0]] == UnlockState.ACTIVE
        assert all(states[i] == UnlockState.LOCKED for i in lesson_ids[1:])

    def test_completion_unlocks_next_lesson(self, lesson_ids) -> None:
        progress = {lesson_ids[0]: progress_row(lesson_ids[0], completed=True)}

        states = resolve_unlock_states(lesson_ids, progress)

        assert states[lesson_ids[0]] == UnlockState.COMPLETED
        assert states[lesson_ids[1]] == UnlockState.ACTIVE
        assert states[lesson_ids[2]] == UnlockState.LOCKED

    def test_in_progress_predecessor_keeps_lesson_locked(self, lesson_ids) -> None:
        progress = {
            lesson_ids[0]: progress_row(
                lesson_ids[0], state=LessonProgressState.IN_PROGRESS
            )
        }

        states = resolve_unlock_states(lesson_ids, progress)

        assert states[lesson_ids[0]] == UnlockState.ACTIVE
        assert states[lesson_ids[1]] == UnlockState.LOCKED

    def test_locked_mid_session_predecessor_keeps_next_locked(
        self, lesson_ids
    ) -> None:
        progress = {
            lesson_ids[0]: progress_row(
                lesson_ids[0],
                state=LessonProgressState.INTERRUPTED,
                admin_locked=True,
            )
        }

        states = resolve_unlock_states(lesson_ids, progress)

        assert states[lesson_ids[0]] == UnlockState.LOCKED
        assert states[lesson_ids[1]] == UnlockState.LOCKED

    def test_forced_finish_unlocks_next(self, lesson_ids) -> None:
        progress = {
            lesson_ids[0]: progress_row(
                lesson_ids[0],
                state=LessonProgressState.INTERRUPTED,
                completed=True,
                forced=True,
            )
        }

        assert (
            resolve_unlock_state(lesson_ids, progress, lesson_ids[1])
            == UnlockState.ACTIVE
        )

    def test_admin_lock_overrides_completion(self, lesson_ids) -> None:
        progress = {
            lesson_ids[0]: progress_row(lesson_ids[0], completed=True),
            lesson_ids[1]: progress_row(
                lesson_ids[1], completed=True, admin_locked=True
            ),
        }

        states = resolve_unlock_states(lesson_ids, progress)

        assert states[lesson_ids[1]] == UnlockState.LOCKED

    def test_admin_lock_on_first_lesson(self, lesson_ids) -> None:
        progress = {lesson_ids[0]: progress_row(lesson_ids[0], admin_locked=True)}
        assert (
            resolve_unlock_state(lesson_ids, progress, lesson_ids[0])
            == UnlockState.LOCKED
        )

    def test_upstream_completion_does_not_clear_lock(self, lesson_ids) -> None:
        progress = {
            lesson_ids[0]: progress_row(lesson_ids[0], completed=True),
            lesson_ids[1]: progress_row(
                lesson_ids[1],
                state=LessonProgressState.LOCKED,
                admin_locked=True,
            ),
        }

        states = resolve_unlock_states(lesson_ids, progress)

        assert states[lesson_ids[1]] == UnlockState.LOCKED
        assert states[lesson_ids[2]] == UnlockState.LOCKED

    @pytest.mark.parametrize("completed_count", [0, 1, 2, 3])
    @pytest.mark.parametrize(
        "frontier",
        [
            None,
            {"state": LessonProgressState.IN_PROGRESS},
            {"state": LessonProgressState.PAUSED, "pauses_used": 2},
            {"state": LessonProgressState.INTERRUPTED, "admin_locked": True},
            {"state": LessonProgressState.LOCKED, "admin_locked": True},
        ],
    )
    def test_lesson_active_only_after_predecessor_completed(
        self, lesson_ids, completed_count: int, frontier: dict | None
    ) -> None:
        progress = {
            lesson_id: progress_row(lesson_id, completed=True)
            for lesson_id in lesson_ids[:completed_count]
        }
        # The first unfinished lesson carries an in-flight or locked row
        if frontier is not None:
            lesson_id = lesson_ids[completed_count]
            progress[lesson_id] = progress_row(lesson_id, **frontier)

        states = resolve_unlock_states(lesson_ids, progress)

        # First lesson is never locked by sequence
        assert states[lesson_ids[0]] != UnlockState.LOCKED
        for i in range(1, len(lesson_ids)):
            if states[lesson_ids[i]] == UnlockState.ACTIVE:
                previous = progress.get(lesson_ids[i - 1])
                assert previous is not None
                assert previous.completed

    def test_empty_course(self) -> None:
        assert resolve_unlock_states([], {}) == {}

    def test_unknown_lesson_raises(self, lesson_ids) -> None:
        with pytest.raises(KeyError):
            resolve_unlock_state(lesson_ids, {}, uuid4())
