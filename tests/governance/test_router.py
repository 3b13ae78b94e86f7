"""Tests for the governance HTTP endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from src.auth.dependencies import get_current_principal
from src.auth.permissions import UserRole
from src.config import get_settings
from src.governance.dependencies import get_governance_engine, get_playback_policy
from src.governance.models import AccessCode, AttendanceStatus, LessonProgressState
from src.main import app

from .conftest import make_principal


class ActingPrincipal:
    """Principal the overridden auth dependency returns."""

    def __init__(self, principal):
        self.principal = principal

    def __call__(self):
        return self.principal


@pytest.fixture
def acting(learner) -> ActingPrincipal:
    return ActingPrincipal(learner)


@pytest.fixture
def api(engine, policy, acting):
    """Client wired to the in-memory engine."""
    app.dependency_overrides[get_governance_engine] = lambda: engine
    app.dependency_overrides[get_playback_policy] = lambda: policy
    app.dependency_overrides[get_current_principal] = acting
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(sub: str, role: str = "learner", token_type: str = "access") -> str:
    settings = get_settings()
    payload = {
        "sub": sub,
        "role": role,
        "permissions": [],
        "type": token_type,
        "exp": datetime.now(UTC) + timedelta(minutes=5),
    }
    return jwt.encode(payload, settings.auth_secret_key, algorithm=settings.auth_algorithm)


class TestLearnerEndpoints:
    def test_start_granted(self, api: TestClient, course) -> None:
        response = api.post(f"/v1/lessons/{course.lesson_ids[0]}/start")

        assert response.status_code == 200
        data = response.json()
        assert data["granted"] is True
        assert data["progress"]["state"] == LessonProgressState.IN_PROGRESS.value
        assert data["progress"]["pauses_remaining"] == 3

    def test_start_denied_with_reason(self, api: TestClient, course) -> None:
        response = api.post(f"/v1/lessons/{course.lesson_ids[1]}/start", json={})

        assert response.status_code == 200
        data = response.json()
        assert data["granted"] is False
        assert data["reason"] == "SequenceLocked"
        assert data["message"]
        assert data["progress"] is None

    def test_start_unknown_lesson(self, api: TestClient) -> None:
        response = api.post(f"/v1/lessons/{uuid4()}/start")
        assert response.status_code == 404

    def test_pause_resume_complete(self, api: TestClient, course) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")

        pause = api.post(f"/v1/lessons/{lesson_id}/pause")
        resume = api.post(f"/v1/lessons/{lesson_id}/resume")
        complete = api.post(
            f"/v1/lessons/{lesson_id}/complete",
            json={"time_spent_seconds": 540, "last_position_seconds": 540},
        )

        assert pause.json() == {
            "accepted": True,
            "remaining": 2,
            "auto_skip": False,
            "auto_skip_at": None,
            "reason": None,
        }
        assert resume.json()["state"] == "in_progress"
        assert complete.status_code == 200
        body = complete.json()
        assert body["progress"]["completed"] is True
        assert body["next_lesson_id"] == str(course.lesson_ids[1])
        assert body["next_lesson_unlocked"] is True

    def test_complete_twice_reports_reason(self, api: TestClient, course) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")
        payload = {"time_spent_seconds": 10, "last_position_seconds": 10}
        api.post(f"/v1/lessons/{lesson_id}/complete", json=payload)

        response = api.post(f"/v1/lessons/{lesson_id}/complete", json=payload)

        assert response.status_code == 403
        assert response.json()["reason"] == "LessonAlreadyCompleted"

    def test_early_auto_skip_claim(self, api: TestClient, course) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")

        response = api.post(
            f"/v1/lessons/{lesson_id}/complete",
            json={"time_spent_seconds": 5, "last_position_seconds": 5, "auto_skip": True},
        )

        assert response.status_code == 400

    def test_complete_rejects_negative_time(self, api: TestClient, course) -> None:
        response = api.post(
            f"/v1/lessons/{course.lesson_ids[0]}/complete",
            json={"time_spent_seconds": -1, "last_position_seconds": 0},
        )
        assert response.status_code == 422

    def test_save_position_then_resume(self, api: TestClient, course) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")

        saved = api.put(
            f"/v1/lessons/{lesson_id}/position",
            json={"time_spent_seconds": 90, "last_position_seconds": 75},
        )
        overview = api.get(f"/v1/courses/{course.course_id}/progress")

        assert saved.status_code == 200
        assert saved.json()["last_position_seconds"] == 75
        assert saved.json()["completed"] is False
        assert overview.json()["lessons"][0]["last_position_seconds"] == 75

    def test_save_position_before_start(self, api: TestClient, course) -> None:
        response = api.put(
            f"/v1/lessons/{course.lesson_ids[0]}/position",
            json={"time_spent_seconds": 10, "last_position_seconds": 10},
        )
        assert response.status_code == 404

    def test_sub_admin_without_grant_refused_by_engine(
        self, api: TestClient, acting, store, course
    ) -> None:
        sub_admin = make_principal(UserRole.SUB_ADMIN)
        acting.principal = sub_admin

        start = api.post(f"/v1/lessons/{course.lesson_ids[0]}/start")
        overview = api.get(f"/v1/courses/{course.course_id}/progress")

        assert start.status_code == 403
        assert start.json()["message"] == "Insufficient permissions"
        assert overview.status_code == 403
        assert store.row(sub_admin.user_id, course.lesson_ids[0]) is None

    def test_sub_admin_with_play_grant_starts(
        self, api: TestClient, acting, course
    ) -> None:
        acting.principal = make_principal(UserRole.SUB_ADMIN, ["play_lessons"])

        response = api.post(f"/v1/lessons/{course.lesson_ids[0]}/start")

        assert response.status_code == 200
        assert response.json()["granted"] is True

    def test_course_progress(self, api: TestClient, course) -> None:
        response = api.get(f"/v1/courses/{course.course_id}/progress")

        assert response.status_code == 200
        data = response.json()
        assert data["total_lessons"] == 3
        assert [lesson["unlock_state"] for lesson in data["lessons"]] == [
            "active",
            "locked",
            "locked",
        ]

    def test_course_progress_unknown(self, api: TestClient) -> None:
        response = api.get(f"/v1/courses/{uuid4()}/progress")
        assert response.status_code == 404

    def test_verify_access_code(self, api: TestClient, store, course) -> None:
        lesson_id = course.lesson_ids[0]
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="654321", enabled=True
        )

        wrong = api.post(
            f"/v1/lessons/{lesson_id}/access-code/verify", json={"code": "123456"}
        )
        right = api.post(
            f"/v1/lessons/{lesson_id}/access-code/verify", json={"code": "654321"}
        )

        assert wrong.json() == {"valid": False, "reason": "incorrect"}
        assert right.json() == {"valid": True, "reason": None}

    def test_attendance_me(self, api: TestClient, course) -> None:
        response = api.get(f"/v1/courses/{course.course_id}/attendance/me")

        assert response.status_code == 200
        assert response.json()["outcome"] == "no-session"


class TestAdminEndpoints:
    def test_learner_forbidden(self, api: TestClient, course, learner) -> None:
        response = api.post(
            f"/v1/admin/progress/{learner.user_id}/{course.lesson_ids[0]}/lock"
        )
        assert response.status_code == 403

    def test_access_code_lifecycle(self, api: TestClient, acting, admin, course) -> None:
        acting.principal = admin
        url = f"/v1/admin/lessons/{course.lesson_ids[0]}/access-code"

        created = api.post(url, json={"code_type": "permanent"})
        disabled = api.patch(url, json={"enabled": False})
        cleared = api.delete(url)
        info = api.get(url)

        assert created.status_code == 201
        assert len(created.json()["code"]) == 6
        assert created.json()["enabled"] is True
        assert disabled.json()["enabled"] is False
        assert cleared.status_code == 204
        assert info.json()["code"] is None
        assert info.json()["enabled"] is False
        assert created.json()["is_expired"] is False

    def test_expiry_reported_on_every_access_code_route(
        self, api: TestClient, acting, admin, clock, course
    ) -> None:
        acting.principal = admin
        url = f"/v1/admin/lessons/{course.lesson_ids[0]}/access-code"

        created = api.post(
            url, json={"code_type": "temporary", "expires_in_minutes": 10}
        )
        clock.advance(11 * 60)
        info = api.get(url)
        toggled = api.patch(url, json={"enabled": True})

        assert created.json()["is_expired"] is False
        assert info.json()["is_expired"] is True
        assert toggled.json()["is_expired"] is True

    def test_temporary_code_without_expiry(
        self, api: TestClient, acting, admin, course
    ) -> None:
        acting.principal = admin
        response = api.post(
            f"/v1/admin/lessons/{course.lesson_ids[0]}/access-code",
            json={"code_type": "temporary", "expires_in_minutes": 0},
        )
        assert response.status_code == 422

    def test_grant_reset_lock(
        self, api: TestClient, acting, admin, learner, course
    ) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")
        acting.principal = admin
        base = f"/v1/admin/progress/{learner.user_id}/{lesson_id}"

        granted = api.post(f"{base}/grant-pause", json={"extra": 2})
        locked = api.post(f"{base}/lock")
        reset = api.post(f"{base}/reset")

        assert granted.json()["max_pauses"] == 5
        assert locked.json()["state"] == "interrupted"
        assert locked.json()["admin_locked"] is True
        assert reset.json()["state"] == "active"
        assert reset.json()["max_pauses"] == 3

    def test_learner_complete_after_lock_conflicts(
        self, api: TestClient, acting, admin, learner, course
    ) -> None:
        lesson_id = course.lesson_ids[0]
        api.post(f"/v1/lessons/{lesson_id}/start")
        acting.principal = admin
        api.post(f"/v1/admin/progress/{learner.user_id}/{lesson_id}/lock")
        acting.principal = learner

        response = api.post(
            f"/v1/lessons/{lesson_id}/complete",
            json={"time_spent_seconds": 5, "last_position_seconds": 5},
        )

        assert response.status_code == 409

    def test_reset_without_progress(
        self, api: TestClient, acting, admin, course
    ) -> None:
        acting.principal = admin
        response = api.post(
            f"/v1/admin/progress/{uuid4()}/{course.lesson_ids[0]}/reset"
        )
        assert response.status_code == 404


class TestAttendanceEndpoint:
    def test_facilitator_marks_present(
        self, api: TestClient, acting, facilitator, store, learner
    ) -> None:
        course = store.add_course()
        session = store.add_session(course.course_id)
        store.register(session.session_id, learner.user_id)
        acting.principal = facilitator

        response = api.put(
            f"/v1/sessions/{session.session_id}/attendance/{learner.user_id}",
            json={"status": "present"},
        )

        assert response.status_code == 200
        assert response.json()["marked_by"] == str(facilitator.user_id)
        stored = store.attendance[(session.session_id, learner.user_id)]
        assert stored.status == AttendanceStatus.PRESENT

    def test_unregistered_learner(
        self, api: TestClient, acting, facilitator, store
    ) -> None:
        course = store.add_course()
        session = store.add_session(course.course_id)
        acting.principal = facilitator

        response = api.put(
            f"/v1/sessions/{session.session_id}/attendance/{uuid4()}",
            json={"status": "absent"},
        )

        assert response.status_code == 404

    def test_roster_counts(
        self, api: TestClient, acting, facilitator, store
    ) -> None:
        course = store.add_course()
        session = store.add_session(course.course_id)
        present, absent, waiting = uuid4(), uuid4(), uuid4()
        store.register(session.session_id, present, AttendanceStatus.PRESENT)
        store.register(session.session_id, absent, AttendanceStatus.ABSENT)
        store.register(session.session_id, waiting)
        acting.principal = facilitator

        response = api.get(f"/v1/sessions/{session.session_id}/attendance")

        assert response.status_code == 200
        data = response.json()
        assert (data["total"], data["present"], data["absent"], data["pending"]) == (
            3,
            1,
            1,
            1,
        )
        assert {row["user_id"] for row in data["attendance"]} == {
            str(present),
            str(absent),
            str(waiting),
        }

    def test_roster_requires_mark_attendance(self, api: TestClient) -> None:
        response = api.get(f"/v1/sessions/{uuid4()}/attendance")
        assert response.status_code == 403

    def test_bulk_mark_skips_unregistered(
        self, api: TestClient, acting, facilitator, store
    ) -> None:
        course = store.add_course()
        session = store.add_session(course.course_id)
        first, second = uuid4(), uuid4()
        store.register(session.session_id, first)
        store.register(session.session_id, second)
        acting.principal = facilitator

        response = api.put(
            f"/v1/sessions/{session.session_id}/attendance",
            json={
                "attendances": [
                    {"user_id": str(first), "status": "present"},
                    {"user_id": str(second), "status": "absent", "notes": "ill"},
                    {"user_id": str(uuid4()), "status": "present"},
                ]
            },
        )

        assert response.status_code == 200
        assert response.json()["updated"] == 2
        assert store.attendance[(session.session_id, first)].is_present
        assert store.attendance[(session.session_id, second)].notes == "ill"

    def test_bulk_mark_with_pending_writes_nothing(
        self, api: TestClient, acting, facilitator, store
    ) -> None:
        course = store.add_course()
        session = store.add_session(course.course_id)
        first, second = uuid4(), uuid4()
        store.register(session.session_id, first)
        store.register(session.session_id, second)
        acting.principal = facilitator

        response = api.put(
            f"/v1/sessions/{session.session_id}/attendance",
            json={
                "attendances": [
                    {"user_id": str(first), "status": "present"},
                    {"user_id": str(second), "status": "pending"},
                ]
            },
        )

        assert response.status_code == 400
        assert not store.attendance[(session.session_id, first)].is_present

    def test_pending_rejected(self, api: TestClient, acting, facilitator) -> None:
        acting.principal = facilitator
        response = api.put(
            f"/v1/sessions/{uuid4()}/attendance/{uuid4()}",
            json={"status": "pending"},
        )
        assert response.status_code == 400


class TestAuthentication:
    @pytest.fixture
    def token_api(self, engine, policy):
        app.dependency_overrides[get_governance_engine] = lambda: engine
        app.dependency_overrides[get_playback_policy] = lambda: policy
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_missing_token(self, token_api: TestClient, course) -> None:
        response = token_api.post(f"/v1/lessons/{course.lesson_ids[0]}/start")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, token_api: TestClient, course) -> None:
        response = token_api.post(
            f"/v1/lessons/{course.lesson_ids[0]}/start",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_refresh_token_rejected(self, token_api: TestClient, course) -> None:
        token = make_token(str(uuid4()), token_type="refresh")
        response = token_api.post(
            f"/v1/lessons/{course.lesson_ids[0]}/start",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    def test_valid_token(self, token_api: TestClient, store, course) -> None:
        user_id = uuid4()
        token = make_token(str(user_id))

        response = token_api.post(
            f"/v1/lessons/{course.lesson_ids[0]}/start",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert store.row(user_id, course.lesson_ids[0]) is not None


def test_engine_unavailable(client: TestClient, learner) -> None:
    """Routes answer 503 until the engine is initialized at startup."""
    app.dependency_overrides[get_current_principal] = lambda: learner
    try:
        response = client.post(f"/v1/lessons/{uuid4()}/pause")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503
