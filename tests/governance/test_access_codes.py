"""Tests for lesson access codes."""

from datetime import timedelta
from uuid import uuid4

import pytest

from src.governance.access_codes import AccessCodeManager, generate_numeric_code
from src.governance.errors import NotFoundError, ValidationError
from src.governance.models import AccessCode, AccessCodeFailure, AccessCodeType


@pytest.fixture
def lesson_id(course):
    return course.lesson_ids[0]


class TestGenerateNumericCode:
    def test_length_and_digits(self) -> None:
        for _ in range(50):
            code = generate_numeric_code(6)
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"


class TestGenerate:
    """Tests for AccessCodeManager.generate."""

    @pytest.mark.asyncio
    async def test_permanent_code(self, access_codes, store, lesson_id) -> None:
        code = await access_codes.generate(lesson_id, AccessCodeType.PERMANENT)

        assert code.enabled is True
        assert code.expires_at is None
        assert len(code.code) == 6
        assert store.access_codes[lesson_id].code == code.code

    @pytest.mark.asyncio
    async def test_temporary_code_sets_expiry(
        self, access_codes, clock, lesson_id
    ) -> None:
        code = await access_codes.generate(
            lesson_id, AccessCodeType.TEMPORARY, expires_in_minutes=15
        )

        assert code.expires_at == clock.now + timedelta(minutes=15)
        assert code.generated_at == clock.now

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [None, 0, -5])
    async def test_temporary_code_needs_positive_expiry(
        self, access_codes, store, lesson_id, minutes
    ) -> None:
        with pytest.raises(ValidationError):
            await access_codes.generate(
                lesson_id, AccessCodeType.TEMPORARY, expires_in_minutes=minutes
            )
        assert lesson_id not in store.access_codes

    @pytest.mark.asyncio
    async def test_regenerate_replaces_code(
        self, access_codes, store, clock, lesson_id
    ) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="111111", enabled=True
        )

        code = await access_codes.generate(lesson_id, AccessCodeType.PERMANENT)

        stored = store.access_codes[lesson_id]
        assert stored.code == code.code
        assert stored.generated_at == clock.now

    @pytest.mark.asyncio
    async def test_unknown_lesson(self, access_codes) -> None:
        with pytest.raises(NotFoundError):
            await access_codes.generate(uuid4(), AccessCodeType.PERMANENT)


class TestToggleAndClear:
    """Tests for toggle, clear and info."""

    @pytest.mark.asyncio
    async def test_toggle_keeps_code(self, access_codes, store, lesson_id) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="123456", enabled=True
        )

        result = await access_codes.toggle(lesson_id, False)

        assert result.enabled is False
        assert store.access_codes[lesson_id].code == "123456"

    @pytest.mark.asyncio
    async def test_toggle_without_row_creates_codeless_row(
        self, access_codes, store, lesson_id
    ) -> None:
        await access_codes.toggle(lesson_id, True)

        stored = store.access_codes[lesson_id]
        assert stored.enabled is True
        assert stored.has_code is False

    @pytest.mark.asyncio
    async def test_clear_keeps_enforcement(self, access_codes, store, lesson_id) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="123456", enabled=True
        )

        await access_codes.clear(lesson_id)

        stored = store.access_codes[lesson_id]
        assert stored.code is None
        assert stored.enabled is True

    @pytest.mark.asyncio
    async def test_info_without_row(self, access_codes, lesson_id) -> None:
        info = await access_codes.info(lesson_id)
        assert info.enabled is False
        assert info.code is None


class TestVerify:
    """Tests for AccessCodeManager.verify."""

    @pytest.mark.asyncio
    async def test_matching_code(self, access_codes, store, lesson_id) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="482913", enabled=True
        )

        result = await access_codes.verify(lesson_id, "482913")

        assert result.valid is True
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_ignored(
        self, access_codes, store, lesson_id
    ) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="482913", enabled=True
        )
        result = await access_codes.verify(lesson_id, " 482913\n")
        assert result.valid is True

    @pytest.mark.asyncio
    async def test_incorrect_code(self, access_codes, store, lesson_id) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="482913", enabled=True
        )

        result = await access_codes.verify(lesson_id, "482914")

        assert result.valid is False
        assert result.reason == AccessCodeFailure.INCORRECT

    @pytest.mark.asyncio
    async def test_comparison_is_case_sensitive(
        self, access_codes, store, lesson_id
    ) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="AbC123", enabled=True
        )
        result = await access_codes.verify(lesson_id, "abc123")
        assert result.reason == AccessCodeFailure.INCORRECT

    @pytest.mark.asyncio
    async def test_expired_even_when_matching(
        self, access_codes, clock, lesson_id
    ) -> None:
        code = await access_codes.generate(
            lesson_id, AccessCodeType.TEMPORARY, expires_in_minutes=5
        )
        clock.advance(5 * 60)

        result = await access_codes.verify(lesson_id, code.code)

        assert result.valid is False
        assert result.reason == AccessCodeFailure.EXPIRED

    @pytest.mark.asyncio
    async def test_expired_code_stays_stored(
        self, access_codes, store, clock, lesson_id
    ) -> None:
        code = await access_codes.generate(
            lesson_id, AccessCodeType.TEMPORARY, expires_in_minutes=1
        )
        clock.advance(3600)

        await access_codes.verify(lesson_id, code.code)

        assert store.access_codes[lesson_id].code == code.code

    @pytest.mark.asyncio
    async def test_verification_does_not_consume(
        self, access_codes, lesson_id
    ) -> None:
        code = await access_codes.generate(lesson_id, AccessCodeType.PERMANENT)

        first = await access_codes.verify(lesson_id, code.code)
        second = await access_codes.verify(lesson_id, code.code)

        assert first.valid and second.valid

    @pytest.mark.asyncio
    async def test_disabled_is_not_configured(
        self, access_codes, store, lesson_id
    ) -> None:
        store.access_codes[lesson_id] = AccessCode(
            lesson_id, code="482913", enabled=False
        )
        result = await access_codes.verify(lesson_id, "482913")
        assert result.reason == AccessCodeFailure.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_cleared_code_is_not_configured(
        self, access_codes, lesson_id
    ) -> None:
        code = await access_codes.generate(lesson_id, AccessCodeType.PERMANENT)
        await access_codes.clear(lesson_id)

        result = await access_codes.verify(lesson_id, code.code)

        assert result.valid is False
        assert result.reason == AccessCodeFailure.NOT_CONFIGURED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("supplied", ["", "   "])
    async def test_empty_code_is_validation_error(
        self, access_codes: AccessCodeManager, lesson_id, supplied
    ) -> None:
        with pytest.raises(ValidationError):
            await access_codes.verify(lesson_id, supplied)

    @pytest.mark.asyncio
    async def test_unknown_lesson_is_not_found(self, access_codes) -> None:
        with pytest.raises(NotFoundError):
            await access_codes.verify(uuid4(), "123456")
