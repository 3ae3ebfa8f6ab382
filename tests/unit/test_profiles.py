"""Profile service tests."""

from decimal import Decimal

import pytest

from educhain.errors import InvalidInputError, NotAuthorizedError, NotFoundError
from educhain.profiles.models import (
    DualRoleProfile,
    StudentProfile,
    TeacherProfile,
    can_learn,
    can_teach,
)
from educhain.profiles.service import load_profile
from educhain.store.records import Role

pytestmark = pytest.mark.asyncio


class TestConnectWallet:
    async def test_first_connection_creates(self, market):
        profile, created = await market.profiles.connect_wallet(
            "0xABC", Role.STUDENT, opening_balance=Decimal("50"),
        )
        assert created
        assert profile.wallet_address == "0xabc"
        assert profile.token_balance == Decimal("50")

    async def test_reconnect_returns_existing(self, market):
        first, _ = await market.profiles.connect_wallet("0xabc", Role.STUDENT)
        again, created = await market.profiles.connect_wallet("  0xABC ", Role.TEACHER)
        assert not created
        assert again.id == first.id
        assert isinstance(again, StudentProfile)

    async def test_blank_wallet(self, market):
        with pytest.raises(InvalidInputError):
            await market.profiles.connect_wallet("   ", Role.STUDENT)

    async def test_negative_opening_balance(self, market):
        with pytest.raises(InvalidInputError):
            await market.profiles.connect_wallet("0xabc", Role.STUDENT, opening_balance=Decimal("-1"))

    async def test_lookup_by_wallet(self, market, student):
        found = await market.profiles.get_by_wallet(student.wallet_address.upper())
        assert found is not None and found.id == student.id
        assert await market.profiles.get_by_wallet("0xnobody") is None


class TestRoleVariants:
    """Each role only exposes the counters it uses."""

    async def test_teacher_variant(self, teacher):
        assert isinstance(teacher, TeacherProfile)
        assert can_teach(teacher) and not can_learn(teacher)
        assert not hasattr(teacher, "total_tasks_completed")

    async def test_student_variant(self, student):
        assert isinstance(student, StudentProfile)
        assert can_learn(student) and not can_teach(student)
        assert not hasattr(student, "total_tasks_created")

    async def test_dual_role_variant(self, market):
        profile, _ = await market.profiles.connect_wallet("0xboth", Role.BOTH)
        assert isinstance(profile, DualRoleProfile)
        assert can_teach(profile) and can_learn(profile)


class TestDeactivate:
    async def test_deactivated_profile_is_rejected_by_operations(self, market, student, task):
        await market.profiles.deactivate(student.id)

        with pytest.raises(NotAuthorizedError):
            await load_profile(market.store, student.id)
        with pytest.raises(NotAuthorizedError):
            await market.enrollments.enroll(task.id, student.id)
        profile = await market.profiles.get_profile(student.id)
        assert profile.is_active is False

    async def test_unknown_profile(self, market):
        with pytest.raises(NotFoundError):
            await market.profiles.deactivate("missing")
        with pytest.raises(NotFoundError):
            await market.profiles.get_profile("missing")
