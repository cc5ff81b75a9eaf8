"""
Tests for registration, self-service profile updates and admin member management.
"""

import pytest
import pytest_asyncio
from datetime import timedelta
from sqlalchemy import select

from hoa_courts.database.models import Booking, BookingStatus, User
from hoa_courts.services import booking_service, hoa_service, user_service
from hoa_courts.services.exceptions import Conflict, Forbidden, InvalidInput, NotFound
from hoa_courts.utils.datetime_utils import utcnow


@pytest_asyncio.fixture
async def test_valley(db_session, super_admin):
    """A fresh HOA named "Test Valley HOA"."""
    return await hoa_service.create_hoa(
        db_session,
        super_admin,
        name="Test Valley HOA",
        slug="test-valley",
        admin_email="admin@testvalley.org",
        admin_name="Tess Admin",
        admin_phone="5550100000",
        total_courts=2,
        admin_password="adminpass123",
    )


@pytest_asyncio.fixture
async def platform_admin(db_session, super_admin, hoa):
    """A super_admin account that has its own profile in the Sunset Ridge HOA."""
    return await user_service.admin_create_user(
        db_session,
        super_admin,
        email="root@platform.org",
        full_name="Root Admin",
        phone_number="5559990000",
        password="rootpass123",
        role="super_admin",
        hoa_id=hoa["hoa"]["id"],
    )


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_with_invitation_code(self, db_session, test_valley):
        code = test_valley["hoa"]["invitation_code"]

        profile = await user_service.register_user(
            db_session,
            email="Pat@Example.com",
            password="patpass123",
            full_name="Pat Player",
            phone_number="(555) 123-4567",
            invitation_code=code,
            household_id="12B",
        )

        assert profile["role"] == "member"
        assert profile["hoa_id"] == test_valley["hoa"]["id"]
        assert profile["email"] == "pat@example.com"
        assert profile["phone_number"] == "+15551234567"
        assert profile["is_active"] is True
        assert profile["prime_hours"] == test_valley["hoa"]["default_prime_hours"]
        assert await user_service.authenticate_user(db_session, "pat@example.com", "patpass123")

    @pytest.mark.asyncio
    async def test_unknown_invitation_code(self, db_session, test_valley):
        with pytest.raises(NotFound):
            await user_service.register_user(
                db_session,
                email="pat@example.com",
                password="patpass123",
                full_name="Pat Player",
                phone_number="5551234567",
                invitation_code="NOPE0000",
            )

    @pytest.mark.asyncio
    async def test_inactive_hoa_rejects_registration(self, db_session, test_valley, super_admin):
        await hoa_service.update_hoa(
            db_session, super_admin, test_valley["hoa"]["id"], {"is_active": False}
        )
        with pytest.raises(InvalidInput):
            await user_service.register_user(
                db_session,
                email="pat@example.com",
                password="patpass123",
                full_name="Pat Player",
                phone_number="5551234567",
                invitation_code=test_valley["hoa"]["invitation_code"],
            )

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, db_session, hoa, make_member):
        await make_member(hoa["hoa"], email="dup@example.com")
        with pytest.raises(Conflict):
            await make_member(hoa["hoa"], email="DUP@example.com")

    @pytest.mark.asyncio
    async def test_phone_unique_within_hoa(self, db_session, hoa, make_member):
        await make_member(hoa["hoa"], phone_number="555-222-3333")
        with pytest.raises(Conflict) as exc_info:
            await make_member(hoa["hoa"], phone_number="(555) 222-3333")
        assert exc_info.value.detail == user_service.PHONE_TAKEN_MESSAGE

    @pytest.mark.asyncio
    async def test_same_phone_allowed_in_another_hoa(self, db_session, hoa, second_hoa, make_member):
        first = await make_member(hoa["hoa"], phone_number="5552223333")
        second = await make_member(second_hoa["hoa"], phone_number="5552223333")
        assert first["phone_number"] == second["phone_number"]
        assert first["hoa_id"] != second["hoa_id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value",
        [("email", "nope"), ("password", "short"), ("full_name", " "), ("phone_number", "123")],
    )
    async def test_invalid_fields(self, db_session, hoa, field, value):
        kwargs = dict(
            email="pat@example.com",
            password="patpass123",
            full_name="Pat Player",
            phone_number="5551234567",
            invitation_code=hoa["hoa"]["invitation_code"],
        )
        kwargs[field] = value
        with pytest.raises(InvalidInput):
            await user_service.register_user(db_session, **kwargs)


class TestSelfService:
    @pytest.mark.asyncio
    async def test_update_own_profile(self, db_session, hoa, make_member):
        member = await make_member(hoa["hoa"])
        updated = await user_service.update_own_profile(
            db_session, member["user_id"], full_name=" New Name ", phone_number="5554443333"
        )
        assert updated["full_name"] == "New Name"
        assert updated["phone_number"] == "+15554443333"

    @pytest.mark.asyncio
    async def test_update_own_phone_conflict(self, db_session, hoa, make_member):
        await make_member(hoa["hoa"], phone_number="5554443333")
        member = await make_member(hoa["hoa"])
        with pytest.raises(Conflict):
            await user_service.update_own_profile(
                db_session, member["user_id"], phone_number="5554443333"
            )

    @pytest.mark.asyncio
    async def test_deactivated_member_cannot_edit_profile(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        await user_service.deactivate_user(db_session, hoa_admin, member["user_id"])
        with pytest.raises(Forbidden):
            await user_service.update_own_profile(db_session, member["user_id"], full_name="X")

    @pytest.mark.asyncio
    async def test_change_password(self, db_session, hoa, make_member):
        member = await make_member(hoa["hoa"], email="pw@example.com")
        with pytest.raises(InvalidInput):
            await user_service.change_password(db_session, member["user_id"], "wrong", "newpass123")

        await user_service.change_password(
            db_session, member["user_id"], "memberpass123", "newpass123"
        )
        assert await user_service.authenticate_user(db_session, "pw@example.com", "newpass123")
        assert await user_service.authenticate_user(db_session, "pw@example.com", "memberpass123") is None


class TestAdminManagement:
    @pytest.mark.asyncio
    async def test_list_profiles_scoped_to_own_hoa(
        self, db_session, hoa, second_hoa, hoa_admin, make_member
    ):
        await make_member(hoa["hoa"], full_name="Ana")
        await make_member(second_hoa["hoa"], full_name="Bo")

        listing = await user_service.list_profiles(db_session, hoa_admin)
        names = [u["full_name"] for u in listing["users"]]
        assert names == ["Alex Admin", "Ana"]
        assert listing["pagination"]["total"] == 2

        with pytest.raises(Forbidden):
            await user_service.list_profiles(db_session, hoa_admin, hoa_id=second_hoa["hoa"]["id"])

    @pytest.mark.asyncio
    async def test_list_profiles_search_and_filters(self, db_session, hoa, hoa_admin, make_member):
        await make_member(hoa["hoa"], full_name="Jordan Smith")
        gone = await make_member(hoa["hoa"], full_name="Jordan Lee")
        await user_service.deactivate_user(db_session, hoa_admin, gone["user_id"])

        listing = await user_service.list_profiles(
            db_session, hoa_admin, search="jordan", status="active"
        )
        assert [u["full_name"] for u in listing["users"]] == ["Jordan Smith"]

        admins = await user_service.list_profiles(db_session, hoa_admin, role="hoa_admin")
        assert [u["full_name"] for u in admins["users"]] == ["Alex Admin"]

    @pytest.mark.asyncio
    async def test_member_cannot_list_profiles(self, db_session, hoa, make_member):
        member = await make_member(hoa["hoa"])
        with pytest.raises(Forbidden):
            await user_service.list_profiles(db_session, member)

    @pytest.mark.asyncio
    async def test_admin_create_user(self, db_session, hoa, hoa_admin):
        created = await user_service.admin_create_user(
            db_session,
            hoa_admin,
            email="new@sunsetridge.org",
            full_name="New Person",
            phone_number="5553334444",
        )
        assert created["hoa_id"] == hoa["hoa"]["id"]
        assert created["role"] == "member"

    @pytest.mark.asyncio
    async def test_hoa_admin_cannot_assign_super_admin(self, db_session, hoa, hoa_admin):
        with pytest.raises(InvalidInput):
            await user_service.admin_create_user(
                db_session,
                hoa_admin,
                email="new@sunsetridge.org",
                full_name="New Person",
                phone_number="5553334444",
                role="super_admin",
            )

    @pytest.mark.asyncio
    async def test_hoa_admin_cannot_create_in_other_hoa(self, db_session, hoa_admin, second_hoa):
        with pytest.raises(Forbidden):
            await user_service.admin_create_user(
                db_session,
                hoa_admin,
                email="new@lakeside.org",
                full_name="New Person",
                phone_number="5553334444",
                hoa_id=second_hoa["hoa"]["id"],
            )

    @pytest.mark.asyncio
    async def test_admin_update_user(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        updated = await user_service.admin_update_user(
            db_session,
            hoa_admin,
            member["user_id"],
            {"role": "hoa_admin", "prime_hours": 2.5, "household_id": " 7A "},
        )
        assert updated["role"] == "hoa_admin"
        assert updated["prime_hours"] == 2.5
        assert updated["household_id"] == "7A"

    @pytest.mark.asyncio
    async def test_admin_update_rejects_unknown_fields(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        with pytest.raises(InvalidInput):
            await user_service.admin_update_user(
                db_session, hoa_admin, member["user_id"], {"hoa_id": 99}
            )

    @pytest.mark.asyncio
    async def test_profile_details_include_stats(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        details = await user_service.get_profile_details(db_session, hoa_admin, member["user_id"])
        assert details["email"] == member["email"]
        assert details["stats"]["bookings_organized"] == 0


class TestDeactivation:
    @pytest.mark.asyncio
    async def test_deactivate_cancels_pending_bookings(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        start = utcnow() + timedelta(days=2)
        await booking_service.create_group_booking(
            db_session,
            organizer_id=member["user_id"],
            start_time=start,
            end_time=start + timedelta(hours=1),
            courts=[1],
            total_players=2,
            guest_count=0,
            min_members=1,
            invited_user_ids=[],
        )

        result = await user_service.deactivate_user(db_session, hoa_admin, member["user_id"])

        assert result["user"]["is_active"] is False
        assert result["cancelled_bookings"] == 1
        booking = (await db_session.execute(select(Booking))).scalar_one()
        assert BookingStatus(booking.status) == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_hoa_admin_cannot_deactivate_super_admin(
        self, db_session, hoa_admin, platform_admin
    ):
        with pytest.raises(Forbidden):
            await user_service.deactivate_user(db_session, hoa_admin, platform_admin["user_id"])

        profile = await user_service.get_profile_by_user_id(db_session, platform_admin["user_id"])
        assert profile["is_active"] is True

    @pytest.mark.asyncio
    async def test_super_admin_can_deactivate_super_admin(
        self, db_session, super_admin, platform_admin
    ):
        result = await user_service.deactivate_user(db_session, super_admin, platform_admin["user_id"])
        assert result["user"]["is_active"] is False

    @pytest.mark.asyncio
    async def test_cannot_deactivate_self(self, db_session, hoa_admin):
        with pytest.raises(InvalidInput):
            await user_service.deactivate_user(db_session, hoa_admin, hoa_admin["user_id"])

    @pytest.mark.asyncio
    async def test_admin_update_deactivation_cancels_pending_bookings(
        self, db_session, hoa, hoa_admin, make_member
    ):
        member = await make_member(hoa["hoa"])
        start = utcnow() + timedelta(days=2)
        await booking_service.create_group_booking(
            db_session,
            organizer_id=member["user_id"],
            start_time=start,
            end_time=start + timedelta(hours=1),
            courts=[1],
            total_players=2,
            guest_count=0,
            min_members=1,
            invited_user_ids=[],
        )

        updated = await user_service.admin_update_user(
            db_session, hoa_admin, member["user_id"], {"is_active": False}
        )

        assert updated["is_active"] is False
        booking = (await db_session.execute(select(Booking))).scalar_one()
        await db_session.refresh(booking)
        assert BookingStatus(booking.status) == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_admin_update_cannot_deactivate_super_admin(
        self, db_session, hoa_admin, platform_admin
    ):
        with pytest.raises(Forbidden):
            await user_service.admin_update_user(
                db_session, hoa_admin, platform_admin["user_id"], {"is_active": False}
            )

    @pytest.mark.asyncio
    async def test_admin_update_cannot_deactivate_self(self, db_session, hoa_admin):
        with pytest.raises(InvalidInput):
            await user_service.admin_update_user(
                db_session, hoa_admin, hoa_admin["user_id"], {"is_active": False}
            )

    @pytest.mark.asyncio
    async def test_reactivate(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        await user_service.deactivate_user(db_session, hoa_admin, member["user_id"])
        profile = await user_service.reactivate_user(db_session, hoa_admin, member["user_id"])
        assert profile["is_active"] is True


class TestHours:
    @pytest.mark.asyncio
    async def test_reset_all_hours(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        await user_service.admin_update_user(
            db_session, hoa_admin, member["user_id"], {"prime_hours": 0, "standard_hours": 0}
        )

        count = await user_service.reset_all_hours(db_session, hoa_admin, hoa["hoa"]["id"])

        assert count == 2
        profile = await user_service.get_profile_by_user_id(db_session, member["user_id"])
        assert profile["prime_hours"] == hoa["hoa"]["default_prime_hours"]
        assert profile["standard_hours"] == hoa["hoa"]["default_standard_hours"]

    @pytest.mark.asyncio
    async def test_reset_all_hours_other_hoa_forbidden(self, db_session, hoa_admin, second_hoa):
        with pytest.raises(Forbidden):
            await user_service.reset_all_hours(db_session, hoa_admin, second_hoa["hoa"]["id"])


class TestBulkUpdate:
    @pytest.mark.asyncio
    async def test_per_user_results(self, db_session, hoa, second_hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        outsider = await make_member(second_hoa["hoa"])

        results = await user_service.bulk_update_users(
            db_session,
            hoa_admin,
            [member["user_id"], outsider["user_id"], 9999],
            "deactivate",
        )

        assert [r["success"] for r in results] == [True, False, False]
        assert results[1]["error"] == "You cannot manage this user"
        assert results[2]["error"] == "User not found"

        profile = await user_service.get_profile_by_user_id(db_session, outsider["user_id"])
        assert profile["is_active"] is True

    @pytest.mark.asyncio
    async def test_update_role_requires_role(self, db_session, hoa, hoa_admin, make_member):
        member = await make_member(hoa["hoa"])
        with pytest.raises(InvalidInput):
            await user_service.bulk_update_users(
                db_session, hoa_admin, [member["user_id"]], "update_role", {}
            )

    @pytest.mark.asyncio
    async def test_invalid_action(self, db_session, hoa_admin):
        with pytest.raises(InvalidInput):
            await user_service.bulk_update_users(db_session, hoa_admin, [1], "delete")


@pytest.mark.asyncio
async def test_email_is_stored_lowercase(db_session, hoa, make_member):
    await make_member(hoa["hoa"], email="Mixed.Case@Example.com")
    emails = (await db_session.execute(select(User.email))).scalars().all()
    assert "mixed.case@example.com" in emails


def test_describe_profile_adds_role_labels_and_next_reset():
    now = utcnow().replace(year=2025, month=3, day=5, hour=12, minute=0, second=0, microsecond=0)
    described = user_service.describe_profile({"user_id": 7, "role": "member"}, now=now)

    assert described["user_id"] == 7
    assert described["role_display_name"] == "Member"
    assert described["role_description"].startswith("Can book courts")
    assert described["next_reset"] == "2025-03-10T03:00:00+00:00"
