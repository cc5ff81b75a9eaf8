"""
Tests for HOA creation, settings and statistics.
"""

import pytest
from sqlalchemy import select

from hoa_courts.database.models import HOA, Profile, UserRole
from hoa_courts.services import hoa_service, user_service
from hoa_courts.services.exceptions import Conflict, Forbidden, InvalidInput, NotFound


def _hoa_kwargs(**overrides):
    kwargs = dict(
        name="Test Valley HOA",
        slug="test-valley",
        admin_email="admin@testvalley.org",
        admin_name="Tess Admin",
        admin_phone="555-010-0000",
        total_courts=3,
        admin_password="adminpass123",
    )
    kwargs.update(overrides)
    return kwargs


@pytest.mark.asyncio
async def test_create_hoa_with_initial_admin(db_session, super_admin):
    result = await hoa_service.create_hoa(db_session, super_admin, **_hoa_kwargs())

    hoa = result["hoa"]
    assert hoa["slug"] == "test-valley"
    assert hoa["is_active"] is True
    assert hoa["total_courts"] == 3
    assert hoa["court_names"] == ["Court 1", "Court 2", "Court 3"]
    assert len(hoa["invitation_code"]) == 8

    admin = await user_service.get_profile_by_user_id(db_session, result["admin_user_id"])
    assert admin["role"] == "hoa_admin"
    assert admin["hoa_id"] == hoa["id"]
    assert admin["phone_number"] == "+15550100000"
    assert admin["prime_hours"] == hoa["default_prime_hours"]

    assert await user_service.authenticate_user(db_session, "admin@testvalley.org", "adminpass123")


@pytest.mark.asyncio
async def test_duplicate_slug_conflicts_and_creates_nothing(db_session, super_admin):
    await hoa_service.create_hoa(db_session, super_admin, **_hoa_kwargs())

    with pytest.raises(Conflict):
        await hoa_service.create_hoa(
            db_session, super_admin, **_hoa_kwargs(admin_email="other@testvalley.org")
        )

    hoas = (await db_session.execute(select(HOA))).scalars().all()
    assert len(hoas) == 1


@pytest.mark.asyncio
async def test_duplicate_admin_email_conflicts(db_session, super_admin):
    await hoa_service.create_hoa(db_session, super_admin, **_hoa_kwargs())
    with pytest.raises(Conflict):
        await hoa_service.create_hoa(db_session, super_admin, **_hoa_kwargs(slug="other-valley"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"slug": "Test Valley"},
        {"slug": "tv"},
        {"name": "  "},
        {"total_courts": 0},
        {"total_courts": 21},
        {"admin_email": "not-an-email"},
        {"admin_phone": "123"},
        {"admin_password": "short"},
        {"prime_time_start": "25:00"},
        {"prime_time_start": None},
        {"timezone": "Mars/Olympus_Mons"},
        {"court_names": ["Only One"]},
        {"color": "blue"},
    ],
)
async def test_create_hoa_rejects_invalid_input(db_session, super_admin, overrides):
    with pytest.raises(InvalidInput):
        await hoa_service.create_hoa(db_session, super_admin, **_hoa_kwargs(**overrides))


@pytest.mark.asyncio
async def test_slug_is_derived_from_name_when_omitted(db_session, super_admin):
    result = await hoa_service.create_hoa(
        db_session, super_admin, **_hoa_kwargs(name="  maple grove hoa ", slug=None)
    )
    assert result["hoa"]["name"] == "Maple Grove HOA"
    assert result["hoa"]["slug"] == "maple-grove-hoa"


@pytest.mark.asyncio
async def test_only_super_admin_creates_hoas(db_session, hoa_admin):
    with pytest.raises(Forbidden):
        await hoa_service.create_hoa(db_session, hoa_admin, **_hoa_kwargs())


@pytest.mark.asyncio
async def test_invitation_code_lookup_is_case_insensitive(db_session, hoa):
    code = hoa["hoa"]["invitation_code"]
    found = await hoa_service.get_hoa_by_invitation_code(db_session, f" {code.lower()} ")
    assert found.id == hoa["hoa"]["id"]
    assert await hoa_service.get_hoa_by_invitation_code(db_session, "") is None


@pytest.mark.asyncio
async def test_list_hoas_scoped_by_role(db_session, super_admin, hoa, second_hoa, hoa_admin):
    all_hoas = await hoa_service.list_hoas(db_session, super_admin)
    assert [h["slug"] for h in all_hoas] == ["lakeside-commons", "sunset-ridge"]

    own = await hoa_service.list_hoas(db_session, hoa_admin)
    assert [h["slug"] for h in own] == ["sunset-ridge"]


class TestUpdateHoa:
    @pytest.mark.asyncio
    async def test_admin_updates_settings(self, db_session, hoa, hoa_admin):
        updated = await hoa_service.update_hoa(
            db_session,
            hoa_admin,
            hoa["hoa"]["id"],
            {"description": "Four lighted courts", "max_guests_per_booking": 3},
        )
        assert updated["description"] == "Four lighted courts"
        assert updated["max_guests_per_booking"] == 3

    @pytest.mark.asyncio
    async def test_court_names_follow_court_count(self, db_session, hoa, hoa_admin):
        updated = await hoa_service.update_hoa(
            db_session, hoa_admin, hoa["hoa"]["id"], {"total_courts": 2}
        )
        assert updated["court_names"] == ["Court 1", "Court 2"]

        updated = await hoa_service.update_hoa(
            db_session, hoa_admin, hoa["hoa"]["id"], {"total_courts": 3}
        )
        assert updated["court_names"] == ["Court 1", "Court 2", "Court 3"]

    @pytest.mark.asyncio
    async def test_unknown_timezone_is_rejected(self, db_session, hoa, hoa_admin):
        with pytest.raises(InvalidInput, match="IANA timezone"):
            await hoa_service.update_hoa(
                db_session, hoa_admin, hoa["hoa"]["id"], {"timezone": "Mars/Olympus_Mons"}
            )
        stored = await db_session.get(HOA, hoa["hoa"]["id"])
        await db_session.refresh(stored)
        assert stored.timezone == "UTC"

    @pytest.mark.asyncio
    async def test_prime_time_cannot_be_cleared(self, db_session, hoa, hoa_admin):
        for field in ("prime_time_start", "weekend_prime_time_end"):
            with pytest.raises(InvalidInput):
                await hoa_service.update_hoa(db_session, hoa_admin, hoa["hoa"]["id"], {field: None})

    @pytest.mark.asyncio
    async def test_valid_timezone_is_accepted(self, db_session, hoa, hoa_admin):
        updated = await hoa_service.update_hoa(
            db_session, hoa_admin, hoa["hoa"]["id"], {"timezone": "America/Denver"}
        )
        assert updated["timezone"] == "America/Denver"

    @pytest.mark.asyncio
    async def test_admin_cannot_change_slug(self, db_session, hoa, hoa_admin):
        with pytest.raises(Forbidden):
            await hoa_service.update_hoa(
                db_session, hoa_admin, hoa["hoa"]["id"], {"slug": "new-slug"}
            )

    @pytest.mark.asyncio
    async def test_super_admin_changes_slug(self, db_session, hoa, super_admin):
        updated = await hoa_service.update_hoa(
            db_session, super_admin, hoa["hoa"]["id"], {"slug": "sunset-ridge-east"}
        )
        assert updated["slug"] == "sunset-ridge-east"

    @pytest.mark.asyncio
    async def test_slug_change_conflict(self, db_session, hoa, second_hoa, super_admin):
        with pytest.raises(Conflict):
            await hoa_service.update_hoa(
                db_session, super_admin, hoa["hoa"]["id"], {"slug": "lakeside-commons"}
            )

    @pytest.mark.asyncio
    async def test_admin_cannot_manage_other_hoa(self, db_session, hoa_admin, second_hoa):
        with pytest.raises(Forbidden):
            await hoa_service.update_hoa(
                db_session, hoa_admin, second_hoa["hoa"]["id"], {"description": "mine now"}
            )

    @pytest.mark.asyncio
    async def test_member_cannot_manage_hoa(self, db_session, hoa, make_member):
        member = await make_member(hoa["hoa"])
        with pytest.raises(Forbidden):
            await hoa_service.update_hoa(
                db_session, member, hoa["hoa"]["id"], {"description": "x"}
            )

    @pytest.mark.asyncio
    async def test_unknown_hoa(self, db_session, super_admin):
        with pytest.raises(NotFound):
            await hoa_service.update_hoa(db_session, super_admin, 9999, {"name": "x"})


@pytest.mark.asyncio
async def test_regenerate_invitation_code(db_session, hoa, hoa_admin):
    old_code = hoa["hoa"]["invitation_code"]
    updated = await hoa_service.regenerate_invitation_code(db_session, hoa_admin, hoa["hoa"]["id"])
    assert updated["invitation_code"] != old_code
    assert await hoa_service.get_hoa_by_invitation_code(db_session, old_code) is None


@pytest.mark.asyncio
async def test_hoa_stats(db_session, hoa, make_member, hoa_admin):
    await make_member(hoa["hoa"])
    member = await make_member(hoa["hoa"])
    await user_service.deactivate_user(db_session, hoa_admin, member["user_id"])

    stats = await hoa_service.get_hoa_stats(db_session, hoa["hoa"]["id"])

    assert stats["total_members"] == 3
    assert stats["active_members"] == 2
    assert stats["admins"] == 1
    assert stats["total_bookings"] == 0


@pytest.mark.asyncio
async def test_system_stats(db_session, hoa, second_hoa):
    stats = await hoa_service.get_system_stats(db_session)
    assert stats["total_hoas"] == 2
    assert stats["active_hoas"] == 2
    assert stats["total_users"] == 2
    assert stats["profiles_by_role"]["hoa_admin"] == 2

    admins = (
        await db_session.execute(select(Profile).where(Profile.role == UserRole.HOA_ADMIN))
    ).scalars().all()
    assert len(admins) == 2
