"""Tests for the assignment engine: assign, deactivate, reactivate, delete and expire."""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import text

from config.database import DatabaseSettings
from database.async_engine import create_engine, create_schema, get_session_factory
from rbac.assignments import (
    DEFAULT_DEACTIVATION_REASON,
    EXPIRATION_REASON,
    AssignmentEngine,
    AssignmentFilters,
    AssignmentOptions,
)
from rbac.errors import NotFoundError, PolicyViolationError, StorageFailure, ValidationError
from rbac.models import AssignmentType
from rbac.seed import seed_defaults


async def _role_names(resolver, user_id):
    return sorted(await resolver.get_role_names(user_id))


class TestAssign:
    """Tests for AssignmentEngine.assign."""

    @pytest.mark.asyncio
    async def test_creates_new_row(self, assignment_engine, seeded, clock):
        row = await assignment_engine.assign(10, "Voter")

        assert row.assignment_id is not None
        assert row.user_id == 10
        assert row.role_name == "Voter"
        assert row.is_active is True
        assert row.assigned_at == clock()
        assert row.assignment_type == "manual"
        assert row.assignment_source == "role_service"

    @pytest.mark.asyncio
    async def test_writes_options(self, assignment_engine, seeded, clock):
        expires = clock() + timedelta(days=30)
        row = await assignment_engine.assign(
            10,
            "Sponsor",
            AssignmentOptions(
                assigned_by=1,
                assignment_type=AssignmentType.SUBSCRIPTION,
                assignment_source="billing",
                expires_at=expires,
                metadata={"plan": "gold", "seats": 3},
            ),
        )

        assert row.assigned_by == 1
        assert row.assignment_type == "subscription"
        assert row.assignment_source == "billing"
        assert row.expires_at == expires
        assert row.assignment_metadata == {"plan": "gold", "seats": 3}

    @pytest.mark.asyncio
    async def test_unknown_role_is_not_found(self, assignment_engine, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            await assignment_engine.assign(10, "Wizard")
        assert exc_info.value.reason == "role_not_found"

    @pytest.mark.asyncio
    async def test_inactive_role_is_not_found(self, assignment_engine, role_catalog, seeded):
        sponsor = await role_catalog.get_by_name("Sponsor")
        await role_catalog.update(sponsor.role_id, {"is_active": False})

        with pytest.raises(NotFoundError):
            await assignment_engine.assign(10, "Sponsor")

    @pytest.mark.asyncio
    async def test_reassign_updates_existing_row_in_place(self, assignment_engine, seeded, clock):
        """Re-assigning a deactivated role reuses its row and clears the deactivation record."""
        first = await assignment_engine.assign(10, "Sponsor")
        await assignment_engine.deactivate(10, "Sponsor", deactivated_by=1, reason="fraud check")
        clock.advance(hours=1)

        second = await assignment_engine.assign(10, "Sponsor", AssignmentOptions(assigned_by=2))

        assert second.assignment_id == first.assignment_id
        assert second.is_active is True
        assert second.assigned_by == 2
        assert second.assigned_at == clock()
        assert second.deactivated_at is None
        assert second.deactivated_by is None
        assert second.deactivation_reason is None

    @pytest.mark.asyncio
    async def test_reassign_overwrites_expiry_and_metadata(self, assignment_engine, seeded, clock):
        await assignment_engine.assign(
            10, "Sponsor",
            AssignmentOptions(expires_at=clock() + timedelta(days=1), metadata={"a": 1}),
        )
        row = await assignment_engine.assign(10, "Sponsor")

        assert row.expires_at is None
        assert row.assignment_metadata is None

    @pytest.mark.asyncio
    async def test_other_roles_untouched(self, assignment_engine, resolver, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor")

        assert await _role_names(resolver, 10) == ["Sponsor", "Voter"]

    @pytest.mark.asyncio
    async def test_self_assignment_of_admin_role_forbidden(self, assignment_engine, seeded):
        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.assign(5, "Admin", AssignmentOptions(assigned_by=5))
        assert exc_info.value.reason == "self_assignment_forbidden"

    @pytest.mark.asyncio
    async def test_self_assignment_of_user_role_allowed(self, assignment_engine, seeded):
        row = await assignment_engine.assign(5, "Sponsor", AssignmentOptions(assigned_by=5))
        assert row.is_active is True

    @pytest.mark.asyncio
    async def test_invalid_assignment_type(self, assignment_engine, seeded):
        with pytest.raises(ValidationError) as exc_info:
            await assignment_engine.assign(10, "Voter", AssignmentOptions(assignment_type="gifted"))
        assert exc_info.value.reason == "invalid_value"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", [0, -3, True, "10"])
    async def test_malformed_user_id(self, assignment_engine, seeded, user_id):
        with pytest.raises(ValidationError) as exc_info:
            await assignment_engine.assign(user_id, "Voter")
        assert exc_info.value.reason == "invalid_identifier"

    @pytest.mark.asyncio
    async def test_missing_user_id_and_role_name(self, assignment_engine, seeded):
        with pytest.raises(ValidationError) as exc_info:
            await assignment_engine.assign(None, "Voter")
        assert exc_info.value.reason == "missing_field"

        with pytest.raises(ValidationError) as exc_info:
            await assignment_engine.assign(10, "   ")
        assert exc_info.value.reason == "missing_field"

    @pytest.mark.asyncio
    async def test_options_not_mutated(self, assignment_engine, seeded):
        options = AssignmentOptions(assignment_type="subscription", metadata={"k": "v"})
        await assignment_engine.assign(10, "Sponsor", options)
        assert options.assignment_type == "subscription"
        assert options.metadata == {"k": "v"}

    @pytest.mark.asyncio
    async def test_logs_active_role_set(self, assignment_engine, seeded, caplog):
        await assignment_engine.assign(10, "Voter")
        with caplog.at_level(logging.INFO, logger="rbac.assignments"):
            await assignment_engine.assign(10, "Sponsor")

        assert "User 10 now has 2 active roles: [Sponsor, Voter]" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_insert_is_retried_as_update(self, assignment_engine, seeded, monkeypatch):
        """Losing the insert race on the unique constraint falls back to updating the winner's row."""
        await assignment_engine.assign(3, "Sponsor")

        original = AssignmentEngine._find_assignment
        calls = {"count": 0}

        async def racing_find(self, session, user_id, role_name, lock=True):
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return await original(self, session, user_id, role_name, lock)

        monkeypatch.setattr(AssignmentEngine, "_find_assignment", racing_find)
        row = await assignment_engine.assign(
            3, "Sponsor", AssignmentOptions(assignment_type=AssignmentType.SUBSCRIPTION)
        )

        assert calls["count"] == 2
        assert row.assignment_type == "subscription"
        rows = await assignment_engine.list_assignments(AssignmentFilters(user_id=3))
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_storage_error_is_wrapped(self, assignment_engine, seeded, db_engine):
        async with db_engine.begin() as conn:
            await conn.execute(text("DROP TABLE user_role_assignments"))

        with pytest.raises(StorageFailure) as exc_info:
            await assignment_engine.assign(10, "Voter")
        assert exc_info.value.operation == "assign"
        assert "storage error" in exc_info.value.message


class TestDeactivate:
    """Tests for AssignmentEngine.deactivate."""

    @pytest.mark.asyncio
    async def test_records_deactivation(self, assignment_engine, seeded, clock):
        await assignment_engine.assign(10, "Sponsor")
        clock.advance(minutes=5)

        row = await assignment_engine.deactivate(10, "Sponsor", deactivated_by=1, reason="refund")

        assert row.is_active is False
        assert row.deactivated_at == clock()
        assert row.deactivated_by == 1
        assert row.deactivation_reason == "refund"

    @pytest.mark.asyncio
    async def test_default_reason(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Sponsor")
        row = await assignment_engine.deactivate(10, "Sponsor")
        assert row.deactivation_reason == DEFAULT_DEACTIVATION_REASON

    @pytest.mark.asyncio
    async def test_baseline_role_can_be_deactivated(self, assignment_engine, resolver, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.deactivate(10, "Voter")
        assert await resolver.get_roles(10) == []

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self, assignment_engine, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            await assignment_engine.deactivate(10, "Sponsor")
        assert exc_info.value.reason == "assignment_not_found"

    @pytest.mark.asyncio
    async def test_already_inactive_is_not_found(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Sponsor")
        await assignment_engine.deactivate(10, "Sponsor")
        with pytest.raises(NotFoundError):
            await assignment_engine.deactivate(10, "Sponsor")


class TestReactivate:
    """Tests for AssignmentEngine.reactivate."""

    @pytest.mark.asyncio
    async def test_restores_inactive_row(self, assignment_engine, seeded, clock):
        first = await assignment_engine.assign(10, "Sponsor")
        await assignment_engine.deactivate(10, "Sponsor", deactivated_by=1)
        clock.advance(days=1)

        row = await assignment_engine.reactivate(10, "Sponsor", reactivated_by=2)

        assert row.assignment_id == first.assignment_id
        assert row.is_active is True
        assert row.assigned_by == 2
        assert row.assigned_at == clock()
        assert row.deactivated_at is None
        assert row.deactivation_reason is None

    @pytest.mark.asyncio
    async def test_active_row_is_not_found(self, assignment_engine, seeded):
        """Reactivation is not idempotent."""
        await assignment_engine.assign(10, "Sponsor")
        with pytest.raises(NotFoundError):
            await assignment_engine.reactivate(10, "Sponsor")

    @pytest.mark.asyncio
    async def test_self_reactivation_of_admin_role_forbidden(self, assignment_engine, seeded):
        await assignment_engine.assign(5, "Admin", AssignmentOptions(assigned_by=1))
        await assignment_engine.deactivate(5, "Admin", deactivated_by=1)

        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.reactivate(5, "Admin", reactivated_by=5)
        assert exc_info.value.reason == "self_assignment_forbidden"


class TestDelete:
    """Tests for AssignmentEngine.delete."""

    @pytest.mark.asyncio
    async def test_baseline_role_protected_by_name(self, assignment_engine, seeded):
        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.delete(10, "Voter")
        assert exc_info.value.reason == "baseline_role_protected"

    @pytest.mark.asyncio
    async def test_baseline_match_ignores_case(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor")
        with pytest.raises(PolicyViolationError):
            await assignment_engine.delete(10, "voter")

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self, assignment_engine, seeded):
        with pytest.raises(NotFoundError):
            await assignment_engine.delete(10, "Sponsor")

    @pytest.mark.asyncio
    async def test_last_active_role_protected(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Sponsor")
        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.delete(10, "Sponsor")
        assert exc_info.value.reason == "last_active_role"

    @pytest.mark.asyncio
    async def test_expired_roles_do_not_count_as_remaining(self, assignment_engine, seeded, clock):
        await assignment_engine.assign(10, "Analyst", AssignmentOptions(expires_at=clock() + timedelta(hours=1)))
        await assignment_engine.assign(10, "Sponsor")
        clock.advance(hours=2)

        with pytest.raises(PolicyViolationError):
            await assignment_engine.delete(10, "Sponsor")

    @pytest.mark.asyncio
    async def test_inactive_target_still_needs_another_active_role(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Sponsor")
        await assignment_engine.deactivate(10, "Sponsor")
        with pytest.raises(PolicyViolationError):
            await assignment_engine.delete(10, "Sponsor")

    @pytest.mark.asyncio
    async def test_removes_row(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor")

        row = await assignment_engine.delete(10, "Sponsor")

        assert row.role_name == "Sponsor"
        remaining = await assignment_engine.list_assignments(AssignmentFilters(user_id=10))
        assert [r["role_name"] for r in remaining] == ["Voter"]


class TestExpire:
    """Tests for AssignmentEngine.expire."""

    @pytest.mark.asyncio
    async def test_deactivates_past_expiries_only(self, assignment_engine, seeded, clock):
        now = clock()
        await assignment_engine.assign(1, "Sponsor", AssignmentOptions(expires_at=now + timedelta(hours=1)))
        await assignment_engine.assign(2, "Sponsor", AssignmentOptions(expires_at=now + timedelta(days=3)))
        await assignment_engine.assign(3, "Sponsor")
        clock.advance(hours=2)

        result = await assignment_engine.expire()

        assert result.count == 1
        assert result.user_ids == [1]
        expired = result.expired[0]
        assert expired.is_active is False
        assert expired.deactivated_by is None
        assert expired.deactivation_reason == EXPIRATION_REASON
        assert expired.deactivated_at == clock()

        still_active = await assignment_engine.list_assignments(AssignmentFilters(is_active=True))
        assert sorted(r["user_id"] for r in still_active) == [2, 3]

    @pytest.mark.asyncio
    async def test_idempotent(self, assignment_engine, seeded, clock):
        await assignment_engine.assign(1, "Sponsor", AssignmentOptions(expires_at=clock() + timedelta(minutes=1)))
        clock.advance(minutes=5)

        assert (await assignment_engine.expire()).count == 1
        assert (await assignment_engine.expire()).count == 0

    @pytest.mark.asyncio
    async def test_invalidates_affected_users(self, assignment_engine, resolver, cache, seeded, clock):
        await assignment_engine.assign(1, "Voter")
        await assignment_engine.assign(1, "Sponsor", AssignmentOptions(expires_at=clock() + timedelta(minutes=1)))
        assert await _role_names(resolver, 1) == ["Sponsor", "Voter"]
        assert cache.get_roles(1) is not None

        clock.advance(minutes=5)
        await assignment_engine.expire()

        assert cache.get_roles(1) is None
        assert await _role_names(resolver, 1) == ["Voter"]


class TestCacheCoherence:
    """Every committed mutation is visible on the next resolution read."""

    @pytest.mark.asyncio
    async def test_assign_visible_immediately(self, assignment_engine, resolver, seeded):
        await assignment_engine.assign(10, "Voter")
        assert await _role_names(resolver, 10) == ["Voter"]

        await assignment_engine.assign(10, "Sponsor")
        assert await _role_names(resolver, 10) == ["Sponsor", "Voter"]

    @pytest.mark.asyncio
    async def test_deactivate_and_reactivate_visible_immediately(self, assignment_engine, resolver, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor")
        await resolver.get_permissions(10)

        await assignment_engine.deactivate(10, "Sponsor")
        assert "payment.deposit" not in await resolver.get_permissions(10)

        await assignment_engine.reactivate(10, "Sponsor")
        assert "payment.deposit" in await resolver.get_permissions(10)

    @pytest.mark.asyncio
    async def test_first_role_not_hidden_by_empty_result(self, assignment_engine, resolver, seeded):
        assert await resolver.get_roles(10) == []
        await assignment_engine.assign(10, "Voter")
        assert await _role_names(resolver, 10) == ["Voter"]

    @pytest.mark.asyncio
    async def test_explicit_invalidate(self, assignment_engine, resolver, cache, seeded):
        await assignment_engine.assign(10, "Voter")
        await resolver.get_roles(10)
        await resolver.get_permissions(10)

        assert assignment_engine.invalidate(10) == 2
        assert cache.get_roles(10) is None

    @pytest.mark.asyncio
    async def test_rejected_writes_keep_warm_entries(self, assignment_engine, resolver, cache, seeded):
        """Only a committed change evicts; a refused one leaves the cache as it was."""
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(11, "Sponsor")
        for user_id in (10, 11):
            await resolver.get_roles(user_id)
            await resolver.get_permissions(user_id)
        version = cache.version

        with pytest.raises(PolicyViolationError, match="baseline"):
            await assignment_engine.delete(10, "Voter")
        with pytest.raises(NotFoundError):
            await assignment_engine.delete(10, "Sponsor")
        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.delete(11, "Sponsor")
        assert exc_info.value.reason == "last_active_role"
        with pytest.raises(NotFoundError):
            await assignment_engine.deactivate(10, "Sponsor")
        with pytest.raises(NotFoundError):
            await assignment_engine.reactivate(10, "Voter")

        assert cache.version == version
        for user_id in (10, 11):
            assert cache.get_roles(user_id) is not None
            assert cache.get_permissions(user_id) is not None

    @pytest.mark.asyncio
    async def test_cached_role_not_served_past_expiry(self, assignment_engine, resolver, cache, seeded, clock):
        """No sweep has run; the expiry alone turns the warm entry into a miss."""
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor", AssignmentOptions(expires_at=clock() + timedelta(minutes=1)))
        assert await _role_names(resolver, 10) == ["Sponsor", "Voter"]
        assert "payment.deposit" in await resolver.get_permissions(10)

        clock.advance(minutes=1)

        assert await _role_names(resolver, 10) == ["Voter"]
        assert "payment.deposit" not in await resolver.get_permissions(10)
        assert cache.get_roles(10) == tuple(await resolver.get_roles(10))


class TestScenarios:
    """End-to-end flows through engine, catalog and resolver."""

    @pytest.mark.asyncio
    async def test_baseline_protection_flow(self, assignment_engine, resolver, seeded):
        await assignment_engine.assign(42, "Voter")

        with pytest.raises(PolicyViolationError):
            await assignment_engine.delete(42, "Voter")

        await assignment_engine.assign(42, "Admin")
        assert await _role_names(resolver, 42) == ["Admin", "Voter"]

        with pytest.raises(PolicyViolationError) as exc_info:
            await assignment_engine.delete(42, "Voter")
        assert exc_info.value.reason == "baseline_role_protected"

        await assignment_engine.delete(42, "Admin")
        assert await _role_names(resolver, 42) == ["Voter"]

    @pytest.mark.asyncio
    async def test_revoked_binding_stops_resolving(
        self, assignment_engine, resolver, role_catalog, permission_catalog, bindings, seeded
    ):
        await assignment_engine.assign(7, "Admin")
        assert "election.create" in await resolver.get_permissions(7)

        admin = await role_catalog.get_by_name("Admin")
        permission = await permission_catalog.get_by_name("election.create")
        await bindings.revoke(admin.role_id, permission.permission_id)

        assert "election.create" not in await resolver.get_permissions(7)


class TestConcurrentAssign:
    """Concurrent writers against a file-backed database, each on its own connection."""

    @pytest.fixture
    async def file_engine(self, tmp_path, cache, clock):
        db_engine = create_engine(DatabaseSettings(sqlite_path=tmp_path / "rbac.db"))
        await create_schema(db_engine)
        session_factory = get_session_factory(db_engine)
        await seed_defaults(session_factory)
        yield AssignmentEngine(session_factory, cache, baseline_role="Voter", now=clock)
        await db_engine.dispose()

    @pytest.mark.asyncio
    async def test_same_pair_yields_one_row(self, file_engine):
        rows = await asyncio.gather(*(file_engine.assign(9, "Sponsor") for _ in range(4)))

        assert {row.assignment_id for row in rows} == {rows[0].assignment_id}
        stored = await file_engine.list_assignments(AssignmentFilters(user_id=9))
        assert [(r["role_name"], r["is_active"]) for r in stored] == [("Sponsor", True)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first, second", [("Voter", "Sponsor"), ("Sponsor", "Voter")])
    async def test_different_roles_both_commit(self, file_engine, first, second):
        await asyncio.gather(file_engine.assign(9, first), file_engine.assign(9, second))

        stored = await file_engine.list_assignments(AssignmentFilters(user_id=9, is_active=True))
        assert sorted(r["role_name"] for r in stored) == ["Sponsor", "Voter"]


class TestEnsureBaselineRole:
    """Tests for AssignmentEngine.ensure_baseline_role."""

    @pytest.mark.asyncio
    async def test_creates_automatic_assignment(self, assignment_engine, seeded):
        row, created = await assignment_engine.ensure_baseline_role(20)

        assert created is True
        assert row.role_name == "Voter"
        assert row.assignment_type == "automatic"

    @pytest.mark.asyncio
    async def test_existing_row_left_untouched(self, assignment_engine, seeded):
        await assignment_engine.assign(20, "Voter")
        await assignment_engine.deactivate(20, "Voter")

        row, created = await assignment_engine.ensure_baseline_role(20)

        assert created is False
        assert row.is_active is False


class TestQueries:
    """Tests for list_assignments and get_history."""

    @pytest.mark.asyncio
    async def test_list_enriched_with_role_and_emails(self, assignment_engine, seeded, add_directory_users):
        await add_directory_users((10, "ten@example.com"), (1, "admin@example.com"))
        await assignment_engine.assign(10, "Sponsor", AssignmentOptions(assigned_by=1))

        [item] = await assignment_engine.list_assignments(AssignmentFilters(user_id=10))

        assert item["role_name"] == "Sponsor"
        assert item["role_type"] == "user"
        assert item["role_category"] == "sponsor"
        assert item["role_id"] is not None
        assert item["user_email"] == "ten@example.com"
        assert item["assigned_by_email"] == "admin@example.com"

    @pytest.mark.asyncio
    async def test_list_filters(self, assignment_engine, seeded):
        await assignment_engine.assign(10, "Voter")
        await assignment_engine.assign(10, "Sponsor", AssignmentOptions(assignment_type="subscription"))
        await assignment_engine.assign(11, "Voter", AssignmentOptions(assignment_source="signup"))
        await assignment_engine.deactivate(10, "Voter")

        by_role = await assignment_engine.list_assignments(AssignmentFilters(role_name="Voter"))
        assert sorted(r["user_id"] for r in by_role) == [10, 11]

        inactive = await assignment_engine.list_assignments(AssignmentFilters(is_active=False))
        assert [(r["user_id"], r["role_name"]) for r in inactive] == [(10, "Voter")]

        by_type = await assignment_engine.list_assignments(AssignmentFilters(assignment_type="subscription"))
        assert [r["role_name"] for r in by_type] == ["Sponsor"]

        by_source = await assignment_engine.list_assignments(AssignmentFilters(assignment_source="signup"))
        assert [r["user_id"] for r in by_source] == [11]

    @pytest.mark.asyncio
    async def test_list_newest_first(self, assignment_engine, seeded, clock):
        await assignment_engine.assign(10, "Voter")
        clock.advance(minutes=1)
        await assignment_engine.assign(11, "Voter")

        rows = await assignment_engine.list_assignments()
        assert [r["user_id"] for r in rows] == [11, 10]

    @pytest.mark.asyncio
    async def test_history_includes_deactivator_and_omits_metadata(
        self, assignment_engine, seeded, add_directory_users
    ):
        await add_directory_users((1, "admin@example.com"), (2, "mod@example.com"))
        await assignment_engine.assign(10, "Voter", AssignmentOptions(assigned_by=1, metadata={"a": 1}))
        await assignment_engine.assign(10, "Sponsor", AssignmentOptions(assigned_by=1))
        await assignment_engine.deactivate(10, "Sponsor", deactivated_by=2)

        history = await assignment_engine.get_history(10, is_active=False)

        assert len(history) == 1
        assert history[0]["role_name"] == "Sponsor"
        assert history[0]["assigned_by_email"] == "admin@example.com"
        assert history[0]["deactivated_by_email"] == "mod@example.com"
        assert "metadata" not in history[0]

    @pytest.mark.asyncio
    async def test_history_limit_and_role_filter(self, assignment_engine, seeded, clock):
        for role_name in ("Voter", "Sponsor", "Analyst"):
            await assignment_engine.assign(10, role_name)
            clock.advance(seconds=1)

        latest = await assignment_engine.get_history(10, limit=2)
        assert [h["role_name"] for h in latest] == ["Analyst", "Sponsor"]

        only_voter = await assignment_engine.get_history(10, role_name="Voter")
        assert [h["role_name"] for h in only_voter] == ["Voter"]

    @pytest.mark.asyncio
    async def test_history_rejects_bad_user_id(self, assignment_engine):
        with pytest.raises(ValidationError):
            await assignment_engine.get_history(0)

    @pytest.mark.asyncio
    async def test_rows_are_stamped_with_fixed_clock(self, assignment_engine, seeded, clock):
        row = await assignment_engine.assign(10, "Voter")
        assert isinstance(row.assigned_at, datetime)
        assert row.assigned_at == datetime(2026, 1, 1, 12, 0, 0)
