"""Tests for payroll versioning and date regeneration."""

import logging
from datetime import date
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import select

from payroll_billing.exceptions import (
    PayrollVersionConflictError,
    PayrollVersionValidationError,
)
from payroll_billing.models import Payroll, PayrollDate, PayrollNote
from payroll_billing.services import versioning
from payroll_billing.services.date_regeneration import (
    RegenerationOutcome,
    ScheduleDateRegenerationService,
)
from payroll_billing.services.versioning import (
    PayrollVersionManager,
    get_version_reason,
    regeneration_boundary,
    requires_versioning,
)

pytestmark = pytest.mark.asyncio

TODAY = date(2025, 3, 10)


@pytest.fixture
def manager(session):
    return PayrollVersionManager(
        session,
        date_regeneration=ScheduleDateRegenerationService(session, horizon_months=3),
        clock=lambda: TODAY,
    )


@pytest.fixture
async def v1_dates(session, monthly_payroll):
    """Jan-Jun 2025 end-of-month dates owned by version 1."""
    service = ScheduleDateRegenerationService(session, horizon_months=6)
    created = await service.generate_dates(monthly_payroll, date(2025, 1, 1))
    assert created == 6
    return created


async def dates_for(session, payroll_id):
    result = await session.execute(
        select(PayrollDate)
        .where(PayrollDate.payroll_id == payroll_id)
        .order_by(PayrollDate.adjusted_eft_date)
    )
    return list(result.scalars().all())


def snapshot_of(payroll: Payroll, **overrides):
    """Detached copy of a payroll's versioned fields."""
    values = {
        name: getattr(payroll, name)
        for name in (
            "id",
            "parent_payroll_id",
            "version_number",
            *versioning.VERSIONED_FIELDS,
        )
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestEffectiveDateClamping:
    """Supersession boundary never lies in the past."""

    async def test_past_go_live_clamps_to_today(
        self, session, manager, monthly_payroll, v1_dates, user_id
    ):
        result = await manager.create_version(
            monthly_payroll, {"employee_count": 15}, date(2025, 3, 9), None, user_id
        )

        await session.refresh(monthly_payroll)
        new_version = await session.get(Payroll, result.new_version_id)

        assert monthly_payroll.superseded_date == TODAY
        assert new_version.go_live_date == date(2025, 3, 9)
        assert new_version.superseded_date is None
        assert result.date_regeneration_info.go_live_date_in_past is True
        assert result.date_regeneration_info.regeneration_start_date == TODAY

    async def test_go_live_today_is_not_in_past(self, session, manager, monthly_payroll, user_id):
        result = await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)

        await session.refresh(monthly_payroll)
        assert monthly_payroll.superseded_date == TODAY
        assert result.date_regeneration_info.go_live_date_in_past is False

    async def test_future_go_live_is_kept(self, session, manager, monthly_payroll, v1_dates, user_id):
        go_live = date(2025, 4, 15)
        result = await manager.create_version(monthly_payroll, {}, go_live, None, user_id)

        await session.refresh(monthly_payroll)
        assert monthly_payroll.superseded_date == go_live
        assert result.date_regeneration_info.go_live_date_in_past is False
        assert result.date_regeneration_info.regeneration_start_date == go_live
        assert result.date_regeneration_info.dates_removed == 3

    def test_regeneration_boundary(self):
        assert regeneration_boundary(date(2025, 1, 1), TODAY) == TODAY
        assert regeneration_boundary(TODAY, TODAY) == TODAY
        assert regeneration_boundary(date(2025, 5, 1), TODAY) == date(2025, 5, 1)


class TestVersionResult:
    """Result reflects what was persisted."""

    async def test_result_fields(self, session, manager, monthly_payroll, user_id):
        result = await manager.create_version(
            monthly_payroll, {"employee_count": 15}, date(2025, 3, 9), None, user_id
        )

        assert result.success is True
        assert result.version_number == 2
        assert result.old_payroll_id == monthly_payroll.id
        assert result.employee_count == 15
        assert result.message == "Version 2 created with 15 employees"

        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.parent_payroll_id == monthly_payroll.id
        assert new_version.version_reason == "correction"
        assert new_version.name == "Acme Monthly"
        assert new_version.created_by_user_id == user_id

    async def test_explicit_reason_is_recorded(self, session, manager, monthly_payroll, user_id):
        result = await manager.create_version(
            monthly_payroll, {}, TODAY, "client_request", user_id
        )
        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.version_reason == "client_request"

    async def test_defaults_apply_when_both_values_absent(
        self, session, manager, monthly_payroll, user_id
    ):
        snapshot = snapshot_of(
            monthly_payroll, processing_days_before_eft=None, employee_count=None, status=None
        )
        result = await manager.create_version(snapshot, {}, TODAY, None, user_id)

        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.processing_days_before_eft == 4
        assert new_version.employee_count == 0
        assert new_version.status == "Implementation"
        assert result.message == "Version 2 created with 0 employees"

    async def test_current_values_carry_over(self, session, manager, monthly_payroll, user_id):
        result = await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)
        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.employee_count == 12
        assert new_version.status == "Active"
        assert new_version.cycle_id == monthly_payroll.cycle_id


    async def test_explicit_none_clears_field(self, session, manager, monthly_payroll, user_id):
        monthly_payroll.backup_consultant_user_id = uuid4()
        monthly_payroll.manager_user_id = uuid4()
        await session.flush()

        result = await manager.create_version(
            monthly_payroll, {"backup_consultant_user_id": None}, TODAY, None, user_id
        )

        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.backup_consultant_user_id is None
        assert new_version.manager_user_id == monthly_payroll.manager_user_id

    async def test_explicit_none_on_counts_uses_defaults(
        self, session, manager, monthly_payroll, user_id
    ):
        result = await manager.create_version(
            monthly_payroll, {"employee_count": None}, TODAY, None, user_id
        )
        new_version = await session.get(Payroll, result.new_version_id)
        assert new_version.employee_count == 0
        assert new_version.status == "Active"


class TestChainIntegrity:
    """Repeated edits keep one current version per chain."""

    async def test_multiple_versions(self, session, manager, monthly_payroll, user_id):
        current = monthly_payroll
        go_lives = [date(2025, 4, 1), date(2025, 5, 1), date(2025, 6, 1)]
        for go_live in go_lives:
            result = await manager.create_version(current, {}, go_live, None, user_id)
            current = await session.get(Payroll, result.new_version_id)

        history = await manager.get_version_history(monthly_payroll.id)
        for version in history:
            await session.refresh(version)

        assert [v.version_number for v in history] == [1, 2, 3, 4]
        assert {v.parent_payroll_id for v in history} == {monthly_payroll.id}
        assert [v.superseded_date for v in history] == [*go_lives, None]

        latest = await manager.get_current_version(history[1].id)
        assert latest.id == current.id

    async def test_stale_snapshot_conflicts(self, session, manager, monthly_payroll, user_id):
        stale = snapshot_of(monthly_payroll)
        await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)

        with pytest.raises(PayrollVersionConflictError) as exc_info:
            await manager.create_version(stale, {}, TODAY, None, user_id)
        assert exc_info.value.payroll_id == monthly_payroll.id

        history = await manager.get_version_history(monthly_payroll.id)
        assert len(history) == 2


class TestValidation:
    """Invalid requests are rejected before any write."""

    async def test_requires_created_by(self, manager, monthly_payroll):
        with pytest.raises(PayrollVersionValidationError) as exc_info:
            await manager.create_version(monthly_payroll, {}, TODAY, None, None)
        assert str(exc_info.value) == "Created by user ID is required for payroll versioning"

    async def test_requires_client(self, session, manager, monthly_payroll, user_id):
        snapshot = snapshot_of(monthly_payroll, client_id=None)
        with pytest.raises(PayrollVersionValidationError) as exc_info:
            await manager.create_version(snapshot, {}, TODAY, None, user_id)
        assert "client assigned" in exc_info.value.reason

        await session.refresh(monthly_payroll)
        assert monthly_payroll.superseded_date is None

    async def test_requires_cycle(self, manager, monthly_payroll, user_id):
        snapshot = snapshot_of(monthly_payroll, cycle_id=None)
        with pytest.raises(PayrollVersionValidationError, match="cycle assigned"):
            await manager.create_version(snapshot, {}, TODAY, None, user_id)

    async def test_clearing_client_is_rejected(self, manager, monthly_payroll, user_id):
        with pytest.raises(PayrollVersionValidationError, match="client assigned"):
            await manager.create_version(monthly_payroll, {"client_id": None}, TODAY, None, user_id)

    async def test_clearing_name_is_rejected(self, manager, monthly_payroll, user_id):
        with pytest.raises(PayrollVersionValidationError, match="name is required"):
            await manager.create_version(monthly_payroll, {"name": None}, TODAY, None, user_id)

    async def test_rejects_unknown_fields(self, manager, monthly_payroll, user_id):
        with pytest.raises(PayrollVersionValidationError, match="superseded_date"):
            await manager.create_version(
                monthly_payroll, {"superseded_date": TODAY}, TODAY, None, user_id
            )

    async def test_requires_go_live(self, manager, monthly_payroll, user_id):
        with pytest.raises(PayrollVersionValidationError):
            await manager.create_version(monthly_payroll, {}, None, None, user_id)


class TestDateRegeneration:
    """Dates on/after the boundary move to the new version."""

    async def test_future_dates_move_to_new_version(
        self, session, manager, monthly_payroll, v1_dates, user_id
    ):
        result = await manager.create_version(monthly_payroll, {}, date(2025, 3, 9), None, user_id)

        old_dates = await dates_for(session, monthly_payroll.id)
        new_dates = await dates_for(session, result.new_version_id)

        assert [d.adjusted_eft_date for d in old_dates] == [date(2025, 1, 31), date(2025, 2, 28)]
        assert [d.adjusted_eft_date for d in new_dates] == [
            date(2025, 3, 31),
            date(2025, 4, 30),
            date(2025, 5, 30),
        ]
        info = result.date_regeneration_info
        assert (info.dates_removed, info.dates_generated) == (4, 3)

    async def test_completed_dates_stay_with_history(
        self, session, manager, monthly_payroll, v1_dates, user_id
    ):
        april = (await dates_for(session, monthly_payroll.id))[3]
        assert april.adjusted_eft_date == date(2025, 4, 30)
        april.status = "completed"
        await session.flush()

        result = await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)

        old_dates = await dates_for(session, monthly_payroll.id)
        assert date(2025, 4, 30) in [d.adjusted_eft_date for d in old_dates]
        assert result.date_regeneration_info.dates_removed == 3

    async def test_schedule_change_uses_new_date_type(
        self, session, manager, monthly_payroll, date_types, user_id
    ):
        edits = {"date_type_id": date_types["fixed_date"].id, "date_value": 15}
        result = await manager.create_version(monthly_payroll, edits, TODAY, None, user_id)

        new_version = await session.get(Payroll, result.new_version_id)
        new_dates = await dates_for(session, result.new_version_id)

        assert new_version.version_reason == "schedule_change"
        assert [d.original_eft_date for d in new_dates] == [
            date(2025, 3, 15),
            date(2025, 4, 15),
            date(2025, 5, 15),
        ]
        # 2025-03-15 is a Saturday
        assert new_dates[0].adjusted_eft_date == date(2025, 3, 14)

    async def test_earlier_version_replaces_pending_future_version(
        self, session, manager, monthly_payroll, v1_dates, user_id
    ):
        august = await manager.create_version(
            monthly_payroll, {}, date(2025, 8, 1), None, user_id
        )
        v2 = await session.get(Payroll, august.new_version_id)
        assert len(await dates_for(session, v2.id)) == 3

        april = await manager.create_version(v2, {}, date(2025, 4, 1), None, user_id)

        v1_owned = [d.adjusted_eft_date for d in await dates_for(session, monthly_payroll.id)]
        v3_owned = [d.adjusted_eft_date for d in await dates_for(session, april.new_version_id)]
        assert v1_owned == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31)]
        assert await dates_for(session, v2.id) == []
        assert v3_owned == [date(2025, 4, 30), date(2025, 5, 30), date(2025, 6, 30)]
        assert april.date_regeneration_info.dates_removed == 6

        history = await manager.get_version_history(monthly_payroll.id)
        for version in history:
            await session.refresh(version)
        assert [v.superseded_date for v in history] == [
            date(2025, 4, 1),
            date(2025, 4, 1),
            None,
        ]

    async def test_injected_regeneration_service(self, session, monthly_payroll, user_id):
        calls = []

        class RecordingRegeneration:
            async def regenerate(self, old_payroll, new_payroll, boundary):
                calls.append((old_payroll.id, new_payroll.id, boundary))
                return RegenerationOutcome(dates_removed=1, dates_generated=2)

        manager = PayrollVersionManager(
            session, date_regeneration=RecordingRegeneration(), clock=lambda: TODAY
        )
        result = await manager.create_version(
            monthly_payroll, {}, date(2025, 5, 1), None, user_id
        )

        assert calls == [(monthly_payroll.id, result.new_version_id, date(2025, 5, 1))]
        assert result.date_regeneration_info.dates_generated == 2


class TestProcessingNote:
    """Each version gets a best-effort processing note."""

    async def test_note_is_attached(self, session, manager, monthly_payroll, user_id):
        result = await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)

        note = (
            await session.execute(
                select(PayrollNote).where(PayrollNote.payroll_id == result.new_version_id)
            )
        ).scalar_one()
        assert note.content.startswith("Version 2 created (correction)")

    async def test_note_failure_does_not_fail_version(
        self, session, manager, monthly_payroll, user_id, monkeypatch, caplog, count_rows
    ):
        def broken_note(**kwargs):
            raise RuntimeError("notes table unavailable")

        monkeypatch.setattr(versioning, "PayrollNote", broken_note)

        with caplog.at_level(logging.ERROR, logger="payroll_billing.services.versioning"):
            result = await manager.create_version(monthly_payroll, {}, TODAY, None, user_id)

        assert result.success is True
        assert await session.get(Payroll, result.new_version_id) is not None
        assert await count_rows(PayrollNote) == 0
        assert "Failed to attach processing note" in caplog.text


class TestQueriesAndStatus:
    """History queries and status-only updates."""

    async def test_update_status_only(self, session, manager, monthly_payroll, count_rows):
        assert await manager.update_status_only(monthly_payroll.id, "Inactive") is True
        await session.refresh(monthly_payroll)

        assert monthly_payroll.status == "Inactive"
        assert await count_rows(Payroll) == 1

    async def test_unknown_payroll(self, manager):
        assert await manager.get_version_history(uuid4()) == []
        assert await manager.get_current_version(uuid4()) is None
        assert await manager.update_status_only(uuid4(), "Active") is False

    async def test_create_payroll_starts_chain(
        self, session, manager, test_client, cycles, date_types, user_id
    ):
        payroll = await manager.create_payroll(
            {
                "name": "Acme Weekly",
                "client_id": test_client.id,
                "cycle_id": cycles["weekly"].id,
                "date_type_id": date_types["dow"].id,
                "date_value": 5,
            },
            date(2025, 4, 1),
            user_id,
        )

        assert payroll.parent_payroll_id == payroll.id
        assert payroll.version_number == 1
        assert payroll.processing_days_before_eft == 4
        assert payroll.status == "Implementation"


class TestVersioningHelpers:
    """Change classification helpers."""

    def test_requires_versioning(self):
        original = SimpleNamespace(cycle_id="a", date_type_id="b", date_value=1, client_id="c")
        assert requires_versioning(original, {"cycle_id": "z"}) is True
        assert requires_versioning(original, {"cycle_id": "a"}) is False
        assert requires_versioning(original, {"name": "Renamed"}) is False

    def test_get_version_reason_priority(self):
        assert get_version_reason({"date_value": 5, "client_id": "x"}) == "schedule_change"
        assert get_version_reason({"client_id": "x"}) == "client_change"
        assert get_version_reason({"manager_user_id": "m"}) == "consultant_change"
        assert get_version_reason({"employee_count": 3}) == "correction"
