"""Tests for the recurring billing generator."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from payroll_billing.calculators.types import ServiceConfig
from payroll_billing.exceptions import InvalidBillingMonthError
from payroll_billing.models import BillingEventLog, BillingItem, RecurringBillingLog
from payroll_billing.services.billing_store import BillingStore
from payroll_billing.services.eligibility import (
    STANDARD_SERVICES,
    LifecycleActivityProvider,
    StandardEligibilityPolicy,
)
from payroll_billing.services.recurring_billing import RecurringBillingGenerator

pytestmark = pytest.mark.asyncio

JUNE = date(2025, 6, 1)


class OneServicePolicy:
    """Bills a single fixed service to every client."""

    def __init__(self, service: ServiceConfig):
        self.service = service

    async def services_for(self, client):
        return [self.service]


class TestGeneration:
    """Basic generation and proration through the generator."""

    async def test_bills_base_services_for_legacy_client(self, session, test_client):
        result = await RecurringBillingGenerator(session).generate(JUNE)

        assert result.success is True
        assert result.clients_processed == 1
        assert result.items_created == 2
        assert result.total_amount == Decimal("225.00")
        assert {item.service_code for item in result.items} == {
            "MONTHLY_SERVICE",
            "SYSTEM_MAINTENANCE",
        }

        items = (await session.execute(select(BillingItem))).scalars().all()
        assert len(items) == 2
        for item in items:
            assert item.auto_generated is True
            assert item.generated_from == "recurring_schedule"
            assert item.billing_period_start == JUNE
            assert item.billing_period_end == date(2025, 6, 30)
            assert item.status == "approved"
            assert item.approval_level == "auto"

    async def test_recent_client_gets_compliance_monitoring(self, session, make_client):
        await make_client("Newco", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
        result = await RecurringBillingGenerator(session).generate(JUNE)
        assert "COMPLIANCE_MONITORING" in {item.service_code for item in result.items}

    async def test_mid_month_start_is_prorated(self, session, make_client):
        await make_client("Starter", started_on=date(2025, 6, 16))
        result = await RecurringBillingGenerator(session).generate(
            JUNE, service_code="MONTHLY_SERVICE"
        )

        assert len(result.items) == 1
        item = result.items[0]
        assert item.amount == Decimal("75.00")
        assert item.prorated is True
        assert item.proration_reason == "Pro-rated for partial month"

        row = (await session.execute(select(BillingItem))).scalar_one()
        assert row.description == "Monthly Servicing Fee - June 2025 (Pro-rated)"
        assert row.rate_justification == "Pro-rated Monthly Servicing Fee for partial month"

    async def test_manual_approval_service_is_draft(self, session, test_client):
        generator = RecurringBillingGenerator(
            session, policy=OneServicePolicy(STANDARD_SERVICES["PREMIUM_SUPPORT"])
        )
        await generator.generate(JUNE)

        row = (await session.execute(select(BillingItem))).scalar_one()
        assert row.status == "draft"
        assert row.requires_approval is True
        assert row.approval_level == "review"

    async def test_client_filter(self, session, make_client):
        first = await make_client("Alpha")
        await make_client("Beta")
        result = await RecurringBillingGenerator(session).generate(JUNE, client_ids=[first.id])
        assert result.clients_processed == 1
        assert {item.client_name for item in result.items} == {"Alpha"}

    async def test_inactive_clients_skipped(self, session, make_client):
        await make_client("Dormant", active=False)
        result = await RecurringBillingGenerator(session).generate(JUNE)
        assert result.clients_processed == 0
        assert result.items_created == 0

    async def test_client_starting_after_month_not_billed(self, session, make_client, count_rows):
        await make_client("Future", started_on=date(2025, 8, 1))
        result = await RecurringBillingGenerator(session).generate(JUNE)

        assert result.items_created == 0
        assert result.errors == []
        assert result.warnings == ["Future: not active in June 2025 - skipping"]
        assert await count_rows(BillingItem) == 0

    async def test_client_terminated_before_month_not_billed(self, session, make_client):
        await make_client("Gone", terminated_on=date(2025, 4, 15))
        await make_client("Stays")
        result = await RecurringBillingGenerator(session).generate(JUNE)

        assert result.clients_processed == 2
        assert {item.client_name for item in result.items} == {"Stays"}
        assert result.warnings == ["Gone: not active in June 2025 - skipping"]

    async def test_zero_amount_is_warning(self, session, test_client):
        free = ServiceConfig(service_code="FREE", service_name="Free", base_rate=Decimal("0"))
        result = await RecurringBillingGenerator(session, policy=OneServicePolicy(free)).generate(JUNE)

        assert result.items_created == 0
        assert result.errors == []
        assert result.warnings == ["Acme Pty Ltd: FREE calculated $0 - skipping"]

    async def test_catalog_missing_codes_are_ignored(self, session, test_client):
        policy = StandardEligibilityPolicy(
            catalog={"MONTHLY_SERVICE": STANDARD_SERVICES["MONTHLY_SERVICE"]}
        )
        result = await RecurringBillingGenerator(session, policy=policy).generate(JUNE)
        assert [item.service_code for item in result.items] == ["MONTHLY_SERVICE"]


class TestValidation:
    """Invalid billing months fail before any work is done."""

    async def test_rejects_non_first_of_month(self, session, test_client, count_rows):
        with pytest.raises(InvalidBillingMonthError):
            await RecurringBillingGenerator(session).generate(date(2025, 6, 15))
        assert await count_rows(BillingItem) == 0


class TestIdempotency:
    """Re-running a month creates nothing new."""

    async def test_second_run_creates_nothing(self, session, test_client, count_rows):
        generator = RecurringBillingGenerator(session)
        first = await generator.generate(JUNE)
        second = await generator.generate(JUNE)

        assert first.items_created == 2
        assert second.items_created == 0
        assert second.total_amount == Decimal("0")
        assert await count_rows(BillingItem) == 2
        assert await count_rows(RecurringBillingLog) == 2

    async def test_unique_index_reports_already_billed(self, session, test_client, count_rows):
        """A concurrent insert that slips past the pre-read is a warning."""
        generator = RecurringBillingGenerator(session)
        await generator.generate(JUNE)

        async def nothing_billed(*args, **kwargs):
            return set()

        generator.store.existing_service_codes = nothing_billed
        result = await generator.generate(JUNE)

        assert result.items_created == 0
        assert result.errors == []
        assert len(result.warnings) == 2
        assert all("already billed" in w for w in result.warnings)
        assert await count_rows(BillingItem) == 2

    async def test_store_insert_if_absent(self, session, test_client):
        store = BillingStore(session)
        kwargs = dict(
            client_id=test_client.id,
            client_name=test_client.name,
            service=STANDARD_SERVICES["MONTHLY_SERVICE"],
            amount=Decimal("150"),
            billing_month=JUNE,
            prorated=False,
        )
        assert await store.insert_recurring_item(**kwargs) is not None
        assert await store.insert_recurring_item(**kwargs) is None

    async def test_summary_event_only_when_items_created(self, session, test_client, count_rows):
        generator = RecurringBillingGenerator(session)
        await generator.generate(JUNE)
        await generator.generate(JUNE)

        events = (await session.execute(select(BillingEventLog))).scalars().all()
        assert len(events) == 1
        assert events[0].event_type == "recurring_billing_generated"
        assert events[0].metadata_json["items_created"] == 2
        assert events[0].metadata_json["total_amount"] == "225.00"


class TestDryRun:
    """Dry runs compute the same items and write nothing."""

    async def test_dry_run_matches_real_run(self, session, make_client, count_rows):
        await make_client("Alpha")
        await make_client("Beta", started_on=date(2025, 6, 16))
        generator = RecurringBillingGenerator(session)

        dry = await generator.generate(JUNE, dry_run=True)
        assert await count_rows(BillingItem) == 0
        assert await count_rows(RecurringBillingLog) == 0
        assert await count_rows(BillingEventLog) == 0

        real = await generator.generate(JUNE)
        assert dry.items == real.items
        assert dry.total_amount == real.total_amount
        assert dry.items_created == real.items_created


class TestFailureIsolation:
    """One client's failure never stops the run."""

    async def test_failing_client_is_recorded_and_skipped(self, session, make_client):
        await make_client("Alpha")
        broken = await make_client("Beta")
        await make_client("Gamma")

        class BrokenProvider:
            async def window_for(self, client, billing_month):
                if client.id == broken.id:
                    raise RuntimeError("lifecycle history unavailable")
                return await LifecycleActivityProvider().window_for(client, billing_month)

        generator = RecurringBillingGenerator(
            session,
            policy=OneServicePolicy(STANDARD_SERVICES["MONTHLY_SERVICE"]),
            activity_provider=BrokenProvider(),
        )
        result = await generator.generate(JUNE)

        assert result.clients_processed == 3
        assert result.errors == ["Client Beta: lifecycle history unavailable"]
        assert {item.client_name for item in result.items} == {"Alpha", "Gamma"}

    async def test_failing_service_is_recorded(self, session, test_client):
        def calculator(service, billing_month, activity):
            if service.service_code == "SYSTEM_MAINTENANCE":
                raise ValueError("rate table corrupt")
            return service.base_rate

        result = await RecurringBillingGenerator(session, fee_calculator=calculator).generate(JUNE)

        assert result.errors == ["Acme Pty Ltd - SYSTEM_MAINTENANCE: rate table corrupt"]
        assert [item.service_code for item in result.items] == ["MONTHLY_SERVICE"]


class TestDeadline:
    """Runs stop cleanly at the deadline."""

    async def test_stops_before_next_client(self, session, make_client):
        for name in ("Alpha", "Beta", "Gamma"):
            await make_client(name)

        deadline = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)
        ticks = iter([deadline - timedelta(seconds=1), deadline + timedelta(seconds=1)])
        generator = RecurringBillingGenerator(session, clock=lambda: next(ticks))

        result = await generator.generate(JUNE, deadline=deadline)

        assert result.cancelled is True
        assert result.clients_processed == 1
        assert {item.client_name for item in result.items} == {"Alpha"}
        assert result.warnings == ["Deadline reached - 2 client(s) not processed"]

    async def test_resume_after_cancel_finishes_remaining(self, session, make_client, count_rows):
        for name in ("Alpha", "Beta"):
            await make_client(name)

        past = datetime(2000, 1, 1, tzinfo=timezone.utc)
        cancelled = await RecurringBillingGenerator(session).generate(JUNE, deadline=past)
        assert cancelled.cancelled is True
        assert cancelled.clients_processed == 0

        resumed = await RecurringBillingGenerator(session).generate(JUNE)
        assert resumed.cancelled is False
        assert resumed.items_created == 4
        assert await count_rows(BillingItem) == 4
