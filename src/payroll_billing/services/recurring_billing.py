"""Monthly recurring billing generation with proration and idempotency."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_billing.calculators.proration import (
    calculate_fee_amount,
    describe_proration,
    validate_billing_month,
)
from payroll_billing.calculators.types import (
    ZERO,
    ClientActivityWindow,
    ServiceConfig,
    quantize_amount,
)
from payroll_billing.config import SYSTEM_USER_ID
from payroll_billing.models import GENERATED_FROM_RECURRING, Client
from payroll_billing.models.base import utcnow
from payroll_billing.services.billing_store import BillingStore
from payroll_billing.services.eligibility import (
    ClientActivityProvider,
    LifecycleActivityProvider,
    ServiceEligibilityPolicy,
    StandardEligibilityPolicy,
)

logger = logging.getLogger(__name__)

FeeCalculator = Callable[[ServiceConfig, date, ClientActivityWindow], Decimal]


@dataclass(frozen=True)
class GeneratedItem:
    """One billed (or, in a dry run, billable) service for a client."""

    client_id: UUID
    client_name: str
    service_code: str
    service_name: str
    amount: Decimal
    prorated: bool
    proration_reason: str | None = None


@dataclass
class RecurringBillingResult:
    """Outcome of a recurring billing run."""

    billing_month: date
    success: bool = True
    items_created: int = 0
    total_amount: Decimal = ZERO
    clients_processed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    items: list[GeneratedItem] = field(default_factory=list)
    cancelled: bool = False

    def add_item(self, item: GeneratedItem) -> None:
        self.items.append(item)
        self.items_created += 1
        self.total_amount += item.amount


class RecurringBillingGenerator:
    """Generates one billing item per eligible client/service/month.

    Key invariants:
    1. Re-running for the same month creates nothing new (storage uniqueness
       plus a pre-read of already billed codes).
    2. A failure for one client or service is recorded and the run continues.
    3. A dry run computes the same items without writing anything.
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: ServiceEligibilityPolicy | None = None,
        activity_provider: ClientActivityProvider | None = None,
        fee_calculator: FeeCalculator = calculate_fee_amount,
        clock: Callable[[], datetime] = utcnow,
        created_by_user_id: UUID = SYSTEM_USER_ID,
    ):
        self.session = session
        self.store = BillingStore(session)
        self.policy = policy or StandardEligibilityPolicy()
        self.activity_provider = activity_provider or LifecycleActivityProvider()
        self.fee_calculator = fee_calculator
        self.clock = clock
        self.created_by_user_id = created_by_user_id

    async def generate(
        self,
        billing_month: date,
        client_ids: Sequence[UUID] | None = None,
        service_code: str | None = None,
        dry_run: bool = False,
        deadline: datetime | None = None,
    ) -> RecurringBillingResult:
        """Generate recurring items for billing_month.

        Raises InvalidBillingMonthError before touching storage when
        billing_month is not the 1st of a month. Stops before the next client
        once deadline has passed and marks the result cancelled.
        """
        validate_billing_month(billing_month)
        logger.info(
            "Generating recurring billing for %s (dry_run=%s, service_code=%s)",
            billing_month,
            dry_run,
            service_code,
        )

        clients = await self._load_clients(client_ids)
        result = RecurringBillingResult(billing_month=billing_month)

        for index, client in enumerate(clients):
            if deadline is not None and self.clock() >= deadline:
                remaining = len(clients) - index
                result.cancelled = True
                result.warnings.append(
                    f"Deadline reached - {remaining} client(s) not processed"
                )
                logger.warning(
                    "Recurring billing for %s stopped at deadline with %d clients left",
                    billing_month,
                    remaining,
                )
                break

            result.clients_processed += 1
            try:
                await self._process_client(
                    client, billing_month, service_code, dry_run, result
                )
            except Exception as e:
                logger.exception("Recurring billing failed for client %s", client.id)
                result.errors.append(f"Client {client.name}: {e}")

        if not dry_run and result.items_created > 0:
            await self.store.record_event(
                "recurring_billing_generated",
                f"Generated {result.items_created} recurring billing items for "
                f"{billing_month.strftime('%B %Y')}",
                {
                    "billing_month": billing_month.isoformat(),
                    "items_created": result.items_created,
                    "total_amount": str(result.total_amount),
                    "clients_processed": result.clients_processed,
                    "errors": len(result.errors),
                    "warnings": len(result.warnings),
                    "cancelled": result.cancelled,
                },
                created_by_user_id=self.created_by_user_id,
            )

        logger.info(
            "Recurring billing for %s: %d items, total %s, %d clients, %d errors",
            billing_month,
            result.items_created,
            result.total_amount,
            result.clients_processed,
            len(result.errors),
        )
        return result

    async def _load_clients(self, client_ids: Sequence[UUID] | None) -> list[Client]:
        query = select(Client).where(Client.active.is_(True)).order_by(Client.name)
        if client_ids:
            query = query.where(Client.id.in_(list(client_ids)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _process_client(
        self,
        client: Client,
        billing_month: date,
        service_code: str | None,
        dry_run: bool,
        result: RecurringBillingResult,
    ) -> None:
        activity = await self.activity_provider.window_for(client, billing_month)
        if not activity.active:
            result.warnings.append(
                f"{client.name}: not active in {billing_month.strftime('%B %Y')} - skipping"
            )
            return

        services = await self.policy.services_for(client)
        if service_code:
            services = [s for s in services if s.service_code == service_code]
        if not services:
            return

        billed = await self.store.existing_service_codes(
            client.id, billing_month, GENERATED_FROM_RECURRING, service_code
        )

        for service in services:
            if service.service_code in billed:
                logger.debug(
                    "%s already billed for %s in %s",
                    service.service_code,
                    client.name,
                    billing_month,
                )
                continue
            try:
                await self._bill_service(
                    client, service, billing_month, activity, dry_run, result
                )
            except Exception as e:
                logger.exception(
                    "Recurring billing failed for client %s service %s",
                    client.id,
                    service.service_code,
                )
                result.errors.append(f"{client.name} - {service.service_code}: {e}")

    async def _bill_service(
        self,
        client: Client,
        service: ServiceConfig,
        billing_month: date,
        activity: ClientActivityWindow,
        dry_run: bool,
        result: RecurringBillingResult,
    ) -> None:
        amount = quantize_amount(self.fee_calculator(service, billing_month, activity))
        if amount <= ZERO:
            result.warnings.append(
                f"{client.name}: {service.service_code} calculated $0 - skipping"
            )
            return

        prorated, reason = describe_proration(service, amount)

        if not dry_run:
            item = await self.store.insert_recurring_item(
                client_id=client.id,
                client_name=client.name,
                service=service,
                amount=amount,
                billing_month=billing_month,
                prorated=prorated,
                created_by_user_id=self.created_by_user_id,
            )
            if item is None:
                result.warnings.append(
                    f"{client.name}: {service.service_code} already billed for "
                    f"{billing_month.isoformat()} - skipping"
                )
                return
            await self.store.append_recurring_log(
                client_id=client.id,
                service_code=service.service_code,
                billing_month=billing_month,
                billing_item_id=item.id,
                amount=amount,
                prorated=prorated,
                proration_reason=reason,
            )

        result.add_item(
            GeneratedItem(
                client_id=client.id,
                client_name=client.name,
                service_code=service.service_code,
                service_name=service.service_name,
                amount=amount,
                prorated=prorated,
                proration_reason=reason,
            )
        )
