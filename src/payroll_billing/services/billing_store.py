"""Insert-if-absent persistence for auto-generated billing items and their logs."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_billing.calculators.types import (
    FeeLine,
    ServiceConfig,
    end_of_month,
    quantize_amount,
)
from payroll_billing.models import (
    GENERATED_FROM_COMPLETION,
    GENERATED_FROM_RECURRING,
    BillingEventLog,
    BillingItem,
    RecurringBillingLog,
)

logger = logging.getLogger(__name__)


class BillingStore:
    """Writes auto-generated billing items without ever updating them in place.

    Key invariants:
    1. Each insert runs in its own savepoint; a uniqueness violation means the
       item already exists and is reported as None, not raised.
    2. Audit/log appends are best-effort and never fail the caller.
    3. Completion items are only ever deleted by source tag, never recurring ones.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def existing_service_codes(
        self,
        client_id: UUID,
        billing_month: date,
        generated_from: str = GENERATED_FROM_RECURRING,
        service_code: str | None = None,
    ) -> set[str]:
        """Service codes already billed for a client and period start."""
        query = select(BillingItem.service_code).where(
            BillingItem.client_id == client_id,
            BillingItem.billing_period_start == billing_month,
            BillingItem.generated_from == generated_from,
        )
        if service_code:
            query = query.where(BillingItem.service_code == service_code)
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def _insert_if_absent(self, item: BillingItem) -> BillingItem | None:
        try:
            async with self.session.begin_nested():
                self.session.add(item)
                await self.session.flush()
        except IntegrityError:
            logger.info(
                "Billing item %s for client %s (%s, %s) already exists",
                item.service_code,
                item.client_id,
                item.generated_from,
                item.billing_period_start,
            )
            return None
        return item

    async def insert_recurring_item(
        self,
        *,
        client_id: UUID,
        client_name: str,
        service: ServiceConfig,
        amount: Decimal,
        billing_month: date,
        prorated: bool,
        created_by_user_id: UUID | None = None,
    ) -> BillingItem | None:
        """Insert one recurring-schedule item, or return None if already billed."""
        amount = quantize_amount(amount)
        month_label = billing_month.strftime("%B %Y")
        description = f"{service.service_name} - {month_label}"
        if prorated:
            description += " (Pro-rated)"

        item = BillingItem(
            client_id=client_id,
            service_code=service.service_code,
            service_name=service.service_name,
            description=description,
            quantity=Decimal("1"),
            unit_price=amount,
            total_amount=amount,
            billing_period_start=billing_month,
            billing_period_end=end_of_month(billing_month),
            auto_generated=True,
            generated_from=GENERATED_FROM_RECURRING,
            billing_tier="recurring",
            status="approved" if service.auto_approval else "draft",
            requires_approval=not service.auto_approval,
            approval_level="auto" if service.auto_approval else "review",
            rate_justification=(
                f"Pro-rated {service.service_name} for partial month"
                if prorated
                else f"Standard recurring {service.service_name} fee"
            ),
            created_by_user_id=created_by_user_id,
        )
        inserted = await self._insert_if_absent(item)
        if inserted is not None:
            logger.debug(
                "Created recurring item %s for %s: %s", service.service_code, client_name, amount
            )
        return inserted

    async def insert_completion_item(
        self,
        *,
        client_id: UUID,
        payroll_date_id: UUID,
        line: FeeLine,
        period_start: date,
        created_by_user_id: UUID | None = None,
    ) -> BillingItem | None:
        """Insert one completion-metrics item, or return None if it exists."""
        item = BillingItem(
            client_id=client_id,
            payroll_date_id=payroll_date_id,
            service_code=line.service_code,
            service_name=line.service_name,
            description=f"{line.service_name} - {line.quantity.normalize():f} x {line.unit_price}",
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_amount=line.amount,
            billing_period_start=period_start,
            billing_period_end=end_of_month(period_start),
            auto_generated=True,
            generated_from=GENERATED_FROM_COMPLETION,
            billing_tier="tier1",
            status="approved" if line.auto_approval else "draft",
            requires_approval=not line.auto_approval,
            approval_level="auto" if line.auto_approval else "review",
            rate_justification=f"Volume fee for {line.metric.replace('_', ' ')}",
            created_by_user_id=created_by_user_id,
        )
        return await self._insert_if_absent(item)

    async def completion_items(self, payroll_date_id: UUID) -> list[BillingItem]:
        result = await self.session.execute(
            select(BillingItem)
            .where(
                BillingItem.payroll_date_id == payroll_date_id,
                BillingItem.auto_generated.is_(True),
                BillingItem.generated_from == GENERATED_FROM_COMPLETION,
            )
            .order_by(BillingItem.service_code)
        )
        return list(result.scalars().all())

    async def delete_completion_items(self, payroll_date_id: UUID) -> int:
        """Delete auto-generated completion items for one payroll date."""
        result = await self.session.execute(
            delete(BillingItem)
            .where(
                BillingItem.payroll_date_id == payroll_date_id,
                BillingItem.auto_generated.is_(True),
                BillingItem.generated_from == GENERATED_FROM_COMPLETION,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def append_recurring_log(
        self,
        *,
        client_id: UUID,
        service_code: str,
        billing_month: date,
        billing_item_id: UUID | None,
        amount: Decimal,
        prorated: bool,
        proration_reason: str | None,
    ) -> bool:
        """Append a recurring billing log row. Returns False if the append failed."""
        try:
            async with self.session.begin_nested():
                self.session.add(
                    RecurringBillingLog(
                        client_id=client_id,
                        service_code=service_code,
                        billing_month=billing_month,
                        billing_item_id=billing_item_id,
                        amount=quantize_amount(amount),
                        prorated=prorated,
                        proration_reason=proration_reason,
                        generated_by_system=True,
                    )
                )
                await self.session.flush()
        except Exception:
            logger.exception(
                "Failed to log recurring billing for client %s service %s",
                client_id,
                service_code,
            )
            return False
        return True

    async def record_event(
        self,
        event_type: str,
        message: str,
        metadata: dict[str, Any] | None = None,
        created_by_user_id: UUID | None = None,
    ) -> bool:
        """Append a billing event log row. Returns False if the append failed."""
        try:
            async with self.session.begin_nested():
                self.session.add(
                    BillingEventLog(
                        event_type=event_type,
                        message=message,
                        metadata_json=metadata or {},
                        created_by_user_id=created_by_user_id,
                    )
                )
                await self.session.flush()
        except Exception:
            logger.exception("Failed to log billing event %s", event_type)
            return False
        return True
