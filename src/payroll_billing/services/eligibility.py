"""Service catalog, per-client service eligibility, and client activity windows."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_billing.calculators.types import ClientActivityWindow, ServiceConfig
from payroll_billing.models import Client, RecurringService

# Standard recurring services applied when the catalog table has no override
STANDARD_SERVICES: dict[str, ServiceConfig] = {
    "MONTHLY_SERVICE": ServiceConfig(
        service_code="MONTHLY_SERVICE",
        service_name="Monthly Servicing Fee",
        base_rate=Decimal("150.00"),
        new_client_proration=True,
        termination_proration=True,
        minimum_charge=Decimal("50.00"),
        auto_approval=True,
        description="Base client relationship fee covering account management and support",
    ),
    "SYSTEM_MAINTENANCE": ServiceConfig(
        service_code="SYSTEM_MAINTENANCE",
        service_name="System Maintenance Fee",
        base_rate=Decimal("75.00"),
        new_client_proration=False,
        termination_proration=True,
        auto_approval=True,
        description="Technology platform maintenance and infrastructure costs",
    ),
    "COMPLIANCE_MONITORING": ServiceConfig(
        service_code="COMPLIANCE_MONITORING",
        service_name="Compliance Monitoring Fee",
        base_rate=Decimal("50.00"),
        new_client_proration=True,
        termination_proration=True,
        auto_approval=True,
        description="Ongoing compliance monitoring and regulatory updates",
    ),
    "PREMIUM_SUPPORT": ServiceConfig(
        service_code="PREMIUM_SUPPORT",
        service_name="Premium Support Package",
        base_rate=Decimal("200.00"),
        new_client_proration=True,
        termination_proration=True,
        minimum_charge=Decimal("100.00"),
        auto_approval=False,
        description="Priority support and dedicated account manager",
    ),
    "DATA_BACKUP_SECURITY": ServiceConfig(
        service_code="DATA_BACKUP_SECURITY",
        service_name="Data Backup & Security Package",
        base_rate=Decimal("100.00"),
        new_client_proration=True,
        termination_proration=True,
        minimum_charge=Decimal("50.00"),
        auto_approval=True,
        description="Enhanced data backup and security monitoring",
    ),
}

BASE_SERVICE_CODES = ("MONTHLY_SERVICE", "SYSTEM_MAINTENANCE")
TENURE_SERVICE_CODES = ("COMPLIANCE_MONITORING",)
# Clients onboarded after this date also receive the tenure services
TENURE_CUTOFF = date(2024, 1, 1)


async def load_service_catalog(session: AsyncSession) -> dict[str, ServiceConfig]:
    """Standard services overlaid with active rows from recurring_service."""
    catalog = dict(STANDARD_SERVICES)
    result = await session.execute(
        select(RecurringService).where(RecurringService.active.is_(True))
    )
    for row in result.scalars().all():
        catalog[row.service_code] = ServiceConfig.from_model(row)
    return catalog


class ServiceEligibilityPolicy(Protocol):
    """Decides which recurring services apply to a client."""

    async def services_for(self, client: Client) -> list[ServiceConfig]: ...


class ClientActivityProvider(Protocol):
    """Supplies a client's activity window for a billing month."""

    async def window_for(self, client: Client, billing_month: date) -> ClientActivityWindow: ...


def _onboarded_on(client: Client) -> date | None:
    created = client.created_at
    if isinstance(created, datetime):
        return created.date()
    return created


class StandardEligibilityPolicy:
    """Base services for every client plus tenure-keyed services.

    Codes missing from the catalog are ignored, so a trimmed catalog simply
    bills fewer services.
    """

    def __init__(
        self,
        catalog: Mapping[str, ServiceConfig] | None = None,
        base_codes: tuple[str, ...] = BASE_SERVICE_CODES,
        tenure_codes: tuple[str, ...] = TENURE_SERVICE_CODES,
        tenure_cutoff: date = TENURE_CUTOFF,
    ):
        self.catalog = dict(catalog) if catalog is not None else dict(STANDARD_SERVICES)
        self.base_codes = base_codes
        self.tenure_codes = tenure_codes
        self.tenure_cutoff = tenure_cutoff

    async def services_for(self, client: Client) -> list[ServiceConfig]:
        codes = list(self.base_codes)
        onboarded = _onboarded_on(client)
        if onboarded is not None and onboarded > self.tenure_cutoff:
            codes.extend(self.tenure_codes)
        return [self.catalog[code] for code in codes if code in self.catalog]


class LifecycleActivityProvider:
    """Derives activity windows from Client.started_on / terminated_on."""

    async def window_for(self, client: Client, billing_month: date) -> ClientActivityWindow:
        return ClientActivityWindow.for_month(
            billing_month, client.started_on, client.terminated_on
        )
