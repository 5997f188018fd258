"""Immutable payroll versioning: supersede, insert, reassign future dates."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_billing.exceptions import (
    PayrollVersionConflictError,
    PayrollVersionValidationError,
)
from payroll_billing.models import Payroll, PayrollNote
from payroll_billing.models.base import utcnow
from payroll_billing.models.payroll import (
    DEFAULT_EMPLOYEE_COUNT,
    DEFAULT_PAYROLL_STATUS,
    DEFAULT_PROCESSING_DAYS_BEFORE_EFT,
    VERSIONED_FIELDS,
)
from payroll_billing.services.date_regeneration import (
    DateRegenerationService,
    ScheduleDateRegenerationService,
)

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ("cycle_id", "date_type_id", "date_value")
CONSULTANT_FIELDS = (
    "primary_consultant_user_id",
    "backup_consultant_user_id",
    "manager_user_id",
)
# Changing any of these means the date schedule must be rebuilt
VERSIONING_FIELDS = (*SCHEDULE_FIELDS, "client_id")

_FIELD_DEFAULTS: dict[str, Any] = {
    "processing_days_before_eft": DEFAULT_PROCESSING_DAYS_BEFORE_EFT,
    "employee_count": DEFAULT_EMPLOYEE_COUNT,
    "status": DEFAULT_PAYROLL_STATUS,
}


def requires_versioning(original: Any, changes: Mapping[str, Any]) -> bool:
    """Whether changes touch schedule or client fields with a new value."""
    return any(
        changes.get(name) is not None and changes[name] != getattr(original, name, None)
        for name in VERSIONING_FIELDS
    )


def get_version_reason(changes: Mapping[str, Any]) -> str:
    """Classify an edit as schedule, client, consultant change or correction."""
    if any(changes.get(name) for name in SCHEDULE_FIELDS):
        return "schedule_change"
    if changes.get("client_id"):
        return "client_change"
    if any(changes.get(name) for name in CONSULTANT_FIELDS):
        return "consultant_change"
    return "correction"


def regeneration_boundary(go_live_date: date, today: date) -> date:
    """Date from which the new version owns payroll dates.

    Go-live dates in the past are clamped to today so history is never
    rewritten.
    """
    return today if go_live_date <= today else go_live_date


@dataclass(frozen=True)
class DateRegenerationInfo:
    """How payroll dates were reassigned for a new version."""

    go_live_date_in_past: bool
    regeneration_start_date: date
    dates_removed: int = 0
    dates_generated: int = 0


@dataclass(frozen=True)
class VersionResult:
    """Outcome of creating a payroll version."""

    success: bool
    new_version_id: UUID
    version_number: int
    old_payroll_id: UUID
    employee_count: int
    date_regeneration_info: DateRegenerationInfo
    message: str


class PayrollVersionManager:
    """Creates payroll versions without ever editing a version in place.

    Key invariants:
    1. A chain has exactly one current version (superseded_date IS NULL).
    2. The supersede is conditional on the snapshot still being current, so
       a stale snapshot fails with PayrollVersionConflictError.
    3. Dates on/after the boundary move to the new version in the same
       transaction; the processing note is best-effort.
    4. A version with an earlier go-live than a pending future version
       replaces it from the boundary on.
    """

    def __init__(
        self,
        session: AsyncSession,
        date_regeneration: DateRegenerationService | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.session = session
        self.date_regeneration = date_regeneration or ScheduleDateRegenerationService(
            session
        )
        self.clock = clock

    # =========================================================================
    # Version creation
    # =========================================================================

    async def create_payroll(
        self,
        fields: Mapping[str, Any],
        go_live_date: date,
        created_by_user_id: UUID,
    ) -> Payroll:
        """Create version 1 of a new payroll chain."""
        self._check_fields(None, fields)
        if not created_by_user_id:
            raise PayrollVersionValidationError(
                None, "Created by user ID is required for payroll versioning"
            )
        values = {name: fields.get(name) for name in VERSIONED_FIELDS}
        for name, default in _FIELD_DEFAULTS.items():
            if values[name] is None:
                values[name] = default

        payroll = Payroll.new_chain(
            go_live_date=go_live_date,
            version_reason="initial",
            created_by_user_id=created_by_user_id,
            **values,
        )
        self.session.add(payroll)
        await self.session.flush()
        logger.info("Created payroll chain %s (%s)", payroll.id, payroll.name)
        return payroll

    async def create_version(
        self,
        current_payroll: Any,
        edits: Mapping[str, Any],
        go_live_date: date | None,
        version_reason: str | None,
        created_by_user_id: UUID | None,
    ) -> VersionResult:
        """Supersede current_payroll and insert a new version with edits applied.

        current_payroll must be a fully-resolved snapshot of the current
        version (a Payroll row or any object with the same attributes).
        """
        payroll_id = getattr(current_payroll, "id", None)
        self._validate(current_payroll, edits, go_live_date, created_by_user_id)

        today = self.clock()
        boundary = regeneration_boundary(go_live_date, today)
        values = self._merge_fields(current_payroll, edits)
        reason = version_reason or get_version_reason(edits)

        logger.info(
            "Creating version of payroll %s effective %s (go-live %s, reason %s)",
            payroll_id,
            boundary,
            go_live_date,
            reason,
        )

        # 1. Supersede, only if nobody else already did
        superseded = await self.session.execute(
            update(Payroll)
            .where(Payroll.id == payroll_id, Payroll.superseded_date.is_(None))
            .values(superseded_date=boundary, updated_at=utcnow())
        )
        if superseded.rowcount == 0:
            raise PayrollVersionConflictError(payroll_id)

        # Pending future versions end where this one takes over
        chain_id = current_payroll.parent_payroll_id or payroll_id
        await self.session.execute(
            update(Payroll)
            .where(
                Payroll.parent_payroll_id == chain_id,
                Payroll.superseded_date > boundary,
            )
            .values(superseded_date=boundary, updated_at=utcnow())
        )

        # 2. Insert the new version
        new_version = Payroll(
            id=uuid4(),
            parent_payroll_id=chain_id,
            version_number=(current_payroll.version_number or 1) + 1,
            go_live_date=go_live_date,
            superseded_date=None,
            version_reason=reason,
            created_by_user_id=created_by_user_id,
            **values,
        )
        self.session.add(new_version)
        await self.session.flush()

        # 3. Move future dates to the new version
        outcome = await self.date_regeneration.regenerate(
            current_payroll, new_version, boundary
        )

        # 4. Processing note
        await self._attach_note(new_version, reason, go_live_date, boundary)

        return VersionResult(
            success=True,
            new_version_id=new_version.id,
            version_number=new_version.version_number,
            old_payroll_id=payroll_id,
            employee_count=new_version.employee_count,
            date_regeneration_info=DateRegenerationInfo(
                go_live_date_in_past=go_live_date < today,
                regeneration_start_date=boundary,
                dates_removed=outcome.dates_removed,
                dates_generated=outcome.dates_generated,
            ),
            message=(
                f"Version {new_version.version_number} created with "
                f"{new_version.employee_count} employees"
            ),
        )

    def _check_fields(self, payroll_id: UUID | None, fields: Mapping[str, Any]) -> None:
        unknown = sorted(set(fields) - set(VERSIONED_FIELDS))
        if unknown:
            raise PayrollVersionValidationError(
                payroll_id, f"Unknown payroll fields: {', '.join(unknown)}"
            )

    def _validate(
        self,
        current_payroll: Any,
        edits: Mapping[str, Any],
        go_live_date: date | None,
        created_by_user_id: UUID | None,
    ) -> None:
        payroll_id = getattr(current_payroll, "id", None)
        if payroll_id is None:
            raise PayrollVersionValidationError(None, "Current payroll snapshot has no id")
        self._check_fields(payroll_id, edits)
        if not self._resolved(current_payroll, edits, "name"):
            raise PayrollVersionValidationError(payroll_id, "Payroll name is required")
        if not self._resolved(current_payroll, edits, "client_id"):
            raise PayrollVersionValidationError(
                payroll_id, "Payroll must have a client assigned before creating a version"
            )
        if not self._resolved(current_payroll, edits, "cycle_id"):
            raise PayrollVersionValidationError(
                payroll_id, "Payroll must have a cycle assigned before creating a version"
            )
        if not created_by_user_id:
            raise PayrollVersionValidationError(
                payroll_id, "Created by user ID is required for payroll versioning"
            )
        if go_live_date is None:
            raise PayrollVersionValidationError(
                payroll_id, "Go-live date is required for payroll versioning"
            )

    @staticmethod
    def _resolved(current_payroll: Any, edits: Mapping[str, Any], name: str) -> Any:
        if name in edits:
            return edits[name]
        return getattr(current_payroll, name, None)

    def _merge_fields(self, current_payroll: Any, edits: Mapping[str, Any]) -> dict[str, Any]:
        """Current values overlaid with every field present in edits.

        A field present with None is cleared; only the non-nullable counts
        and status fall back to their defaults.
        """
        values: dict[str, Any] = {}
        for name in VERSIONED_FIELDS:
            value = self._resolved(current_payroll, edits, name)
            if value is None:
                value = _FIELD_DEFAULTS.get(name)
            values[name] = value
        return values

    async def _attach_note(
        self, payroll: Payroll, reason: str, go_live_date: date, boundary: date
    ) -> None:
        content = (
            f"Version {payroll.version_number} created ({reason}). "
            f"Go-live {go_live_date.isoformat()}; dates regenerated from "
            f"{boundary.isoformat()}."
        )
        try:
            async with self.session.begin_nested():
                self.session.add(
                    PayrollNote(
                        payroll_id=payroll.id,
                        content=content,
                        created_by_user_id=payroll.created_by_user_id,
                    )
                )
                await self.session.flush()
        except Exception:
            logger.exception("Failed to attach processing note to payroll %s", payroll.id)

    # =========================================================================
    # Queries and status
    # =========================================================================

    async def _chain_id(self, payroll_id: UUID) -> UUID | None:
        result = await self.session.execute(
            select(Payroll.parent_payroll_id).where(Payroll.id == payroll_id)
        )
        return result.scalar_one_or_none()

    async def get_version_history(self, payroll_id: UUID) -> list[Payroll]:
        """All versions in payroll_id's chain, oldest first."""
        chain_id = await self._chain_id(payroll_id)
        if chain_id is None:
            return []
        result = await self.session.execute(
            select(Payroll)
            .where(Payroll.parent_payroll_id == chain_id)
            .order_by(Payroll.version_number)
        )
        return list(result.scalars().all())

    async def get_current_version(self, payroll_id: UUID) -> Payroll | None:
        """The unsuperseded version of payroll_id's chain."""
        chain_id = await self._chain_id(payroll_id)
        if chain_id is None:
            return None
        result = await self.session.execute(
            select(Payroll).where(
                Payroll.parent_payroll_id == chain_id,
                Payroll.superseded_date.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def update_status_only(self, payroll_id: UUID, status: str) -> bool:
        """Change a version's status in place without creating a new version."""
        result = await self.session.execute(
            update(Payroll)
            .where(Payroll.id == payroll_id)
            .values(status=status, updated_at=utcnow())
        )
        if result.rowcount == 0:
            return False
        logger.info("Payroll %s status set to %s", payroll_id, status)
        return True
