"""Recurring billing generation endpoint."""

import logging
from datetime import date

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from payroll_billing.api.dependencies import DbSession
from payroll_billing.api.schemas import (
    ErrorResponse,
    RecurringBillingItemResponse,
    RecurringBillingRequest,
    RecurringBillingResponse,
)
from payroll_billing.calculators.proration import validate_billing_month
from payroll_billing.exceptions import InvalidBillingMonthError
from payroll_billing.services.eligibility import (
    StandardEligibilityPolicy,
    load_service_catalog,
)
from payroll_billing.services.recurring_billing import (
    RecurringBillingGenerator,
    RecurringBillingResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing/recurring", tags=["billing"])


def parse_billing_month(value: str) -> date:
    """Parse YYYY-MM-DD and require the 1st of a month."""
    try:
        billing_month = date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidBillingMonthError(value)
    validate_billing_month(billing_month)
    return billing_month


def to_response(result: RecurringBillingResult) -> RecurringBillingResponse:
    return RecurringBillingResponse(
        success=result.success,
        billing_month=result.billing_month.isoformat(),
        items_created=result.items_created,
        total_amount=result.total_amount,
        clients_processed=result.clients_processed,
        errors=result.errors,
        warnings=result.warnings,
        items=[
            RecurringBillingItemResponse(
                client_id=item.client_id,
                client_name=item.client_name,
                service_code=item.service_code,
                service_name=item.service_name,
                amount=item.amount,
                prorated=item.prorated,
                proration_reason=item.proration_reason,
            )
            for item in result.items
        ],
        cancelled=result.cancelled,
    )


@router.post(
    "/generate",
    response_model=RecurringBillingResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": RecurringBillingResponse},
    },
)
async def generate_recurring_billing(
    db: DbSession,
    payload: RecurringBillingRequest,
) -> RecurringBillingResponse | JSONResponse:
    """Generate recurring service fees for every eligible client and service."""
    try:
        billing_month = parse_billing_month(payload.billing_month)
    except InvalidBillingMonthError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        catalog = await load_service_catalog(db)
        generator = RecurringBillingGenerator(
            db, policy=StandardEligibilityPolicy(catalog)
        )
        result = await generator.generate(
            billing_month,
            client_ids=payload.client_ids,
            service_code=payload.service_code,
            dry_run=payload.dry_run,
        )
        if payload.dry_run:
            await db.rollback()
        else:
            await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("Recurring billing generation failed for %s", billing_month)
        failed = RecurringBillingResponse(
            success=False,
            billing_month=payload.billing_month,
            errors=[str(e)],
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=failed.model_dump(mode="json", by_alias=True),
        )

    return to_response(result)
