"""Payroll completion metrics and tier-1 billing endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from payroll_billing.api.dependencies import DbSession
from payroll_billing.api.schemas import (
    BillingItemResponse,
    CompletionMetricsDetailResponse,
    CompletionMetricsRecord,
    CompletionMetricsRequest,
    CompletionMetricsResponse,
    ErrorResponse,
)
from payroll_billing.calculators.completion_fees import CompletionMetricsInput
from payroll_billing.exceptions import (
    CompletionMetricsExistError,
    CompletionMetricsNotFoundError,
    CompletionMetricsValidationError,
    PayrollDateNotFoundError,
)
from payroll_billing.services.completion_billing import (
    CompletionMetricsOutcome,
    CompletionMetricsService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing/tier1", tags=["billing"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def to_metrics_input(payload: CompletionMetricsRequest) -> CompletionMetricsInput:
    values = payload.metrics.model_dump()
    return CompletionMetricsInput(
        **{name: value for name, value in values.items() if value is not None}
    )


def to_response(outcome: CompletionMetricsOutcome) -> CompletionMetricsResponse:
    return CompletionMetricsResponse(
        success=outcome.success,
        metrics_id=outcome.metrics_id,
        billing_generated=outcome.billing_generated,
        items_created=outcome.items_created,
        total_amount=outcome.total_amount,
        message=outcome.message,
    )


# ============================================================================
# Create / update
# ============================================================================


@router.post(
    "/completion-metrics",
    response_model=CompletionMetricsResponse,
    responses=ERROR_RESPONSES,
)
async def create_completion_metrics(
    db: DbSession,
    payload: CompletionMetricsRequest,
) -> CompletionMetricsResponse:
    """Record completion metrics, complete the payroll date, and bill it."""
    if not payload.payroll_date_id or not payload.completed_by:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payroll Date ID and Completed By are required",
        )

    service = CompletionMetricsService(db)
    generate_billing = True if payload.generate_billing is None else payload.generate_billing
    try:
        outcome = await service.create(
            payload.payroll_date_id,
            payload.completed_by,
            to_metrics_input(payload),
            generate_billing=generate_billing,
        )
        await db.commit()
    except CompletionMetricsValidationError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PayrollDateNotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CompletionMetricsExistError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return to_response(outcome)


@router.put(
    "/completion-metrics",
    response_model=CompletionMetricsResponse,
    responses=ERROR_RESPONSES,
)
async def update_completion_metrics(
    db: DbSession,
    payload: CompletionMetricsRequest,
) -> CompletionMetricsResponse:
    """Update completion metrics, optionally regenerating their billing."""
    if not payload.payroll_date_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payroll Date ID is required",
        )

    service = CompletionMetricsService(db)
    try:
        outcome = await service.update(
            payload.payroll_date_id,
            payload.completed_by,
            to_metrics_input(payload),
            generate_billing=bool(payload.generate_billing),
        )
        await db.commit()
    except CompletionMetricsValidationError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except CompletionMetricsNotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return to_response(outcome)


# ============================================================================
# Read
# ============================================================================


@router.get(
    "/completion-metrics",
    response_model=CompletionMetricsDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_completion_metrics(
    db: DbSession,
    payroll_date_id: UUID = Query(alias="payrollDateId"),
) -> CompletionMetricsDetailResponse:
    """Get recorded metrics and billing items for a payroll date."""
    service = CompletionMetricsService(db)
    metrics, items = await service.get(payroll_date_id)
    if metrics is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Completion metrics not found",
        )

    return CompletionMetricsDetailResponse(
        metrics=CompletionMetricsRecord.model_validate(metrics),
        billing_items=[BillingItemResponse.model_validate(item) for item in items],
    )
