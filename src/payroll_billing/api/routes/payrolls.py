"""Payroll version endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from payroll_billing.api.dependencies import DbSession
from payroll_billing.api.schemas import (
    CreateVersionRequest,
    DateRegenerationInfoResponse,
    ErrorResponse,
    PayrollVersionListResponse,
    PayrollVersionResponse,
    VersionResponse,
)
from payroll_billing.exceptions import (
    PayrollVersionConflictError,
    PayrollVersionValidationError,
)
from payroll_billing.models import Payroll
from payroll_billing.services.versioning import PayrollVersionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payrolls", tags=["payrolls"])


@router.get(
    "/{payroll_id}/versions",
    response_model=PayrollVersionListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_payroll_versions(
    db: DbSession,
    payroll_id: UUID = Path(...),
) -> PayrollVersionListResponse:
    """List every version in the payroll's chain, oldest first."""
    versions = await PayrollVersionManager(db).get_version_history(payroll_id)
    if not versions:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payroll not found",
        )
    return PayrollVersionListResponse(
        items=[PayrollVersionResponse.model_validate(v) for v in versions],
        total=len(versions),
    )


@router.post(
    "/{payroll_id}/versions",
    response_model=VersionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def create_payroll_version(
    db: DbSession,
    payload: CreateVersionRequest,
    payroll_id: UUID = Path(...),
) -> VersionResponse:
    """Create a new version of a payroll effective from the go-live date.

    payroll_id must be the current version; editing a superseded version
    returns 409.
    """
    manager = PayrollVersionManager(db)
    current = await db.get(Payroll, payroll_id)
    if current is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payroll not found",
        )

    try:
        result = await manager.create_version(
            current,
            payload.edit_values(),
            payload.go_live_date,
            payload.version_reason,
            payload.created_by_user_id,
        )
        await db.commit()
    except PayrollVersionValidationError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PayrollVersionConflictError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    info = result.date_regeneration_info
    return VersionResponse(
        success=result.success,
        new_version_id=result.new_version_id,
        version_number=result.version_number,
        old_payroll_id=result.old_payroll_id,
        employee_count=result.employee_count,
        date_regeneration_info=DateRegenerationInfoResponse(
            go_live_date_in_past=info.go_live_date_in_past,
            regeneration_start_date=info.regeneration_start_date,
            dates_removed=info.dates_removed,
            dates_generated=info.dates_generated,
        ),
        message=result.message,
    )
