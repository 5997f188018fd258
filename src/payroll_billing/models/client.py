"""Client model."""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_billing.models.base import Base, TimestampMixin


class Client(Base, TimestampMixin):
    """A payroll-services client.

    started_on/terminated_on carry the lifecycle history used to derive a
    client's activity window within a billing month.
    """

    __tablename__ = "client"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    started_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    terminated_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "terminated_on IS NULL OR started_on IS NULL OR terminated_on >= started_on",
            name="client_lifecycle_dates_check",
        ),
    )
