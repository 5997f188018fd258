"""API routes."""

from payroll_billing.api.routes.completion_metrics import router as completion_metrics_router
from payroll_billing.api.routes.health import router as health_router
from payroll_billing.api.routes.payrolls import router as payrolls_router
from payroll_billing.api.routes.recurring_billing import router as recurring_billing_router

__all__ = [
    "completion_metrics_router",
    "health_router",
    "payrolls_router",
    "recurring_billing_router",
]
