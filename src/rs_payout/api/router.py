"""rs_payout REST API.

`router`: the cast's own payout summary and instant requests.
`webhook_router`: processor callbacks, authenticated by signature, not JWT.
`admin_router`: reconciliation and the monthly scheduled-payout jobs.
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.database import get_db_session
from src.rs_common.response import ApiResponse, success_response
from src.rs_gateway.auth.dependencies import require_admin, require_cast
from src.rs_outbox.application.relay import deliver_outbox
from src.rs_payout.application.schemas import (
    ClosePeriodRequest,
    DispatchRequest,
    InstantPayoutRequest,
    ReconcileRequest,
)
from src.rs_payout.application.service import PayoutApplicationService

router = APIRouter(prefix="/payouts", tags=["payouts"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin/payouts", tags=["admin"])

payout_service = PayoutApplicationService()


@router.get("/summary")
async def get_summary(
    actor: Annotated[Actor, Depends(require_cast)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await payout_service.get_summary(db, actor)
    return success_response(data.model_dump(), request)


@router.post("/instant", status_code=201)
async def request_instant_payout(
    body: InstantPayoutRequest,
    actor: Annotated[Actor, Depends(require_cast)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await payout_service.request_instant_payout(db, actor, body.amount, body.memo)
    return success_response(data.model_dump(), request)


@webhook_router.post("/processor")
async def processor_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> ApiResponse:
    # the signature covers the exact bytes, so the body is read raw
    payload = await request.body()
    data = await payout_service.handle_webhook(db, payload, stripe_signature)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@admin_router.post("/reconcile")
async def reconcile(
    body: ReconcileRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await payout_service.reconcile_stale_payouts(
        db, actor, timedelta(minutes=body.older_than_minutes), body.limit
    )
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@admin_router.post("/close-period")
async def close_period(
    body: ClosePeriodRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await payout_service.close_monthly_period(db, actor, body.period_end)
    return success_response(data.model_dump(), request)


@admin_router.post("/dispatch")
async def dispatch(
    body: DispatchRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await payout_service.dispatch_due_payouts(db, actor, body.run_date, body.limit)
    return success_response(data.model_dump(), request)
