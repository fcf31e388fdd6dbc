"""rs_reservation REST API.

`router`: guest/cast facing (create, apply, read).
`admin_router`: matching and settlement decisions, admin only.
Every mutating endpoint schedules an outbox relay run after the response.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.database import get_db_session
from src.rs_common.response import ApiResponse, success_response
from src.rs_gateway.auth.dependencies import (
    get_current_actor,
    require_admin,
    require_cast,
    require_guest,
)
from src.rs_outbox.application.relay import deliver_outbox
from src.rs_reservation.application.schemas import (
    ApproveMultipleRequest,
    CompleteReservationRequest,
    CreateReservationRequest,
    RejectApplicationRequest,
    StartReservationRequest,
)
from src.rs_reservation.application.service import ReservationApplicationService

router = APIRouter(prefix="/reservations", tags=["reservations"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])

_service = ReservationApplicationService()


@router.post("", status_code=201)
async def create_reservation(
    body: CreateReservationRequest,
    actor: Annotated[Actor, Depends(require_guest)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.create_reservation(
        db, actor, body.type, body.duration_minutes, body.scheduled_at, body.location
    )
    return success_response(data.model_dump(), request)


@router.get("/{reservation_id}")
async def get_reservation(
    reservation_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_reservation(db, reservation_id)
    return success_response(data.model_dump(), request)


@router.post("/{reservation_id}/applications", status_code=201)
async def apply(
    reservation_id: str,
    actor: Annotated[Actor, Depends(require_cast)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.apply(db, actor, reservation_id)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@router.post("/{reservation_id}/cancel")
async def cancel_own_reservation(
    reservation_id: str,
    actor: Annotated[Actor, Depends(require_guest)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.cancel_reservation(db, actor, reservation_id)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@admin_router.get("/reservations/{reservation_id}/applications")
async def list_applications(
    reservation_id: str,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    status: str | None = Query(None, description="pending / approved / rejected"),
) -> ApiResponse:
    data = await _service.list_applications(db, reservation_id, status)
    return success_response([a.model_dump() for a in data], request)


@admin_router.post("/applications/{application_id}/approve")
async def approve_application(
    application_id: str,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.approve_single(db, actor, application_id)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@admin_router.post("/applications/{application_id}/reject")
async def reject_application(
    application_id: str,
    body: RejectApplicationRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.reject(db, actor, application_id, body.reason)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@admin_router.post("/reservations/{reservation_id}/approve-multiple")
async def approve_multiple(
    reservation_id: str,
    body: ApproveMultipleRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.approve_multiple(db, actor, reservation_id, body.cast_ids)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@admin_router.post("/reservations/{reservation_id}/start")
async def start_reservation(
    reservation_id: str,
    body: StartReservationRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.start_reservation(db, actor, reservation_id, body.started_at)
    return success_response(data.model_dump(), request)


@admin_router.post("/reservations/{reservation_id}/complete")
async def complete_reservation(
    reservation_id: str,
    body: CompleteReservationRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.complete_reservation(db, actor, reservation_id, body.ended_at)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)


@admin_router.post("/reservations/{reservation_id}/cancel")
async def cancel_reservation(
    reservation_id: str,
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.cancel_reservation(db, actor, reservation_id)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)
