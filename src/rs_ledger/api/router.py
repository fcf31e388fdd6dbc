"""rs_ledger REST API — the caller's own balance, history and gifts."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.database import get_db_session
from src.rs_common.response import ApiResponse, success_response
from src.rs_gateway.auth.dependencies import require_account_holder, require_guest
from src.rs_ledger.application.schemas import GiftRequest
from src.rs_ledger.application.service import LedgerApplicationService
from src.rs_outbox.application.relay import deliver_outbox

router = APIRouter(prefix="/ledger", tags=["ledger"])

_service = LedgerApplicationService()


@router.get("/balance")
async def get_balance(
    actor: Annotated[Actor, Depends(require_account_holder)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_balance(db, actor)
    return success_response(data.model_dump(), request)


@router.get("/transactions")
async def list_transactions(
    actor: Annotated[Actor, Depends(require_account_holder)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    type: str | None = Query(None, description="Filter by transaction type"),
) -> ApiResponse:
    data = await _service.list_transactions(db, actor, cursor, limit, type)
    return success_response(data.model_dump(), request)


@router.post("/gifts")
async def send_gift(
    body: GiftRequest,
    actor: Annotated[Actor, Depends(require_guest)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    background_tasks: BackgroundTasks,
    request: Request,
) -> ApiResponse:
    data = await _service.gift(db, actor, body.cast_id, body.points, body.message)
    background_tasks.add_task(deliver_outbox)
    return success_response(data.model_dump(), request)
