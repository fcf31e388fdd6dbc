"""ReservationRepository — raw SQL over reservations / reservation_applications.

Application transitions are conditional UPDATEs on status = 'pending'; a
result of 0 rows means another transaction got there first.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.errors import InternalError
from src.rs_reservation.domain.models import Reservation, ReservationApplication

_RESERVATION_COLUMNS = """
    id, guest_id, type, duration_minutes, scheduled_at, location, active,
    cast_id, cast_ids, started_at, ended_at, points_earned, points_shortfall,
    cancelled_at, created_at, updated_at
"""

_APPLICATION_COLUMNS = """
    id, reservation_id, cast_id, status, applied_at, approved_at, approved_by,
    rejected_at, rejected_by, rejection_reason
"""

# ---------------------------------------------------------------------------
# SQL: reservations
# ---------------------------------------------------------------------------

_INSERT_RESERVATION_SQL = text(f"""
    INSERT INTO reservations
        (id, guest_id, type, duration_minutes, scheduled_at, location, active)
    VALUES
        (:id, :guest_id, :type, :duration_minutes, :scheduled_at, :location, :active)
    RETURNING {_RESERVATION_COLUMNS}
""")

_GET_RESERVATION_SQL = text(f"""
    SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id = :id
""")

_GET_RESERVATION_FOR_UPDATE_SQL = text(f"""
    SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id = :id FOR UPDATE
""")

_SAVE_RESERVATION_SQL = text("""
    UPDATE reservations
    SET active = :active,
        cast_id = :cast_id,
        cast_ids = :cast_ids,
        started_at = :started_at,
        ended_at = :ended_at,
        points_earned = :points_earned,
        points_shortfall = :points_shortfall,
        cancelled_at = :cancelled_at,
        updated_at = NOW()
    WHERE id = :id
""")

# ---------------------------------------------------------------------------
# SQL: reservation_applications
# ---------------------------------------------------------------------------

_INSERT_APPLICATION_SQL = text(f"""
    INSERT INTO reservation_applications (id, reservation_id, cast_id, status, applied_at)
    VALUES (:id, :reservation_id, :cast_id, :status, :applied_at)
    ON CONFLICT (reservation_id, cast_id) DO NOTHING
    RETURNING {_APPLICATION_COLUMNS}
""")

_GET_APPLICATION_SQL = text(f"""
    SELECT {_APPLICATION_COLUMNS} FROM reservation_applications WHERE id = :id
""")

_APPROVE_APPLICATION_SQL = text(f"""
    UPDATE reservation_applications
    SET status = 'approved',
        approved_at = :now,
        approved_by = :actor_id,
        updated_at = NOW()
    WHERE id = :id AND status = 'pending'
    RETURNING {_APPLICATION_COLUMNS}
""")

_REJECT_APPLICATION_SQL = text(f"""
    UPDATE reservation_applications
    SET status = 'rejected',
        rejected_at = :now,
        rejected_by = :actor_id,
        rejection_reason = :reason,
        updated_at = NOW()
    WHERE id = :id AND status = 'pending'
    RETURNING {_APPLICATION_COLUMNS}
""")

_REJECT_PENDING_SQL = text(f"""
    UPDATE reservation_applications
    SET status = 'rejected',
        rejected_at = :now,
        rejected_by = :actor_id,
        rejection_reason = :reason,
        updated_at = NOW()
    WHERE reservation_id = :reservation_id AND status = 'pending'
    RETURNING {_APPLICATION_COLUMNS}
""")

_LIST_APPLICATIONS_SQL = text(f"""
    SELECT {_APPLICATION_COLUMNS}
    FROM reservation_applications
    WHERE reservation_id = :reservation_id
      AND (CAST(:status AS VARCHAR) IS NULL OR status = :status)
    ORDER BY applied_at, id
""")


def _row_to_reservation(row: object) -> Reservation:
    return Reservation(
        id=row.id,  # type: ignore[attr-defined]
        guest_id=row.guest_id,  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        duration_minutes=row.duration_minutes,  # type: ignore[attr-defined]
        scheduled_at=row.scheduled_at,  # type: ignore[attr-defined]
        location=row.location,  # type: ignore[attr-defined]
        active=row.active,  # type: ignore[attr-defined]
        cast_id=row.cast_id,  # type: ignore[attr-defined]
        cast_ids=list(row.cast_ids or []),  # type: ignore[attr-defined]
        started_at=row.started_at,  # type: ignore[attr-defined]
        ended_at=row.ended_at,  # type: ignore[attr-defined]
        points_earned=row.points_earned,  # type: ignore[attr-defined]
        points_shortfall=row.points_shortfall,  # type: ignore[attr-defined]
        cancelled_at=row.cancelled_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_application(row: object) -> ReservationApplication:
    return ReservationApplication(
        id=row.id,  # type: ignore[attr-defined]
        reservation_id=row.reservation_id,  # type: ignore[attr-defined]
        cast_id=row.cast_id,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        applied_at=row.applied_at,  # type: ignore[attr-defined]
        approved_at=row.approved_at,  # type: ignore[attr-defined]
        approved_by=row.approved_by,  # type: ignore[attr-defined]
        rejected_at=row.rejected_at,  # type: ignore[attr-defined]
        rejected_by=row.rejected_by,  # type: ignore[attr-defined]
        rejection_reason=row.rejection_reason,  # type: ignore[attr-defined]
    )


class ReservationRepository:
    async def insert_reservation(
        self, db: AsyncSession, reservation: Reservation
    ) -> Reservation:
        result = await db.execute(
            _INSERT_RESERVATION_SQL,
            {
                "id": reservation.id,
                "guest_id": reservation.guest_id,
                "type": reservation.type,
                "duration_minutes": reservation.duration_minutes,
                "scheduled_at": reservation.scheduled_at,
                "location": reservation.location,
                "active": reservation.active,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("reservations insert returned no rows")
        return _row_to_reservation(row)

    async def get_reservation(
        self, db: AsyncSession, reservation_id: str, for_update: bool = False
    ) -> Reservation | None:
        sql = _GET_RESERVATION_FOR_UPDATE_SQL if for_update else _GET_RESERVATION_SQL
        result = await db.execute(sql, {"id": reservation_id})
        row = result.fetchone()
        return _row_to_reservation(row) if row else None

    async def save_reservation(self, db: AsyncSession, reservation: Reservation) -> None:
        await db.execute(
            _SAVE_RESERVATION_SQL,
            {
                "id": reservation.id,
                "active": reservation.active,
                "cast_id": reservation.cast_id,
                "cast_ids": list(reservation.cast_ids),
                "started_at": reservation.started_at,
                "ended_at": reservation.ended_at,
                "points_earned": reservation.points_earned,
                "points_shortfall": reservation.points_shortfall,
                "cancelled_at": reservation.cancelled_at,
            },
        )

    async def insert_application(
        self, db: AsyncSession, application: ReservationApplication
    ) -> ReservationApplication | None:
        result = await db.execute(
            _INSERT_APPLICATION_SQL,
            {
                "id": application.id,
                "reservation_id": application.reservation_id,
                "cast_id": application.cast_id,
                "status": application.status,
                "applied_at": application.applied_at,
            },
        )
        row = result.fetchone()
        return _row_to_application(row) if row else None

    async def get_application(
        self, db: AsyncSession, application_id: str
    ) -> ReservationApplication | None:
        result = await db.execute(_GET_APPLICATION_SQL, {"id": application_id})
        row = result.fetchone()
        return _row_to_application(row) if row else None

    async def approve_application(
        self, db: AsyncSession, application_id: str, approved_by: str, now: datetime
    ) -> ReservationApplication | None:
        result = await db.execute(
            _APPROVE_APPLICATION_SQL,
            {"id": application_id, "actor_id": approved_by, "now": now},
        )
        row = result.fetchone()
        return _row_to_application(row) if row else None

    async def reject_application(
        self,
        db: AsyncSession,
        application_id: str,
        rejected_by: str,
        reason: str,
        now: datetime,
    ) -> ReservationApplication | None:
        result = await db.execute(
            _REJECT_APPLICATION_SQL,
            {"id": application_id, "actor_id": rejected_by, "reason": reason, "now": now},
        )
        row = result.fetchone()
        return _row_to_application(row) if row else None

    async def reject_pending(
        self,
        db: AsyncSession,
        reservation_id: str,
        rejected_by: str,
        reason: str,
        now: datetime,
    ) -> list[ReservationApplication]:
        result = await db.execute(
            _REJECT_PENDING_SQL,
            {
                "reservation_id": reservation_id,
                "actor_id": rejected_by,
                "reason": reason,
                "now": now,
            },
        )
        return [_row_to_application(row) for row in result.fetchall()]

    async def list_applications(
        self, db: AsyncSession, reservation_id: str, status: str | None = None
    ) -> list[ReservationApplication]:
        result = await db.execute(
            _LIST_APPLICATIONS_SQL, {"reservation_id": reservation_id, "status": status}
        )
        return [_row_to_application(row) for row in result.fetchall()]
