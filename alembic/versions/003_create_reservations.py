"""003: create reservations and reservation_applications tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE reservations (
            id                  VARCHAR(64)     PRIMARY KEY,
            guest_id            VARCHAR(64)     NOT NULL REFERENCES guests (id),
            type                VARCHAR(20)     NOT NULL,
            duration_minutes    INT             NOT NULL,
            scheduled_at        TIMESTAMPTZ     NOT NULL,
            location            VARCHAR(100),
            active              BOOLEAN         NOT NULL DEFAULT TRUE,
            cast_id             VARCHAR(64),
            cast_ids            TEXT[]          NOT NULL DEFAULT '{}',
            started_at          TIMESTAMPTZ,
            ended_at            TIMESTAMPTZ,
            points_earned       BIGINT,
            points_shortfall    BIGINT          NOT NULL DEFAULT 0,
            cancelled_at        TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_reservations_type     CHECK (type IN ('standard', 'free', 'pishatto')),
            CONSTRAINT ck_reservations_duration CHECK (duration_minutes > 0),
            CONSTRAINT ck_reservations_ended    CHECK (ended_at IS NULL OR started_at IS NOT NULL)
        );
    """)
    op.execute("CREATE INDEX idx_reservations_guest ON reservations (guest_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_reservations_open
        ON reservations (scheduled_at)
        WHERE active = TRUE AND cancelled_at IS NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_reservations_updated_at
            BEFORE UPDATE ON reservations
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE reservations IS 'Reservations — active=FALSE once matched or cancelled';")

    op.execute("""
        CREATE TABLE reservation_applications (
            id                  VARCHAR(64)     PRIMARY KEY,
            reservation_id      VARCHAR(64)     NOT NULL REFERENCES reservations (id),
            cast_id             VARCHAR(64)     NOT NULL REFERENCES casts (id),
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            applied_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            approved_at         TIMESTAMPTZ,
            approved_by         VARCHAR(64),
            rejected_at         TIMESTAMPTZ,
            rejected_by         VARCHAR(64),
            rejection_reason    VARCHAR(500),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_application_reservation_cast UNIQUE (reservation_id, cast_id),
            CONSTRAINT ck_applications_status   CHECK (status IN ('pending', 'approved', 'rejected'))
        );
    """)
    op.execute("""
        CREATE INDEX idx_applications_pending
        ON reservation_applications (reservation_id)
        WHERE status = 'pending';
    """)
    op.execute("""
        CREATE TRIGGER trg_reservation_applications_updated_at
            BEFORE UPDATE ON reservation_applications
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE reservation_applications IS "
        "'Cast applications — status moves out of pending exactly once';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reservation_applications CASCADE;")
    op.execute("DROP TABLE IF EXISTS reservations CASCADE;")
