"""002: create guests and casts tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE guests (
            id              VARCHAR(64)     PRIMARY KEY,
            nickname        VARCHAR(100),
            points          BIGINT          NOT NULL DEFAULT 0,
            grade_points    BIGINT          NOT NULL DEFAULT 0,
            grade           VARCHAR(20),
            version         BIGINT          NOT NULL DEFAULT 0,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_guests_points_gte_0       CHECK (points >= 0),
            CONSTRAINT ck_guests_grade_points_gte_0 CHECK (grade_points >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_guests_updated_at
            BEFORE UPDATE ON guests
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE guests IS 'Guests — point balance spent on reservations and gifts';")

    op.execute("""
        CREATE TABLE casts (
            id                  VARCHAR(64)     PRIMARY KEY,
            nickname            VARCHAR(100),
            points              BIGINT          NOT NULL DEFAULT 0,
            grade_points        BIGINT          NOT NULL DEFAULT 0,
            grade               VARCHAR(20),
            version             BIGINT          NOT NULL DEFAULT 0,
            payout_account_ref  VARCHAR(64),
            payouts_enabled     BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_casts_points_gte_0        CHECK (points >= 0),
            CONSTRAINT ck_casts_grade_points_gte_0  CHECK (grade_points >= 0),
            CONSTRAINT ck_casts_grade               CHECK (
                grade IS NULL OR grade IN ('beginner', 'bronze', 'silver', 'gold', 'platinum')
            )
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_casts_payout_account_ref
        ON casts (payout_account_ref)
        WHERE payout_account_ref IS NOT NULL;
    """)
    op.execute("CREATE INDEX idx_casts_points ON casts (points) WHERE points > 0;")
    op.execute("""
        CREATE TRIGGER trg_casts_updated_at
            BEFORE UPDATE ON casts
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE casts IS 'Casts — earned points, paid out through the processor';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS casts CASCADE;")
    op.execute("DROP TABLE IF EXISTS guests CASCADE;")
