"""006: create outbox_events table

Revision ID: 006
Revises: 005
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE outbox_events (
            id              BIGSERIAL       PRIMARY KEY,
            event_type      VARCHAR(50)     NOT NULL,
            payload         JSONB           NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'pending',
            attempts        INT             NOT NULL DEFAULT 0,
            last_error      TEXT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            delivered_at    TIMESTAMPTZ,
            CONSTRAINT ck_outbox_status CHECK (status IN ('pending', 'delivered', 'failed'))
        );
    """)
    op.execute("CREATE INDEX idx_outbox_pending ON outbox_events (id) WHERE status = 'pending';")
    op.execute(
        "COMMENT ON TABLE outbox_events IS "
        "'Side-effect intents written with the state change, delivered after commit';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS outbox_events CASCADE;")
