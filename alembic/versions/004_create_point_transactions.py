"""004: create point_transactions table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE point_transactions (
            id                  BIGSERIAL       PRIMARY KEY,
            account_type        VARCHAR(10)     NOT NULL,
            account_id          VARCHAR(64)     NOT NULL,
            type                VARCHAR(20)     NOT NULL,
            amount              BIGINT          NOT NULL,
            balance_after       BIGINT          NOT NULL,
            counterparty_type   VARCHAR(10),
            counterparty_id     VARCHAR(64),
            reservation_id      VARCHAR(64),
            cast_payout_id      VARCHAR(64),
            description         VARCHAR(500),
            consumed_at         TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_point_tx_account_type CHECK (account_type IN ('guest', 'cast')),
            CONSTRAINT ck_point_tx_counterparty CHECK (
                counterparty_type IS NULL OR counterparty_type IN ('guest', 'cast')
            ),
            CONSTRAINT ck_point_tx_type         CHECK (type IN ('pending', 'transfer', 'convert', 'gift')),
            CONSTRAINT ck_point_tx_balance_gte_0 CHECK (balance_after >= 0),
            CONSTRAINT ck_point_tx_consumed     CHECK (consumed_at IS NULL OR type = 'pending')
        );
    """)
    op.execute("""
        CREATE INDEX idx_point_tx_account
        ON point_transactions (account_type, account_id, id DESC);
    """)
    op.execute("""
        CREATE INDEX idx_point_tx_outstanding
        ON point_transactions (reservation_id)
        WHERE type = 'pending' AND consumed_at IS NULL;
    """)
    op.execute("""
        CREATE INDEX idx_point_tx_payout
        ON point_transactions (cast_payout_id)
        WHERE cast_payout_id IS NOT NULL;
    """)
    op.execute(
        "COMMENT ON TABLE point_transactions IS "
        "'Point ledger — append-only; only consumed_at of pending rows is ever updated';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS point_transactions CASCADE;")
