"""005: create cast_payouts and payments tables

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE cast_payouts (
            id                      VARCHAR(64)     PRIMARY KEY,
            cast_id                 VARCHAR(64)     NOT NULL REFERENCES casts (id),
            type                    VARCHAR(20)     NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'requested',
            amount                  BIGINT          NOT NULL,
            fee_rate_bps            INT             NOT NULL,
            fee                     BIGINT          NOT NULL,
            net_points              BIGINT          NOT NULL,
            net_amount              BIGINT          NOT NULL,
            currency                VARCHAR(3)      NOT NULL,
            closing_month           DATE,
            scheduled_payout_date   DATE,
            processor_ref           VARCHAR(128),
            memo                    VARCHAR(255),
            failure_reason          VARCHAR(500),
            metadata                JSONB           NOT NULL DEFAULT '{}',
            requested_by            VARCHAR(64),
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            paid_at                 TIMESTAMPTZ,
            failed_at               TIMESTAMPTZ,
            CONSTRAINT ck_cast_payouts_type     CHECK (type IN ('instant', 'scheduled')),
            CONSTRAINT ck_cast_payouts_status   CHECK (
                status IN ('requested', 'processing', 'paid', 'failed')
            ),
            CONSTRAINT ck_cast_payouts_amount   CHECK (amount > 0),
            CONSTRAINT ck_cast_payouts_fee      CHECK (fee >= 0 AND fee <= amount),
            CONSTRAINT ck_cast_payouts_net      CHECK (net_points = amount - fee)
        );
    """)
    op.execute("CREATE INDEX idx_cast_payouts_cast ON cast_payouts (cast_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_cast_payouts_in_flight
        ON cast_payouts (cast_id)
        WHERE status IN ('requested', 'processing');
    """)
    op.execute("""
        CREATE INDEX idx_cast_payouts_due
        ON cast_payouts (scheduled_payout_date)
        WHERE type = 'scheduled' AND status = 'requested';
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_cast_payouts_scheduled_month
        ON cast_payouts (cast_id, closing_month)
        WHERE type = 'scheduled';
    """)
    op.execute("""
        CREATE TRIGGER trg_cast_payouts_updated_at
            BEFORE UPDATE ON cast_payouts
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE cast_payouts IS "
        "'Cast payouts — points debited only when the processor confirms';"
    )

    op.execute("""
        CREATE TABLE payments (
            id                      VARCHAR(64)     PRIMARY KEY,
            user_id                 VARCHAR(64)     NOT NULL,
            user_type               VARCHAR(10)     NOT NULL,
            cast_payout_id          VARCHAR(64)     REFERENCES cast_payouts (id),
            amount                  BIGINT          NOT NULL,
            currency                VARCHAR(3)      NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'pending',
            payment_method          VARCHAR(32)     NOT NULL,
            processor_ref           VARCHAR(128),
            processor_account_ref   VARCHAR(128),
            metadata                JSONB           NOT NULL DEFAULT '{}',
            failure_reason          VARCHAR(500),
            paid_at                 TIMESTAMPTZ,
            failed_at               TIMESTAMPTZ,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_payments_processor_ref UNIQUE (processor_ref),
            CONSTRAINT ck_payments_user_type    CHECK (user_type IN ('guest', 'cast')),
            CONSTRAINT ck_payments_status       CHECK (
                status IN ('pending', 'paid', 'failed', 'refunded')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_payments_payout
        ON payments (cast_payout_id, created_at DESC)
        WHERE cast_payout_id IS NOT NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_payments_updated_at
            BEFORE UPDATE ON payments
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE payments IS 'Processor-side money movements, keyed by processor_ref';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payments CASCADE;")
    op.execute("DROP TABLE IF EXISTS cast_payouts CASCADE;")
