"""payment intents

Revision ID: 0001_payment_intents
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payment_intents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payment_intents (
          intent_id         text PRIMARY KEY,
          wallet_address    text NOT NULL,
          requested_amount  numeric(36, 18) NOT NULL CHECK (requested_amount > 0),
          network           text NOT NULL CHECK (network IN ('testnet', 'mainnet')),
          state             text NOT NULL
                            CHECK (state IN ('PENDING', 'CONFIRMED', 'DISBURSING', 'DISBURSED', 'FAILED')),
          processor_ref     text NULL,
          amount_usd_cents  bigint NOT NULL,
          tx_hash           text NULL,
          failure_reason    text NULL,
          attempt_count     integer NOT NULL DEFAULT 0,
          last_error        text NULL,
          created_at        timestamptz NOT NULL DEFAULT now(),
          confirmed_at      timestamptz NULL,
          completed_at      timestamptz NULL,
          updated_at        timestamptz NOT NULL DEFAULT now(),
          CONSTRAINT payment_intents_disbursed_has_tx_hash
            CHECK (state <> 'DISBURSED' OR tx_hash IS NOT NULL)
        );
        """
    )
    # one transfer can settle at most one intent
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payment_intents_tx_hash
        ON app.payment_intents (tx_hash)
        WHERE tx_hash IS NOT NULL;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payment_intents_state_updated_at
        ON app.payment_intents (state, updated_at);
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payment_intents_processor_ref
        ON app.payment_intents (processor_ref);
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.payment_intents;")
