# migrations/versions/20261019_0002_idempotency_response_media.py
"""Store response media type and body encoding on idempotency_keys."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from payhook.infrastructure.database.models.base import DEFAULT_DB_SCHEMA

# Revision identifiers, used by Alembic.
revision = "20261019_0002_idempotency_response_media"
down_revision = "20261019_0001_payhook_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    schema = DEFAULT_DB_SCHEMA
    op.add_column(
        "idempotency_keys",
        sa.Column("response_media_type", sa.String(length=255), nullable=True),
        schema=schema,
    )
    op.add_column(
        "idempotency_keys",
        sa.Column("response_encoding", sa.String(length=16), nullable=True),
        schema=schema,
    )


def downgrade() -> None:
    schema = DEFAULT_DB_SCHEMA
    op.drop_column("idempotency_keys", "response_encoding", schema=schema)
    op.drop_column("idempotency_keys", "response_media_type", schema=schema)
