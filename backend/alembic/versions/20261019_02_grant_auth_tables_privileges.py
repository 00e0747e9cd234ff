"""Grant auth table privileges to app user.

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19 09:10:00
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

from sessionauth.core.config import settings

revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_TABLES = (
    "users",
    "email_verifications",
    "password_resets",
    "two_factor_tokens",
    "sessions",
    "refresh_tokens",
)
# Integer primary keys; users and sessions use uuid strings.
_SEQUENCES = (
    "email_verifications_id_seq",
    "password_resets_id_seq",
    "two_factor_tokens_id_seq",
    "refresh_tokens_id_seq",
)


def _quote_ident(identifier: str) -> str:
    escaped = identifier.replace('"', '""')
    return f'"{escaped}"'


def _app_user() -> str | None:
    if op.get_context().dialect.name != "postgresql":
        return None
    app_user = (settings.DB_APP_USER or "").strip()
    return _quote_ident(app_user) if app_user else None


def upgrade() -> None:
    quoted = _app_user()
    if not quoted:
        return

    for table in _TABLES:
        op.execute(f"GRANT SELECT, INSERT, UPDATE, DELETE ON {table} TO {quoted}")
    for sequence in _SEQUENCES:
        op.execute(f"GRANT USAGE, SELECT ON SEQUENCE {sequence} TO {quoted}")


def downgrade() -> None:
    quoted = _app_user()
    if not quoted:
        return

    for table in _TABLES:
        op.execute(f"REVOKE SELECT, INSERT, UPDATE, DELETE ON {table} FROM {quoted}")
    for sequence in _SEQUENCES:
        op.execute(f"REVOKE USAGE, SELECT ON SEQUENCE {sequence} FROM {quoted}")
