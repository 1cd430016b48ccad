"""Create api_users table

Revision ID: 000_create_users
Revises:
Create Date: 2026-10-19

Note: Shared with the auth service, which may already have created it.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision = '000_create_users'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()

    result = conn.execute(text(
        "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = 'api_users')"
    ))
    if not result.scalar():
        op.create_table(
            'api_users',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
            sa.Column('first_name', sa.String(100)),
            sa.Column('last_name', sa.String(100)),
            sa.Column('is_active', sa.Boolean(), default=True),
            sa.Column('is_superuser', sa.Boolean(), default=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), onupdate=sa.func.now()),
        )


def downgrade():
    # Owned jointly with the auth service; never dropped from here
    pass
