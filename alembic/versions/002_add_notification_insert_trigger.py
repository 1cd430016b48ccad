"""Publish inserted notifications on the user_notifications channel

Revision ID: 002_notification_trigger
Revises: 001_create_notifications
Create Date: 2026-10-19

Note: PostgresEventSource LISTENs on this channel. The payload is the
inserted row as JSON; pg_notify payloads are capped at 8000 bytes, so the
metadata column is dropped when the row would not fit.
"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '002_notification_trigger'
down_revision = '001_create_notifications'
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_user_notification_insert() RETURNS trigger AS $$
        DECLARE
            payload text;
        BEGIN
            payload := row_to_json(NEW)::text;
            IF octet_length(payload) > 7900 THEN
                payload := (to_jsonb(NEW) - 'metadata')::text;
            END IF;
            PERFORM pg_notify('user_notifications', payload);
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER user_notifications_insert_notify
        AFTER INSERT ON user_notifications
        FOR EACH ROW EXECUTE FUNCTION notify_user_notification_insert();
    """)


def downgrade():
    op.execute("DROP TRIGGER IF EXISTS user_notifications_insert_notify ON user_notifications")
    op.execute("DROP FUNCTION IF EXISTS notify_user_notification_insert()")
