"""
Create Calendly sync tables

Migration to add:
- calendly_credentials (one row per connected user, tokens encrypted)
- appointments (one row per Calendly scheduled event, unique on event_uri)

Run with: python migrations/create_calendly_sync_tables.py
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import text
from appointment_sync.database import engine


def upgrade():
    """Create credential and appointment tables"""
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE TABLE IF NOT EXISTS calendly_credentials (
                user_id VARCHAR(64) PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT NOT NULL,
                token_type VARCHAR(32) NOT NULL DEFAULT 'Bearer',
                expires_at TIMESTAMP NOT NULL,
                calendly_user_uri VARCHAR(500),
                calendly_organization_uri VARCHAR(500),
                scheduling_url VARCHAR(500),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """))
        print("✅ calendly_credentials table ready")

        conn.execute(text("""
            CREATE TABLE IF NOT EXISTS appointments (
                id VARCHAR(36) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                event_uri VARCHAR(500) NOT NULL,
                event_type VARCHAR(500),
                invitee_email VARCHAR(255),
                invitee_name VARCHAR(255),
                start_time TIMESTAMP,
                end_time TIMESTAMP,
                status VARCHAR(20) NOT NULL DEFAULT 'booked',
                raw_payload JSON,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT ck_appointments_status CHECK (status IN ('booked', 'canceled', 'rescheduled'))
            )
        """))
        print("✅ appointments table ready")

        # The upsert relies on this index for ON CONFLICT (event_uri)
        conn.execute(text(
            "CREATE UNIQUE INDEX IF NOT EXISTS ix_appointments_event_uri ON appointments (event_uri)"
        ))
        conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_appointments_user_id ON appointments (user_id)"
        ))
        conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_appointments_start_time ON appointments (start_time)"
        ))
        print("✅ appointments indexes ready")

        conn.commit()
        print("\n✅ Migration completed successfully!")


def downgrade():
    """Drop credential and appointment tables"""
    with engine.connect() as conn:
        conn.execute(text("DROP TABLE IF EXISTS appointments"))
        conn.execute(text("DROP TABLE IF EXISTS calendly_credentials"))
        conn.commit()
        print("✅ Migration rolled back successfully!")


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description='Manage Calendly sync tables migration')
    parser.add_argument('--down', action='store_true', help='Rollback the migration')
    args = parser.parse_args()

    if args.down:
        print("Rolling back migration...")
        downgrade()
    else:
        print("Running migration...")
        upgrade()
