"""
Add PayPal membership tables

- profiles table: one row per Supabase auth user
  * membership_status (free | demo | pro)
  * membership_plan, membership_expires

- subscriptions table: keyed by the PayPal subscription id; a row exists
  only once the membership has been activated

- paypal_webhook_events table: delivered webhook ids, for dropping redeliveries
"""

# Ensure this script can be run directly from the repo root
import sys
from pathlib import Path

# Add the repo root to sys.path so "app" package is importable
CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import text
from app.database import engine


def upgrade():
    with engine.connect() as conn:
        conn.execute(
            text(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    id VARCHAR(36) PRIMARY KEY,
                    email VARCHAR(255),
                    full_name VARCHAR(255),
                    membership_status VARCHAR(20) NOT NULL DEFAULT 'free',
                    membership_plan VARCHAR(50),
                    membership_expires TIMESTAMP NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
        )
        conn.execute(text("CREATE INDEX IF NOT EXISTS ix_profiles_email ON profiles (email)"))

        conn.execute(
            text(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id VARCHAR(64) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
                    status VARCHAR(30) NOT NULL,
                    plan_id VARCHAR(64),
                    plan_name VARCHAR(50),
                    current_period_start TIMESTAMP NULL,
                    current_period_end TIMESTAMP NULL,
                    start_time TIMESTAMP NULL,
                    next_billing_time TIMESTAMP NULL,
                    amount VARCHAR(20),
                    currency VARCHAR(3),
                    is_trial BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
        )
        conn.execute(
            text("CREATE INDEX IF NOT EXISTS ix_subscriptions_user_id ON subscriptions (user_id)")
        )

        conn.execute(
            text(
                """
                CREATE TABLE IF NOT EXISTS paypal_webhook_events (
                    id VARCHAR(64) PRIMARY KEY,
                    event_type VARCHAR(100) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
        )

        conn.commit()
        print("Migration add_paypal_subscription_tables applied successfully")


def downgrade():
    with engine.connect() as conn:
        conn.execute(text("DROP TABLE IF EXISTS paypal_webhook_events"))
        conn.execute(text("DROP TABLE IF EXISTS subscriptions"))
        conn.execute(text("DROP TABLE IF EXISTS profiles"))
        conn.commit()
        print("Migration add_paypal_subscription_tables rolled back")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Manage PayPal membership tables migration")
    parser.add_argument("--down", action="store_true", help="Rollback the migration")
    args = parser.parse_args()

    if args.down:
        downgrade()
    else:
        upgrade()
