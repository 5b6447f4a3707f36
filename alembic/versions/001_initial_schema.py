"""intelligence schema: customer_profiles, device_records, bundle_offers, behavioral_events

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "customer_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.String(64)),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("ip_hash", sa.String(64)),
        sa.Column("browser_fingerprint", sa.String(255)),
        sa.Column("geo_country", sa.String(8)),
        sa.Column("geo_city", sa.String(120)),
        sa.Column("favorite_products", sa.JSON()),
        sa.Column("peak_spending_quantity", sa.Integer()),
        sa.Column("peak_spending_amount", sa.Float()),
        sa.Column("avg_order_value", sa.Float()),
        sa.Column("total_orders", sa.Integer()),
        sa.Column("last_order_date", sa.DateTime()),
        sa.Column("days_since_last_order", sa.Integer()),
        sa.Column("purchase_cycle_days", sa.Integer()),
        sa.Column("next_prime_window_start", sa.DateTime()),
        sa.Column("next_prime_window_end", sa.DateTime()),
        sa.Column("profile_score", sa.Integer()),
        sa.Column("last_recalculated", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_customer_profiles_email", "customer_profiles", ["email"], unique=True)
    op.create_index("ix_customer_profiles_fingerprint", "customer_profiles", ["browser_fingerprint"])
    op.create_index("ix_customer_profiles_ip_hash", "customer_profiles", ["ip_hash"])

    op.create_table(
        "device_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("ip_hash", sa.String(64), nullable=False, server_default=""),
        sa.Column("browser_fingerprint", sa.String(255), nullable=False, server_default=""),
        sa.Column("customer_id", sa.String(64)),
        sa.Column("first_seen", sa.DateTime()),
        sa.Column("last_seen", sa.DateTime()),
        sa.Column("visit_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("user_agent", sa.Text()),
        sa.Column("geo_country", sa.String(8)),
        sa.Column("geo_city", sa.String(120)),
        sa.UniqueConstraint("email", "ip_hash", "browser_fingerprint", name="uq_device_identity"),
    )
    op.create_index("ix_device_records_fingerprint", "device_records", ["browser_fingerprint"])
    op.create_index("ix_device_records_ip_last_seen", "device_records", ["ip_hash", "last_seen"])

    op.create_table(
        "bundle_offers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.String(64)),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("bundle_products", sa.JSON()),
        sa.Column("total_quantity", sa.Integer(), nullable=False),
        sa.Column("base_price", sa.Float(), nullable=False),
        sa.Column("discount_amount", sa.Float()),
        sa.Column("final_price", sa.Float(), nullable=False),
        sa.Column("bonus_points", sa.Integer()),
        sa.Column("trigger_reason", sa.String(50)),
        sa.Column("cart_snapshot", sa.JSON()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("offered_at", sa.DateTime()),
        sa.Column("viewed_at", sa.DateTime()),
        sa.Column("responded_at", sa.DateTime()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("conversion_value", sa.Float()),
    )
    op.create_index("ix_bundle_offers_email_status", "bundle_offers", ["customer_email", "status"])

    op.create_table(
        "behavioral_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(64)),
        sa.Column("customer_id", sa.String(64)),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("ip_hash", sa.String(64)),
        sa.Column("browser_fingerprint", sa.String(255)),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("event_data", sa.JSON()),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_behavioral_events_session", "behavioral_events", ["session_id"])
    op.create_index("ix_behavioral_events_email_type", "behavioral_events", ["customer_email", "event_type"])


def downgrade() -> None:
    """Drops every intelligence table. Dev/test only."""
    op.drop_table("behavioral_events")
    op.drop_table("bundle_offers")
    op.drop_table("device_records")
    op.drop_table("customer_profiles")
