"""Initial schema: fleet, trips, maintenance tickets and driver payments.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


_ENUMS = {
    "vehicle_state": ("ACTIVE", "ON_ROUTE", "IN_MAINTENANCE", "INACTIVE"),
    "party_status": ("ACTIVE", "INACTIVE"),
    "payout_mode": ("PER_TRIP", "SALARIED"),
    "trip_state": ("PLANNED", "IN_PROGRESS", "COMPLETED", "CANCELLED"),
    "client_payment_state": ("PENDING", "PARTIAL", "PAID"),
    "maintenance_kind": ("PREVENTIVE", "CORRECTIVE"),
    "maintenance_state": ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"),
    "payment_state": ("PENDING", "PAID"),
    "receipt_kind": ("MAINTENANCE", "DRIVER_PAYMENT"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; columns only reference them.
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _money() -> sa.Numeric:
    return sa.Numeric(12, 2)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("plate", sa.String(20), unique=True, nullable=False),
        sa.Column("state", _enum("vehicle_state"), nullable=False),
        sa.Column("current_odometer", sa.Integer, nullable=False, server_default="0"),
        sa.Column("insurance_expires_on", sa.Date, nullable=True),
        sa.Column("registration_expires_on", sa.Date, nullable=True),
        sa.Column("roadworthiness_expires_on", sa.Date, nullable=True),
        sa.Column("last_maintenance_at", sa.DateTime, nullable=True),
        sa.Column("next_maintenance_on", sa.Date, nullable=True),
        sa.Column("next_maintenance_odometer", sa.Integer, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_vehicles_state", "vehicles", ["state"])

    # ── drivers / clients / materials ─────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("status", _enum("party_status"), nullable=False),
        sa.Column("license_expires_on", sa.Date, nullable=True),
        sa.Column("payout_mode", _enum("payout_mode"), nullable=False),
        sa.Column("monthly_salary", _money(), nullable=True),
        sa.Column("hired_on", sa.Date, nullable=True),
        sa.Column("biweekly", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("payment_method", sa.String(30), nullable=False, server_default="CASH"),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_payout_mode", "drivers", ["payout_mode"])

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("status", _enum("party_status"), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "materials",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
    )

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("client_id", sa.Integer, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("material_id", sa.Integer, sa.ForeignKey("materials.id"), nullable=False),
        sa.Column("origin", sa.String(200), nullable=False),
        sa.Column("destination", sa.String(200), nullable=False),
        sa.Column("state", _enum("trip_state"), nullable=False),
        sa.Column("departure_at", sa.DateTime, nullable=False),
        sa.Column("estimated_arrival_at", sa.DateTime, nullable=True),
        sa.Column("actual_departure_at", sa.DateTime, nullable=True),
        sa.Column("actual_arrival_at", sa.DateTime, nullable=True),
        sa.Column("estimated_distance_km", sa.Float, nullable=True),
        sa.Column("actual_distance_km", sa.Float, nullable=True),
        sa.Column("tariff", _money(), nullable=False),
        sa.Column("credit_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payment_due_on", sa.Date, nullable=True),
        sa.Column("client_payment_state", _enum("client_payment_state"), nullable=False),
        sa.Column("amount_paid_by_client", _money(), nullable=False, server_default="0"),
        sa.Column("driver_agreed_amount", _money(), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_trips_state", "trips", ["state"])
    op.create_index("idx_trips_vehicle", "trips", ["vehicle_id"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_departure", "trips", ["departure_at"])

    # ── receipts ──────────────────────────────────────────────────────
    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", _enum("receipt_kind"), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("ref", sa.String(255), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    # ── maintenance_tickets ───────────────────────────────────────────
    op.create_table(
        "maintenance_tickets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("kind", _enum("maintenance_kind"), nullable=False),
        sa.Column("state", _enum("maintenance_state"), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("shop", sa.String(150), nullable=False, server_default=""),
        sa.Column("labor_cost", _money(), nullable=False, server_default="0"),
        sa.Column("parts_cost", _money(), nullable=False, server_default="0"),
        sa.Column("total_cost", _money(), nullable=False, server_default="0"),
        sa.Column("scheduled_on", sa.Date, nullable=False),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("finished_at", sa.DateTime, nullable=True),
        sa.Column("odometer_at_service", sa.Integer, nullable=True),
        sa.Column("next_due_odometer", sa.Integer, nullable=True),
        sa.Column("next_due_on", sa.Date, nullable=True),
        sa.Column("receipt_id", sa.Integer, sa.ForeignKey("receipts.id"), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_maintenance_vehicle", "maintenance_tickets", ["vehicle_id"])
    op.create_index("idx_maintenance_state", "maintenance_tickets", ["state"])
    # At most one open ticket per vehicle
    op.create_index(
        "uq_maintenance_open_per_vehicle",
        "maintenance_tickets",
        ["vehicle_id"],
        unique=True,
        postgresql_where=sa.text("state IN ('PENDING', 'IN_PROGRESS')"),
    )

    # ── driver_payments ───────────────────────────────────────────────
    op.create_table(
        "driver_payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("state", _enum("payment_state"), nullable=False),
        sa.Column("scheduled_on", sa.Date, nullable=False),
        sa.Column("paid_at", sa.DateTime, nullable=True),
        sa.Column("payment_method", sa.String(30), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("ledger_key", sa.String(80), unique=True, nullable=True),
        sa.Column("receipt_id", sa.Integer, sa.ForeignKey("receipts.id"), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_driver_payments_driver", "driver_payments", ["driver_id"])
    op.create_index("idx_driver_payments_trip", "driver_payments", ["trip_id"])
    op.create_index("idx_driver_payments_scheduled", "driver_payments", ["scheduled_on"])


def downgrade() -> None:
    op.drop_table("driver_payments")
    op.drop_table("maintenance_tickets")
    op.drop_table("receipts")
    op.drop_table("trips")
    op.drop_table("materials")
    op.drop_table("clients")
    op.drop_table("drivers")
    op.drop_table("vehicles")
    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
