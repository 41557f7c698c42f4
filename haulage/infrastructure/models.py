"""
SQLAlchemy ORM models.

Tables
------
* ``vehicles``             -- trucks with odometer and document expiries
* ``drivers``              -- drivers with their payout mode
* ``clients``, ``materials`` -- trip references
* ``trips``                -- haul assignments (trip state machine)
* ``maintenance_tickets``  -- shop visits (maintenance state machine)
* ``driver_payments``      -- driver payment ledger
* ``receipts``             -- uploaded proof of payment / shop invoices

Concurrency
-----------
Aggregates touched by the state machines carry a ``version`` column used
as SQLAlchemy's ``version_id_col``: an UPDATE from a stale snapshot matches
no row and raises ``StaleDataError`` (translated to ``Conflict``).

Indexes
-------
* Partial unique index on ``maintenance_tickets(vehicle_id)`` for open
  tickets: one PENDING/IN_PROGRESS ticket per vehicle.
* Unique ``driver_payments.ledger_key``: natural key of generated entries
  (``trip:<id>``, ``salary:<driver>:<YYYY-MM>:<slot>``).
* B-Tree on states and foreign keys used by the scheduler's scans.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from .database import Base
from haulage.clock import utcnow
from haulage.domain.enums import (
    ClientPaymentState,
    MaintenanceKind,
    MaintenanceState,
    PartyStatus,
    PaymentState,
    PayoutMode,
    ReceiptKind,
    TripState,
    VehicleState,
)

Money = Numeric(12, 2)

_OPEN_TICKET = text("state IN ('PENDING', 'IN_PROGRESS')")


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate = Column(String(20), unique=True, nullable=False)
    state = Column(
        Enum(VehicleState, name="vehicle_state"),
        default=VehicleState.ACTIVE,
        nullable=False,
    )
    current_odometer = Column(Integer, default=0, nullable=False)

    insurance_expires_on = Column(Date, nullable=True)
    registration_expires_on = Column(Date, nullable=True)
    roadworthiness_expires_on = Column(Date, nullable=True)

    last_maintenance_at = Column(DateTime, nullable=True)
    next_maintenance_on = Column(Date, nullable=True)
    next_maintenance_odometer = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("idx_vehicles_state", "state"),)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    status = Column(
        Enum(PartyStatus, name="party_status"),
        default=PartyStatus.ACTIVE,
        nullable=False,
    )
    license_expires_on = Column(Date, nullable=True)

    payout_mode = Column(
        Enum(PayoutMode, name="payout_mode"),
        default=PayoutMode.PER_TRIP,
        nullable=False,
    )
    monthly_salary = Column(Money, nullable=True)
    hired_on = Column(Date, nullable=True)
    biweekly = Column(Boolean, default=False, nullable=False)
    payment_method = Column(String(30), default="CASH", nullable=False)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("idx_drivers_payout_mode", "payout_mode"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ClientModel(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    status = Column(
        Enum(PartyStatus, name="party_status"),
        default=PartyStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow)


class MaterialModel(Base):
    __tablename__ = "materials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)

    origin = Column(String(200), nullable=False)
    destination = Column(String(200), nullable=False)
    state = Column(
        Enum(TripState, name="trip_state"),
        default=TripState.PLANNED,
        nullable=False,
    )

    departure_at = Column(DateTime, nullable=False)
    estimated_arrival_at = Column(DateTime, nullable=True)
    actual_departure_at = Column(DateTime, nullable=True)
    actual_arrival_at = Column(DateTime, nullable=True)
    estimated_distance_km = Column(Float, nullable=True)
    actual_distance_km = Column(Float, nullable=True)

    # Client side: what the client owes and has paid so far
    tariff = Column(Money, nullable=False)
    credit_days = Column(Integer, default=0, nullable=False)
    payment_due_on = Column(Date, nullable=True)
    client_payment_state = Column(
        Enum(ClientPaymentState, name="client_payment_state"),
        default=ClientPaymentState.PENDING,
        nullable=False,
    )
    amount_paid_by_client = Column(Money, default=0, nullable=False)

    # Driver side: amount agreed with a per-trip driver
    driver_agreed_amount = Column(Money, nullable=True)

    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_trips_state", "state"),
        Index("idx_trips_vehicle", "vehicle_id"),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_departure", "departure_at"),
    )


class MaintenanceModel(Base):
    __tablename__ = "maintenance_tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    kind = Column(Enum(MaintenanceKind, name="maintenance_kind"), nullable=False)
    state = Column(
        Enum(MaintenanceState, name="maintenance_state"),
        default=MaintenanceState.PENDING,
        nullable=False,
    )
    description = Column(Text, nullable=True)
    shop = Column(String(150), default="", nullable=False)

    labor_cost = Column(Money, default=0, nullable=False)
    parts_cost = Column(Money, default=0, nullable=False)
    total_cost = Column(Money, default=0, nullable=False)

    scheduled_on = Column(Date, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    odometer_at_service = Column(Integer, nullable=True)
    next_due_odometer = Column(Integer, nullable=True)
    next_due_on = Column(Date, nullable=True)

    receipt_id = Column(Integer, ForeignKey("receipts.id"), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_maintenance_vehicle", "vehicle_id"),
        Index("idx_maintenance_state", "state"),
        Index(
            "uq_maintenance_open_per_vehicle",
            "vehicle_id",
            unique=True,
            postgresql_where=_OPEN_TICKET,
            sqlite_where=_OPEN_TICKET,
        ),
    )


class DriverPaymentModel(Base):
    __tablename__ = "driver_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True)

    amount = Column(Money, nullable=False)
    state = Column(
        Enum(PaymentState, name="payment_state"),
        default=PaymentState.PENDING,
        nullable=False,
    )
    scheduled_on = Column(Date, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    payment_method = Column(String(30), nullable=True)
    description = Column(String(255), nullable=True)
    ledger_key = Column(String(80), unique=True, nullable=True)

    receipt_id = Column(Integer, ForeignKey("receipts.id"), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_driver_payments_driver", "driver_id"),
        Index("idx_driver_payments_trip", "trip_id"),
        Index("idx_driver_payments_scheduled", "scheduled_on"),
    )


class ReceiptModel(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(Enum(ReceiptKind, name="receipt_kind"), nullable=False)
    url = Column(String(500), nullable=False)
    ref = Column(String(255), nullable=False)
    original_filename = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
