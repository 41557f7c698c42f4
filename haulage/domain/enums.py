"""Domain enumerations and state-transition rules."""

import enum


class TripState(str, enum.Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current state -> set of valid next states
TRIP_TRANSITIONS: dict[TripState, set[TripState]] = {
    TripState.PLANNED: {TripState.IN_PROGRESS, TripState.CANCELLED},
    TripState.IN_PROGRESS: {TripState.COMPLETED, TripState.CANCELLED},
    TripState.COMPLETED: set(),
    TripState.CANCELLED: set(),
}

OPEN_TRIP_STATES = (TripState.PLANNED, TripState.IN_PROGRESS)


class MaintenanceState(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


MAINTENANCE_TRANSITIONS: dict[MaintenanceState, set[MaintenanceState]] = {
    MaintenanceState.PENDING: {MaintenanceState.IN_PROGRESS, MaintenanceState.CANCELLED},
    MaintenanceState.IN_PROGRESS: {MaintenanceState.COMPLETED},
    MaintenanceState.COMPLETED: set(),
    MaintenanceState.CANCELLED: set(),
}

OPEN_MAINTENANCE_STATES = (MaintenanceState.PENDING, MaintenanceState.IN_PROGRESS)


class MaintenanceKind(str, enum.Enum):
    PREVENTIVE = "PREVENTIVE"
    CORRECTIVE = "CORRECTIVE"


class VehicleState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ON_ROUTE = "ON_ROUTE"
    IN_MAINTENANCE = "IN_MAINTENANCE"
    INACTIVE = "INACTIVE"


class PartyStatus(str, enum.Enum):
    """Status of drivers and clients."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PayoutMode(str, enum.Enum):
    PER_TRIP = "PER_TRIP"
    SALARIED = "SALARIED"


class ClientPaymentState(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class PaymentState(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


PAYMENT_TRANSITIONS: dict[PaymentState, set[PaymentState]] = {
    PaymentState.PENDING: {PaymentState.PAID},
    PaymentState.PAID: set(),
}


class ReceiptKind(str, enum.Enum):
    MAINTENANCE = "MAINTENANCE"
    DRIVER_PAYMENT = "DRIVER_PAYMENT"
