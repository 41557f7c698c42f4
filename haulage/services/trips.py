"""
Trip State Machine
==================

::

    PLANNED ──► IN_PROGRESS ──► COMPLETED
       │             │
       └──► CANCELLED ◄┘

Each transition is one atomic unit spanning the trip, its vehicle (through
``haulage.services.fleet``) and, on completion, the driver's payment
ledger.  Trips and vehicles are loaded ``FOR UPDATE`` and both carry a
version column, so concurrent transitions serialise or fail with
``Conflict``; they never both commit.

Client payments are a sub-state of the trip and may be registered in any
lifecycle state, including after completion.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm.attributes import flag_modified

from .base import BaseService
from .fleet import advance_odometer, reconcile_vehicle
from .payments import PAYMENT_FIELDS, open_trip_payout
from haulage.domain.enums import (
    TRIP_TRANSITIONS,
    MaintenanceState,
    PartyStatus,
    PayoutMode,
    TripState,
    VehicleState,
)
from haulage.domain.errors import NotFound, PreconditionFailed
from haulage.domain.ledger import money
from haulage.domain.rules import (
    check_distance,
    client_payment_state,
    ensure_transition,
    expired_documents,
    payment_due_date,
    trip_window,
)
from haulage.infrastructure.audit import snapshot
from haulage.infrastructure.models import TripModel
from haulage.infrastructure.repositories import (
    ClientRepository,
    DriverRepository,
    MaintenanceRepository,
    MaterialRepository,
    TripRepository,
    VehicleRepository,
)
from haulage.schemas import TripCompletion, TripDraft

logger = logging.getLogger(__name__)

TRIP_FIELDS = (
    "vehicle_id",
    "driver_id",
    "state",
    "departure_at",
    "estimated_arrival_at",
    "actual_departure_at",
    "actual_arrival_at",
    "actual_distance_km",
    "tariff",
    "driver_agreed_amount",
    "client_payment_state",
    "amount_paid_by_client",
)


class TripService(BaseService):
    async def create(self, draft: TripDraft, *, actor_id: Any = None) -> TripModel:
        now = self.clock.now()
        today = now.date()

        async with self.store.atomic() as session:
            # Vehicle and driver are locked and version-bumped: concurrent
            # creates for either serialise or fail with Conflict.
            vehicle = await VehicleRepository(session).get_for_update(draft.vehicle_id)
            if vehicle is None:
                raise NotFound("Vehicle", draft.vehicle_id)
            driver = await DriverRepository(session).get_for_update(draft.driver_id)
            if driver is None:
                raise NotFound("Driver", draft.driver_id)
            client = await ClientRepository(session).get_by_id(draft.client_id)
            if client is None:
                raise NotFound("Client", draft.client_id)
            material = await MaterialRepository(session).get_by_id(draft.material_id)
            if material is None:
                raise NotFound("Material", draft.material_id)

            # Availability
            if vehicle.state == VehicleState.INACTIVE:
                raise PreconditionFailed(f"Vehicle {vehicle.plate} is inactive")
            if driver.status == PartyStatus.INACTIVE:
                raise PreconditionFailed(f"Driver {driver.full_name} is inactive")
            if client.status == PartyStatus.INACTIVE:
                raise PreconditionFailed(f"Client {client.name} is inactive")
            in_shop = await MaintenanceRepository(session).find_open_for_vehicle(
                vehicle.id, states=(MaintenanceState.IN_PROGRESS,)
            )
            if vehicle.state == VehicleState.IN_MAINTENANCE or in_shop is not None:
                raise PreconditionFailed(f"Vehicle {vehicle.plate} is in maintenance")

            # Documents
            if driver.license_expires_on and driver.license_expires_on < today:
                raise PreconditionFailed(
                    f"Driver {driver.full_name}'s license expired on "
                    f"{driver.license_expires_on:%Y-%m-%d}"
                )
            expired = expired_documents(
                today,
                insurance=vehicle.insurance_expires_on,
                registration=vehicle.registration_expires_on,
                roadworthiness=vehicle.roadworthiness_expires_on,
            )
            if expired:
                raise PreconditionFailed(
                    f"Vehicle {vehicle.plate} has expired documents: {', '.join(expired)}"
                )

            # Schedule
            if (
                draft.estimated_arrival_at is not None
                and draft.estimated_arrival_at <= draft.departure_at
            ):
                raise PreconditionFailed("Estimated arrival must be after departure")
            backdate = timedelta(days=self.config.max_departure_backdate_days)
            if draft.departure_at < now - backdate:
                raise PreconditionFailed(
                    f"Departure cannot be more than "
                    f"{self.config.max_departure_backdate_days} days in the past"
                )
            trips = TripRepository(session)
            window = trip_window(
                draft.departure_at,
                draft.estimated_arrival_at,
                self.config.default_trip_window_hours,
            )
            clash = await trips.find_overlapping(
                window, vehicle.id, driver.id, self.config.default_trip_window_hours
            )
            if clash is not None:
                who = (
                    f"Vehicle {vehicle.plate}"
                    if clash.vehicle_id == vehicle.id
                    else f"Driver {driver.full_name}"
                )
                raise PreconditionFailed(
                    f"{who} already has trip #{clash.id} ({clash.state.value}) "
                    f"departing {clash.departure_at:%Y-%m-%d %H:%M} in that time window"
                )

            # Money
            tariff = money(draft.tariff)
            if tariff <= 0:
                raise PreconditionFailed("Tariff must be greater than zero")
            agreed = (
                money(draft.driver_agreed_amount)
                if draft.driver_agreed_amount is not None
                else None
            )
            if driver.payout_mode == PayoutMode.PER_TRIP and (agreed is None or agreed <= 0):
                raise PreconditionFailed(
                    f"Driver {driver.full_name} is paid per trip; "
                    "an agreed amount greater than zero is required"
                )

            await reconcile_vehicle(session, vehicle, now)
            driver.updated_at = now
            flag_modified(driver, "updated_at")

            trip = await trips.create(
                TripModel(
                    vehicle_id=vehicle.id,
                    driver_id=driver.id,
                    client_id=client.id,
                    material_id=material.id,
                    origin=draft.origin,
                    destination=draft.destination,
                    state=TripState.PLANNED,
                    departure_at=draft.departure_at,
                    estimated_arrival_at=draft.estimated_arrival_at,
                    estimated_distance_km=draft.estimated_distance_km,
                    tariff=tariff,
                    credit_days=draft.credit_days,
                    payment_due_on=payment_due_date(draft.departure_at, draft.credit_days),
                    driver_agreed_amount=agreed,
                    notes=draft.notes,
                    created_at=now,
                    updated_at=now,
                )
            )

        await self._audit(
            actor_id, "trip.create", "trip", trip.id, after=snapshot(trip, *TRIP_FIELDS)
        )
        return trip

    async def transition(
        self,
        trip_id: int,
        target: TripState,
        completion: Optional[TripCompletion] = None,
        *,
        actor_id: Any = None,
    ) -> TripModel:
        target = TripState(target)
        now = self.clock.now()
        payment = None

        async with self.store.atomic() as session:
            trip = await TripRepository(session).get_for_update(trip_id)
            if trip is None:
                raise NotFound("Trip", trip_id)
            ensure_transition("trip", TRIP_TRANSITIONS, trip.state, target)
            before = snapshot(trip, *TRIP_FIELDS)

            vehicle = await VehicleRepository(session).get_for_update(trip.vehicle_id)
            if vehicle is None:
                raise NotFound("Vehicle", trip.vehicle_id)

            if target == TripState.IN_PROGRESS:
                in_shop = await MaintenanceRepository(session).find_open_for_vehicle(
                    vehicle.id, states=(MaintenanceState.IN_PROGRESS,)
                )
                if vehicle.state == VehicleState.IN_MAINTENANCE or in_shop is not None:
                    raise PreconditionFailed(
                        f"Vehicle {vehicle.plate} is in maintenance; trip cannot start"
                    )
                trip.actual_departure_at = now

            elif target == TripState.COMPLETED:
                completion = completion or TripCompletion()
                distance = completion.actual_distance_km
                if distance is not None:
                    check_distance(
                        distance,
                        trip.estimated_distance_km,
                        self.config.min_distance_ratio,
                        self.config.max_distance_ratio,
                    )
                trip.actual_arrival_at = completion.actual_arrival_at or now
                if distance is not None:
                    trip.actual_distance_km = distance
                    advance_odometer(vehicle, distance)

            trip.state = target
            trip.updated_at = now
            await reconcile_vehicle(session, vehicle, now)

            if target == TripState.COMPLETED:
                driver = await DriverRepository(session).get_by_id(trip.driver_id)
                payment = await open_trip_payout(session, trip, driver)

        logger.info("Trip #%d: %s -> %s", trip.id, before["state"], target.value)
        await self._audit(
            actor_id,
            f"trip.{target.value.lower()}",
            "trip",
            trip.id,
            before=before,
            after=snapshot(trip, *TRIP_FIELDS),
        )
        if payment is not None:
            await self._audit(
                actor_id,
                "driver_payment.create",
                "driver_payment",
                payment.id,
                after=snapshot(payment, *PAYMENT_FIELDS),
            )
        return trip

    async def register_client_payment(
        self, trip_id: int, amount: Decimal, *, actor_id: Any = None
    ) -> TripModel:
        """Add *amount* to what the client has paid for the trip."""
        amount = money(amount)
        now = self.clock.now()

        async with self.store.atomic() as session:
            trip = await TripRepository(session).get_for_update(trip_id)
            if trip is None:
                raise NotFound("Trip", trip_id)
            if amount <= 0:
                raise PreconditionFailed("Payment amount must be greater than zero")

            before = snapshot(trip, *TRIP_FIELDS)
            tariff = money(trip.tariff)
            already = money(trip.amount_paid_by_client)
            paid = already + amount
            if paid > tariff:
                raise PreconditionFailed(
                    f"Payment exceeds the tariff; maximum payable is {tariff - already}"
                )
            trip.amount_paid_by_client = paid
            trip.client_payment_state = client_payment_state(paid, tariff)
            trip.updated_at = now

        await self._audit(
            actor_id,
            "trip.client_payment",
            "trip",
            trip.id,
            before=before,
            after=snapshot(trip, *TRIP_FIELDS),
        )
        return trip
