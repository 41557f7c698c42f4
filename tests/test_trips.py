"""
Integration tests for the trip state machine.

Runs the real services against a per-test SQLite database: preconditions on
creation, vehicle reconciliation on each transition, the completion payout
and client payments.
"""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from haulage.domain.enums import (
    ClientPaymentState,
    MaintenanceKind,
    PartyStatus,
    PaymentState,
    PayoutMode,
    TripState,
    VehicleState,
)
from haulage.domain.errors import (
    Conflict,
    ImplausibleDistance,
    InvalidTransition,
    NotFound,
    PreconditionFailed,
)
from haulage.infrastructure.models import (
    DriverModel,
    DriverPaymentModel,
    TripModel,
    VehicleModel,
)
from haulage.schemas import MaintenanceDraft, TripCompletion
from tests.conftest import NOW, trip_draft


class TestCreateTrip:
    @pytest.mark.asyncio
    async def test_creates_planned_trip_with_due_date(self, services, fleet, audit):
        trip = await services.trips.create(
            trip_draft(fleet, credit_days=30), actor_id="dispatcher"
        )

        assert trip.state == TripState.PLANNED
        assert trip.payment_due_on == (NOW + timedelta(hours=2)).date() + timedelta(days=30)
        assert trip.client_payment_state == ClientPaymentState.PENDING
        assert audit.records[-1].action == "trip.create"
        assert audit.records[-1].actor_id == "dispatcher"

    @pytest.mark.asyncio
    async def test_unknown_material(self, services, fleet):
        with pytest.raises(NotFound) as err:
            await services.trips.create(trip_draft(fleet, material_id=999))
        assert err.value.status_code == 404

    @pytest.mark.asyncio
    async def test_inactive_driver(self, services, fleet, seed):
        driver = await seed.driver(status=PartyStatus.INACTIVE)
        with pytest.raises(PreconditionFailed, match="inactive"):
            await services.trips.create(trip_draft(fleet, driver_id=driver.id))

    @pytest.mark.asyncio
    async def test_inactive_client(self, services, fleet, seed):
        client = await seed.client(status=PartyStatus.INACTIVE)
        with pytest.raises(PreconditionFailed, match="inactive"):
            await services.trips.create(trip_draft(fleet, client_id=client.id))

    @pytest.mark.asyncio
    async def test_expired_license(self, services, fleet, seed):
        driver = await seed.driver(license_expires_on=date(2026, 3, 9))
        with pytest.raises(PreconditionFailed, match="license"):
            await services.trips.create(trip_draft(fleet, driver_id=driver.id))

    @pytest.mark.asyncio
    async def test_expired_vehicle_documents(self, services, fleet, seed):
        vehicle = await seed.vehicle(
            insurance_expires_on=date(2026, 1, 1),
            roadworthiness_expires_on=date(2026, 2, 1),
        )
        with pytest.raises(PreconditionFailed, match="insurance, roadworthiness"):
            await services.trips.create(trip_draft(fleet, vehicle_id=vehicle.id))

    @pytest.mark.asyncio
    async def test_overlapping_trip_for_vehicle(self, services, fleet, planned_trip, seed):
        other_driver = await seed.driver()
        with pytest.raises(PreconditionFailed, match="Vehicle"):
            await services.trips.create(
                trip_draft(
                    fleet,
                    driver_id=other_driver.id,
                    departure_at=NOW + timedelta(hours=6),
                    estimated_arrival_at=NOW + timedelta(hours=10),
                )
            )

    @pytest.mark.asyncio
    async def test_overlapping_trip_for_driver(self, services, fleet, planned_trip, seed):
        other_vehicle = await seed.vehicle()
        with pytest.raises(PreconditionFailed, match="Driver"):
            await services.trips.create(
                trip_draft(fleet, vehicle_id=other_vehicle.id)
            )

    @pytest.mark.asyncio
    async def test_open_ended_trip_blocks_24_hours(self, services, fleet):
        await services.trips.create(trip_draft(fleet, estimated_arrival_at=None))
        with pytest.raises(PreconditionFailed):
            await services.trips.create(
                trip_draft(
                    fleet,
                    departure_at=NOW + timedelta(hours=25),
                    estimated_arrival_at=NOW + timedelta(hours=30),
                )
            )
        later = await services.trips.create(
            trip_draft(
                fleet,
                departure_at=NOW + timedelta(hours=27),
                estimated_arrival_at=NOW + timedelta(hours=30),
            )
        )
        assert later.state == TripState.PLANNED

    @pytest.mark.asyncio
    async def test_cancelled_trips_do_not_block(self, services, fleet, planned_trip):
        await services.trips.transition(planned_trip.id, TripState.CANCELLED)
        again = await services.trips.create(trip_draft(fleet))
        assert again.id != planned_trip.id

    @pytest.mark.asyncio
    async def test_arrival_must_follow_departure(self, services, fleet):
        with pytest.raises(PreconditionFailed, match="after departure"):
            await services.trips.create(
                trip_draft(fleet, estimated_arrival_at=NOW + timedelta(hours=1))
            )

    @pytest.mark.asyncio
    async def test_departure_too_far_in_the_past(self, services, fleet):
        with pytest.raises(PreconditionFailed, match="30 days"):
            await services.trips.create(
                trip_draft(
                    fleet,
                    departure_at=NOW - timedelta(days=31),
                    estimated_arrival_at=NOW - timedelta(days=30),
                )
            )

    @pytest.mark.asyncio
    async def test_tariff_must_be_positive(self, services, fleet):
        with pytest.raises(PreconditionFailed, match="Tariff"):
            await services.trips.create(trip_draft(fleet, tariff=Decimal("0")))

    @pytest.mark.asyncio
    async def test_per_trip_driver_needs_agreed_amount(self, services, fleet):
        with pytest.raises(PreconditionFailed, match="agreed amount"):
            await services.trips.create(trip_draft(fleet, driver_agreed_amount=None))

    @pytest.mark.asyncio
    async def test_salaried_driver_needs_no_agreed_amount(self, services, fleet, seed):
        driver = await seed.driver(
            payout_mode=PayoutMode.SALARIED,
            monthly_salary=Decimal("1500"),
            hired_on=date(2025, 1, 5),
        )
        trip = await services.trips.create(
            trip_draft(fleet, driver_id=driver.id, driver_agreed_amount=None)
        )
        assert trip.driver_agreed_amount is None

    @pytest.mark.asyncio
    async def test_nothing_is_written_on_failure(self, services, fleet, seed):
        with pytest.raises(PreconditionFailed):
            await services.trips.create(trip_draft(fleet, tariff=Decimal("-5")))
        assert await seed.all(TripModel) == []

    @pytest.mark.asyncio
    async def test_create_bumps_vehicle_and_driver_versions(self, services, fleet, seed):
        vehicle_before = (await seed.get(VehicleModel, fleet.vehicle.id)).version
        driver_before = (await seed.get(DriverModel, fleet.driver.id)).version

        await services.trips.create(trip_draft(fleet))

        assert (await seed.get(VehicleModel, fleet.vehicle.id)).version == vehicle_before + 1
        assert (await seed.get(DriverModel, fleet.driver.id)).version == driver_before + 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_leave_one_open_trip(self, services, fleet, seed):
        results = await asyncio.gather(
            services.trips.create(trip_draft(fleet)),
            services.trips.create(
                trip_draft(fleet, departure_at=NOW + timedelta(hours=3))
            ),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, TripModel)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(created) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], (Conflict, PreconditionFailed))

        trips = await seed.all(TripModel)
        assert [t.vehicle_id for t in trips] == [fleet.vehicle.id]


class TestTransitions:
    @pytest.mark.asyncio
    async def test_start_puts_vehicle_on_route(self, services, fleet, planned_trip, seed):
        trip = await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)

        assert trip.state == TripState.IN_PROGRESS
        assert trip.actual_departure_at == NOW
        vehicle = await seed.get(VehicleModel, fleet.vehicle.id)
        assert vehicle.state == VehicleState.ON_ROUTE

    @pytest.mark.asyncio
    async def test_planned_cannot_complete(self, services, planned_trip):
        with pytest.raises(InvalidTransition):
            await services.trips.transition(planned_trip.id, TripState.COMPLETED)

    @pytest.mark.asyncio
    async def test_unknown_trip(self, services):
        with pytest.raises(NotFound):
            await services.trips.transition(404, TripState.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_distance_plausibility_scenario(self, services, fleet, planned_trip, seed, clock):
        """Estimate 100 km: 20 km is rejected, 80 km is accepted and counted."""
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)
        clock.advance(hours=6)

        with pytest.raises(ImplausibleDistance):
            await services.trips.transition(
                planned_trip.id,
                TripState.COMPLETED,
                TripCompletion(actual_distance_km=20),
            )
        trip = await seed.get(TripModel, planned_trip.id)
        assert trip.state == TripState.IN_PROGRESS
        assert (await seed.get(VehicleModel, fleet.vehicle.id)).current_odometer == 10_000

        trip = await services.trips.transition(
            planned_trip.id, TripState.COMPLETED, TripCompletion(actual_distance_km=80)
        )
        assert trip.state == TripState.COMPLETED
        assert trip.actual_arrival_at == NOW + timedelta(hours=6)
        vehicle = await seed.get(VehicleModel, fleet.vehicle.id)
        assert vehicle.current_odometer == 10_080
        assert vehicle.state == VehicleState.ACTIVE

    @pytest.mark.asyncio
    async def test_completion_opens_one_pending_payment(self, services, fleet, planned_trip, seed, audit):
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)
        await services.trips.transition(
            planned_trip.id, TripState.COMPLETED, TripCompletion(actual_distance_km=95)
        )

        (payment,) = await seed.all(DriverPaymentModel)
        assert payment.state == PaymentState.PENDING
        assert payment.amount == Decimal("250.00")
        assert payment.trip_id == planned_trip.id
        assert payment.driver_id == fleet.driver.id
        assert payment.ledger_key == f"trip:{planned_trip.id}"
        assert payment.description == "Quarry North - Harbour Yard"
        assert payment.payment_method == "TRANSFER"
        assert "driver_payment.create" in audit.actions

    @pytest.mark.asyncio
    async def test_cancel_in_progress_frees_vehicle_without_payment(self, services, fleet, planned_trip, seed):
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)
        trip = await services.trips.transition(planned_trip.id, TripState.CANCELLED)

        assert trip.state == TripState.CANCELLED
        assert (await seed.get(VehicleModel, fleet.vehicle.id)).state == VehicleState.ACTIVE
        assert await seed.all(DriverPaymentModel) == []

    @pytest.mark.asyncio
    async def test_completed_trip_is_immutable(self, services, planned_trip):
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)
        await services.trips.transition(planned_trip.id, TripState.COMPLETED)
        for target in (TripState.CANCELLED, TripState.IN_PROGRESS, TripState.COMPLETED):
            with pytest.raises(InvalidTransition):
                await services.trips.transition(planned_trip.id, target)

    @pytest.mark.asyncio
    async def test_cannot_start_while_vehicle_in_shop(self, services, fleet, planned_trip):
        await services.maintenance.create(
            MaintenanceDraft(
                vehicle_id=fleet.vehicle.id, kind=MaintenanceKind.CORRECTIVE, shop="Diesel Bros"
            )
        )
        with pytest.raises(PreconditionFailed, match="maintenance"):
            await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_concurrent_completion_creates_one_payment(self, services, fleet, planned_trip, seed):
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)

        results = await asyncio.gather(
            services.trips.transition(planned_trip.id, TripState.COMPLETED),
            services.trips.transition(planned_trip.id, TripState.COMPLETED),
            return_exceptions=True,
        )

        completed = [r for r in results if isinstance(r, TripModel)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(completed) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], (InvalidTransition, Conflict))

        payments = await seed.all(DriverPaymentModel)
        assert len(payments) == 1
        assert payments[0].amount == Decimal("250.00")


class TestClientPayments:
    @pytest.mark.asyncio
    async def test_payments_up_to_tariff(self, services, planned_trip):
        trip = await services.trips.register_client_payment(planned_trip.id, Decimal("400"))
        assert trip.client_payment_state == ClientPaymentState.PARTIAL

        trip = await services.trips.register_client_payment(planned_trip.id, Decimal("600"))
        assert trip.client_payment_state == ClientPaymentState.PAID
        assert trip.amount_paid_by_client == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_overpayment_is_rejected(self, services, planned_trip, seed):
        await services.trips.register_client_payment(planned_trip.id, Decimal("400"))
        with pytest.raises(PreconditionFailed, match="600"):
            await services.trips.register_client_payment(planned_trip.id, Decimal("700"))

        trip = await seed.get(TripModel, planned_trip.id)
        assert trip.client_payment_state == ClientPaymentState.PARTIAL
        assert trip.amount_paid_by_client == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, services, planned_trip):
        with pytest.raises(PreconditionFailed):
            await services.trips.register_client_payment(planned_trip.id, Decimal("0"))

    @pytest.mark.asyncio
    async def test_allowed_after_completion(self, services, planned_trip):
        await services.trips.transition(planned_trip.id, TripState.IN_PROGRESS)
        await services.trips.transition(planned_trip.id, TripState.COMPLETED)
        trip = await services.trips.register_client_payment(planned_trip.id, Decimal("1000"))
        assert trip.state == TripState.COMPLETED
        assert trip.client_payment_state == ClientPaymentState.PAID

    @pytest.mark.asyncio
    async def test_unknown_trip(self, services):
        with pytest.raises(NotFound):
            await services.trips.register_client_payment(77, Decimal("10"))
