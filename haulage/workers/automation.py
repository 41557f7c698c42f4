"""
Automation ticks
================

The periodic jobs that move the machines forward without a human:

* ``start_due_trips``        -- PLANNED trips whose departure has passed
* ``open_due_maintenance``   -- preventive tickets for vehicles near service
* ``generate_salary_payouts`` -- salary entries around each pay date

Each tick collects candidates in a read-only session and then handles every
unit through the same service operation a human caller would use, in its
own transaction.  A failing unit is logged and skipped; the tick carries on
and returns the number of effects it applied.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from haulage.clock import Clock
from haulage.config import Settings, settings
from haulage.domain.entities import SalaryPayout
from haulage.domain.enums import MaintenanceKind, TripState
from haulage.domain.errors import DomainError, InvalidTransition
from haulage.domain.payroll import salary_payouts_due
from haulage.domain.rules import km_until_service
from haulage.infrastructure.repositories import (
    DriverRepository,
    MaintenanceRepository,
    TripRepository,
    VehicleRepository,
)
from haulage.infrastructure.store import Store
from haulage.schemas import MaintenanceDraft
from haulage.services.maintenance import MaintenanceService
from haulage.services.payments import DriverPaymentService
from haulage.services.trips import TripService
from haulage.workers.scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "scheduler"


class AutomationTicks:
    def __init__(
        self,
        store: Store,
        trips: TripService,
        maintenance: MaintenanceService,
        payments: DriverPaymentService,
        clock: Clock,
        config: Settings = settings,
    ):
        self.store = store
        self.trips = trips
        self.maintenance = maintenance
        self.payments = payments
        self.clock = clock
        self.config = config

    async def start_due_trips(self) -> int:
        now = self.clock.now()
        async with self.store.session() as session:
            due = await TripRepository(session).ids_due_for_start(now)

        started = 0
        for trip_id in due:
            try:
                await self.trips.transition(
                    trip_id, TripState.IN_PROGRESS, actor_id=SYSTEM_ACTOR
                )
                started += 1
            except InvalidTransition:
                # Started or cancelled by someone else since the scan
                logger.debug("Trip #%d no longer PLANNED", trip_id)
            except DomainError as exc:
                logger.warning("Trip #%d not started: %s", trip_id, exc.reason)
            except Exception:
                logger.exception("Error auto-starting trip #%d", trip_id)

        if started:
            logger.info("Trip auto-start: %d trips started", started)
        return started

    async def open_due_maintenance(self) -> int:
        interval = self.config.service_interval_km
        candidates: list[tuple[int, int, int]] = []
        async with self.store.session() as session:
            tickets = MaintenanceRepository(session)
            for vehicle in await VehicleRepository(session).list_in_service():
                last_service = await tickets.last_completed_odometer(vehicle.id)
                remaining = km_until_service(vehicle.current_odometer, last_service, interval)
                if remaining > self.config.maintenance_alert_km:
                    continue
                if await tickets.find_open_for_vehicle(vehicle.id) is not None:
                    continue
                candidates.append((vehicle.id, vehicle.current_odometer, remaining))

        opened = 0
        for vehicle_id, odometer, remaining in candidates:
            if remaining < 0:
                description = f"URGENT: vehicle is {-remaining} km past its service interval"
            else:
                description = f"Preventive maintenance - {remaining} km left until the next service"
            draft = MaintenanceDraft(
                vehicle_id=vehicle_id,
                kind=MaintenanceKind.PREVENTIVE,
                description=description,
                next_due_odometer=odometer + interval,
            )
            try:
                await self.maintenance.create(draft, actor_id=SYSTEM_ACTOR)
                opened += 1
            except DomainError as exc:
                logger.warning("No maintenance opened for vehicle #%d: %s", vehicle_id, exc.reason)
            except Exception:
                logger.exception("Error opening maintenance for vehicle #%d", vehicle_id)

        if opened:
            logger.info("Maintenance check: %d tickets opened", opened)
        return opened

    async def generate_salary_payouts(self) -> int:
        today = self.clock.now().date()
        plans: list[tuple[SalaryPayout, str]] = []
        async with self.store.session() as session:
            for driver in await DriverRepository(session).list_salaried_active():
                for plan in salary_payouts_due(
                    driver.id,
                    driver.monthly_salary,
                    driver.hired_on,
                    driver.biweekly,
                    today,
                    lead_days=self.config.payout_lead_days,
                    catchup_days=self.config.payout_catchup_days,
                ):
                    plans.append((plan, driver.payment_method))

        created = 0
        for plan, method in plans:
            try:
                payment = await self.payments.generate_salary_payout(
                    plan, method, actor_id=SYSTEM_ACTOR
                )
                if payment is not None:
                    created += 1
            except DomainError as exc:
                logger.warning(
                    "Salary payout %s not generated: %s", plan.ledger_key, exc.reason
                )
            except Exception:
                logger.exception("Error generating salary payout %s", plan.ledger_key)

        if created:
            logger.info("Salary payouts: %d generated", created)
        return created


def build_scheduler(ticks: AutomationTicks, clock: Clock, config: Settings = settings) -> Scheduler:
    return Scheduler(
        [
            ScheduledTask(
                "trip-autostart",
                timedelta(seconds=config.trip_autostart_interval_seconds),
                ticks.start_due_trips,
            ),
            ScheduledTask(
                "maintenance-check",
                timedelta(seconds=config.maintenance_check_interval_seconds),
                ticks.open_due_maintenance,
            ),
            ScheduledTask(
                "salary-payouts",
                timedelta(seconds=config.payout_check_interval_seconds),
                ticks.generate_salary_payouts,
            ),
        ],
        clock,
    )
