"""
Maintenance State Machine
=========================

::

    PENDING ──► IN_PROGRESS ──► COMPLETED
       │
       └──► CANCELLED

* PREVENTIVE tickets start PENDING and leave the vehicle alone until
  started.
* CORRECTIVE tickets start IN_PROGRESS (the truck is already at the shop)
  and take the vehicle out of service at once.
* A vehicle has at most one open (PENDING / IN_PROGRESS) ticket; the
  partial unique index backs the existence check against races.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from .base import BaseService
from .fleet import reconcile_vehicle, reset_odometer
from haulage.domain.enums import (
    MAINTENANCE_TRANSITIONS,
    MaintenanceKind,
    MaintenanceState,
    ReceiptKind,
    VehicleState,
)
from haulage.domain.errors import NotFound, PreconditionFailed
from haulage.domain.ledger import money
from haulage.domain.rules import ensure_transition
from haulage.infrastructure.audit import snapshot
from haulage.infrastructure.models import MaintenanceModel
from haulage.infrastructure.repositories import (
    MaintenanceRepository,
    TripRepository,
    VehicleRepository,
)
from haulage.schemas import MaintenanceCompletion, MaintenanceDraft, ReceiptUpload

logger = logging.getLogger(__name__)

TICKET_FIELDS = (
    "vehicle_id",
    "kind",
    "state",
    "shop",
    "labor_cost",
    "parts_cost",
    "total_cost",
    "scheduled_on",
    "started_at",
    "finished_at",
    "odometer_at_service",
    "next_due_odometer",
    "next_due_on",
)


class MaintenanceService(BaseService):
    async def create(
        self,
        draft: MaintenanceDraft,
        receipt: Optional[ReceiptUpload] = None,
        *,
        actor_id: Any = None,
    ) -> MaintenanceModel:
        now = self.clock.now()
        corrective = draft.kind == MaintenanceKind.CORRECTIVE

        async with self.store.atomic() as session:
            vehicle = await VehicleRepository(session).get_for_update(draft.vehicle_id)
            if vehicle is None:
                raise NotFound("Vehicle", draft.vehicle_id)
            if vehicle.state == VehicleState.INACTIVE:
                raise PreconditionFailed(f"Vehicle {vehicle.plate} is inactive")

            shop = (draft.shop or "").strip()
            if corrective and not shop:
                raise PreconditionFailed("Corrective maintenance requires a shop")

            tickets = MaintenanceRepository(session)
            open_ticket = await tickets.find_open_for_vehicle(vehicle.id)
            if open_ticket is not None:
                raise PreconditionFailed(
                    f"Vehicle {vehicle.plate} already has open maintenance "
                    f"#{open_ticket.id} ({open_ticket.state.value})"
                )

            receipt_row = None
            if receipt is not None:
                receipt_row = await self._store_receipt(
                    session, receipt, ReceiptKind.MAINTENANCE, "maintenance"
                )

            ticket = await tickets.create(
                MaintenanceModel(
                    vehicle_id=vehicle.id,
                    kind=draft.kind,
                    state=MaintenanceState.IN_PROGRESS if corrective else MaintenanceState.PENDING,
                    description=draft.description,
                    shop=shop,
                    scheduled_on=draft.scheduled_on or now.date(),
                    started_at=now if corrective else None,
                    odometer_at_service=(
                        draft.odometer_at_service
                        if draft.odometer_at_service is not None
                        else vehicle.current_odometer
                    ),
                    next_due_on=draft.next_due_on,
                    next_due_odometer=draft.next_due_odometer,
                    receipt_id=receipt_row.id if receipt_row else None,
                    created_at=now,
                )
            )
            if corrective:
                await reconcile_vehicle(session, vehicle, now)

        await self._audit(
            actor_id,
            "maintenance.create",
            "maintenance",
            ticket.id,
            after=snapshot(ticket, *TICKET_FIELDS),
        )
        return ticket

    async def start(
        self, ticket_id: int, shop: Optional[str] = None, *, actor_id: Any = None
    ) -> MaintenanceModel:
        now = self.clock.now()

        async with self.store.atomic() as session:
            ticket = await MaintenanceRepository(session).get_for_update(ticket_id)
            if ticket is None:
                raise NotFound("Maintenance", ticket_id)
            ensure_transition(
                "maintenance", MAINTENANCE_TRANSITIONS, ticket.state, MaintenanceState.IN_PROGRESS
            )
            before = snapshot(ticket, *TICKET_FIELDS)

            vehicle = await VehicleRepository(session).get_for_update(ticket.vehicle_id)
            open_trips = await TripRepository(session).count_open_for_vehicle(vehicle.id)
            if open_trips:
                raise PreconditionFailed(
                    f"Vehicle {vehicle.plate} has {open_trips} planned or "
                    "in-progress trip(s); finish or cancel them first"
                )
            shop = (shop or ticket.shop or "").strip()
            if not shop:
                raise PreconditionFailed("A shop is required to start maintenance")

            ticket.shop = shop
            ticket.state = MaintenanceState.IN_PROGRESS
            ticket.started_at = now
            await reconcile_vehicle(session, vehicle, now)

        await self._audit(
            actor_id,
            "maintenance.start",
            "maintenance",
            ticket.id,
            before=before,
            after=snapshot(ticket, *TICKET_FIELDS),
        )
        return ticket

    async def complete(
        self,
        ticket_id: int,
        completion: MaintenanceCompletion,
        receipt: Optional[ReceiptUpload] = None,
        *,
        actor_id: Any = None,
    ) -> MaintenanceModel:
        """Close the ticket, record costs and put the vehicle back in service.

        A PENDING ticket is walked through IN_PROGRESS on the way.  A supplied
        odometer reading replaces the vehicle's current reading.
        """
        now = self.clock.now()

        async with self.store.atomic() as session:
            ticket = await MaintenanceRepository(session).get_for_update(ticket_id)
            if ticket is None:
                raise NotFound("Maintenance", ticket_id)
            before = snapshot(ticket, *TICKET_FIELDS)

            state = ticket.state
            if state == MaintenanceState.PENDING:
                ensure_transition(
                    "maintenance", MAINTENANCE_TRANSITIONS, state, MaintenanceState.IN_PROGRESS
                )
                state = MaintenanceState.IN_PROGRESS
            ensure_transition(
                "maintenance", MAINTENANCE_TRANSITIONS, state, MaintenanceState.COMPLETED
            )

            shop = completion.shop.strip()
            if not shop:
                raise PreconditionFailed("A shop is required to complete maintenance")

            vehicle = await VehicleRepository(session).get_for_update(ticket.vehicle_id)
            reading = completion.odometer_reading
            if reading is not None:
                reset_odometer(vehicle, reading)

            if receipt is not None:
                receipt_row = await self._store_receipt(
                    session, receipt, ReceiptKind.MAINTENANCE, "maintenance"
                )
                ticket.receipt_id = receipt_row.id

            labor = money(completion.labor_cost)
            parts = money(completion.parts_cost)
            ticket.shop = shop
            ticket.labor_cost = labor
            ticket.parts_cost = parts
            ticket.total_cost = labor + parts
            if completion.description:
                ticket.description = completion.description
            ticket.started_at = ticket.started_at or now
            ticket.finished_at = now
            if reading is not None:
                ticket.odometer_at_service = reading
            elif ticket.odometer_at_service is None:
                ticket.odometer_at_service = vehicle.current_odometer

            vehicle.last_maintenance_at = now
            if completion.next_due_odometer is not None:
                ticket.next_due_odometer = completion.next_due_odometer
                ticket.next_due_on = None
                vehicle.next_maintenance_odometer = completion.next_due_odometer
                vehicle.next_maintenance_on = None
            else:
                next_due = now.date() + timedelta(days=self.config.next_maintenance_days)
                ticket.next_due_on = next_due
                vehicle.next_maintenance_on = next_due

            ticket.state = MaintenanceState.COMPLETED
            await reconcile_vehicle(session, vehicle, now)

        logger.info(
            "Maintenance #%d completed for vehicle #%d (total %s)",
            ticket.id,
            ticket.vehicle_id,
            ticket.total_cost,
        )
        await self._audit(
            actor_id,
            "maintenance.complete",
            "maintenance",
            ticket.id,
            before=before,
            after=snapshot(ticket, *TICKET_FIELDS),
        )
        return ticket

    async def cancel(self, ticket_id: int, *, actor_id: Any = None) -> MaintenanceModel:
        async with self.store.atomic() as session:
            ticket = await MaintenanceRepository(session).get_for_update(ticket_id)
            if ticket is None:
                raise NotFound("Maintenance", ticket_id)
            ensure_transition(
                "maintenance", MAINTENANCE_TRANSITIONS, ticket.state, MaintenanceState.CANCELLED
            )
            before = snapshot(ticket, *TICKET_FIELDS)
            ticket.state = MaintenanceState.CANCELLED

        await self._audit(
            actor_id,
            "maintenance.cancel",
            "maintenance",
            ticket.id,
            before=before,
            after=snapshot(ticket, *TICKET_FIELDS),
        )
        return ticket
