"""
Vehicle reconciliation
======================

The only place that writes vehicle state.  The trip and maintenance
machines call in here inside their own atomic unit after changing their
aggregate, and the vehicle is derived from what is open against it:

* INACTIVE vehicles are never touched (retired by an operator)
* an IN_PROGRESS maintenance ticket  -> IN_MAINTENANCE
* otherwise an IN_PROGRESS trip      -> ON_ROUTE
* otherwise                          -> ACTIVE

Every call flags ``updated_at`` as modified so the versioned UPDATE always
runs, even when nothing else changed: two transactions reconciling the
same vehicle from one snapshot cannot both commit.

Odometer semantics differ by caller: a completed trip *adds* its actual
distance, a completed service *overwrites* the reading (ground truth from
the shop) but never moves it backwards.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from haulage.domain.enums import MaintenanceState, VehicleState
from haulage.domain.errors import PreconditionFailed
from haulage.infrastructure.models import VehicleModel
from haulage.infrastructure.repositories import MaintenanceRepository, TripRepository

logger = logging.getLogger(__name__)


async def reconcile_vehicle(
    session: AsyncSession, vehicle: VehicleModel, now: datetime
) -> VehicleState:
    """Derive the vehicle's state from its open trips and tickets."""
    if vehicle.state == VehicleState.INACTIVE:
        return vehicle.state

    in_shop = await MaintenanceRepository(session).find_open_for_vehicle(
        vehicle.id, states=(MaintenanceState.IN_PROGRESS,)
    )
    if in_shop is not None:
        target = VehicleState.IN_MAINTENANCE
    elif await TripRepository(session).has_in_progress_for_vehicle(vehicle.id):
        target = VehicleState.ON_ROUTE
    else:
        target = VehicleState.ACTIVE

    if vehicle.state != target:
        logger.info("Vehicle %s: %s -> %s", vehicle.plate, vehicle.state.value, target.value)
    vehicle.state = target
    vehicle.updated_at = now
    flag_modified(vehicle, "updated_at")
    return target


def advance_odometer(vehicle: VehicleModel, km: float) -> int:
    vehicle.current_odometer = (vehicle.current_odometer or 0) + int(round(km))
    return vehicle.current_odometer


def reset_odometer(vehicle: VehicleModel, reading: int) -> int:
    current = vehicle.current_odometer or 0
    if reading < current:
        raise PreconditionFailed(
            f"Odometer reading {reading} km is below the current reading of "
            f"{current} km for vehicle {vehicle.plate}"
        )
    vehicle.current_odometer = reading
    return reading
