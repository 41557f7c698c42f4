"""
Shared test fixtures.

Each test gets its own SQLite database file (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` lets
concurrent sessions see each other's commits, which the race tests need.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from haulage.clock import FrozenClock
from haulage.config import Settings
from haulage.container import Services, build_services
from haulage.domain.enums import PartyStatus, PayoutMode, VehicleState
from haulage.infrastructure.database import Base, make_engine, make_session_factory
from haulage.infrastructure.models import (
    ClientModel,
    DriverModel,
    MaterialModel,
    TripModel,
    VehicleModel,
)
from haulage.infrastructure.receipts import LocalReceiptStorage
from haulage.schemas import TripDraft

NOW = datetime(2026, 3, 10, 8, 0)


# ── Doubles ───────────────────────────────────────────────────────────


@dataclass
class AuditRecord:
    actor_id: Any
    action: str
    entity_kind: str
    entity_id: Any
    before: Optional[dict]
    after: Optional[dict]


@dataclass
class RecordingAuditSink:
    records: list[AuditRecord] = field(default_factory=list)

    async def record(self, actor_id, action, entity_kind, entity_id, before=None, after=None):
        self.records.append(AuditRecord(actor_id, action, entity_kind, entity_id, before, after))

    @property
    def actions(self) -> list[str]:
        return [r.action for r in self.records]


class FailingReceiptStorage:
    async def store(self, data, folder, filename):
        raise OSError("receipt bucket unavailable")


# ── Seeding ───────────────────────────────────────────────────────────


@dataclass
class Fleet:
    """A ready-to-haul vehicle, per-trip driver, client and material."""

    vehicle: VehicleModel
    driver: DriverModel
    client: ClientModel
    material: MaterialModel


class Seeder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._seq = itertools.count(1)

    async def add(self, entity):
        async with self.session_factory() as session:
            session.add(entity)
            await session.commit()
        return entity

    async def vehicle(self, **overrides) -> VehicleModel:
        fields = dict(
            plate=f"TRK-{next(self._seq):03d}",
            state=VehicleState.ACTIVE,
            current_odometer=10_000,
        )
        fields.update(overrides)
        return await self.add(VehicleModel(**fields))

    async def driver(self, **overrides) -> DriverModel:
        fields = dict(
            first_name="Ana",
            last_name=f"Driver{next(self._seq)}",
            status=PartyStatus.ACTIVE,
            payout_mode=PayoutMode.PER_TRIP,
            payment_method="TRANSFER",
        )
        fields.update(overrides)
        return await self.add(DriverModel(**fields))

    async def client(self, **overrides) -> ClientModel:
        fields = dict(name=f"Client {next(self._seq)}", status=PartyStatus.ACTIVE)
        fields.update(overrides)
        return await self.add(ClientModel(**fields))

    async def material(self, name: str = "Gravel") -> MaterialModel:
        return await self.add(MaterialModel(name=name))

    async def get(self, model, entity_id):
        async with self.session_factory() as session:
            return await session.get(model, entity_id)

    async def all(self, model, *criteria) -> list:
        async with self.session_factory() as session:
            result = await session.execute(
                select(model).where(*criteria).order_by(model.id)
            )
            return list(result.scalars().all())


def trip_draft(fleet: Fleet, **overrides) -> TripDraft:
    fields = dict(
        vehicle_id=fleet.vehicle.id,
        driver_id=fleet.driver.id,
        client_id=fleet.client.id,
        material_id=fleet.material.id,
        origin="Quarry North",
        destination="Harbour Yard",
        departure_at=NOW + timedelta(hours=2),
        estimated_arrival_at=NOW + timedelta(hours=8),
        estimated_distance_km=100,
        tariff=Decimal("1000"),
        driver_agreed_amount=Decimal("250"),
    )
    fields.update(overrides)
    return TripDraft(**fields)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, audit_backend="log")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, then dispose the engine."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'haulage.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def services(session_factory, clock, audit, config, tmp_path) -> Services:
    return await build_services(
        session_factory,
        clock=clock,
        audit=audit,
        receipts=LocalReceiptStorage(tmp_path / "receipts"),
        config=config,
    )


@pytest_asyncio.fixture
async def fleet(seed) -> Fleet:
    return Fleet(
        vehicle=await seed.vehicle(),
        driver=await seed.driver(),
        client=await seed.client(),
        material=await seed.material(),
    )


@pytest_asyncio.fixture
async def planned_trip(services, fleet) -> TripModel:
    return await services.trips.create(trip_draft(fleet), actor_id="dispatcher")
