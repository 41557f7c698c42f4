"""
Service wiring.

``build_services`` assembles the store, clock, audit sink and receipt
storage into the operations exposed to callers::

    services.trips.create / transition / register_client_payment
    services.maintenance.create / start / complete / cancel
    services.payments.create / settle / balance
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from haulage.clock import Clock, SystemClock
from haulage.config import Settings, settings
from haulage.infrastructure.audit import AuditSink, LoggingAuditSink, RedisAuditSink
from haulage.infrastructure.receipts import LocalReceiptStorage, ReceiptStorage
from haulage.infrastructure.redis_client import get_redis
from haulage.infrastructure.store import Store
from haulage.services.maintenance import MaintenanceService
from haulage.services.payments import DriverPaymentService
from haulage.services.trips import TripService
from haulage.workers.automation import AutomationTicks, build_scheduler
from haulage.workers.scheduler import Scheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: Store
    clock: Clock
    trips: TripService
    maintenance: MaintenanceService
    payments: DriverPaymentService
    ticks: AutomationTicks
    config: Settings

    def scheduler(self) -> Scheduler:
        return build_scheduler(self.ticks, self.clock, self.config)


async def build_audit_sink(config: Settings = settings) -> AuditSink:
    if config.audit_backend == "redis":
        return RedisAuditSink(await get_redis(), config.audit_stream)
    logger.info("Audit records go to the application log")
    return LoggingAuditSink()


async def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Optional[Clock] = None,
    audit: Optional[AuditSink] = None,
    receipts: Optional[ReceiptStorage] = None,
    config: Settings = settings,
) -> Services:
    store = Store(session_factory)
    clock = clock or SystemClock()
    if audit is None:
        audit = await build_audit_sink(config)
    if receipts is None:
        receipts = LocalReceiptStorage(config.receipts_dir)

    common = dict(store=store, clock=clock, audit=audit, receipts=receipts, config=config)
    trips = TripService(**common)
    maintenance = MaintenanceService(**common)
    payments = DriverPaymentService(**common)
    ticks = AutomationTicks(store, trips, maintenance, payments, clock, config)
    return Services(
        store=store,
        clock=clock,
        trips=trips,
        maintenance=maintenance,
        payments=payments,
        ticks=ticks,
        config=config,
    )
