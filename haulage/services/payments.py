"""
Driver Payment Ledger
=====================

Payments owed to drivers, either per completed trip or as salary.

Invariants
----------
* PENDING + PAID payments linked to a trip never exceed the trip's
  ``driver_agreed_amount`` (plus a cent of rounding slack).
* A partial settlement splits the record: the original becomes PAID for the
  amount actually paid and a new PENDING record holds the remainder, so the
  total is conserved.
* Generated entries carry a unique ``ledger_key``; a second writer racing
  on the same key fails with ``Conflict`` instead of double-paying.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseService
from haulage.domain.entities import DriverBalance, Period, SalaryPayout
from haulage.domain.enums import PAYMENT_TRANSITIONS, PaymentState, PayoutMode, ReceiptKind
from haulage.domain.errors import NotFound, PreconditionFailed
from haulage.domain.ledger import ZERO, money, month_bounds
from haulage.domain.rules import ensure_transition
from haulage.infrastructure.audit import snapshot
from haulage.infrastructure.models import DriverModel, DriverPaymentModel, TripModel
from haulage.infrastructure.repositories import (
    DriverPaymentRepository,
    DriverRepository,
    TripRepository,
)
from haulage.schemas import DriverPaymentDraft, ReceiptUpload, Settlement

logger = logging.getLogger(__name__)

PAYMENT_FIELDS = (
    "driver_id",
    "trip_id",
    "amount",
    "state",
    "scheduled_on",
    "paid_at",
    "payment_method",
    "description",
    "ledger_key",
)


async def open_trip_payout(
    session: AsyncSession, trip: TripModel, driver: Optional[DriverModel]
) -> Optional[DriverPaymentModel]:
    """Create the pending payout for a completed per-trip haul, if absent."""
    amount = money(trip.driver_agreed_amount)
    if driver is None or driver.payout_mode != PayoutMode.PER_TRIP or amount <= 0:
        return None

    repo = DriverPaymentRepository(session)
    if await repo.find_by_trip(trip.id) is not None:
        return None

    return await repo.create(
        DriverPaymentModel(
            driver_id=driver.id,
            trip_id=trip.id,
            amount=amount,
            state=PaymentState.PENDING,
            scheduled_on=trip.actual_arrival_at.date(),
            payment_method=driver.payment_method,
            description=f"{trip.origin} - {trip.destination}",
            ledger_key=f"trip:{trip.id}",
        )
    )


class DriverPaymentService(BaseService):
    async def create(
        self,
        draft: DriverPaymentDraft,
        receipt: Optional[ReceiptUpload] = None,
        *,
        actor_id: Any = None,
    ) -> DriverPaymentModel:
        """Record a manual payment (advance, bonus, settlement of a trip)."""
        now = self.clock.now()
        amount = money(draft.amount)

        async with self.store.atomic() as session:
            driver = await DriverRepository(session).get_by_id(draft.driver_id)
            if driver is None:
                raise NotFound("Driver", draft.driver_id)
            if amount <= 0:
                raise PreconditionFailed("Payment amount must be greater than zero")

            payments = DriverPaymentRepository(session)
            if draft.trip_id is not None:
                trip = await TripRepository(session).get_for_update(draft.trip_id)
                if trip is None:
                    raise NotFound("Trip", draft.trip_id)
                if trip.driver_id != driver.id:
                    raise PreconditionFailed(
                        f"Trip #{trip.id} was not driven by driver #{driver.id}"
                    )
                agreed = money(trip.driver_agreed_amount)
                prior = await payments.sum_for_trip(trip.id)
                if prior + amount > agreed + self.config.trip_payment_tolerance:
                    remaining = max(agreed - prior, ZERO)
                    raise PreconditionFailed(
                        f"Payments for trip #{trip.id} would exceed the agreed "
                        f"amount of {agreed}; at most {remaining} remains"
                    )

            receipt_row = None
            if receipt is not None:
                receipt_row = await self._store_receipt(
                    session, receipt, ReceiptKind.DRIVER_PAYMENT, "driver-payments"
                )

            payment = await payments.create(
                DriverPaymentModel(
                    driver_id=driver.id,
                    trip_id=draft.trip_id,
                    amount=amount,
                    state=PaymentState.PAID if draft.already_paid else PaymentState.PENDING,
                    scheduled_on=draft.scheduled_on,
                    paid_at=now if draft.already_paid else None,
                    payment_method=draft.payment_method or driver.payment_method,
                    description=draft.description,
                    receipt_id=receipt_row.id if receipt_row else None,
                )
            )

        await self._audit(
            actor_id,
            "driver_payment.create",
            "driver_payment",
            payment.id,
            after=snapshot(payment, *PAYMENT_FIELDS),
        )
        return payment

    async def settle(
        self,
        payment_id: int,
        settlement: Optional[Settlement] = None,
        receipt: Optional[ReceiptUpload] = None,
        *,
        actor_id: Any = None,
    ) -> DriverPaymentModel:
        """Mark a pending payment paid, splitting off any unpaid remainder."""
        settlement = settlement or Settlement()
        now = self.clock.now()
        tolerance = self.config.settlement_tolerance
        remainder_row = None

        async with self.store.atomic() as session:
            payments = DriverPaymentRepository(session)
            payment = await payments.get_for_update(payment_id)
            if payment is None:
                raise NotFound("Driver payment", payment_id)
            ensure_transition(
                "driver payment", PAYMENT_TRANSITIONS, payment.state, PaymentState.PAID
            )

            pending = money(payment.amount)
            to_pay = money(settlement.amount) if settlement.amount is not None else pending
            if to_pay <= 0:
                raise PreconditionFailed("Amount paid must be greater than zero")
            if to_pay > pending + tolerance:
                raise PreconditionFailed(
                    f"Amount paid ({to_pay}) exceeds the pending amount ({pending})"
                )

            receipt_row = None
            if receipt is not None:
                receipt_row = await self._store_receipt(
                    session, receipt, ReceiptKind.DRIVER_PAYMENT, "driver-payments"
                )

            before = snapshot(payment, *PAYMENT_FIELDS)
            remainder = pending - to_pay
            if remainder > tolerance:
                payment.amount = to_pay
                remainder_row = await payments.create(
                    DriverPaymentModel(
                        driver_id=payment.driver_id,
                        trip_id=payment.trip_id,
                        amount=remainder,
                        state=PaymentState.PENDING,
                        scheduled_on=payment.scheduled_on,
                        payment_method=payment.payment_method,
                        description=f"Remaining balance of payment #{payment.id}",
                    )
                )

            payment.state = PaymentState.PAID
            payment.paid_at = settlement.paid_at or now
            if settlement.payment_method:
                payment.payment_method = settlement.payment_method
            if settlement.description:
                payment.description = settlement.description
            if receipt_row is not None:
                payment.receipt_id = receipt_row.id

        await self._audit(
            actor_id,
            "driver_payment.settle",
            "driver_payment",
            payment.id,
            before=before,
            after=snapshot(payment, *PAYMENT_FIELDS),
        )
        if remainder_row is not None:
            logger.info(
                "Payment #%d partially settled: %s paid, %s carried to #%d",
                payment.id,
                payment.amount,
                remainder_row.amount,
                remainder_row.id,
            )
            await self._audit(
                actor_id,
                "driver_payment.split",
                "driver_payment",
                remainder_row.id,
                after=snapshot(remainder_row, *PAYMENT_FIELDS),
            )
        return payment

    async def balance(
        self, driver_id: int, period: Optional[Period] = None, *, actor_id: Any = None
    ) -> DriverBalance:
        period = period or Period()
        async with self.store.session() as session:
            driver = await DriverRepository(session).get_by_id(driver_id)
            if driver is None:
                raise NotFound("Driver", driver_id)
            payments = DriverPaymentRepository(session)

            if driver.payout_mode == PayoutMode.PER_TRIP:
                generated = await TripRepository(session).sum_completed_agreed(
                    driver.id, period
                )
                paid = await payments.sum_for_driver(
                    driver.id, period, state=PaymentState.PAID
                )
                return DriverBalance(
                    driver_id=driver.id,
                    payout_mode=driver.payout_mode,
                    generated=generated,
                    paid=paid,
                    pending=generated - paid,
                )

            generated = await payments.sum_for_driver(driver.id, period, trip_less=True)
            pending = await payments.sum_for_driver(
                driver.id, period, state=PaymentState.PENDING, trip_less=True
            )
            return DriverBalance(
                driver_id=driver.id,
                payout_mode=driver.payout_mode,
                generated=generated,
                paid=generated - pending,
                pending=pending,
                monthly_salary=money(driver.monthly_salary),
                pay_day=driver.hired_on.day if driver.hired_on else None,
                biweekly=driver.biweekly,
            )

    async def generate_salary_payout(
        self, plan: SalaryPayout, payment_method: Optional[str] = None, *, actor_id: Any = None
    ) -> Optional[DriverPaymentModel]:
        """Create the payout for *plan* unless one exists for that month and slot."""
        month_start, month_end = month_bounds(plan.pay_date)
        async with self.store.atomic() as session:
            payments = DriverPaymentRepository(session)
            existing = await payments.find_salary_payout(
                plan.driver_id, month_start, month_end, plan.tag, plan.ledger_key
            )
            if existing is not None:
                return None
            payment = await payments.create(
                DriverPaymentModel(
                    driver_id=plan.driver_id,
                    amount=plan.amount,
                    state=PaymentState.PENDING,
                    scheduled_on=plan.pay_date,
                    payment_method=payment_method,
                    description=plan.description,
                    ledger_key=plan.ledger_key,
                )
            )

        await self._audit(
            actor_id,
            "driver_payment.salary",
            "driver_payment",
            payment.id,
            after=snapshot(payment, *PAYMENT_FIELDS),
        )
        return payment
