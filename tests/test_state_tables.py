"""Unit tests for the trip, maintenance and payment transition tables."""

import pytest

from haulage.domain.enums import (
    MAINTENANCE_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    TRIP_TRANSITIONS,
    MaintenanceState,
    PaymentState,
    TripState,
)
from haulage.domain.errors import InvalidTransition
from haulage.domain.rules import ensure_transition


def _trip(current, requested):
    ensure_transition("trip", TRIP_TRANSITIONS, current, requested)


def _ticket(current, requested):
    ensure_transition("maintenance", MAINTENANCE_TRANSITIONS, current, requested)


class TestTripStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, requested",
        [
            (TripState.PLANNED, TripState.IN_PROGRESS),
            (TripState.PLANNED, TripState.CANCELLED),
            (TripState.IN_PROGRESS, TripState.COMPLETED),
            (TripState.IN_PROGRESS, TripState.CANCELLED),
        ],
    )
    def test_allowed(self, current, requested):
        _trip(current, requested)

    # ── Invalid transitions ───────────────────────────────────────

    def test_planned_to_completed_fails(self):
        with pytest.raises(InvalidTransition):
            _trip(TripState.PLANNED, TripState.COMPLETED)

    @pytest.mark.parametrize("terminal", [TripState.COMPLETED, TripState.CANCELLED])
    @pytest.mark.parametrize("requested", list(TripState))
    def test_terminal_states_never_move(self, terminal, requested):
        with pytest.raises(InvalidTransition):
            _trip(terminal, requested)

    def test_error_carries_both_states(self):
        with pytest.raises(InvalidTransition) as err:
            _trip(TripState.COMPLETED, TripState.IN_PROGRESS)
        assert err.value.current == "COMPLETED"
        assert err.value.requested == "IN_PROGRESS"
        assert err.value.status_code == 409
        assert "COMPLETED" in err.value.reason


class TestMaintenanceStateMachine:
    def test_pending_can_start_or_cancel(self):
        _ticket(MaintenanceState.PENDING, MaintenanceState.IN_PROGRESS)
        _ticket(MaintenanceState.PENDING, MaintenanceState.CANCELLED)

    def test_in_progress_can_only_complete(self):
        _ticket(MaintenanceState.IN_PROGRESS, MaintenanceState.COMPLETED)
        with pytest.raises(InvalidTransition):
            _ticket(MaintenanceState.IN_PROGRESS, MaintenanceState.CANCELLED)

    def test_pending_cannot_jump_to_completed(self):
        with pytest.raises(InvalidTransition):
            _ticket(MaintenanceState.PENDING, MaintenanceState.COMPLETED)

    def test_completed_is_terminal(self):
        with pytest.raises(InvalidTransition):
            _ticket(MaintenanceState.COMPLETED, MaintenanceState.IN_PROGRESS)


class TestPaymentStateMachine:
    def test_pending_to_paid(self):
        ensure_transition("payment", PAYMENT_TRANSITIONS, PaymentState.PENDING, PaymentState.PAID)

    def test_paid_is_terminal(self):
        with pytest.raises(InvalidTransition):
            ensure_transition(
                "payment", PAYMENT_TRANSITIONS, PaymentState.PAID, PaymentState.PAID
            )
