from __future__ import annotations

import threading

import pytest

from catalogforge.application.services.budget_service import BudgetTracker
from catalogforge.core.errors import BudgetError, BudgetExceededError


def test_reserve_and_settle_books_actual_cost() -> None:
    budget = BudgetTracker(1.0)

    reservation = budget.reserve(0.4)
    assert budget.snapshot().reserved == pytest.approx(0.4)

    budget.settle(reservation, 0.25)
    snapshot = budget.snapshot()
    assert snapshot.reserved == pytest.approx(0.0)
    assert snapshot.spent == pytest.approx(0.25)
    assert snapshot.remaining == pytest.approx(0.75)


def test_exceeding_reservation_leaves_state_unchanged() -> None:
    budget = BudgetTracker(1.0)
    budget.settle(budget.reserve(0.7), 0.7)
    before = budget.snapshot()

    with pytest.raises(BudgetExceededError):
        budget.reserve(0.5)

    assert budget.snapshot() == before


def test_settle_twice_is_rejected() -> None:
    budget = BudgetTracker(1.0)
    reservation = budget.reserve(0.1)
    budget.settle(reservation, 0.0)

    with pytest.raises(BudgetError):
        budget.settle(reservation, 0.0)


def test_non_positive_ceiling_disables_enforcement() -> None:
    budget = BudgetTracker(0)

    budget.settle(budget.reserve(500.0), 500.0)

    snapshot = budget.snapshot()
    assert snapshot.enforced is False
    assert snapshot.remaining is None
    assert snapshot.to_dict()["remaining_usd"] is None


def test_concurrent_reservations_never_pass_the_ceiling() -> None:
    budget = BudgetTracker(1.0)
    granted: list[float] = []
    refused: list[float] = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def worker() -> None:
        start.wait()
        for _ in range(10):
            try:
                reservation = budget.reserve(0.125)
            except BudgetExceededError:
                with lock:
                    refused.append(0.125)
                continue
            budget.settle(reservation, 0.125)
            with lock:
                granted.append(0.125)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = budget.snapshot()
    assert snapshot.spent <= 1.0 + 1e-9
    assert snapshot.reserved == pytest.approx(0.0)
    assert len(granted) == 8
    assert len(refused) == 72
