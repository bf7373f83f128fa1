from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from catalogforge.core.errors import BudgetError, BudgetExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetSnapshot:
    ceiling: float
    spent: float
    reserved: float

    @property
    def enforced(self) -> bool:
        return self.ceiling > 0

    @property
    def remaining(self) -> float | None:
        if not self.enforced:
            return None
        return max(0.0, self.ceiling - self.spent - self.reserved)

    def to_dict(self) -> dict[str, float | None]:
        return {
            "ceiling_usd": self.ceiling,
            "spent_usd": round(self.spent, 6),
            "reserved_usd": round(self.reserved, 6),
            "remaining_usd": None if self.remaining is None else round(self.remaining, 6),
        }


@dataclass(slots=True)
class BudgetReservation:
    amount: float
    settled: bool = field(default=False)


class BudgetTracker:
    """Spend accounting shared by every worker of one document run.

    ``reserve`` checks and books an estimate under a lock, so concurrent
    workers can never jointly push ``spent + reserved`` past the ceiling.
    A ceiling of zero or less disables enforcement.
    """

    def __init__(self, ceiling: float) -> None:
        self.ceiling = float(ceiling)
        self._spent = 0.0
        self._reserved = 0.0
        self._lock = threading.Lock()

    @property
    def enforced(self) -> bool:
        return self.ceiling > 0

    def _check(self, cost: float) -> None:
        if not self.enforced:
            return
        projected = self._spent + self._reserved + cost
        if projected > self.ceiling + 1e-12:
            raise BudgetExceededError(
                f"Budget exceeded: spent {self._spent:.4f} + reserved {self._reserved:.4f} "
                f"+ requested {cost:.4f} > ceiling {self.ceiling:.4f} USD"
            )

    def ensure_available(self, cost: float) -> None:
        with self._lock:
            self._check(cost)

    def reserve(self, cost: float) -> BudgetReservation:
        if cost < 0:
            raise BudgetError(f"Cannot reserve a negative amount: {cost}")
        with self._lock:
            self._check(cost)
            self._reserved += cost
        return BudgetReservation(amount=cost)

    def settle(self, reservation: BudgetReservation, actual_cost: float) -> None:
        """Release the reservation and book what was actually spent (0 on failure)."""
        if actual_cost < 0:
            raise BudgetError(f"Cannot settle a negative cost: {actual_cost}")
        with self._lock:
            if reservation.settled:
                raise BudgetError("Reservation has already been settled")
            reservation.settled = True
            self._reserved = max(0.0, self._reserved - reservation.amount)
            self._spent += actual_cost
        if self.enforced and actual_cost > reservation.amount:
            logger.debug(
                "Actual cost %.4f exceeded the reserved estimate %.4f", actual_cost, reservation.amount
            )

    def snapshot(self) -> BudgetSnapshot:
        with self._lock:
            return BudgetSnapshot(ceiling=self.ceiling, spent=self._spent, reserved=self._reserved)
