# src/stablepay/amounts.py
"""
Amount disambiguation.

An invoice for 10.00 USDT is turned into e.g. 10.37 so that an anonymous
transfer of exactly 10.37 can be attributed to it. Uniqueness holds per
scope (network_key, token) among reserved amounts.
"""
import logging
import random
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from stablepay.exceptions import InvalidAmountError
from stablepay.scheduler import SystemClock

logger = logging.getLogger(__name__)

Scope = tuple[str, str]

INCREMENT_UNIT = Decimal("0.01")
MAX_INCREMENT_UNITS = 99
MAX_ATTEMPTS = 50
DEFAULT_TTL = 24 * 60 * 60


class AmountDisambiguator:
    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL,
        clock=None,
        rng: Optional[random.Random] = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._max_attempts = max_attempts
        # scope -> amount -> reservation expiry
        self._reserved: dict[Scope, dict[Decimal, datetime]] = {}

    def __len__(self) -> int:
        return sum(len(v) for v in self._reserved.values())

    def is_reserved(self, scope: Scope, amount: Decimal) -> bool:
        return amount in self._reserved.get(scope, {})

    def reserve(self, base_amount: Decimal, scope: Scope, precision: int = 6) -> Decimal:
        """
        Picks base + k * 0.01 (k random in 1..99) not yet reserved in scope.

        After `max_attempts` collisions falls back to an increment derived
        from the current time and walks up one display unit at a time until
        a free value is found, so the call always terminates with a unique
        amount.
        """
        quantum = Decimal(1).scaleb(-precision)
        try:
            (base_amount + MAX_INCREMENT_UNITS * INCREMENT_UNIT).quantize(quantum)
        except InvalidOperation as e:
            raise InvalidAmountError(
                f"Amount {base_amount} cannot be represented with {precision} decimal places"
            ) from e
        taken = self._reserved.setdefault(scope, {})

        amount = None
        for _ in range(self._max_attempts):
            units = self._rng.randint(1, MAX_INCREMENT_UNITS)
            candidate = (base_amount + units * INCREMENT_UNIT).quantize(quantum)
            if candidate not in taken:
                amount = candidate
                break

        if amount is None:
            millis = int(self._clock.now().timestamp() * 1000)
            amount = (base_amount + (millis % 100) * INCREMENT_UNIT).quantize(quantum)
            while amount in taken:
                amount += quantum
            logger.warning(
                f"Amount space crowded for {scope[0]}/{scope[1]} around {base_amount}; "
                f"fell back to {amount}"
            )

        taken[amount] = self._clock.now() + self._ttl
        return amount

    def release(self, scope: Scope, amount: Decimal) -> bool:
        taken = self._reserved.get(scope)
        if not taken or amount not in taken:
            return False
        del taken[amount]
        if not taken:
            del self._reserved[scope]
        return True

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drops reservations older than the TTL, whatever their payment's status."""
        now = now or self._clock.now()
        dropped = 0
        for scope in list(self._reserved):
            taken = self._reserved[scope]
            for amount in [a for a, until in taken.items() if until <= now]:
                del taken[amount]
                dropped += 1
            if not taken:
                del self._reserved[scope]
        if dropped:
            logger.info(f"Released {dropped} stale amount reservations")
        return dropped
