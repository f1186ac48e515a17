"""Quota cooldown circuit breaker for the model gateway.

Once both upstream credentials fail with quota errors in a single call, the
guard rejects every further call for a fixed cooldown without touching the
network. Expiry is evaluated lazily on the next call; there is no timer, so
the guard needs no background scheduler in ephemeral runtimes.

A quota failure absorbed by the secondary key does not trip the breaker.

Example:
    >>> guard = QuotaCooldownGuard(gateway_client, cooldown=45 * 60)
    >>> result = await guard.call(GatewayRequest(prompt="..."))

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ideaverdict.errors import GatewayError, GatewayQuotaError, QuotaCooldownError
from ideaverdict.gateway import GatewayRequest, GatewayResult, ModelGatewayClient
from ideaverdict.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = 45 * 60.0


class GuardState(str, Enum):
    """Breaker states."""

    AVAILABLE = "available"
    COOLING_DOWN = "cooling_down"


@dataclass(frozen=True)
class QuotaState:
    """Process-wide record of confirmed upstream exhaustion."""

    exhausted_at: float
    both_keys_exhausted: bool = True


class QuotaCooldownGuard:
    """Wraps a ``ModelGatewayClient`` with a lazily-expiring cooldown."""

    def __init__(
        self,
        client: ModelGatewayClient,
        cooldown: float = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.cooldown = cooldown
        self._clock = clock
        self._quota_state: QuotaState | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> GuardState:
        return GuardState.AVAILABLE if self.remaining() == 0 else GuardState.COOLING_DOWN

    def remaining(self) -> float:
        """Seconds of cooldown left, resetting to Available once elapsed."""
        with self._lock:
            if self._quota_state is None or not self._quota_state.both_keys_exhausted:
                return 0.0

            left = self._quota_state.exhausted_at + self.cooldown - self._clock()
            if left <= 0:
                self._quota_state = None
                metrics.set_cooldown_active(False)
                logger.info("Quota cooldown expired, allowing new requests")
                return 0.0
            return left

    def is_available(self) -> bool:
        return self.remaining() == 0

    def trip(self) -> None:
        """Enter the cooling-down state starting now."""
        with self._lock:
            self._quota_state = QuotaState(exhausted_at=self._clock())
        metrics.inc_cooldown_trip()
        metrics.set_cooldown_active(True)
        logger.error(f"Both API keys exhausted. Cooldown for {self.cooldown / 60:.0f} minutes")

    async def call(self, request: GatewayRequest) -> GatewayResult:
        """Forward ``request`` to the gateway unless cooling down.

        Raises:
            QuotaCooldownError: Cooling down, or this call exhausted both keys.
            GatewayError: Any other gateway failure, unchanged.
        """
        left = self.remaining()
        if left > 0:
            metrics.inc_gateway_call("blocked")
            logger.warning(
                f"AI blocked - quota cooldown active ({left / 60:.0f} min remaining)"
            )
            raise QuotaCooldownError(left)

        try:
            result = await self.client.call(request)
        except GatewayQuotaError as e:
            metrics.inc_gateway_call("quota")
            if e.all_credentials_exhausted:
                self.trip()
                raise QuotaCooldownError(self.cooldown) from e
            raise
        except GatewayError:
            metrics.inc_gateway_call("error")
            raise

        metrics.inc_gateway_call("success")
        if result.used_fallback:
            metrics.inc_gateway_fallback()
        return result
