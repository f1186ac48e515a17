"""Tests for the quota cooldown circuit breaker.

Antagon Inc. | CAGE: 17E75
"""

import pytest

from ideaverdict.cooldown import GuardState, QuotaCooldownGuard
from ideaverdict.errors import GatewayQuotaError, GatewayServiceError, QuotaCooldownError
from ideaverdict.gateway import GatewayRequest, ModelGatewayClient
from ideaverdict.metrics import metrics

from tests.conftest import PRIMARY_KEY, SECONDARY_KEY

COOLDOWN = 45 * 60


@pytest.fixture
def guard(transport, clock):
    client = ModelGatewayClient(transport, PRIMARY_KEY, SECONDARY_KEY)
    return QuotaCooldownGuard(client, cooldown=COOLDOWN, clock=clock)


class TestQuotaCooldownGuard:
    """Tests for QuotaCooldownGuard."""

    def test_starts_available(self, guard):
        assert guard.state is GuardState.AVAILABLE
        assert guard.is_available() is True
        assert guard.remaining() == 0

    @pytest.mark.asyncio
    async def test_double_quota_trips_and_blocks(self, guard, transport, clock):
        """Both keys out of quota: later calls fail fast without touching the transport."""
        transport.fail(PRIMARY_KEY, GatewayQuotaError())
        transport.fail(SECONDARY_KEY, GatewayQuotaError())

        with pytest.raises(QuotaCooldownError) as exc_info:
            await guard.call(GatewayRequest(prompt="x"))
        assert exc_info.value.retry_after == COOLDOWN
        assert exc_info.value.status_code == 503
        assert transport.call_count == 2
        assert guard.state is GuardState.COOLING_DOWN

        transport.clear_failures()
        clock.advance(10 * 60)
        for _ in range(3):
            with pytest.raises(QuotaCooldownError) as exc_info:
                await guard.call(GatewayRequest(prompt="x"))
        assert transport.call_count == 2
        assert exc_info.value.retry_after == pytest.approx(35 * 60)

    @pytest.mark.asyncio
    async def test_expires_lazily(self, guard, transport, clock):
        """After the cooldown the next call reaches the transport again."""
        guard.trip()
        assert guard.state is GuardState.COOLING_DOWN

        clock.advance(COOLDOWN + 1)
        result = await guard.call(GatewayRequest(prompt="x"))

        assert result.used_fallback is False
        assert transport.call_count == 1
        assert guard.state is GuardState.AVAILABLE

    @pytest.mark.asyncio
    async def test_fallback_does_not_trip(self, guard, transport):
        """Primary quota failure absorbed by the secondary leaves the breaker available."""
        transport.script(PRIMARY_KEY, GatewayQuotaError())

        result = await guard.call(GatewayRequest(prompt="x"))

        assert result.used_fallback is True
        assert guard.state is GuardState.AVAILABLE

        await guard.call(GatewayRequest(prompt="y"))
        assert transport.keys_used == [PRIMARY_KEY, SECONDARY_KEY, PRIMARY_KEY]

    @pytest.mark.asyncio
    async def test_single_key_quota_does_not_trip(self, transport, clock):
        """Without a secondary key a quota failure is a plain 429."""
        guard = QuotaCooldownGuard(ModelGatewayClient(transport, PRIMARY_KEY), clock=clock)
        transport.script(PRIMARY_KEY, GatewayQuotaError())

        with pytest.raises(GatewayQuotaError):
            await guard.call(GatewayRequest(prompt="x"))

        assert guard.is_available() is True

    @pytest.mark.asyncio
    async def test_service_error_does_not_trip(self, guard, transport):
        transport.script(PRIMARY_KEY, GatewayServiceError("bad"))

        with pytest.raises(GatewayServiceError):
            await guard.call(GatewayRequest(prompt="x"))

        assert guard.is_available() is True

    @pytest.mark.asyncio
    async def test_records_metrics(self, guard, transport):
        transport.script(PRIMARY_KEY, GatewayQuotaError())
        await guard.call(GatewayRequest(prompt="x"))
        guard.trip()
        with pytest.raises(QuotaCooldownError):
            await guard.call(GatewayRequest(prompt="x"))

        assert metrics.state.gateway_fallbacks == 1
        assert metrics.state.cooldown_trips == 1
        assert metrics.state.cooldown_active == 1
        assert metrics.state.gateway_calls["blocked"] == 1
        assert metrics.state.gateway_calls["success"] == 1
