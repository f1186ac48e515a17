"""Shared fixtures for IdeaVerdict tests.

Antagon Inc. | CAGE: 17E75
"""

from __future__ import annotations

import pytest

from ideaverdict.config import CapabilityConfig, GatewayConfig, ServiceConfig
from ideaverdict.gateway import GatewayRequest, ModelTransport
from ideaverdict.metrics import metrics
from ideaverdict.security import StaticTokenVerifier
from ideaverdict.service import build_services

PRIMARY_KEY = "primary-test-key"
SECONDARY_KEY = "secondary-test-key"
VALID_TOKEN = "valid-token"

EVALUATION_TEXT = """PROJECT TYPE: Startup
VERDICT: BUILD ONLY IF NARROWED
IDEA STRENGTH SCORE: 75%
EXECUTION DIFFICULTY: Medium
Clear pain point, crowded market.

PRIMARY REASON: Strong problem, unclear wedge."""


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(ModelTransport):
    """Records calls and answers from per-key scripts.

    ``script(key, ...)`` queues one-shot outcomes; ``fail(key, error)``
    makes every call with ``key`` raise. Anything else returns ``default``.
    """

    def __init__(self, default: str = EVALUATION_TEXT):
        self.default = default
        self.calls: list[tuple[str, GatewayRequest]] = []
        self._scripts: dict[str, list] = {}
        self._failures: dict[str, Exception] = {}

    def script(self, key: str, *outcomes) -> None:
        self._scripts.setdefault(key, []).extend(outcomes)

    def fail(self, key: str, error: Exception) -> None:
        self._failures[key] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def keys_used(self) -> list[str]:
        return [key for key, _ in self.calls]

    async def generate(self, api_key: str, request: GatewayRequest) -> str:
        self.calls.append((api_key, request))
        if api_key in self._failures:
            raise self._failures[api_key]
        queue = self._scripts.get(api_key)
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty counters."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def service_config():
    return ServiceConfig(
        gateway=GatewayConfig(primary_key=PRIMARY_KEY, secondary_key=SECONDARY_KEY),
        capabilities={
            "evaluate": CapabilityConfig(rate_limit=15, rate_window=60.0, cache_ttl=600.0),
            "structure": CapabilityConfig(rate_limit=15, rate_window=60.0, cache_ttl=300.0),
            "chat": CapabilityConfig(rate_limit=30, rate_window=60.0, cache_ttl=300.0),
        },
    )


@pytest.fixture
def services(service_config, transport, clock):
    return build_services(
        service_config,
        transport=transport,
        verifier=StaticTokenVerifier({VALID_TOKEN: "user-1"}),
        clock=clock,
    )


@pytest.fixture
def auth_headers():
    return {"authorization": f"Bearer {VALID_TOKEN}"}
