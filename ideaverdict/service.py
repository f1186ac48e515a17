"""Process-wide wiring of the shared stores.

One ``ServiceContainer`` per process owns a rate limiter and a response
cache per capability, the gateway client wrapped in the quota cooldown
guard, the token verifier and the band table. Tests build their own
container with fake clocks, transports and verifiers.

Example:
    >>> services = build_services(load_config())
    >>> services.limiter("evaluate").check("ip:203.0.113.7")

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ideaverdict.cache import ResponseCache
from ideaverdict.config import CapabilityConfig, ServiceConfig, get_config
from ideaverdict.cooldown import QuotaCooldownGuard
from ideaverdict.gateway import GeminiTransport, ModelGatewayClient, ModelTransport
from ideaverdict.rate_limiting import InMemoryRateLimiter
from ideaverdict.security import AuditLogger, HttpTokenVerifier, OriginPolicy, TokenVerifier
from ideaverdict.verdict import VerdictBandTable

logger = logging.getLogger(__name__)


@dataclass
class CapabilityServices:
    """Stores owned by one capability."""

    config: CapabilityConfig
    limiter: InMemoryRateLimiter
    cache: ResponseCache


@dataclass
class ServiceContainer:
    """Everything a request handler needs, instantiated once per process."""

    config: ServiceConfig
    band_table: VerdictBandTable
    capabilities: dict[str, CapabilityServices]
    gateway: ModelGatewayClient
    guard: QuotaCooldownGuard
    verifier: TokenVerifier
    origin_policy: OriginPolicy
    audit: AuditLogger = field(default_factory=AuditLogger)
    started_at: float = field(default_factory=time.time)

    def limiter(self, capability: str) -> InMemoryRateLimiter:
        return self.capabilities[capability].limiter

    def cache(self, capability: str) -> ResponseCache:
        return self.capabilities[capability].cache

    def health(self) -> dict[str, Any]:
        """Liveness snapshot for ``GET /health``."""
        remaining = self.guard.remaining()
        return {
            "status": "healthy" if remaining == 0 else "degraded",
            "cooldown": {
                "state": self.guard.state.value,
                "remaining_seconds": round(remaining, 1),
            },
            "fallback_configured": self.gateway.has_fallback,
            "uptime_seconds": round(time.time() - self.started_at, 1),
            "bands": self.band_table.describe(),
            "stores": {
                name: {
                    "rate_limiter": caps.limiter.get_stats(),
                    "cache": caps.cache.get_stats(),
                }
                for name, caps in self.capabilities.items()
            },
        }

    async def aclose(self) -> None:
        transport = self.gateway.transport
        if isinstance(transport, GeminiTransport):
            await transport.aclose()


def build_services(
    config: ServiceConfig | None = None,
    transport: ModelTransport | None = None,
    verifier: TokenVerifier | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ServiceContainer:
    """Instantiate the stores, gateway and guard described by ``config``.

    Args:
        config: Service configuration. Defaults to the process-wide one.
        transport: Model transport. Defaults to ``GeminiTransport``.
        verifier: Bearer-token verifier. Defaults to ``HttpTokenVerifier``.
        clock: Monotonic clock shared by every store and the guard.
    """
    config = config or get_config()
    band_table = config.band_table()

    capabilities = {
        name: CapabilityServices(
            config=settings,
            limiter=InMemoryRateLimiter(
                limit=settings.rate_limit,
                window=settings.rate_window,
                max_keys=config.rate_limit_max_keys,
                clock=clock,
            ),
            cache=ResponseCache(
                ttl=settings.cache_ttl,
                max_entries=config.cache_max_entries,
                clock=clock,
            ),
        )
        for name, settings in config.capabilities.items()
    }

    if transport is None:
        transport = GeminiTransport(
            api_base=config.gateway.api_base,
            model=config.gateway.model,
            timeout=config.gateway.timeout,
        )
    gateway = ModelGatewayClient(
        transport,
        primary_key=config.gateway.primary_key,
        secondary_key=config.gateway.secondary_key,
    )
    guard = QuotaCooldownGuard(gateway, cooldown=config.gateway.cooldown_seconds, clock=clock)

    if verifier is None:
        verifier = HttpTokenVerifier(
            user_url=config.auth.user_url,
            api_key=config.auth.api_key,
            timeout=config.auth.timeout,
        )

    logger.info(
        f"Services ready: capabilities={sorted(capabilities)}, "
        f"fallback={'yes' if gateway.has_fallback else 'no'}, bands=[{band_table.describe()}]"
    )

    return ServiceContainer(
        config=config,
        band_table=band_table,
        capabilities=capabilities,
        gateway=gateway,
        guard=guard,
        verifier=verifier,
        origin_policy=OriginPolicy(
            allowed_origins=tuple(config.cors.allowed_origins),
            origin_patterns=tuple(config.cors.origin_patterns),
        ),
    )


_services: ServiceContainer | None = None
_services_lock = threading.Lock()


def get_services() -> ServiceContainer:
    """Get or create the process-wide service container."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def reset_services() -> None:
    """Drop the process-wide container. For tests."""
    global _services
    with _services_lock:
        _services = None
