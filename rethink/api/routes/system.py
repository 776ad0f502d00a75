"""System health and status endpoints.

Endpoints:
- /health  - Lightweight liveness probe (no dependency checks)
- /ready   - Readiness probe (503 when the keystore is closed or every provider circuit is open)
- /status  - Component and per-provider circuit status for monitoring dashboards
- /metrics - Operational metrics (rate-limit exempt, auth-gated)
"""

import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Request

from rethink import __version__
from rethink.api.deps import RuntimeDep
from rethink.api.rate_limit import limiter
from rethink.api.schemas import (
    ComponentHealth,
    HealthResponse,
    HealthStatus,
    ProviderStatus,
    SystemStatus,
)
from rethink.llm.circuit_breaker import CircuitState
from rethink.runtime import ThinkingRuntime

logger = logging.getLogger(__name__)

router = APIRouter()

# Track application start time for uptime calculation
_start_time: float = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check (Liveness)",
    description="Simple health check for load balancers. Returns 200 if the service is running.",
)
async def health_check() -> HealthResponse:
    """Basic liveness probe. Does NOT check dependencies; use /ready for that."""
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness Probe",
    description="Returns 503 when the keystore is closed or no provider can take traffic.",
)
async def readiness_check(runtime: RuntimeDep) -> HealthResponse:
    """Readiness probe for container orchestrators."""
    if not runtime.keys.is_open:
        raise HTTPException(status_code=503, detail="Not ready: keystore closed")
    if not runtime.dispatcher.any_available():
        raise HTTPException(status_code=503, detail="Not ready: no providers available")
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get(
    "/metrics",
    summary="Operational Metrics",
    description="Request, provider, hedge, circuit and thinking metrics.",
)
@limiter.exempt
async def get_metrics(request: Request, runtime: RuntimeDep) -> dict:
    """Get current operational metrics.

    Requires authentication (any scope, via the global auth dependency).
    The rate limiter is exempt because monitoring systems poll frequently.
    """
    return runtime.metrics.get_metrics()


@router.get(
    "/status",
    response_model=SystemStatus,
    summary="System Status",
    description="Component health and per-provider circuit state.",
)
async def system_status(runtime: RuntimeDep) -> SystemStatus:
    """Detailed system status endpoint."""
    settings = runtime.settings
    providers = [ProviderStatus(**p) for p in runtime.dispatcher.provider_status()]
    components = [_check_keystore(runtime), _check_providers(providers)]

    return SystemStatus(
        status=_determine_overall_status(components),
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
        components=components,
        providers=providers,
        features={
            "parallel_thinking": settings.enable_parallel_thinking,
            "adaptive_optimization": settings.enable_adaptive_optimization,
            "prompt_compression": settings.enable_prompt_compression,
            "hedging": settings.hedge_enabled,
        },
        uptime_seconds=time.time() - _start_time,
    )


def _check_keystore(runtime: ThinkingRuntime) -> ComponentHealth:
    if runtime.keys.is_open:
        return ComponentHealth(
            name="keystore",
            status=HealthStatus.HEALTHY,
            message=f"{len(runtime.keys.list_keys())} key(s) loaded",
        )
    return ComponentHealth(name="keystore", status=HealthStatus.UNHEALTHY, message="Keystore closed")


def _check_providers(providers: list[ProviderStatus]) -> ComponentHealth:
    """Summarise provider circuits.

    All open -> UNHEALTHY; any open, half-open or degraded -> DEGRADED.
    """
    if not providers:
        return ComponentHealth(name="providers", status=HealthStatus.UNHEALTHY, message="No providers configured")

    open_count = sum(1 for p in providers if p.circuit_state == CircuitState.OPEN)
    if open_count == len(providers):
        return ComponentHealth(name="providers", status=HealthStatus.UNHEALTHY, message="All provider circuits open")
    if open_count or any(p.circuit_state == CircuitState.HALF_OPEN or p.degraded for p in providers):
        return ComponentHealth(
            name="providers",
            status=HealthStatus.DEGRADED,
            message=f"{open_count} of {len(providers)} provider circuit(s) open",
        )
    return ComponentHealth(
        name="providers",
        status=HealthStatus.HEALTHY,
        message=f"{len(providers)} provider(s) available",
    )


def _determine_overall_status(components: list[ComponentHealth]) -> HealthStatus:
    """Worst component status wins."""
    statuses = {c.status for c in components}
    if HealthStatus.UNHEALTHY in statuses:
        return HealthStatus.UNHEALTHY
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY
