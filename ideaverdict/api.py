"""FastAPI server for IdeaVerdict.

Exposes the evaluate, structure and chat capabilities plus health and
Prometheus endpoints. Request bodies are read raw and handed to the
capability handlers, which rate limit before validating.

Example:
    >>> uvicorn ideaverdict.api:app --host 0.0.0.0 --port 8000

    curl -X POST http://localhost:8000/structure \
        -H "Content-Type: application/json" \
        -d '{"idea": "A marketplace that matches ..."}'

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ideaverdict import __version__
from ideaverdict.handlers import CapabilityHandler, InboundRequest, build_handlers
from ideaverdict.logging_config import LogContext, get_logger, setup_from_env
from ideaverdict.metrics import metrics
from ideaverdict.security import add_security_headers
from ideaverdict.service import ServiceContainer, get_services

logger = get_logger(__name__)

ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
EXPOSED_HEADERS = ["X-Cache", "X-RateLimit-Remaining", "Retry-After", "X-Request-ID"]


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Build the application around ``services`` (the process-wide container by default)."""
    services = services or get_services()
    gateway_config = services.config.gateway
    setup_from_env(secrets=[gateway_config.primary_key, gateway_config.secondary_key])

    handlers = build_handlers(services)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting IdeaVerdict API server...")
        yield
        await services.aclose()
        logger.info("Shutting down IdeaVerdict API server...")

    app = FastAPI(
        title="IdeaVerdict API",
        description="Startup idea evaluation with deterministic verdicts",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.handlers = handlers

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(services.origin_policy.allowed_origins),
        allow_origin_regex=services.origin_policy.origin_regex,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Tag logs with a request id and add security headers."""
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        start_time = time.perf_counter()

        with LogContext(request_id=request_id):
            response = await call_next(request)

            latency = (time.perf_counter() - start_time) * 1000
            logger.info(
                f"{request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Latency: {latency:.1f}ms"
            )

        for name, value in add_security_headers({"X-Request-ID": request_id}).items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"error": exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    async def dispatch(handler: CapabilityHandler, request: Request) -> JSONResponse:
        inbound = InboundRequest.from_headers(request.headers, await request.body())
        result = await handler.handle(inbound)
        return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)

    @app.post("/evaluate")
    async def evaluate(request: Request) -> JSONResponse:
        """Evaluate an idea and return the score-derived verdict."""
        return await dispatch(handlers["evaluate"], request)

    @app.post("/structure")
    async def structure(request: Request) -> JSONResponse:
        """Split a raw idea paragraph into form fields."""
        return await dispatch(handlers["structure"], request)

    @app.post("/chat")
    async def chat(request: Request) -> JSONResponse:
        """Answer a question about an existing verdict."""
        return await dispatch(handlers["chat"], request)

    @app.get("/health")
    async def health_check() -> dict:
        """Check server health and cooldown state."""
        return services.health()

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        """Expose Prometheus metrics in text format."""
        return metrics.get_prometheus_metrics()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ideaverdict.api:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
