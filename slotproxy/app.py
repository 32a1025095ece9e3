"""FastAPI application: HTTP façade over the Cal.com booking API.

Endpoints:

  GET    /health                        Liveness check
  GET    /health/upstream               Validates the Cal.com credentials
  GET    /api/date                      Current date (optionally in a timezone)
  GET    /api/slots/available           Flattened slot list for an event type
  POST   /api/slots/reserve             Create a booking
  PUT    /api/slots/{reservationId}     Update a booking
  DELETE /api/slots/{reservationId}     Not implemented (501)

Every failure is returned as ``{"error": {code, message, details?, timestamp}}``.
The caller's ``x-correlation-id`` header (or a minted ``<route>-<ms>`` token)
is threaded through the logs and echoed on the response.
"""

from __future__ import annotations

# Load .env into os.environ before Settings() reads it.
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from slotproxy.config import Settings, settings

# Configure root logger early so all slotproxy.* loggers have a handler
# when run via `uvicorn slotproxy.app:app`.
logging.basicConfig(
    level=settings.logging_level,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from slotproxy.auth import require_upstream_credentials
from slotproxy.calendar_providers import BookingProvider, CalComClient
from slotproxy.dates import format_utc, now
from slotproxy.errors import ApiError, ErrorCode, error_envelope
from slotproxy.handlers import SlotsService, get_current_date
from slotproxy.models import (
    AvailableSlotsQuery,
    DateResponse,
    HealthResponse,
    ReservationRequest,
    ReservationResult,
    SlotsResponse,
    UpdateRequest,
)
from slotproxy.tracing import CORRELATION_HEADER, resolve_correlation_id

log = logging.getLogger("slotproxy.app")


def create_app(
    app_settings: Optional[Settings] = None,
    provider: Optional[BookingProvider] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use instead of the environment-loaded ones.
        provider: Booking provider to use instead of a CalComClient built
                  from settings (tests pass a stub here).
    """
    cfg = app_settings or settings
    if provider is None:
        provider = CalComClient(
            api_key=cfg.calcom_api_key,
            base_url=cfg.calcom_base_url,
            api_version=cfg.calcom_api_version,
            timeout=cfg.calcom_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "Server starting (environment=%s, calcom=%s)",
            cfg.environment, cfg.calcom_base_url,
        )
        yield
        await provider.aclose()
        log.info("Server closed")

    app = FastAPI(
        title="Slot Proxy",
        description="Thin scheduling API in front of Cal.com",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.provider = provider
    app.state.slots_service = SlotsService(provider, cfg.slot_duration_minutes)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def echo_correlation_id(request: Request, call_next):
        response = await call_next(request)
        correlation_id = getattr(request.state, "correlation_id", None)
        if correlation_id:
            response.headers[CORRELATION_HEADER] = correlation_id
        return response

    _register_error_handlers(app)

    # ── Health checks ──────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="healthy", timestamp=format_utc(now()))

    @app.get("/health/upstream")
    async def upstream_health(
        request: Request,
        correlation_id: str = Depends(_correlation("health")),
    ) -> JSONResponse:
        """Checks the Cal.com credentials; decoupled from slot handling."""
        ok = await request.app.state.provider.validate_connection(
            correlation_id=correlation_id
        )
        return JSONResponse(
            {"status": "connected" if ok else "failed", "timestamp": format_utc(now())},
            status_code=200 if ok else 503,
        )

    # ── Date ───────────────────────────────────────────────────

    @app.get("/api/date", response_model=DateResponse, response_model_exclude_none=True)
    async def current_date(
        timezone: Optional[str] = Query(default=None),
        correlation_id: str = Depends(_correlation("date")),
    ) -> DateResponse:
        return get_current_date(timezone, correlation_id)

    # ── Slots ──────────────────────────────────────────────────

    @app.get(
        "/api/slots/available",
        response_model=SlotsResponse,
        dependencies=[Depends(require_upstream_credentials)],
    )
    async def available_slots(
        event_type_id: Optional[str] = Query(default=None, alias="eventTypeId"),
        start: Optional[str] = Query(default=None),
        end: Optional[str] = Query(default=None),
        timezone: Optional[str] = Query(default=None),
        correlation_id: str = Depends(_correlation("slots")),
        service: SlotsService = Depends(_slots_service),
    ) -> SlotsResponse:
        raw = {"eventTypeId": event_type_id, "start": start, "end": end, "timezone": timezone}
        try:
            query = AvailableSlotsQuery.model_validate(
                {key: value for key, value in raw.items() if value is not None}
            )
        except ValidationError as exc:
            raise RequestValidationError(exc.errors()) from exc
        return await service.get_available_slots(query, correlation_id)

    @app.post(
        "/api/slots/reserve",
        status_code=201,
        response_model=ReservationResult,
        dependencies=[Depends(require_upstream_credentials)],
    )
    async def reserve_slot(
        body: ReservationRequest,
        correlation_id: str = Depends(_correlation("reserve")),
        service: SlotsService = Depends(_slots_service),
    ) -> ReservationResult:
        return await service.reserve_slot(body, correlation_id)

    @app.put(
        "/api/slots/{reservation_id}",
        response_model=ReservationResult,
        dependencies=[Depends(require_upstream_credentials)],
    )
    async def update_slot(
        reservation_id: str,
        body: UpdateRequest,
        correlation_id: str = Depends(_correlation("update")),
        service: SlotsService = Depends(_slots_service),
    ) -> ReservationResult:
        return await service.update_slot(reservation_id, body, correlation_id)

    @app.delete("/api/slots/{reservation_id}")
    async def cancel_slot(
        reservation_id: str,
        correlation_id: str = Depends(_correlation("cancel")),
        service: SlotsService = Depends(_slots_service),
    ) -> None:
        await service.cancel_slot(reservation_id, correlation_id)

    return app


# ── Helper functions ──────────────────────────────────────────────

def _correlation(prefix: str):
    """Dependency factory: resolve the correlation token for one route."""

    def dependency(request: Request) -> str:
        correlation_id = resolve_correlation_id(
            request.headers.get(CORRELATION_HEADER), prefix
        )
        request.state.correlation_id = correlation_id
        return correlation_id

    return dependency


def _slots_service(request: Request) -> SlotsService:
    return request.app.state.slots_service


def _validation_details(errors: list[dict]) -> list[dict]:
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details


def _register_error_handlers(app: FastAPI) -> None:
    """Render every failure as the standard error envelope."""

    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            error_envelope(exc.code, exc.message, exc.details),
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        log.warning("Validation errors in %s %s", request.method, request.url.path)
        return JSONResponse(
            error_envelope(
                ErrorCode.VALIDATION_ERROR,
                "Invalid request parameters",
                _validation_details(exc.errors()),
            ),
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse(
                error_envelope(ErrorCode.NOT_FOUND, "Endpoint not found"),
                status_code=404,
            )
        return JSONResponse(
            error_envelope(ErrorCode.INTERNAL_SERVER_ERROR, str(exc.detail)),
            status_code=exc.status_code,
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "Unhandled error in %s %s: %s", request.method, request.url.path, exc,
            exc_info=True,
        )
        return JSONResponse(
            error_envelope(ErrorCode.INTERNAL_SERVER_ERROR, "An unexpected error occurred"),
            status_code=500,
        )


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


def main() -> None:
    import uvicorn

    try:
        for warning in settings.validate_startup():
            log.warning(warning)
    except ValueError as exc:
        log.error("Failed to start server: %s", exc)
        raise SystemExit(1) from exc
    log.info("Configuration validated successfully")

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "slotproxy.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
