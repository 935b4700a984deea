"""
Preventive Care Guidelines API

A thin HTTP layer over the guideline engine:
- Age- and gender-based guideline recommendations
- Guideline selections and personalized copies
- Screening records with reconciled appointments
- Completion tracking with next-due-date calculation
- Guideline edits for admins and creators, and user profiles
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from preventive_care.config.config import Settings, get_settings
from preventive_care.config.logging_config import configure_logging, get_logger, log_request_context
from preventive_care.database.database import ArangoRowStore, connect
from preventive_care.database.row_store import InMemoryRowStore, RowStore
from preventive_care.errors import (
    ConsistencyRollbackFailure,
    GuidelineEngineError,
    NotFound,
    PermissionDenied,
    StoreError,
    ValidationError,
)
from preventive_care.models.api_models import (
    CompleteRequest,
    CompleteResponse,
    CreateAppointmentRequest,
    CreateScreeningRequest,
    ErrorResponse,
    GuidelineResponse,
    HealthResponse,
    HealthStatus,
    MessageResponse,
    PersonalizeRequest,
    PersonalizeResponse,
    SelectionRequest,
    SelectionResponse,
    SelectionsResponse,
    UpdateAppointmentRequest,
    UpdateGuidelineRequest,
    UpdateProfileRequest,
)
from preventive_care.models.models import (
    Appointment,
    CompletionEvent,
    Guideline,
    RecommendationReport,
    ReconciliationResult,
    ScreeningRecord,
    ScreeningWithAppointments,
    UserProfile,
    Visibility,
)
from preventive_care.services.guideline_catalog import GuidelineCatalog
from preventive_care.services.personalization import GuidelinePersonalization
from preventive_care.services.profile_service import ProfileService
from preventive_care.services.recommendation_engine import RecommendationService
from preventive_care.services.screening_service import ScreeningService
from preventive_care.services.selection_tracker import SelectionTracker

configure_logging()
logger = get_logger(__name__)

ERROR_STATUS: dict[type[GuidelineEngineError], int] = {
    NotFound: 404,
    ValidationError: 400,
    PermissionDenied: 403,
    ConsistencyRollbackFailure: 500,
    StoreError: 500,
}


@dataclass
class EngineServices:
    """Services sharing one injected row store."""
    store: RowStore
    catalog: GuidelineCatalog
    profiles: ProfileService
    recommendations: RecommendationService
    selections: SelectionTracker
    personalization: GuidelinePersonalization
    screenings: ScreeningService


def build_services(store: RowStore, settings: Settings) -> EngineServices:
    selections = SelectionTracker(store)
    profiles = ProfileService(store)
    return EngineServices(
        store=store,
        catalog=GuidelineCatalog(store),
        profiles=profiles,
        recommendations=RecommendationService(store, selections, profiles),
        selections=selections,
        personalization=GuidelinePersonalization(store, selections),
        screenings=ScreeningService(store, settings.default_frequency_months),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens the ArangoDB connection when no store was injected.
    """
    settings: Settings = app.state.settings
    close: Callable[[], None] | None = None

    logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        config=settings.get_safe_config_dict(),
    )

    if app.state.services is None:
        client, db = connect(settings)
        app.state.services = build_services(ArangoRowStore(db), settings)
        close = client.close

    yield

    if close is not None:
        close()
        logger.info("Database connection closed")
    logger.info("Application shutting down")


def get_services(request: Request) -> EngineServices:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Row store not initialized")
    return services


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Identity provider hook: the authenticated user ID.

    Authentication happens upstream; this only reads the resolved ID.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def create_app(settings: Settings | None = None, store: RowStore | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.
        store: Optional row store; defaults to the configured backend.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    if store is None and settings.store_backend == "memory":
        store = InMemoryRowStore()
    app.state.services = build_services(store, settings) if store is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user_id=request.headers.get("X-User-Id"),
        )

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )
        return response

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(GuidelineEngineError)
    async def engine_exception_handler(request: Request, exc: GuidelineEngineError):
        """Map typed engine failures to status codes."""
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
            500,
        )
        if isinstance(exc, ConsistencyRollbackFailure):
            logger.critical("Store left inconsistent", orphan_id=exc.orphan_id, error=exc.message)
        elif status_code >= 500:
            logger.error("Engine failure", kind=exc.kind, error=exc.message)
        details = {"orphan_id": exc.orphan_id} if isinstance(exc, ConsistencyRollbackFailure) else None
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.kind,
                message=exc.message,
                details=details,
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                message="An unexpected error occurred",
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """Health check endpoint for monitoring."""
        settings: Settings = request.app.state.settings
        checks = {
            "api": True,
            "store": request.app.state.services is not None,
        }
        status = HealthStatus.HEALTHY if all(checks.values()) else HealthStatus.DEGRADED
        return HealthResponse(
            status=status,
            version=settings.app_version,
            environment=settings.environment,
            checks=checks,
        )

    # ------------------------------------------------------------------
    # Guidelines
    # ------------------------------------------------------------------

    @app.get("/api/v1/guidelines", response_model=list[Guideline], tags=["Guidelines"])
    def list_guidelines(
        category: str | None = None,
        visibility: Visibility | None = None,
        q: str | None = None,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> list[Guideline]:
        """Public guidelines plus the caller's private copies."""
        return services.catalog.list_guidelines(user_id, category, visibility, q)

    @app.get("/api/v1/guidelines/{guideline_id}", response_model=Guideline, tags=["Guidelines"])
    def get_guideline(
        guideline_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> Guideline:
        return services.catalog.get_guideline(guideline_id, user_id)

    @app.post(
        "/api/v1/guidelines",
        response_model=GuidelineResponse,
        status_code=201,
        tags=["Guidelines"],
    )
    def create_guideline(
        body: Guideline,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> GuidelineResponse:
        """Add a guideline. Only admins can publish; others get a private one."""
        guideline = services.catalog.create_guideline(user_id, body)
        return GuidelineResponse(guideline=guideline, message="Guideline created successfully")

    @app.patch(
        "/api/v1/guidelines/{guideline_id}",
        response_model=GuidelineResponse,
        tags=["Guidelines"],
    )
    def update_guideline(
        guideline_id: str,
        body: UpdateGuidelineRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> GuidelineResponse:
        guideline = services.catalog.update_guideline(
            user_id, guideline_id, body.guideline, body.age_ranges, body.resources
        )
        return GuidelineResponse(guideline=guideline, message="Guideline updated successfully")

    @app.delete(
        "/api/v1/guidelines/{guideline_id}",
        response_model=MessageResponse,
        tags=["Guidelines"],
    )
    def delete_guideline(
        guideline_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> MessageResponse:
        services.catalog.delete_guideline(user_id, guideline_id)
        return MessageResponse(message="Guideline deleted successfully")

    @app.get(
        "/api/v1/guidelines/{guideline_id}/completions",
        response_model=list[CompletionEvent],
        tags=["Guidelines"],
    )
    def list_completions(
        guideline_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> list[CompletionEvent]:
        """The caller's completion history for a guideline, most recent first."""
        return services.screenings.completion_history(user_id, guideline_id)

    @app.post(
        "/api/v1/guidelines/{guideline_id}/personalize",
        response_model=PersonalizeResponse,
        status_code=201,
        tags=["Guidelines"],
    )
    def personalize_guideline(
        guideline_id: str,
        body: PersonalizeRequest | None = None,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> PersonalizeResponse:
        """Create a private copy of a guideline for the caller."""
        customizations = body.customizations if body else {}
        result = services.personalization.personalize(guideline_id, user_id, customizations)
        return PersonalizeResponse(guideline=result.guideline, warnings=result.warnings)

    @app.post(
        "/api/v1/guidelines/{guideline_id}/complete",
        response_model=CompleteResponse,
        tags=["Guidelines"],
    )
    def complete_guideline(
        guideline_id: str,
        body: CompleteRequest | None = None,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> CompleteResponse:
        """Record a completion and compute the next due date."""
        body = body or CompleteRequest()
        result = services.screenings.complete(
            user_id, guideline_id, body.completion_date, body.notes
        )
        return CompleteResponse(
            screening=result.screening,
            event=result.event,
            warnings=result.warnings,
        )

    # ------------------------------------------------------------------
    # Recommendations and selections
    # ------------------------------------------------------------------

    @app.get(
        "/api/v1/recommendations",
        response_model=RecommendationReport,
        tags=["Recommendations"],
    )
    def get_recommendations(
        request: Request,
        category: str | None = None,
        upcoming: bool = False,
        upcoming_years: int | None = Query(default=None, ge=0, le=100),
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> RecommendationReport:
        """Guidelines that apply to the caller now, and soon."""
        settings: Settings = request.app.state.settings
        return services.recommendations.recommend(
            user_id,
            category=category,
            include_upcoming=upcoming,
            upcoming_years=(
                upcoming_years if upcoming_years is not None else settings.default_upcoming_years
            ),
        )

    @app.get("/api/v1/selections", response_model=SelectionsResponse, tags=["Selections"])
    def list_selections(
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> SelectionsResponse:
        return SelectionsResponse(selections=services.selections.list_selections(user_id))

    @app.post("/api/v1/selections", response_model=SelectionResponse, tags=["Selections"])
    def select_guideline(
        body: SelectionRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> SelectionResponse:
        selection = services.selections.select(user_id, body.guideline_id)
        return SelectionResponse(selection=selection, message="Guideline selected")

    @app.delete("/api/v1/selections", response_model=SelectionResponse, tags=["Selections"])
    def deselect_guideline(
        body: SelectionRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> SelectionResponse:
        services.selections.deselect(user_id, body.guideline_id)
        return SelectionResponse(message="Guideline selection removed")

    # ------------------------------------------------------------------
    # Screenings and appointments
    # ------------------------------------------------------------------

    @app.get("/api/v1/screenings", response_model=ReconciliationResult, tags=["Screenings"])
    def list_screenings(
        include_archived: bool = False,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> ReconciliationResult:
        """Screenings with their appointments attached."""
        return services.screenings.list_screenings(user_id, include_archived)

    @app.post(
        "/api/v1/screenings",
        response_model=ScreeningRecord,
        status_code=201,
        tags=["Screenings"],
    )
    def create_screening(
        body: CreateScreeningRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> ScreeningRecord:
        return services.screenings.create_screening(user_id, body.guideline_id)

    @app.get(
        "/api/v1/screenings/{key}",
        response_model=ScreeningWithAppointments,
        tags=["Screenings"],
    )
    def get_screening(
        key: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> ScreeningWithAppointments:
        """One screening by screening ID or guideline ID."""
        return services.screenings.get_screening(user_id, key)

    @app.post(
        "/api/v1/screenings/{screening_id}/archive",
        response_model=ScreeningRecord,
        tags=["Screenings"],
    )
    def archive_screening(
        screening_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> ScreeningRecord:
        return services.screenings.archive(user_id, screening_id)

    @app.delete("/api/v1/screenings/{screening_id}", tags=["Screenings"])
    def delete_screening(
        screening_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> dict:
        services.screenings.delete(user_id, screening_id)
        return {"success": True}

    @app.get("/api/v1/appointments", response_model=list[Appointment], tags=["Appointments"])
    def list_appointments(
        screening_id: str | None = None,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> list[Appointment]:
        return services.screenings.list_appointments(user_id, screening_id)

    @app.post(
        "/api/v1/appointments",
        response_model=Appointment,
        status_code=201,
        tags=["Appointments"],
    )
    def create_appointment(
        body: CreateAppointmentRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> Appointment:
        appointment = Appointment(user_id=user_id, **body.model_dump())
        return services.screenings.create_appointment(user_id, appointment)

    @app.get(
        "/api/v1/appointments/{appointment_id}",
        response_model=Appointment,
        tags=["Appointments"],
    )
    def get_appointment(
        appointment_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> Appointment:
        return services.screenings.get_appointment(user_id, appointment_id)

    @app.patch(
        "/api/v1/appointments/{appointment_id}",
        response_model=Appointment,
        tags=["Appointments"],
    )
    def update_appointment(
        appointment_id: str,
        body: UpdateAppointmentRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> Appointment:
        """Change only the fields present in the request body."""
        return services.screenings.update_appointment(
            user_id, appointment_id, body.model_dump(exclude_unset=True)
        )

    @app.delete(
        "/api/v1/appointments/{appointment_id}",
        response_model=MessageResponse,
        tags=["Appointments"],
    )
    def delete_appointment(
        appointment_id: str,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> MessageResponse:
        services.screenings.delete_appointment(user_id, appointment_id)
        return MessageResponse(message="Appointment deleted successfully")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _require_self(user_id: str, caller_id: str) -> None:
        if user_id != caller_id:
            raise PermissionDenied("Not allowed to access another user's profile")

    @app.get("/api/v1/users/me", response_model=UserProfile, tags=["Users"])
    def get_my_profile(
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> UserProfile:
        return services.profiles.get_profile(user_id)

    @app.patch("/api/v1/users/me", response_model=UserProfile, tags=["Users"])
    def update_my_profile(
        body: UpdateProfileRequest,
        user_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> UserProfile:
        """Update the caller's profile, creating it on first use."""
        return services.profiles.update_profile(user_id, body.model_dump(exclude_unset=True))

    @app.get("/api/v1/users/{user_id}", response_model=UserProfile, tags=["Users"])
    def get_profile(
        user_id: str,
        caller_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> UserProfile:
        _require_self(user_id, caller_id)
        return services.profiles.get_profile(user_id)

    @app.patch("/api/v1/users/{user_id}", response_model=UserProfile, tags=["Users"])
    def update_profile(
        user_id: str,
        body: UpdateProfileRequest,
        caller_id: str = Depends(get_current_user_id),
        services: EngineServices = Depends(get_services),
    ) -> UserProfile:
        _require_self(user_id, caller_id)
        return services.profiles.update_profile(user_id, body.model_dump(exclude_unset=True))


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "preventive_care.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
