"""
Rebellion FastAPI server.

A thin HTTP surface over one StateService. Reads are served from fresh
snapshots; writes go through the service, so on a client they are relayed to
the authority and on the authority they join its FIFO queue.

Endpoints:
- GET  /health        - Liveness
- GET  /state         - Full state document
- GET  /bonuses       - Aggregated roll bonuses (?context=)
- GET  /event-chance  - Weekly event chance and effective danger
- POST /update        - Submit a partial update
- POST /reset         - Restore defaults (authority only)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..errors import RebellionError
from ..state import NotAuthorityError, StateService
from ..systems.bonuses import get_effective_danger, get_event_chance, get_roll_bonuses, has_guaranteed_event
from ..systems.officers import ActorDirectory
from .schemas import ErrorResponse, EventChanceResponse, SubmitResponse, UpdateRequest

logger = logging.getLogger(__name__)


def create_app(
    service: StateService,
    actors: ActorDirectory | None = None,
) -> FastAPI:
    """
    Create the FastAPI application around a state service.

    The authority's update queue runs for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        if service.is_authority:
            service.start()
        yield
        # Shutdown - drain queued updates
        if service.is_authority:
            await service.stop()

    app = FastAPI(
        title="Rebellion Tracker API",
        description="Read and submit rebellion state",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for browser editors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service
    app.state.actors = actors

    def get_service(request: Request) -> StateService:
        return request.app.state.service

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(NotAuthorityError)
    async def not_authority(request: Request, exc: NotAuthorityError):
        return JSONResponse(
            status_code=403,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @app.exception_handler(RebellionError)
    async def rejected(request: Request, exc: RebellionError):
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @app.exception_handler(ValidationError)
    async def invalid_state(request: Request, exc: ValidationError):
        logger.error(f"Stored state is invalid: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Stored state is invalid",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ).model_dump(),
        )

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"ok": True, "authority": service.is_authority}

    @app.get("/state")
    async def get_state(service: StateService = Depends(get_service)) -> dict[str, Any]:
        """Full, defaulted state document."""
        return service.get().to_document()

    @app.get("/bonuses")
    async def get_bonuses(
        context: str | None = None,
        service: StateService = Depends(get_service),
    ) -> dict[str, Any]:
        """Per-check totals and breakdowns for an optional action context."""
        return get_roll_bonuses(service.get(), context, app.state.actors).to_dict()

    @app.get("/event-chance", response_model=EventChanceResponse)
    async def event_chance(service: StateService = Depends(get_service)):
        state = service.get()
        return EventChanceResponse(
            chance=get_event_chance(state),
            effective_danger=get_effective_danger(state),
            notoriety=state.notoriety,
            guaranteed=has_guaranteed_event(state),
        )

    @app.post("/update", response_model=SubmitResponse, status_code=202)
    async def submit_update(
        request: UpdateRequest,
        service: StateService = Depends(get_service),
    ):
        """
        Submit a partial update.

        202: accepted for processing. On a client this means transmitted to
        the authority, not applied.
        """
        submitted = await service.update(request.data)
        return SubmitResponse(submitted=submitted)

    @app.post("/reset")
    async def reset_state(service: StateService = Depends(get_service)) -> dict[str, Any]:
        """Restore the default state (authority only)."""
        return service.reset().to_document()

    return app
