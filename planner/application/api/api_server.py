from typing import Optional
import importlib
import os
import time
import uuid

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from langchain_core.language_models.chat_models import BaseChatModel

from planner.application.api.route.planner import router as planner_router
from planner.config import PlannerSettings, load_settings
from planner.domain.context.state.session_store import InMemorySessionStore
from planner.domain.errors import (
    ConfirmationRequired, GatewayFailure, InvalidInput, MaterializationFailure,
    MissingRequiredSlots, PlannerError, RollbackFailure, SessionNotFound
)
from planner.domain.gateway.language_model_gateway import ChatModelGateway, LanguageModelGateway
from planner.domain.orchestration.core.session_controller import SessionController
from planner.domain.orchestration.materializer.plan_materializer import PlanMaterializer
from planner.domain.persistence.activity_store import InMemoryActivityStore
from planner.infrastructure.observability.logging import metrics, setup_logging
from planner.infrastructure.security.owner import OwnerResolver

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    InvalidInput: 400,
    SessionNotFound: 404,
    ConfirmationRequired: 409,
    MissingRequiredSlots: 422,
    GatewayFailure: 502,
    MaterializationFailure: 503,
    RollbackFailure: 500,
}


def status_for(error: PlannerError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


async def planner_error_handler(request: Request, exc: PlannerError) -> JSONResponse:
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.info
    log("Planner error", path=request.url.path, code=exc.code, status=status, error=str(exc))
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def load_chat_model(path: Optional[str] = None) -> BaseChatModel:
    """Build the chat model named by PLANNER_CHAT_MODEL_FACTORY ("module:callable")"""

    path = path or os.getenv("PLANNER_CHAT_MODEL_FACTORY")
    if not path or ":" not in path:
        raise RuntimeError("PLANNER_CHAT_MODEL_FACTORY must be set to 'module:callable'")

    module_name, _, attr = path.partition(":")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


def build_controller(
    gateway: LanguageModelGateway,
    settings: Optional[PlannerSettings] = None,
    session_store=None,
    activity_store=None
) -> SessionController:
    """Wire a session controller with in-memory stores unless others are given"""

    settings = settings or PlannerSettings()
    return SessionController(
        session_store=session_store or InMemorySessionStore(),
        gateway=gateway,
        materializer=PlanMaterializer(activity_store or InMemoryActivityStore()),
        settings=settings
    )


def create_app(
    controller: Optional[SessionController] = None,
    owner_resolver: Optional[OwnerResolver] = None,
    settings: Optional[PlannerSettings] = None
) -> FastAPI:
    """Create the planner HTTP application"""

    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    if controller is None:
        gateway = ChatModelGateway(
            load_chat_model(),
            history_window=settings.history_window,
            max_questions={mode: settings.max_questions(mode) for mode in ("quick", "smart")}
        )
        controller = build_controller(gateway, settings)

    app = FastAPI(title="Planner", description="Conversational planning session engine")
    app.state.controller = controller
    app.state.owner_resolver = owner_resolver or OwnerResolver(
        settings.owner_tokens, development_mode=settings.dev_owner_tokens
    )
    app.state.settings = settings

    app.include_router(planner_router)
    app.add_exception_handler(PlannerError, planner_error_handler)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(request_id=str(uuid.uuid4())):
            response = await call_next(request)
            duration_ms = (time.perf_counter() - started) * 1000
            metrics.record_latency("http_request", duration_ms, tags={"path": request.url.path})
            logger.debug("Request handled",
                         method=request.method,
                         path=request.url.path,
                         status=response.status_code,
                         duration_ms=duration_ms)
        return response

    @app.get("/health")
    async def health():
        summary = metrics.planner_health()
        return {
            "status": "degraded" if summary["requires_reconciliation"] else "ok",
            "service": settings.service_name,
            "metrics": summary
        }

    return app


if __name__ == "__main__":
    uvicorn.run(
        create_app(),
        host=os.getenv("PLANNER_HOST", "0.0.0.0"),
        port=int(os.getenv("PLANNER_PORT", "8000"))
    )
