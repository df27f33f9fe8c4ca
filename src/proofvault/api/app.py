from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from proofvault.api.routes_anchors import router as anchors_router
from proofvault.api.routes_credentials import router as credentials_router
from proofvault.api.routes_verification import router as verification_router
from proofvault.bootstrap import Services, build_services
from proofvault.config import Settings, get_settings
from proofvault.errors import ProofVaultError
from proofvault.observability import (
    bind_request_id,
    configure_logging,
    log_event,
    new_request_id,
    reset_request_id,
)
from proofvault.version import __version__

# -----------------------------------------------------------------------------
# App setup
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)


def _redact_message(msg: str) -> str:
    if msg.lower().startswith("value error, "):
        msg = msg.split(", ", 1)[1]
    lowered = msg.lower()
    if "key" in lowered or "token" in lowered or "secret" in lowered:
        return "Invalid request payload"
    return msg


def _normalize_validation_errors(raw_errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    fields: List[Dict[str, str]] = []
    for err in raw_errors:
        loc = err.get("loc", [])
        loc_parts = [str(part) for part in loc if part != "body"]
        path = ".".join(["request", *loc_parts]) if loc_parts else "request"
        message = _redact_message(err.get("msg", "Invalid request"))
        fields.append({"path": path, "message": message})
    return {"error": "VALIDATION_ERROR", "fields": fields}


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the HTTP application.

    Services are built in the lifespan so a misconfigured collaborator
    stops startup instead of failing the first request. Passing
    ``services`` skips construction (tests).
    """
    settings = settings or (services.settings if services is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services if services is not None else build_services(settings)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            else:
                await app.state.services.anchors.shutdown()

    app = FastAPI(title="proofvault API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(credentials_router)
    app.include_router(verification_router)
    app.include_router(anchors_router)

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or new_request_id()
        token = bind_request_id(request_id)
        log_event("request.start", method=request.method, path=str(request.url.path))
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            log_event("request.end", method=request.method, path=str(request.url.path))
            reset_request_id(token)

    @app.exception_handler(ProofVaultError)
    async def handle_proofvault_error(request: Request, exc: ProofVaultError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s (%s)", exc.code, request.url.path, exc.message, exc.details)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        content = _normalize_validation_errors(exc.errors())
        return JSONResponse(status_code=422, content=content)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    return app


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings)
