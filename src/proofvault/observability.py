"""Request-scoped logging helpers."""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

logger = logging.getLogger(__name__)

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler used by the server and the CLI."""

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def new_request_id() -> str:
    """Generate a new request identifier for correlating logs."""

    return uuid.uuid4().hex


def bind_request_id(value: Optional[str]) -> ContextVar.Token | None:
    """Bind a request id for the current context and return the reset token."""

    if value is None:
        return None
    return _request_id_ctx.set(value)


def reset_request_id(token: Optional[ContextVar.Token]) -> None:
    if token is None:
        return
    _request_id_ctx.reset(token)


def current_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def short_hash(proof_hash: Optional[str]) -> str:
    """Abbreviate a proof hash for log lines."""

    if not proof_hash:
        return "<none>"
    return f"{proof_hash[:12]}..."


def log_event(message: str, level: int = logging.INFO, **extra: object) -> None:
    """Log an event with the active request id automatically attached."""

    payload = {"request_id": current_request_id(), **extra}
    logger.log(level, message, extra={"payload": payload})
