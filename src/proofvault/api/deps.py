from __future__ import annotations

from fastapi import Request

from proofvault.bootstrap import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_actor(request: Request) -> str | None:
    """Best-effort actor recorded in the audit log."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
