"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.integrations.services import IntegrationServices


@dataclass(frozen=True)
class AuthContext:
    """Authenticated member context extracted from Clerk JWT."""

    user_id: str  # Clerk user ID (e.g. "user_2x...")
    member_id: uuid.UUID | None = None  # Internal member UUID (custom session claim)
    email: str | None = None
    session_id: str | None = None


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The Clerk auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


async def get_member_id(auth: Annotated[AuthContext, Depends(get_current_user)]) -> uuid.UUID:
    """Resolve the internal member id; 404 until the member is enrolled."""
    if auth.member_id is None:
        raise HTTPException(status_code=404, detail="Member not found")
    return auth.member_id


def get_services(request: Request) -> IntegrationServices:
    services: IntegrationServices | None = getattr(request.app.state, "integrations", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Integrations not initialized")
    return services


# Annotated shortcuts for route signatures
CurrentMemberId = Annotated[uuid.UUID, Depends(get_member_id)]
Services = Annotated[IntegrationServices, Depends(get_services)]
AppSettings = Annotated[Settings, Depends(get_settings)]
