"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.domain.models import Actor
from backend.services.approval_service import ApprovalService
from backend.services.auth_service import AuthService, InvalidSessionTokenError
from backend.services.catalog_service import CatalogService
from backend.services.conflict_index import ConflictIndex
from backend.services.dashboard_service import DashboardService
from backend.services.scheduling_service import BookingScheduler
from backend.repository.data_repository import DataRepository


bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _state_service(request, "repository", "Repository")


def get_conflict_index(request: Request) -> ConflictIndex:
    return _state_service(request, "conflict_index", "Conflict index")


def get_auth_service(request: Request) -> AuthService:
    return _state_service(request, "auth_service", "Auth service")


def get_catalog_service(request: Request) -> CatalogService:
    return _state_service(request, "catalog_service", "Catalog service")


def get_scheduler(request: Request) -> BookingScheduler:
    return _state_service(request, "scheduler", "Booking scheduler")


def get_approval_service(request: Request) -> ApprovalService:
    return _state_service(request, "approval_service", "Approval service")


def get_dashboard_service(request: Request) -> DashboardService:
    return _state_service(request, "dashboard_service", "Dashboard service")


async def require_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_actor(credentials.credentials)
    except InvalidSessionTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role is required",
        )
    return actor
