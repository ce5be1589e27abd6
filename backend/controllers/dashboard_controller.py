"""Controller layer for login, profiles, dashboard statistics and admin views."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_auth_service,
    get_dashboard_service,
    get_repository,
    require_actor,
    require_admin,
)
from backend.domain.models import Actor, Role, UserProfile
from backend.repository.data_repository import DataRepository
from backend.services.auth_service import (
    AuthService,
    InvalidCredentialsError,
    RegistrationError,
)
from backend.services.dashboard_service import DashboardService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["dashboard"])


class LoginRequest(BaseModel):
    uid: str = Field(min_length=1)
    access_key: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterRequest(BaseModel):
    uid: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: str = Field(min_length=1, max_length=120)
    role: Role
    department: Optional[str] = None
    phone: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    department: Optional[str] = None
    phone: Optional[str] = None


class UserResponse(BaseModel):
    uid: str
    email: str
    display_name: str
    role: Role
    department: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_domain(cls, user: UserProfile) -> "UserResponse":
        return cls(
            uid=user.uid,
            email=user.email,
            display_name=user.display_name,
            role=user.role,
            department=user.department,
            phone=user.phone,
        )


class DashboardStatsResponse(BaseModel):
    total_resources: int = Field(ge=0)
    available_resources: int = Field(ge=0)
    active_bookings: int = Field(ge=0)
    pending_approvals: int = Field(ge=0)
    total_bookings: int = Field(ge=0)
    utilization_rate: float = Field(ge=0.0, le=1.0)
    resources_by_type: dict[str, int]


class RecentBookingResponse(BaseModel):
    occurrence_id: str
    resource_id: str
    resource_name: str
    requester_id: str
    requester_name: str
    start_time: datetime
    end_time: datetime
    status: str


class NotificationResponse(BaseModel):
    notification_id: int
    title: str
    message: str
    notification_type: str
    read: bool
    created_at: str


class AuditEntryResponse(BaseModel):
    audit_id: int
    user_id: str
    action: str
    resource: str
    details: str
    timestamp: str


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.uid, payload.access_key)
        return LoginResponse(access_token=bearer)
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        profile = auth_service.register_user(
            uid=payload.uid,
            email=payload.email,
            display_name=payload.display_name,
            role=payload.role,
            department=payload.department,
            phone=payload.phone,
        )
        return UserResponse.from_domain(profile)
    except RegistrationError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc


@router.get("/users/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def get_profile(
    actor: Actor = Depends(require_actor),
    repository: DataRepository = Depends(get_repository),
) -> UserResponse:
    profile = repository.get_user(actor.uid)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {actor.uid} does not exist",
        )
    return UserResponse.from_domain(profile)


@router.patch("/users/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_profile(
    payload: ProfileUpdateRequest,
    actor: Actor = Depends(require_actor),
    repository: DataRepository = Depends(get_repository),
) -> UserResponse:
    profile = repository.get_user(actor.uid)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {actor.uid} does not exist",
        )
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("display_name") is None:
        changes.pop("display_name", None)
    updated = replace(profile, **changes)
    repository.update_user(updated)
    return UserResponse.from_domain(updated)


@router.get(
    "/users",
    response_model=list[UserResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_users(
    repository: DataRepository = Depends(get_repository),
) -> list[UserResponse]:
    return [UserResponse.from_domain(item) for item in repository.list_users()]


@router.get(
    "/dashboard/stats",
    response_model=DashboardStatsResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_actor)],
)
async def dashboard_stats(
    dashboard_service: DashboardService = Depends(get_dashboard_service),
) -> DashboardStatsResponse:
    try:
        return DashboardStatsResponse(**dashboard_service.get_stats())
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected dashboard stats failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute dashboard statistics",
        ) from exc


@router.get(
    "/dashboard/recent_bookings",
    response_model=list[RecentBookingResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_actor)],
)
async def recent_bookings(
    limit: Optional[int] = None,
    dashboard_service: DashboardService = Depends(get_dashboard_service),
) -> list[RecentBookingResponse]:
    if limit is not None and limit <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be > 0",
        )
    return [RecentBookingResponse(**row) for row in dashboard_service.recent_bookings(limit)]


@router.get(
    "/notifications",
    response_model=list[NotificationResponse],
    status_code=status.HTTP_200_OK,
)
async def list_notifications(
    unread_only: bool = False,
    actor: Actor = Depends(require_actor),
    repository: DataRepository = Depends(get_repository),
) -> list[NotificationResponse]:
    return [
        NotificationResponse(
            notification_id=item.notification_id,
            title=item.title,
            message=item.message,
            notification_type=item.notification_type,
            read=item.read,
            created_at=item.created_at,
        )
        for item in repository.list_notifications(actor.uid, unread_only=unread_only)
    ]


@router.post(
    "/notifications/{notification_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(require_actor),
    repository: DataRepository = Depends(get_repository),
) -> None:
    if not repository.mark_notification_read(actor.uid, notification_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} does not exist",
        )


@router.get(
    "/audit_logs",
    response_model=list[AuditEntryResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_audit_logs(
    limit: int = 100,
    repository: DataRepository = Depends(get_repository),
) -> list[AuditEntryResponse]:
    return [
        AuditEntryResponse(
            audit_id=item.audit_id,
            user_id=item.user_id,
            action=item.action,
            resource=item.resource,
            details=item.details,
            timestamp=item.timestamp,
        )
        for item in repository.list_audit_entries(limit=max(1, min(limit, 500)))
    ]
