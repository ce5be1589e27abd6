"""HTTP controller layer for booking submission and approval."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_approval_service,
    get_conflict_index,
    get_repository,
    get_scheduler,
    require_actor,
)
from backend.domain.errors import (
    AlreadyBooked,
    DuplicateOccurrence,
    InvalidRequest,
    InvalidTransition,
    OccurrenceNotFound,
    PermissionDenied,
    RecurrenceTooLong,
    ResourceUnavailable,
)
from backend.domain.models import (
    Actor,
    BookingGroup,
    BookingRequest,
    BookingStatus,
    Occurrence,
    RecurrenceFrequency,
    RecurrenceRule,
    SingleOccurrence,
    TimeInterval,
)
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import ApprovalService
from backend.services.catalog_service import ResourceNotBookableError, ResourceNotFoundError
from backend.services.conflict_index import ConflictIndex
from backend.services.scheduling_service import BookingScheduler
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])


def to_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC so every resource's index stays comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RecurrencePayload(BaseModel):
    frequency: RecurrenceFrequency
    until: date


class BookingCreateRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    purpose: str = Field(min_length=1, max_length=500)
    recurrence: Optional[RecurrencePayload] = None
    requester_id: Optional[str] = Field(
        default=None,
        description="Admins may book on behalf of another user; defaults to the caller.",
    )


class OccurrenceResponse(BaseModel):
    occurrence_id: str
    booking_group_id: str
    resource_id: str
    requester_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    purpose: str

    @classmethod
    def from_domain(cls, occurrence: Occurrence) -> "OccurrenceResponse":
        return cls(
            occurrence_id=occurrence.occurrence_id,
            booking_group_id=occurrence.booking_group_id,
            resource_id=occurrence.resource_id,
            requester_id=occurrence.requester_id,
            start_time=occurrence.interval.start,
            end_time=occurrence.interval.end,
            status=occurrence.status,
            purpose=occurrence.purpose,
        )


class BookingGroupResponse(BaseModel):
    booking_group_id: str
    kind: Literal["single", "recurring"]
    occurrences: list[OccurrenceResponse]

    @classmethod
    def from_domain(cls, group: BookingGroup) -> "BookingGroupResponse":
        return cls(
            booking_group_id=group.group_id,
            kind="single" if isinstance(group, SingleOccurrence) else "recurring",
            occurrences=[OccurrenceResponse.from_domain(item) for item in group.occurrences],
        )


class OccurrenceListResponse(BaseModel):
    bookings: list[OccurrenceResponse]
    count: int = Field(ge=0)


@router.post(
    "/bookings",
    response_model=BookingGroupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    payload: BookingCreateRequest,
    actor: Actor = Depends(require_actor),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> BookingGroupResponse:
    try:
        start = to_utc(payload.start_time)
        request = BookingRequest(
            requester_id=payload.requester_id or actor.uid,
            resource_id=payload.resource_id,
            interval=TimeInterval(start=start, end=to_utc(payload.end_time)),
            purpose=payload.purpose,
            recurrence=(
                RecurrenceRule(
                    frequency=payload.recurrence.frequency,
                    until=payload.recurrence.until,
                )
                if payload.recurrence is not None
                else None
            ),
        )
        group = scheduler.submit(request, actor=actor)
        return BookingGroupResponse.from_domain(group)
    except (InvalidRequest, RecurrenceTooLong) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PermissionDenied as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (ResourceUnavailable, ResourceNotBookableError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except DuplicateOccurrence as exc:
        logger.exception("Occurrence id collision during submission")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking submission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


@router.get(
    "/bookings",
    response_model=OccurrenceListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_bookings(
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    resource_id: Optional[str] = None,
    booking_group_id: Optional[str] = None,
    actor: Actor = Depends(require_actor),
    repository: DataRepository = Depends(get_repository),
) -> OccurrenceListResponse:
    """Admins see every booking; other roles see their own."""
    occurrences = repository.list_occurrences(
        requester_id=None if actor.is_admin else actor.uid,
        status=booking_status,
        resource_id=resource_id,
        booking_group_id=booking_group_id,
    )
    return OccurrenceListResponse(
        bookings=[OccurrenceResponse.from_domain(item) for item in occurrences],
        count=len(occurrences),
    )


@router.get(
    "/bookings/{occurrence_id}",
    response_model=OccurrenceResponse,
    status_code=status.HTTP_200_OK,
)
async def get_booking(
    occurrence_id: str,
    actor: Actor = Depends(require_actor),
    index: ConflictIndex = Depends(get_conflict_index),
    repository: DataRepository = Depends(get_repository),
) -> OccurrenceResponse:
    occurrence = index.get(occurrence_id) or repository.get_occurrence(occurrence_id)
    if occurrence is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Occurrence {occurrence_id} does not exist",
        )
    if not actor.is_admin and occurrence.requester_id != actor.uid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Bookings of other users are not visible",
        )
    return OccurrenceResponse.from_domain(occurrence)


def _run_transition(action: str, service_call, occurrence_id: str) -> OccurrenceResponse:
    try:
        return OccurrenceResponse.from_domain(service_call(occurrence_id))
    except PermissionDenied as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    except OccurrenceNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (AlreadyBooked, InvalidTransition) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected failure during booking %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action} booking",
        ) from exc


@router.post(
    "/bookings/{occurrence_id}/approve",
    response_model=OccurrenceResponse,
    status_code=status.HTTP_200_OK,
)
async def approve_booking(
    occurrence_id: str,
    actor: Actor = Depends(require_actor),
    service: ApprovalService = Depends(get_approval_service),
) -> OccurrenceResponse:
    return _run_transition("approve", lambda item: service.approve(actor, item), occurrence_id)


@router.post(
    "/bookings/{occurrence_id}/reject",
    response_model=OccurrenceResponse,
    status_code=status.HTTP_200_OK,
)
async def reject_booking(
    occurrence_id: str,
    actor: Actor = Depends(require_actor),
    service: ApprovalService = Depends(get_approval_service),
) -> OccurrenceResponse:
    return _run_transition("reject", lambda item: service.reject(actor, item), occurrence_id)


@router.post(
    "/bookings/{occurrence_id}/cancel",
    response_model=OccurrenceResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_booking(
    occurrence_id: str,
    actor: Actor = Depends(require_actor),
    service: ApprovalService = Depends(get_approval_service),
) -> OccurrenceResponse:
    return _run_transition("cancel", lambda item: service.cancel(actor, item), occurrence_id)
