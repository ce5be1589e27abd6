"""HTTP controller layer for the resource catalog."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.booking_controller import OccurrenceResponse, to_utc
from backend.controllers.dependencies import (
    get_catalog_service,
    get_conflict_index,
    require_actor,
    require_admin,
)
from backend.domain.errors import InvalidRequest, PermissionDenied
from backend.domain.intervals import validate_interval
from backend.domain.models import Actor, Resource, ResourceStatus, ResourceType, TimeInterval
from backend.services.catalog_service import (
    CatalogService,
    CatalogValidationError,
    ResourceInUseError,
    ResourceNotFoundError,
)
from backend.services.conflict_index import ConflictIndex
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["resources"])


def _clean_features(value: Optional[list[str]]) -> Optional[list[str]]:
    if value is None:
        return None
    return [item.strip() for item in value if item.strip()]


class ResourceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    resource_type: ResourceType
    location: str = Field(min_length=1, max_length=120)
    capacity: int = Field(gt=0)
    status: ResourceStatus = ResourceStatus.AVAILABLE
    description: str = ""
    features: list[str] = Field(default_factory=list)

    @field_validator("features")
    @classmethod
    def strip_features(cls, value: list[str]) -> list[str]:
        return _clean_features(value) or []


class ResourceUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    resource_type: Optional[ResourceType] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=120)
    capacity: Optional[int] = Field(default=None, gt=0)
    status: Optional[ResourceStatus] = None
    description: Optional[str] = None
    features: Optional[list[str]] = None

    @field_validator("features")
    @classmethod
    def strip_features(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_features(value)


class ResourceResponse(BaseModel):
    resource_id: str
    name: str
    resource_type: ResourceType
    location: str
    capacity: int = Field(gt=0)
    status: ResourceStatus
    description: str
    features: list[str]

    @classmethod
    def from_domain(cls, resource: Resource) -> "ResourceResponse":
        return cls(
            resource_id=resource.resource_id,
            name=resource.name,
            resource_type=resource.resource_type,
            location=resource.location,
            capacity=resource.capacity,
            status=resource.status,
            description=resource.description,
            features=list(resource.features),
        )


class ScheduleResponse(BaseModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    occurrences: list[OccurrenceResponse]


@router.get(
    "/resources",
    response_model=list[ResourceResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_actor)],
)
async def list_resources(
    resource_type: Optional[ResourceType] = None,
    resource_status: Optional[ResourceStatus] = Query(default=None, alias="status"),
    catalog: CatalogService = Depends(get_catalog_service),
) -> list[ResourceResponse]:
    return [
        ResourceResponse.from_domain(item)
        for item in catalog.list_resources(resource_type=resource_type, status=resource_status)
    ]


@router.get(
    "/resources/{resource_id}",
    response_model=ResourceResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_actor)],
)
async def get_resource(
    resource_id: str,
    catalog: CatalogService = Depends(get_catalog_service),
) -> ResourceResponse:
    try:
        return ResourceResponse.from_domain(catalog.get_resource(resource_id))
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.post(
    "/resources",
    response_model=ResourceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_resource(
    payload: ResourceCreateRequest,
    actor: Actor = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> ResourceResponse:
    try:
        resource = catalog.create_resource(
            actor,
            name=payload.name,
            resource_type=payload.resource_type,
            location=payload.location,
            capacity=payload.capacity,
            status=payload.status,
            description=payload.description,
            features=payload.features,
        )
        return ResourceResponse.from_domain(resource)
    except CatalogValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PermissionDenied as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected resource creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create resource",
        ) from exc


@router.patch(
    "/resources/{resource_id}",
    response_model=ResourceResponse,
    status_code=status.HTTP_200_OK,
)
async def update_resource(
    resource_id: str,
    payload: ResourceUpdateRequest,
    actor: Actor = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> ResourceResponse:
    try:
        resource = catalog.update_resource(actor, resource_id, payload.model_dump(exclude_unset=True))
        return ResourceResponse.from_domain(resource)
    except CatalogValidationError as exc:
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


@router.delete(
    "/resources/{resource_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_resource(
    resource_id: str,
    actor: Actor = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> Response:
    try:
        catalog.delete_resource(actor, resource_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
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
    except ResourceInUseError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc


@router.get(
    "/resources/{resource_id}/schedule",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_actor)],
)
async def get_resource_schedule(
    resource_id: str,
    start: datetime,
    end: datetime,
    catalog: CatalogService = Depends(get_catalog_service),
    index: ConflictIndex = Depends(get_conflict_index),
) -> ScheduleResponse:
    """Active (pending or approved) occurrences overlapping ``[start, end)``."""
    try:
        catalog.get_resource(resource_id)
        window = TimeInterval(start=to_utc(start), end=to_utc(end))
        validate_interval(window)
        occurrences = index.query(resource_id, window)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidRequest as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ScheduleResponse(
        resource_id=resource_id,
        start_time=window.start,
        end_time=window.end,
        occurrences=[OccurrenceResponse.from_domain(item) for item in occurrences],
    )
