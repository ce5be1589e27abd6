"""Resource catalog: CRUD plus the bookability precondition for scheduling."""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Optional, Sequence

from backend.domain.errors import PermissionDenied
from backend.domain.models import Actor, Occurrence, Resource, ResourceStatus, ResourceType
from backend.repository.data_repository import DataRepository
from backend.services.conflict_index import ConflictIndex
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

UNBOOKABLE_STATUSES = frozenset({ResourceStatus.MAINTENANCE, ResourceStatus.UNAVAILABLE})


class CatalogError(Exception):
    """Base exception for resource catalog failures."""


class CatalogValidationError(CatalogError):
    """Raised when resource attributes are invalid."""


class ResourceNotFoundError(CatalogError):
    """Raised when a resource id does not exist in the catalog."""


class ResourceNotBookableError(CatalogError):
    """Raised when a resource is under maintenance or otherwise withdrawn."""


class ResourceInUseError(CatalogError):
    """Raised when deleting a resource that still has pending or approved bookings."""

    def __init__(self, resource_id: str, active: int) -> None:
        super().__init__(
            f"Resource {resource_id} still has {active} pending or approved booking(s)"
        )
        self.resource_id = resource_id
        self.active = active


class CatalogService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        index: Optional[ConflictIndex] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._index = index

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionDenied("Only administrators can manage resources")

    def get_resource(self, resource_id: str) -> Resource:
        resource = self._repository.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {resource_id} does not exist")
        return resource

    def list_resources(
        self,
        resource_type: Optional[ResourceType] = None,
        status: Optional[ResourceStatus] = None,
    ) -> list[Resource]:
        resources = self._repository.list_resources()
        if resource_type is not None:
            resources = [item for item in resources if item.resource_type is resource_type]
        if status is not None:
            resources = [item for item in resources if item.status is status]
        return resources

    def ensure_bookable(self, resource_id: str) -> Resource:
        resource = self.get_resource(resource_id)
        if resource.status in UNBOOKABLE_STATUSES:
            raise ResourceNotBookableError(
                f"Resource {resource.name} is {resource.status.value} and cannot be booked"
            )
        return resource

    def create_resource(
        self,
        actor: Actor,
        *,
        name: str,
        resource_type: ResourceType,
        location: str,
        capacity: int,
        status: ResourceStatus = ResourceStatus.AVAILABLE,
        description: str = "",
        features: Optional[list[str]] = None,
    ) -> Resource:
        self._require_admin(actor)
        resource = Resource(
            resource_id=uuid.uuid4().hex,
            name=name.strip(),
            resource_type=resource_type,
            location=location.strip(),
            capacity=capacity,
            status=status,
            description=description,
            features=tuple(item.strip() for item in features or [] if item.strip()),
        )
        self._validate(resource)
        self._repository.save_resource(resource)
        self._repository.save_audit_entry(
            actor.uid, "resource.create", resource.resource_id, {"name": resource.name}
        )
        logger.info("Resource created | id=%s | name=%s", resource.resource_id, resource.name)
        return resource

    def update_resource(self, actor: Actor, resource_id: str, changes: dict[str, Any]) -> Resource:
        self._require_admin(actor)
        current = self.get_resource(resource_id)
        if "features" in changes and changes["features"] is not None:
            changes = {**changes, "features": tuple(changes["features"])}
        allowed = {
            key: value
            for key, value in changes.items()
            if value is not None
            and key in {"name", "resource_type", "location", "capacity", "status", "description", "features"}
        }
        updated = replace(current, **allowed)
        self._validate(updated)
        self._repository.save_resource(updated)
        self._repository.save_audit_entry(
            actor.uid,
            "resource.update",
            resource_id,
            {key: getattr(value, "value", value) for key, value in allowed.items()},
        )
        logger.info("Resource updated | id=%s | fields=%s", resource_id, sorted(allowed))
        return updated

    def delete_resource(self, actor: Actor, resource_id: str) -> None:
        """Delete a resource that holds no pending or approved bookings.

        With a conflict index attached, the check and the delete both run under
        the resource's write lock, which submissions also take.
        """
        self._require_admin(actor)
        if self._index is None:
            self._delete_unused(resource_id, self._repository.list_active_occurrences(resource_id))
        else:
            with self._index.transaction(resource_id) as txn:
                self._delete_unused(resource_id, txn.occurrences())
        self._repository.save_audit_entry(actor.uid, "resource.delete", resource_id, {})
        logger.info("Resource deleted | id=%s", resource_id)

    def _delete_unused(self, resource_id: str, active: Sequence[Occurrence]) -> None:
        if active:
            raise ResourceInUseError(resource_id, len(active))
        if not self._repository.delete_resource(resource_id):
            raise ResourceNotFoundError(f"Resource {resource_id} does not exist")

    @staticmethod
    def _validate(resource: Resource) -> None:
        if not resource.name:
            raise CatalogValidationError("name must be non-empty")
        if not resource.location:
            raise CatalogValidationError("location must be non-empty")
        if resource.capacity <= 0:
            raise CatalogValidationError("capacity must be > 0")
