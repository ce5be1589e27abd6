"""Role capability table for booking actions."""

from __future__ import annotations

from typing import Optional

from backend.domain.errors import PermissionDenied
from backend.domain.models import Action, Actor, Role, UserId


CAPABILITIES: dict[Action, frozenset[Role]] = {
    Action.SUBMIT: frozenset({Role.ADMIN, Role.LECTURER, Role.STUDENT}),
    Action.APPROVE: frozenset({Role.ADMIN}),
    Action.REJECT: frozenset({Role.ADMIN}),
    Action.CANCEL: frozenset({Role.ADMIN, Role.LECTURER, Role.STUDENT}),
}

# Actions a non-admin may only perform on their own bookings.
OWNER_SCOPED: frozenset[Action] = frozenset({Action.SUBMIT, Action.CANCEL})


def authorize(actor: Actor, action: Action, owner_id: Optional[UserId] = None) -> None:
    if actor.role not in CAPABILITIES[action]:
        raise PermissionDenied(f"Role {actor.role.value} may not {action.value} bookings")
    if action in OWNER_SCOPED and owner_id is not None and not actor.is_admin:
        if actor.uid != owner_id:
            raise PermissionDenied(f"Only the requester or an administrator may {action.value} this booking")
