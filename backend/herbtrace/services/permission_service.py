# Overview: Service-layer operations for permission; role-based access checks for actors.

"""
Permission Checking and Security Logging

WHY: Every mutation on a batch must come from an actor whose role (plus
per-user grants) allows it. Denials are logged for security monitoring.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit permission code
- Log denials only: grants are not logged
- Event types map to exactly one permission (permissions.EVENT_TYPE_PERMISSIONS)
- Visibility: admin/regulator see every batch, farmers see their own, other
  actors see the batches they recorded an event on
"""

from flask import current_app, has_app_context
from sqlalchemy import or_, select
from sqlalchemy.orm import aliased

from ..models import BatchEvent, HerbBatch
from ..permissions import (
    EVENT_TYPE_PERMISSIONS,
    GLOBAL_VIEW_ROLES,
    permissions_for_user,
)


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""

    def __init__(self, message: str, required_permission: str | None = None):
        super().__init__(message)
        self.required_permission = required_permission


def log_security_event(user, action: str, reason: str, resource: str | None = None) -> None:
    if not has_app_context():
        return
    current_app.logger.warning(
        "PERMISSION_DENIED user=%s role=%s action=%s resource=%s reason=%s",
        getattr(user, "user_id", None),
        getattr(user, "role", None),
        action,
        resource,
        reason,
    )


def get_user_permissions(user) -> set[str]:
    """Role defaults plus active per-user grants; inactive users have none."""
    if user is None or not user.is_active:
        return set()
    return permissions_for_user(user)


def user_has_permission(user, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def require_permission(user, permission_code: str, resource: str | None = None) -> None:
    """
    Raise PermissionDeniedError unless user holds permission_code.

    Usage:
        require_permission(g.current_user, "generate_qr", resource="/api/qr/generate")
    """
    if not user_has_permission(user, permission_code):
        log_security_event(user, permission_code, f"Missing permission: {permission_code}", resource)
        raise PermissionDeniedError(f"Permission denied: {permission_code}", permission_code)


def require_event_permission(user, event_type: str) -> None:
    """Unknown event types are the lifecycle service's concern; only known ones are mapped."""
    permission_code = EVENT_TYPE_PERMISSIONS.get(event_type)
    if permission_code is None:
        return
    require_permission(user, permission_code, resource=f"event:{event_type}")


def can_view_all(user) -> bool:
    if user is None:
        return False
    return user.role in GLOBAL_VIEW_ROLES or user_has_permission(user, "view_all")


def is_admin(user) -> bool:
    return user is not None and user.role == "admin"


def can_view_batch(user, batch) -> bool:
    """
    Farmers see their own batches; admin/regulator see all. Other supply-chain
    actors see batches they have recorded an event on.
    """
    if can_view_all(user):
        return True
    if batch.farmer_id == user.user_id:
        return True
    return any(e.actor_id == user.user_id for e in batch.events)


def visible_batch_criteria(user):
    """
    SQL criterion on HerbBatch matching can_view_batch, or None when the user
    sees everything. The participant lookup is an uncorrelated subquery, so
    the criterion also works inside queries that select from batch_events.
    """
    if can_view_all(user):
        return None
    participant = aliased(BatchEvent)
    return or_(
        HerbBatch.farmer_id == user.user_id,
        HerbBatch.id.in_(select(participant.batch_pk).where(participant.actor_id == user.user_id)),
    )


def require_batch_visibility(user, batch) -> None:
    if not can_view_batch(user, batch):
        log_security_event(user, "view_batch", "Batch not visible to actor", f"batch:{batch.batch_id}")
        raise PermissionDeniedError("Access denied")


def require_owner_or_admin(user, owner_id: str, *, action: str) -> None:
    if is_admin(user) or user.user_id == owner_id:
        return
    log_security_event(user, action, "Not owner or admin")
    raise PermissionDeniedError("Access denied")
