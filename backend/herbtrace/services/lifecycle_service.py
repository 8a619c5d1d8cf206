# Overview: Service-layer operations for lifecycle; derives batch status from the event log.

"""
HerbTrace Batch Lifecycle Service

================================================================================
PURPOSE: Map each appended event to the batch status it produces, and
(optionally) reject events that arrive out of supply-chain order.
================================================================================

STATUS MAP:
    harvest      -> harvested
    processing   -> processed
    quality_test -> tested
    packaging    -> packaged
    transport    -> in_transit
    retail       -> retailed

STATE MACHINE (enforced only under the "strict" policy):
    harvested  -> harvested, processed, tested, packaged
    processed  -> processed, tested, packaged
    tested     -> processed, tested, packaged
    packaged   -> packaged, in_transit, retailed
    in_transit -> in_transit, retailed
    retailed   -> retailed

POLICIES (Config.STATUS_TRANSITION_POLICY):
    permissive  latest event overwrites status, any order accepted
    strict      transitions outside the table raise LifecycleError

RULES:
1. Unknown event types are always rejected (InvalidEventTypeError)
2. Status is a pure function of (current status, event type, policy)
3. The check runs before anything is appended
================================================================================
"""

from __future__ import annotations

from typing import Literal

from flask import current_app, has_app_context

from ..models import BATCH_STATUSES, EVENT_TYPES
from ..validation import ValidationError


STATUS_FOR_EVENT = {
    "harvest": "harvested",
    "processing": "processed",
    "quality_test": "tested",
    "packaging": "packaged",
    "transport": "in_transit",
    "retail": "retailed",
}

VALID_STATUSES = set(BATCH_STATUSES)
VALID_POLICIES = {"permissive", "strict"}
TransitionPolicy = Literal["permissive", "strict"]

ALLOWED_TRANSITIONS = {
    "harvested": {"harvested", "processed", "tested", "packaged"},
    "processed": {"processed", "tested", "packaged"},
    "tested": {"processed", "tested", "packaged"},
    "packaged": {"packaged", "in_transit", "retailed"},
    "in_transit": {"in_transit", "retailed"},
    "retailed": {"retailed"},
}


class LifecycleError(ValidationError):
    """
    Raised when an event would move a batch backwards or skip stages
    under the strict policy.
    """
    pass


class InvalidEventTypeError(ValidationError):
    """Raised for event types outside EVENT_TYPES."""
    pass


def validate_event_type(event_type: str) -> str:
    if event_type not in STATUS_FOR_EVENT:
        raise InvalidEventTypeError(
            f"Invalid event type '{event_type}'. Must be one of: {', '.join(EVENT_TYPES)}"
        )
    return event_type


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(BATCH_STATUSES)}"
        )


def status_for_event(event_type: str) -> str:
    validate_event_type(event_type)
    return STATUS_FOR_EVENT[event_type]


def can_transition(from_status: str, to_status: str) -> bool:
    """True if the strict state machine allows from_status -> to_status."""
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def current_policy() -> str:
    if not has_app_context():
        return "permissive"
    policy = current_app.config.get("STATUS_TRANSITION_POLICY", "permissive")
    if policy not in VALID_POLICIES:
        raise LifecycleError(
            f"Invalid STATUS_TRANSITION_POLICY '{policy}'. Must be one of: {', '.join(sorted(VALID_POLICIES))}"
        )
    return policy


def next_status(current_status: str | None, event_type: str, *, policy: TransitionPolicy | None = None) -> str:
    """
    Status the batch takes after an event of event_type is appended.

    current_status None means the batch has no events yet (creation).

    Raises:
        InvalidEventTypeError: unknown event type (any policy)
        LifecycleError: out-of-order event under the strict policy
    """
    target = status_for_event(event_type)
    policy = policy or current_policy()

    if policy == "strict":
        if current_status is None:
            if event_type != "harvest":
                raise LifecycleError("The first event of a batch must be a harvest event")
        elif not can_transition(current_status, target):
            raise LifecycleError(
                f"Cannot record a {event_type} event on a batch that is {current_status}"
            )

    return target
