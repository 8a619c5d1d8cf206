# Overview: Service-layer operations for batch events; the append-only event log on each batch.

"""
HerbTrace Event Log

================================================================================
PURPOSE: Append supply-chain events to a batch and derive everything that
depends on them (status, quality metrics, compliance, ledger anchor).
================================================================================

APPEND PIPELINE (one DB transaction, batch row locked):
    1. validate event type            -> InvalidEventTypeError (400)
    2. load batch FOR UPDATE          -> NotFoundError (404)
    3. check actor permission         -> PermissionDeniedError (403)
    4. derive next status             -> LifecycleError (400, strict policy only)
    5. append event with next sequence
    6. merge quality_test readings into batch.quality_metrics
    7. recompute compliance, stamp event compliance sub-record
    8. flush                          (steps 2-8 retried on a version conflict)
    9. anchor AddEvent on the ledger  -> LedgerUnavailableError (503)
   10. commit (any failure rolls the whole thing back; never resubmitted)

RULES:
- Events are never reordered or deleted individually
- event_id / event_type / timestamp are immutable once appended
- Only description / qualityData / certificates / metadata are editable,
  by the original actor or an admin
================================================================================
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import case, func, select

from ..extensions import db
from ..models import BatchEvent, HerbBatch
from ..validation import NotFoundError, ValidationError
from . import ledger_service, permission_service
from .compliance_service import current_rules, recompute_compliance
from .concurrency import load_batch_for_update, run_with_retry
from .lifecycle_service import next_status, validate_event_type
from herbtrace.time_utils import parse_iso_datetime, to_utc_z, utcnow


QUALITY_MAP_KEYS = ("heavyMetals", "pesticides")


def new_event_id(batch_id: str) -> str:
    return f"event_{batch_id}_{uuid.uuid4().hex[:12]}"


def build_event(
    batch: HerbBatch,
    *,
    event_type: str,
    description: str,
    actor,
    location: Optional[dict] = None,
    quality_data: Optional[dict] = None,
    certificates: Optional[list] = None,
    metadata: Optional[dict] = None,
    timestamp: Optional[datetime] = None,
) -> BatchEvent:
    """
    Construct (but do not attach) the next event for batch. Without a
    location the event is recorded at the batch's harvest location.
    """
    if location is None:
        location = batch.harvest_location_dict()

    return BatchEvent(
        event_id=new_event_id(batch.batch_id),
        sequence=len(batch.events) + 1,
        event_type=event_type,
        timestamp=timestamp or utcnow(),
        latitude=location["latitude"],
        longitude=location["longitude"],
        address=location["address"],
        actor_id=actor.user_id,
        actor_role=actor.role,
        description=description,
        quality_data=quality_data or None,
        certificates=list(certificates) if certificates else None,
        event_metadata=metadata or None,
    )


def merge_quality_data(batch: HerbBatch, quality_data: dict, *, tested_at: datetime) -> dict:
    """
    Fold lab readings from a quality_test event into batch.quality_metrics.
    Newer readings replace older ones; substance maps are merged per key.
    """
    metrics = dict(batch.quality_metrics or {})
    for key, value in quality_data.items():
        if key in QUALITY_MAP_KEYS and isinstance(value, dict):
            merged = dict(metrics.get(key) or {})
            merged.update(value)
            metrics[key] = merged
        else:
            metrics[key] = value
    metrics["labTested"] = True
    metrics["testDate"] = tested_at.isoformat()
    # JSON columns only persist on reassignment
    batch.quality_metrics = metrics
    return metrics


def stamp_event_compliance(event: BatchEvent, passed: bool, checked_at: datetime, checked_by: str = "system") -> None:
    event.compliance_passed = passed
    event.compliance_checked_at = checked_at
    event.compliance_checked_by = checked_by


def append_event(
    batch_id: str,
    event_type: str,
    description: str,
    actor,
    location: Optional[dict] = None,
    quality_data: Optional[dict] = None,
    certificates: Optional[list] = None,
    metadata: Optional[dict] = None,
) -> HerbBatch:
    """
    Append one event to a batch and return the updated aggregate.

    Raises:
        InvalidEventTypeError / ValidationError: malformed input
        NotFoundError: unknown batch
        PermissionDeniedError: actor lacks the permission for event_type
        LifecycleError: out-of-order event under the strict policy
        LedgerUnavailableError: gateway failed; nothing is persisted
    """
    validate_event_type(event_type)
    if not description or not description.strip():
        raise ValidationError("Description is required")

    rules = current_rules()

    def _stage():
        batch = load_batch_for_update(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")

        permission_service.require_event_permission(actor, event_type)

        status = next_status(batch.status if batch.events else None, event_type)

        now = utcnow()
        event = build_event(
            batch,
            event_type=event_type,
            description=description.strip(),
            actor=actor,
            location=location,
            quality_data=quality_data,
            certificates=certificates,
            metadata=metadata,
            timestamp=now,
        )
        batch.events.append(event)
        batch.status = status

        if event_type == "quality_test" and quality_data:
            merge_quality_data(batch, quality_data, tested_at=now)

        verdict = recompute_compliance(batch, rules=rules, checked_at=now)
        stamp_event_compliance(event, verdict.overall, now)
        batch.updated_at = now

        db.session.flush()
        return batch, event

    try:
        batch, event = run_with_retry(_stage)
        ledger_service.anchor_add_event(batch, event)
        db.session.commit()
        return batch
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# PURE QUERIES ON ONE BATCH
# =============================================================================

def events_by_type(batch: HerbBatch, event_type: str) -> list[BatchEvent]:
    return [e for e in batch.events if e.event_type == event_type]


def events_by_actor(batch: HerbBatch, actor_id: str) -> list[BatchEvent]:
    return [e for e in batch.events if e.actor_id == actor_id]


def timeline(batch: HerbBatch) -> list[dict]:
    """Events ascending by timestamp (append order breaks ties)."""
    ordered = sorted(batch.events, key=lambda e: (e.timestamp, e.sequence))
    return [
        {
            "eventType": e.event_type,
            "timestamp": to_utc_z(e.timestamp),
            "actor": e.actor_id,
            "location": e.location_dict(),
            "description": e.description,
        }
        for e in ordered
    ]


# =============================================================================
# EVENT READS / EDITS
# =============================================================================

def get_event(event_id: str) -> BatchEvent:
    event = db.session.query(BatchEvent).filter_by(event_id=event_id).first()
    if event is None:
        raise NotFoundError("Event not found")
    return event


def get_visible_event(event_id: str, user) -> BatchEvent:
    event = get_event(event_id)
    if event.actor_id != user.user_id:
        permission_service.require_batch_visibility(user, event.batch)
    return event


def update_event(event_id: str, patch: dict, actor) -> BatchEvent:
    """
    Edit the mutable fields of an event. Identity fields are protected by
    the model; this enforces original-actor-or-admin.
    """
    def _op():
        event = get_event(event_id)
        permission_service.require_owner_or_admin(actor, event.actor_id, action="update_event")

        for key, value in patch.items():
            setattr(event, key, value)

        now = utcnow()
        event.updated_at = now
        event.batch.updated_at = now
        db.session.commit()
        return event

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def _visible_events(query, user):
    criteria = permission_service.visible_batch_criteria(user)
    if criteria is None:
        return query
    return query.filter(BatchEvent.batch_pk.in_(select(HerbBatch.id).where(criteria)))


def list_events(
    user,
    *,
    event_type: str | None = None,
    actor_id: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict[str, Any]:
    """Events across all visible batches, newest first, paginated."""
    query = _visible_events(db.session.query(BatchEvent), user)

    if event_type:
        query = query.filter(BatchEvent.event_type == event_type)
    if actor_id:
        query = query.filter(BatchEvent.actor_id == actor_id)

    try:
        start = parse_iso_datetime(start_date)
        end = parse_iso_datetime(end_date)
    except ValueError:
        raise ValidationError("startDate/endDate must be valid ISO dates")
    if start:
        query = query.filter(BatchEvent.timestamp >= start)
    if end:
        query = query.filter(BatchEvent.timestamp <= end)

    total = query.count()
    events = (
        query.order_by(BatchEvent.timestamp.desc(), BatchEvent.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "count": len(events),
        "total": total,
        "pagination": {"page": page, "pages": math.ceil(total / limit), "limit": limit},
        "data": [e.to_dict() for e in events],
    }


def list_batch_events(
    batch: HerbBatch,
    *,
    event_type: str | None = None,
    actor_id: str | None = None,
    limit: int | None = 50,
) -> list[BatchEvent]:
    """One batch's events, newest first."""
    events = list(batch.events)
    if event_type:
        events = [e for e in events if e.event_type == event_type]
    if actor_id:
        events = [e for e in events if e.actor_id == actor_id]
    events.sort(key=lambda e: (e.timestamp, e.sequence), reverse=True)
    if limit:
        events = events[:limit]
    return events


def event_stats(user, *, now: datetime | None = None) -> dict[str, Any]:
    """Counts by type, average location per type and daily activity (last 30 days with events)."""
    now = now or utcnow()
    today = datetime.combine(now.date(), time.min)

    def _since(start: datetime):
        return func.coalesce(func.sum(case((BatchEvent.timestamp >= start, 1), else_=0)), 0)

    totals = _visible_events(db.session.query(
        func.count(BatchEvent.id).label("total"),
        _since(today).label("today"),
        _since(today - timedelta(days=7)).label("week"),
        _since(today - timedelta(days=30)).label("month"),
    ), user).one()

    by_type = (
        _visible_events(db.session.query(
            BatchEvent.event_type,
            func.count(BatchEvent.id).label("count"),
            func.avg(BatchEvent.latitude).label("avg_latitude"),
            func.avg(BatchEvent.longitude).label("avg_longitude"),
        ), user)
        .group_by(BatchEvent.event_type)
        .order_by(func.count(BatchEvent.id).desc(), BatchEvent.event_type)
        .all()
    )

    day_expr = func.strftime("%Y-%m-%d", BatchEvent.timestamp)
    daily = (
        _visible_events(db.session.query(day_expr.label("day"), func.count(BatchEvent.id).label("count")), user)
        .group_by("day")
        .order_by(day_expr.desc())
        .limit(30)
        .all()
    )

    return {
        "overview": {
            "totalEvents": int(totals.total or 0),
            "todayEvents": int(totals.today or 0),
            "thisWeekEvents": int(totals.week or 0),
            "thisMonthEvents": int(totals.month or 0),
        },
        "eventTypeBreakdown": [
            {
                "eventType": row.event_type,
                "count": int(row.count),
                "avgLatitude": float(row.avg_latitude),
                "avgLongitude": float(row.avg_longitude),
            }
            for row in by_type
        ],
        "dailyActivity": [{"date": row.day, "count": int(row.count)} for row in daily],
    }

