# Overview: Service-layer operations for herb batches; creation, queries, edits and QR anchoring.

"""
HerbTrace Batch Aggregate Service

A batch is created exactly once, together with its first harvest event, and
then only grows through event_service.append_event. Every write path follows
the same order: mutate -> recompute compliance -> flush -> anchor -> commit.
Only the steps up to the flush are retried on a concurrent-write conflict;
once a ledger submit has succeeded, a failing commit rolls back and is
reported to the caller without a second submit.

Visibility:
- admin / regulator (or view_all) see every batch
- farmers see the batches they harvested
- other actors see batches they recorded an event on
"""

from __future__ import annotations

import base64
import json
import math
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..geo_utils import bounding_box, distance_meters
from ..models import BatchEvent, HerbBatch
from ..validation import ConflictError, NotFoundError, ValidationError
from . import ledger_service, permission_service
from .compliance_service import current_rules, recompute_compliance
from .concurrency import load_batch_for_update, run_with_retry
from .event_service import build_event, stamp_event_compliance
from .lifecycle_service import next_status
from herbtrace.time_utils import to_utc_z, utcnow


def _visible(query, user):
    criteria = permission_service.visible_batch_criteria(user)
    return query if criteria is None else query.filter(criteria)


def _visible_batches(user):
    return _visible(db.session.query(HerbBatch), user)


def _page(query, page: int, limit: int) -> dict[str, Any]:
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": items,
        "total": total,
        "pagination": {"page": page, "pages": math.ceil(total / limit), "limit": limit},
    }


# =============================================================================
# CREATE
# =============================================================================

def create_batch(data: dict, actor) -> HerbBatch:
    """
    Register a harvested batch with its first harvest event.

    data is the output of validation.validate_batch_create (column keys).

    Raises:
        PermissionDeniedError: actor lacks create_batch
        ConflictError: batch_id already exists
        LedgerUnavailableError: CreateHerbBatch could not be anchored
    """
    permission_service.require_permission(actor, "create_batch", resource="batches")

    batch_id = data["batch_id"]
    if db.session.query(HerbBatch.id).filter_by(batch_id=batch_id).first():
        raise ConflictError("Batch ID already exists")

    now = utcnow()
    batch = HerbBatch(
        batch_id=batch_id,
        species=data["species"],
        harvest_date=data.get("harvest_date") or now,
        harvest_latitude=data["harvest_latitude"],
        harvest_longitude=data["harvest_longitude"],
        harvest_address=data["harvest_address"],
        harvest_zone=data.get("harvest_zone"),
        farmer_id=actor.user_id,
        quantity=data["quantity"],
        unit=data["unit"],
        status=next_status(None, "harvest"),
        batch_metadata=data.get("batch_metadata"),
        compliance_violations=[],
        created_at=now,
        updated_at=now,
    )

    harvest = build_event(
        batch,
        event_type="harvest",
        description=f"Harvested {batch.quantity:g} {batch.unit} of {batch.species}",
        actor=actor,
        timestamp=now,
    )
    batch.events.append(harvest)

    verdict = recompute_compliance(batch, rules=current_rules(), checked_at=now)
    stamp_event_compliance(harvest, verdict.overall, now)

    try:
        db.session.add(batch)
        db.session.flush()
        ledger_service.anchor_create_batch(batch)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Batch ID already exists")
    except Exception:
        db.session.rollback()
        raise

    return batch


# =============================================================================
# READ
# =============================================================================

def get_batch(batch_id: str) -> HerbBatch:
    batch = db.session.query(HerbBatch).filter_by(batch_id=batch_id).first()
    if batch is None:
        raise NotFoundError("Batch not found")
    return batch


def get_visible_batch(batch_id: str, user) -> HerbBatch:
    batch = get_batch(batch_id)
    permission_service.require_batch_visibility(user, batch)
    return batch


def list_batches(
    user,
    *,
    species: str | None = None,
    status: str | None = None,
    farmer_id: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """Visible batches, newest first. species is a case-insensitive substring match."""
    query = _visible_batches(user)
    if species:
        query = query.filter(HerbBatch.species.ilike(f"%{species}%"))
    if status:
        query = query.filter(HerbBatch.status == status)
    if farmer_id:
        query = query.filter(HerbBatch.farmer_id == farmer_id)
    query = query.order_by(HerbBatch.created_at.desc(), HerbBatch.id.desc())
    return _page(query, page, limit)


def search_batches(user, q: str, *, page: int = 1, limit: int = 10) -> dict[str, Any]:
    """Text search over batch id, species and event descriptions."""
    q = (q or "").strip()
    if not q:
        raise ValidationError("Search query is required")
    pattern = f"%{q}%"
    query = _visible_batches(user).filter(or_(
        HerbBatch.batch_id.ilike(pattern),
        HerbBatch.species.ilike(pattern),
        HerbBatch.events.any(BatchEvent.description.ilike(pattern)),
    )).order_by(HerbBatch.created_at.desc(), HerbBatch.id.desc())
    return _page(query, page, limit)


def find_by_location_range(user, latitude: float, longitude: float, radius_km: float) -> list[tuple[HerbBatch, float]]:
    """
    Batches harvested within radius_km of a point, nearest first.
    Returns (batch, distance_m) pairs.
    """
    if radius_km <= 0:
        raise ValidationError("radiusKm must be positive")
    min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_km)
    candidates = _visible_batches(user).filter(
        HerbBatch.harvest_latitude.between(min_lat, max_lat),
        HerbBatch.harvest_longitude.between(min_lon, max_lon),
    ).all()

    hits = []
    for batch in candidates:
        distance = distance_meters(latitude, longitude, batch.harvest_latitude, batch.harvest_longitude)
        if distance <= radius_km * 1000:
            hits.append((batch, distance))
    hits.sort(key=lambda pair: pair[1])
    return hits


def supply_chain_duration(batch: HerbBatch):
    """Time from the harvest event to the retail event, or None if not retailed yet."""
    harvest = next((e for e in batch.events if e.event_type == "harvest"), None)
    retail = next((e for e in reversed(batch.events) if e.event_type == "retail"), None)
    if harvest is None or retail is None:
        return None
    return retail.timestamp - harvest.timestamp


def batch_stats(user) -> dict[str, Any]:
    """Totals plus status and compliance breakdowns over the visible batches."""
    totals = _visible(db.session.query(
        func.count(HerbBatch.id).label("batches"),
        func.coalesce(func.sum(HerbBatch.quantity), 0).label("quantity"),
        func.avg(HerbBatch.quantity).label("avg_quantity"),
        func.count(func.distinct(func.lower(func.trim(HerbBatch.species)))).label("species"),
    ), user).one()

    by_status = (
        _visible(db.session.query(HerbBatch.status, func.count(HerbBatch.id).label("count")), user)
        .group_by(HerbBatch.status)
        .order_by(HerbBatch.status)
        .all()
    )
    by_compliance = (
        _visible(db.session.query(HerbBatch.compliance_overall, func.count(HerbBatch.id).label("count")), user)
        .group_by(HerbBatch.compliance_overall)
        .order_by(HerbBatch.compliance_overall)
        .all()
    )

    return {
        "overview": {
            "totalBatches": int(totals.batches or 0),
            "totalQuantity": float(totals.quantity or 0),
            "avgQuantity": round(float(totals.avg_quantity), 2) if totals.avg_quantity is not None else 0,
            "uniqueSpecies": int(totals.species or 0),
        },
        "statusBreakdown": [{"status": row.status, "count": int(row.count)} for row in by_status],
        "complianceBreakdown": [
            {"compliant": bool(row.compliance_overall), "count": int(row.count)} for row in by_compliance
        ],
    }



# =============================================================================
# EDIT / DELETE
# =============================================================================

def update_batch(batch_id: str, patch: dict, actor) -> HerbBatch:
    """
    Owner or admin may change species / quantity / unit / metadata.
    Compliance is recomputed since species feeds the whitelist check.
    """
    rules = current_rules()

    def _op():
        batch = load_batch_for_update(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        permission_service.require_owner_or_admin(actor, batch.farmer_id, action="update_batch")

        for key, value in patch.items():
            setattr(batch, key, value)

        now = utcnow()
        recompute_compliance(batch, rules=rules, checked_at=now)
        batch.updated_at = now
        db.session.commit()
        return batch

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def delete_batch(batch_id: str, actor) -> None:
    """Hard delete (events and receipts cascade). Admin only."""
    if not permission_service.is_admin(actor):
        permission_service.log_security_event(actor, "delete_batch", "Admin required", f"batch:{batch_id}")
        raise permission_service.PermissionDeniedError("Admin access required")

    batch = get_batch(batch_id)
    try:
        db.session.delete(batch)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def recheck_compliance(batch_id: str, *, checked_by: str = "system") -> HerbBatch:
    """Re-evaluate a stored batch against the current rule tables and persist it."""
    rules = current_rules()

    def _op():
        batch = load_batch_for_update(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        now = utcnow()
        recompute_compliance(batch, rules=rules, checked_at=now)
        latest = batch.latest_event
        if latest is not None:
            stamp_event_compliance(latest, batch.compliance_overall, now, checked_by)
        batch.updated_at = now
        db.session.commit()
        return batch

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# QR
# =============================================================================

def encode_qr_payload(payload: dict) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_qr_payload(qr_data) -> dict:
    """Accepts a payload dict, its JSON text, or the base64 qrCodeHash."""
    if isinstance(qr_data, dict):
        return qr_data
    if not isinstance(qr_data, str) or not qr_data.strip():
        raise ValidationError("QR code data is required")
    text = qr_data.strip()
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except ValueError:
            raise ValidationError("Invalid QR code data format")
    try:
        parsed = json.loads(text)
    except ValueError:
        raise ValidationError("Invalid QR code data format")
    if not isinstance(parsed, dict):
        raise ValidationError("Invalid QR code data format")
    return parsed


def generate_qr(batch_id: str, actor, *, client_url: str) -> tuple[HerbBatch, dict]:
    """
    Anchor GenerateQRCode and store base64(JSON payload) on the batch.
    The batch must be packaged and must not have a QR code yet.
    """
    permission_service.require_permission(actor, "generate_qr", resource="qr")

    def _stage():
        batch = load_batch_for_update(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        if batch.status != "packaged":
            raise ValidationError("Batch must be packaged before QR code can be generated")
        if batch.qr_code_generated:
            raise ValidationError("QR code already generated for this batch")

        now = utcnow()
        payload = {
            "batchId": batch.batch_id,
            "species": batch.species,
            "status": batch.status,
            "harvestDate": to_utc_z(batch.harvest_date),
            "farmerId": batch.farmer_id,
            "url": f"{client_url.rstrip('/')}/batch/{batch.batch_id}",
            "ledgerTxId": batch.ledger_tx_id,
            "generatedAt": to_utc_z(now),
            "generatedBy": actor.user_id,
        }

        batch.qr_code_generated = True
        batch.qr_code_hash = encode_qr_payload(payload)
        batch.updated_at = now

        db.session.flush()
        return batch, payload

    try:
        batch, payload = run_with_retry(_stage)
        ledger_service.anchor_generate_qr(batch)
        db.session.commit()
        return batch, payload
    except Exception:
        db.session.rollback()
        raise


def scan_qr(qr_data, actor, *, scanned_at: datetime | None = None) -> dict[str, Any]:
    """Resolve a scanned payload to its batch and check it against the stored hash."""
    permission_service.require_permission(actor, "scan_qr", resource="qr")

    payload = decode_qr_payload(qr_data)
    batch_id = payload.get("batchId")
    if not batch_id:
        raise ValidationError("Batch ID not found in QR code data")

    batch = get_batch(batch_id)
    is_authentic = bool(batch.qr_code_generated and batch.qr_code_hash == encode_qr_payload(payload))

    info = {
        "generatedAt": payload.get("generatedAt"),
        "generatedBy": payload.get("generatedBy"),
        "isAuthentic": is_authentic,
        "scanCount": batch.qr_scan_count or 0,
    }

    batch.qr_scan_count = (batch.qr_scan_count or 0) + 1
    batch.qr_last_scanned_at = scanned_at or utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    data = batch.to_dict(include_events=True)
    data["farmer"] = batch.farmer_summary()
    return {"batch": data, "qrCodeInfo": info}
