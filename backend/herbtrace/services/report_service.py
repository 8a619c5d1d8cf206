# Overview: Service-layer operations for compliance reporting; read-only projections of batch state.

"""
HerbTrace Compliance Report Builder

Reports are pure projections of the stored aggregate: nothing here
recomputes compliance or writes to the database. Callers that need a fresh
verdict run batch_service.recheck_compliance first.

Two reports built from the same batch state differ only in
reportGeneratedAt (and reportGeneratedBy when the caller differs).
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from sqlalchemy import case, func

from ..extensions import db
from ..models import HerbBatch, User
from ..validation import ValidationError
from . import permission_service
from .compliance_service import SEVERITIES, stored_status
from .event_service import timeline
from herbtrace.time_utils import to_utc_z, utcnow


VIOLATION_STATUSES = ("open", "resolved", "investigating")

# (flag, type, priority, message, action) in report order
RECOMMENDATION_TEMPLATES = (
    (
        "geo_fencing", "location", "high",
        "Ensure future harvests are conducted within approved geographical zones",
        "Verify harvest location coordinates against approved zones",
    ),
    (
        "seasonal", "timing", "medium",
        "Plan harvests during approved seasonal windows",
        "Consult seasonal harvesting calendar for this species",
    ),
    (
        "quality", "quality", "high",
        "Improve quality control measures and testing protocols",
        "Implement stricter quality testing and monitoring procedures",
    ),
    (
        "species", "species", "critical",
        "Verify species approval for commercial harvesting",
        "Check species conservation status and regulatory approvals",
    ),
)

COMPLIANT_RECOMMENDATION = {
    "type": "general",
    "priority": "low",
    "message": "Batch is compliant with all regulations",
    "action": "Continue current practices",
}


def recommendations_for(status) -> list[dict]:
    """One recommendation per failed sub-check, or a single 'compliant' entry."""
    recs = [
        {"type": rec_type, "priority": priority, "message": message, "action": action}
        for flag, rec_type, priority, message, action in RECOMMENDATION_TEMPLATES
        if not getattr(status, flag)
    ]
    return recs or [dict(COMPLIANT_RECOMMENDATION)]


def build_report(batch: HerbBatch, *, generated_by: str | None = None, generated_at: datetime | None = None) -> dict[str, Any]:
    status = stored_status(batch)
    return {
        "batch": {
            "batchId": batch.batch_id,
            "species": batch.species,
            "harvestDate": to_utc_z(batch.harvest_date),
            "harvestLocation": batch.harvest_location_dict(),
            "farmer": batch.farmer_summary(),
            "quantity": batch.quantity,
            "unit": batch.unit,
            "status": batch.status,
            "createdAt": to_utc_z(batch.created_at),
            "updatedAt": to_utc_z(batch.updated_at),
        },
        "complianceStatus": status.to_dict(),
        "violations": [v.to_dict() for v in status.violations],
        "timeline": timeline(batch),
        "events": [
            {
                "eventId": e.event_id,
                "eventType": e.event_type,
                "timestamp": to_utc_z(e.timestamp),
                "location": e.location_dict(),
                "actorId": e.actor_id,
                "actorRole": e.actor_role,
                "description": e.description,
                "compliance": e.compliance_dict(),
            }
            for e in batch.events
        ],
        "qualityMetrics": batch.quality_metrics or {},
        "recommendations": recommendations_for(status),
        "reportGeneratedAt": to_utc_z(generated_at or utcnow()),
        "reportGeneratedBy": generated_by,
    }


def violation_rows(batch: HerbBatch) -> list[dict]:
    status = stored_status(batch)
    farmer = batch.farmer_summary()
    return [
        {
            "batchId": batch.batch_id,
            "species": batch.species,
            "farmer": farmer,
            "violation": v.message,
            "kind": v.kind,
            "severity": v.severity,
            "status": "open",
            "detectedAt": to_utc_z(batch.compliance_last_checked),
            "batchStatus": batch.status,
        }
        for v in status.violations
    ]


def list_violations(
    *,
    page: int = 1,
    limit: int = 10,
    severity: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    """
    Violation rows across all non-compliant batches (most recently updated
    first), filtered by severity/status, then paginated.
    """
    if severity is not None and severity not in SEVERITIES:
        raise ValidationError("Invalid severity level")
    if status is not None and status not in VIOLATION_STATUSES:
        raise ValidationError("Invalid status")

    batches = (
        db.session.query(HerbBatch)
        .filter(HerbBatch.compliance_overall.is_(False))
        .order_by(HerbBatch.updated_at.desc(), HerbBatch.id.desc())
        .all()
    )

    rows: list[dict] = []
    for batch in batches:
        rows.extend(violation_rows(batch))

    if severity:
        rows = [r for r in rows if r["severity"] == severity]
    if status:
        rows = [r for r in rows if r["status"] == status]

    total = len(rows)
    start = (page - 1) * limit
    data = rows[start:start + limit]
    return {
        "count": len(data),
        "total": total,
        "pagination": {"page": page, "pages": math.ceil(total / limit), "limit": limit},
        "data": data,
    }


def _rate(compliant: int, total: int) -> float:
    return round(compliant / total, 4) if total else 0.0


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _compliance_query(user, *columns):
    """columns plus total / compliant batch counts over the batches user can see."""
    query = db.session.query(
        *columns,
        func.count(HerbBatch.id).label("total"),
        _count_where(HerbBatch.compliance_overall.is_(True)).label("compliant"),
    )
    criteria = permission_service.visible_batch_criteria(user)
    return query if criteria is None else query.filter(criteria)


def _group_row(row) -> dict:
    total, compliant = int(row.total), int(row.compliant)
    return {
        "totalBatches": total,
        "compliantBatches": compliant,
        "complianceRate": _rate(compliant, total),
    }


def compliance_stats(user) -> dict[str, Any]:
    totals = _compliance_query(
        user,
        _count_where(HerbBatch.compliance_geo_fencing.is_(False)).label("geo_fencing"),
        _count_where(HerbBatch.compliance_seasonal.is_(False)).label("seasonal"),
        _count_where(HerbBatch.compliance_quality.is_(False)).label("quality"),
        _count_where(HerbBatch.compliance_species.is_(False)).label("species"),
    ).one()

    total, compliant = int(totals.total or 0), int(totals.compliant or 0)
    overview = {
        "totalBatches": total,
        "compliantBatches": compliant,
        "nonCompliantBatches": total - compliant,
        "geoFencingViolations": int(totals.geo_fencing or 0),
        "seasonalViolations": int(totals.seasonal or 0),
        "qualityViolations": int(totals.quality or 0),
        "speciesViolations": int(totals.species or 0),
        "complianceRate": round(100 * _rate(compliant, total), 2),
    }

    species_rows = _compliance_query(user, HerbBatch.species).group_by(HerbBatch.species).all()
    by_species = [{"species": row.species, **_group_row(row)} for row in species_rows]
    by_species.sort(key=lambda row: (row["complianceRate"], row["species"]))

    farmer_rows = (
        _compliance_query(user, HerbBatch.farmer_id, User.username, User.organization)
        .outerjoin(User, User.user_id == HerbBatch.farmer_id)
        .group_by(HerbBatch.farmer_id, User.username, User.organization)
        .all()
    )
    by_farmer = [
        {
            "farmerId": row.farmer_id,
            "farmerName": row.username,
            "organization": row.organization,
            **_group_row(row),
        }
        for row in farmer_rows
    ]
    by_farmer.sort(key=lambda row: (row["complianceRate"], row["farmerId"]))

    year_expr = func.strftime("%Y", HerbBatch.created_at)
    month_expr = func.strftime("%m", HerbBatch.created_at)
    monthly_rows = (
        _compliance_query(user, year_expr.label("year"), month_expr.label("month"))
        .group_by("year", "month")
        .order_by(year_expr.desc(), month_expr.desc())
        .limit(12)
        .all()
    )
    monthly = [
        {"year": int(row.year), "month": int(row.month), **_group_row(row)}
        for row in monthly_rows
    ]

    return {
        "overview": overview,
        "complianceBySpecies": by_species,
        "complianceByFarmer": by_farmer[:10],
        "monthlyCompliance": monthly,
    }

