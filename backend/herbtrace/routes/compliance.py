# Overview: Flask API routes for compliance checks and reports; parses input and returns JSON responses.

"""
Compliance Routes

- POST /check re-evaluates a batch against the current rule tables
  (compliance_check: regulators and admins)
- GET /violations lists open violations across batches (audit)
- GET /stats and GET /report/<batchId> are read-only projections; the
  report never recomputes compliance and is for regulators and admins
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission, require_role
from ..services import batch_service, report_service
from ..validation import parse_pagination
from .errors import json_error


compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/compliance")


@compliance_bp.post("/check")
@require_auth
@require_permission("compliance_check")
def compliance_check_route():
    """
    Request body:
    {
        "batchId": "BATCH001"   // required
    }
    """
    data = request.get_json(silent=True) or {}
    batch_id = data.get("batchId")
    if not batch_id:
        return jsonify({"error": "Batch ID is required"}), 400

    try:
        batch = batch_service.recheck_compliance(batch_id, checked_by=g.current_user.user_id)
        current_app.logger.info(
            "Compliance re-checked for %s by %s: overall=%s",
            batch_id, g.current_user.user_id, batch.compliance_overall,
        )
        return jsonify({
            "message": "Compliance check completed",
            "data": {
                "batchId": batch.batch_id,
                "complianceStatus": batch.compliance_to_dict(),
                "violations": batch.compliance_violations or [],
            },
        })
    except Exception as e:
        return json_error(e, "Failed to run compliance check")


@compliance_bp.get("/violations")
@require_auth
@require_permission("audit")
def list_violations_route():
    """
    Query parameters:
    - page, limit (default 1, 10)
    - severity: critical | high | medium | low
    - status: open | resolved | investigating
    """
    try:
        page, limit = parse_pagination(request.args)
        result = report_service.list_violations(
            page=page,
            limit=limit,
            severity=request.args.get("severity"),
            status=request.args.get("status"),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to list violations")


@compliance_bp.get("/stats")
@require_auth
def compliance_stats_route():
    try:
        return jsonify({"data": report_service.compliance_stats(g.current_user)})
    except Exception as e:
        return json_error(e, "Failed to compute compliance stats")


@compliance_bp.get("/report/<batch_id>")
@require_auth
@require_role("regulator", "admin")
def compliance_report_route(batch_id: str):
    try:
        batch = batch_service.get_visible_batch(batch_id, g.current_user)
        report = report_service.build_report(batch, generated_by=g.current_user.user_id)
        return jsonify({"data": report})
    except Exception as e:
        return json_error(e, "Failed to build compliance report")
