# Overview: Flask API routes for herb batches; parses input and returns JSON responses.

"""
Batch Routes

SECURITY: All routes require authentication.
- Create requires create_batch (farmers, admin)
- Reads are filtered by visibility: admin/regulator see every batch,
  farmers see their own, other actors see batches they recorded events on
- Update is owner-or-admin, delete is admin only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import batch_service, event_service
from ..validation import (
    parse_pagination,
    validate_batch_create,
    validate_batch_update,
)
from .errors import json_error


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


def _page_response(result: dict) -> dict:
    return {
        "count": len(result["items"]),
        "total": result["total"],
        "pagination": result["pagination"],
        "data": [b.to_dict(include_events=False) for b in result["items"]],
    }


@batches_bp.post("")
@require_auth
@require_permission("create_batch")
def create_batch_route():
    """
    Register a harvested batch.

    Request body:
    {
        "batchId": "BATCH001",      // required, unique
        "species": "Ashwagandha",   // required
        "quantity": 50,             // required, > 0
        "unit": "kg",               // required
        "latitude": 26.9124,        // required
        "longitude": 75.7873,       // required
        "address": "Jaipur, RJ",    // required
        "harvestDate": "...",       // optional ISO-8601, default now
        "metadata": {...}           // optional
    }

    Returns:
        201 with the batch (including its harvest event)
    """
    try:
        data = validate_batch_create(request.get_json(silent=True) or {})
        batch = batch_service.create_batch(data, g.current_user)
        current_app.logger.info(
            "Batch %s created by %s (compliant=%s)",
            batch.batch_id, g.current_user.user_id, batch.compliance_overall,
        )
        return jsonify({"message": "Batch created successfully", "data": batch.to_dict()}), 201
    except Exception as e:
        return json_error(e, "Failed to create batch")


@batches_bp.get("")
@require_auth
def list_batches_route():
    """
    Query parameters:
    - page, limit (default 1, 10)
    - species: case-insensitive substring
    - status: exact batch status
    - farmerId: exact farmer user id
    """
    try:
        page, limit = parse_pagination(request.args)
        result = batch_service.list_batches(
            g.current_user,
            species=request.args.get("species"),
            status=request.args.get("status"),
            farmer_id=request.args.get("farmerId"),
            page=page,
            limit=limit,
        )
        return jsonify(_page_response(result))
    except Exception as e:
        return json_error(e, "Failed to list batches")


@batches_bp.get("/search")
@require_auth
def search_batches_route():
    try:
        page, limit = parse_pagination(request.args)
        result = batch_service.search_batches(
            g.current_user, request.args.get("q", ""), page=page, limit=limit,
        )
        return jsonify(_page_response(result))
    except Exception as e:
        return json_error(e, "Failed to search batches")


@batches_bp.get("/nearby")
@require_auth
def nearby_batches_route():
    """Batches harvested within radiusKm (default 10) of lat/lon, nearest first."""
    lat = request.args.get("lat", type=float)
    lon = request.args.get("lon", type=float)
    radius_km = request.args.get("radiusKm", default=10.0, type=float)

    if lat is None or lon is None:
        return jsonify({"error": "lat and lon are required"}), 400

    try:
        hits = batch_service.find_by_location_range(g.current_user, lat, lon, radius_km)
        data = []
        for batch, distance in hits:
            row = batch.to_dict(include_events=False)
            row["distanceMeters"] = round(distance, 1)
            data.append(row)
        return jsonify({"count": len(data), "data": data})
    except Exception as e:
        return json_error(e, "Failed to find nearby batches")


@batches_bp.get("/stats")
@require_auth
def batch_stats_route():
    try:
        return jsonify({"data": batch_service.batch_stats(g.current_user)})
    except Exception as e:
        return json_error(e, "Failed to compute batch stats")


@batches_bp.get("/<batch_id>")
@require_auth
def get_batch_route(batch_id: str):
    try:
        batch = batch_service.get_visible_batch(batch_id, g.current_user)
        data = batch.to_dict()
        duration = batch_service.supply_chain_duration(batch)
        data["supplyChainDurationSeconds"] = duration.total_seconds() if duration is not None else None
        return jsonify({"data": data})
    except Exception as e:
        return json_error(e, "Failed to fetch batch")


@batches_bp.put("/<batch_id>")
@require_auth
def update_batch_route(batch_id: str):
    """Owner or admin; only species / quantity / unit / metadata."""
    try:
        patch = validate_batch_update(request.get_json(silent=True) or {})
        batch = batch_service.update_batch(batch_id, patch, g.current_user)
        current_app.logger.info("Batch %s updated by %s", batch_id, g.current_user.user_id)
        return jsonify({"message": "Batch updated successfully", "data": batch.to_dict()})
    except Exception as e:
        return json_error(e, "Failed to update batch")


@batches_bp.delete("/<batch_id>")
@require_auth
def delete_batch_route(batch_id: str):
    try:
        batch_service.delete_batch(batch_id, g.current_user)
        current_app.logger.info("Batch %s deleted by %s", batch_id, g.current_user.user_id)
        return jsonify({"message": "Batch deleted successfully"})
    except Exception as e:
        return json_error(e, "Failed to delete batch")


@batches_bp.get("/<batch_id>/timeline")
@require_auth
def batch_timeline_route(batch_id: str):
    try:
        batch = batch_service.get_visible_batch(batch_id, g.current_user)
        return jsonify({"batchId": batch.batch_id, "data": event_service.timeline(batch)})
    except Exception as e:
        return json_error(e, "Failed to build timeline")
