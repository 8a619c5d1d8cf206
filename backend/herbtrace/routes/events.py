# Overview: Flask API routes for batch events; parses input and returns JSON responses.

"""
Event Routes

SECURITY: All routes require authentication.
- Appending an event requires the permission mapped to its type
  (harvest -> add_harvest_event, quality_test -> add_quality_test, ...)
- Edits are limited to the original actor or an admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import batch_service, event_service
from ..validation import parse_pagination, validate_event_create, validate_event_update
from .errors import json_error


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.post("")
@require_auth
def create_event_route():
    """
    Append an event to a batch.

    Request body:
    {
        "batchId": "BATCH001",              // required
        "type": "quality_test",             // required
        "description": "Lab analysis",      // required
        "location": {latitude, longitude, address},   // optional, default harvest location
        "qualityData": {"purity": 97.1, "heavyMetals": {"lead": 2.0}},
        "certificates": ["Qm..."],          // content hashes
        "metadata": {...}
    }

    Returns:
        201 with the updated batch (status, compliance and events)
    """
    try:
        data = validate_event_create(request.get_json(silent=True))
        batch = event_service.append_event(
            data["batch_id"],
            data["event_type"],
            data["description"],
            g.current_user,
            location=data["location"],
            quality_data=data["quality_data"],
            certificates=data["certificates"],
            metadata=data["metadata"],
        )
        event = batch.latest_event
        current_app.logger.info(
            "Event %s (%s) appended to %s by %s; status=%s compliant=%s",
            event.event_id, event.event_type, batch.batch_id,
            g.current_user.user_id, batch.status, batch.compliance_overall,
        )
        return jsonify({
            "message": "Event added successfully",
            "event": event.to_dict(),
            "data": batch.to_dict(),
        }), 201
    except Exception as e:
        return json_error(e, "Failed to add event")


@events_bp.get("")
@require_auth
def list_events_route():
    """
    Query parameters:
    - page, limit (default 1, 50)
    - eventType, actorId
    - startDate, endDate (ISO-8601, inclusive)
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=50)
        result = event_service.list_events(
            g.current_user,
            event_type=request.args.get("eventType"),
            actor_id=request.args.get("actorId"),
            start_date=request.args.get("startDate"),
            end_date=request.args.get("endDate"),
            page=page,
            limit=limit,
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to list events")


@events_bp.get("/stats")
@require_auth
def event_stats_route():
    try:
        return jsonify({"data": event_service.event_stats(g.current_user)})
    except Exception as e:
        return json_error(e, "Failed to compute event stats")


@events_bp.get("/batch/<batch_id>")
@require_auth
def batch_events_route(batch_id: str):
    """One batch's events, newest first (eventType, actorId, limit filters)."""
    try:
        _, limit = parse_pagination(request.args, default_limit=50)
        batch = batch_service.get_visible_batch(batch_id, g.current_user)
        events = event_service.list_batch_events(
            batch,
            event_type=request.args.get("eventType"),
            actor_id=request.args.get("actorId"),
            limit=limit,
        )
        return jsonify({
            "batchId": batch.batch_id,
            "count": len(events),
            "data": [e.to_dict() for e in events],
        })
    except Exception as e:
        return json_error(e, "Failed to list batch events")


@events_bp.get("/<event_id>")
@require_auth
def get_event_route(event_id: str):
    try:
        event = event_service.get_visible_event(event_id, g.current_user)
        return jsonify({"data": event.to_dict()})
    except Exception as e:
        return json_error(e, "Failed to fetch event")


@events_bp.put("/<event_id>")
@require_auth
def update_event_route(event_id: str):
    """Only description / qualityData / certificates / metadata are editable."""
    try:
        patch = validate_event_update(request.get_json(silent=True))
        event = event_service.update_event(event_id, patch, g.current_user)
        current_app.logger.info("Event %s updated by %s", event_id, g.current_user.user_id)
        return jsonify({"message": "Event updated successfully", "data": event.to_dict()})
    except Exception as e:
        return json_error(e, "Failed to update event")
