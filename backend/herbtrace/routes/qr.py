# Overview: Flask API routes for QR anchoring and scanning; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import batch_service
from .errors import json_error


qr_bp = Blueprint("qr", __name__, url_prefix="/api/qr")


@qr_bp.post("/generate")
@require_auth
@require_permission("generate_qr")
def generate_qr_route():
    """
    Anchor the consumer QR payload for a packaged batch.

    Request body:
    {
        "batchId": "BATCH001"   // required
    }

    Returns:
        201 with qrData (the payload) and qrCodeHash (base64 of its JSON)
    """
    data = request.get_json(silent=True) or {}
    batch_id = data.get("batchId")
    if not batch_id:
        return jsonify({"error": "Batch ID is required"}), 400

    try:
        batch, payload = batch_service.generate_qr(
            batch_id, g.current_user, client_url=current_app.config["CLIENT_URL"],
        )
        current_app.logger.info("QR code generated for %s by %s", batch_id, g.current_user.user_id)
        return jsonify({
            "message": "QR code generated successfully",
            "data": {
                "batchId": batch.batch_id,
                "qrData": payload,
                "qrCodeHash": batch.qr_code_hash,
            },
        }), 201
    except Exception as e:
        return json_error(e, "Failed to generate QR code")


@qr_bp.post("/scan")
@require_auth
@require_permission("scan_qr")
def scan_qr_route():
    """
    Request body:
    {
        "qrData": {...} | "<json>" | "<base64 qrCodeHash>"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = batch_service.scan_qr(data.get("qrData"), g.current_user)
        return jsonify({"message": "QR code scanned successfully", "data": result})
    except Exception as e:
        return json_error(e, "Failed to scan QR code")
