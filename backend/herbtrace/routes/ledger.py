# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

"""
Ledger Routes

The ledger's view of a batch sits next to the receipts stored locally, so
auditors can compare both. Queries go through evaluateTransaction and never
write.
"""

from flask import Blueprint, jsonify

from ..decorators import require_auth, require_permission, require_role
from ..services import batch_service, ledger_service
from .errors import json_error


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/batches/<batch_id>")
@require_auth
@require_permission("audit")
def ledger_batch_route(batch_id: str):
    try:
        batch = batch_service.get_batch(batch_id)
        ledger_view = ledger_service.query_batch(batch_id)
        return jsonify({
            "batchId": batch.batch_id,
            "ledgerTxId": batch.ledger_tx_id,
            "ledger": ledger_view,
            "receipts": [r.to_dict() for r in batch.receipts],
        })
    except Exception as e:
        return json_error(e, "Failed to query ledger")


@ledger_bp.get("/status")
@require_auth
@require_role("admin", "regulator")
def ledger_status_route():
    """Anchor mode and gateway settings (never the gateway's health)."""
    return jsonify({"data": ledger_service.get_ledger().client.describe()})
