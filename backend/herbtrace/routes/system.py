# backend/herbtrace/routes/system.py
"""
Liveness and deployment info, served outside /api and without auth.

/health probes three things: the batch store, the session table and the
ledger anchor. An offline ledger makes the service "degraded" rather than
"unhealthy": writes still go through, they just carry synthetic receipts.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import BatchEvent, HerbBatch, LedgerReceipt, SessionToken
from ..services import ledger_service
from herbtrace.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def _probe(name: str, check) -> dict:
    """Run one check, timing it; any database error marks it unhealthy."""
    started = time.perf_counter()
    try:
        result = check()
    except Exception:
        current_app.logger.exception("Health probe '%s' failed", name)
        db.session.rollback()
        result = {"status": "unhealthy", "error": f"{name} unavailable"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _store_check() -> dict:
    batches = db.session.query(func.count(HerbBatch.id)).scalar()
    compliant = db.session.query(func.count(HerbBatch.id)).filter(
        HerbBatch.compliance_overall.is_(True)
    ).scalar()
    events = db.session.query(func.count(BatchEvent.id)).scalar()
    return {
        "status": "healthy",
        "details": {"batches": batches, "compliantBatches": compliant, "events": events},
    }


def _session_check() -> dict:
    now = utcnow()
    open_sessions = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at >= now,
    ).count()
    return {"status": "healthy", "details": {"open_sessions": open_sessions}}


def _ledger_check() -> dict:
    # Reports configuration and the last stored receipt; the gateway is not called.
    anchor = ledger_service.get_ledger()
    details = anchor.client.describe()
    details["last_anchored_at"] = to_utc_z(
        db.session.query(func.max(LedgerReceipt.anchored_at)).scalar()
    )
    if anchor.mode == "offline":
        return {
            "status": "degraded",
            "warning": "Ledger offline: receipts are synthetic",
            "details": details,
        }
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """200 when healthy or degraded, 503 if any probe is unhealthy."""
    checks = {
        "database": _probe("database", _store_check),
        "sessions": _probe("sessions", _session_check),
        "ledger": _probe("ledger", _ledger_check),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall, code = "unhealthy", 503
    elif "degraded" in statuses:
        overall, code = "degraded", 200
    else:
        overall, code = "healthy", 200

    return {"status": overall, "timestamp": to_utc_z(utcnow()), "checks": checks}, code


@system_bp.get("/version")
def version():
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "ledger_mode": current_app.config.get("LEDGER_MODE"),
        "transition_policy": current_app.config.get("STATUS_TRANSITION_POLICY"),
        "server_time": to_utc_z(utcnow()),
    }
