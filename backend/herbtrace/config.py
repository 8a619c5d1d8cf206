# backend/herbtrace/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/herbtrace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///herbtrace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger anchoring: "offline" issues synthetic receipts, "gateway" talks to a ledger gateway
    LEDGER_MODE = os.environ.get("LEDGER_MODE", "offline")
    LEDGER_GATEWAY_URL = os.environ.get("LEDGER_GATEWAY_URL", "http://localhost:8801")
    LEDGER_CHANNEL = os.environ.get("LEDGER_CHANNEL", "herb-channel")
    LEDGER_CHAINCODE = os.environ.get("LEDGER_CHAINCODE", "herb-traceability")
    LEDGER_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "10"))

    # "permissive" lets any event type follow any other; "strict" enforces the transition table
    STATUS_TRANSITION_POLICY = os.environ.get("STATUS_TRANSITION_POLICY", "permissive")

    # Base URL embedded in QR payloads
    CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:3000")

    # Extra browser origins allowed by CORS (comma-separated); CLIENT_URL is always allowed
    CORS_ORIGINS = [o for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(",") if o]

    # Compliance rule overrides (None -> defaults in compliance_rules.py)
    COMPLIANCE_APPROVED_ZONES = None
    COMPLIANCE_HARVEST_MONTHS = None
    COMPLIANCE_APPROVED_SPECIES = None

    # Bearer session lifetimes
    SESSION_ABSOLUTE_TIMEOUT_HOURS = float(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_MINUTES = float(os.environ.get("SESSION_IDLE_TIMEOUT_MINUTES", "120"))
