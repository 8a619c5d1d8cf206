# Overview: Service-layer operations for ledger anchoring; talks to the ledger gateway or issues offline receipts.

"""
HerbTrace Ledger Anchor Invariants (authoritative)

- Every batch mutation (create, event append, QR generation) is anchored
  once, independently of its compliance verdict.
- The anchor is a client only: no consensus, no buffering, no retries.
- A gateway failure (transport error, timeout, non-2xx) surfaces as
  LedgerUnavailableError; callers roll back their transaction.
- Offline mode never blocks and never fails: receipts are synthetic
  ("offline-tx-<uuid>") and flagged mode="offline".
- The anchor keeps no per-request state; one instance per app lives in
  app.extensions["herbtrace_ledger"].
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
from flask import current_app

from ..models import LedgerReceipt
from herbtrace.time_utils import parse_iso_datetime, to_utc_z, utcnow


logger = logging.getLogger(__name__)

EXTENSION_KEY = "herbtrace_ledger"

OP_CREATE_BATCH = "CreateHerbBatch"
OP_ADD_EVENT = "AddEvent"
OP_GENERATE_QR = "GenerateQRCode"
OP_GET_BATCH = "GetHerbBatch"

# Positional chaincode arguments per function
OPERATION_ARGS = {
    OP_CREATE_BATCH: ("batchId", "species", "farmerId", "quantity", "unit", "latitude", "longitude", "address"),
    OP_ADD_EVENT: ("batchId", "eventType", "actorId", "description", "latitude", "longitude", "ipfsHash", "qualityData"),
    OP_GENERATE_QR: ("batchId",),
    OP_GET_BATCH: ("batchId",),
}
SUBMIT_OPERATIONS = {OP_CREATE_BATCH, OP_ADD_EVENT, OP_GENERATE_QR}


class LedgerUnavailableError(Exception):
    """The ledger gateway could not be reached or rejected the call (HTTP 503)."""
    pass


@dataclass(frozen=True)
class Receipt:
    transaction_id: str
    status: str
    timestamp: datetime
    block_number: Optional[int] = None
    mode: str = "ledger"

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "blockNumber": self.block_number,
            "status": self.status,
            "mode": self.mode,
            "timestamp": to_utc_z(self.timestamp),
        }


def chaincode_args(operation: str, payload: dict) -> list[str]:
    """Flatten a payload into the string arguments the chaincode expects."""
    if operation not in OPERATION_ARGS:
        raise ValueError(f"Unknown ledger operation '{operation}'")
    args = []
    for key in OPERATION_ARGS[operation]:
        value = payload.get(key)
        if value is None:
            args.append("")
        elif isinstance(value, (dict, list)):
            args.append(json.dumps(value, sort_keys=True))
        else:
            args.append(str(value))
    return args


# =============================================================================
# CLIENTS
# =============================================================================

class LedgerClient:
    """Capability: submit (write) and evaluate (read) chaincode functions."""

    mode = "ledger"

    def submit_transaction(self, function: str, args: list[str]) -> dict:
        raise NotImplementedError

    def evaluate_transaction(self, function: str, args: list[str]) -> dict:
        raise NotImplementedError

    def describe(self) -> dict:
        return {"mode": self.mode}

    def close(self) -> None:
        pass


class GatewayLedgerClient(LedgerClient):
    """
    HTTP client for a ledger gateway exposing
    POST /transactions/submit and POST /transactions/evaluate.
    """

    mode = "ledger"

    def __init__(
        self,
        base_url: str,
        *,
        channel: str,
        chaincode: str,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("base_url is required for GatewayLedgerClient")
        self._base_url = base_url.rstrip("/")
        self._channel = channel
        self._chaincode = chaincode
        self._timeout = timeout_s
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout_s, transport=transport)

    def _post(self, path: str, function: str, args: list[str]) -> dict:
        body = {
            "channel": self._channel,
            "chaincode": self._chaincode,
            "function": function,
            "args": args,
        }
        try:
            resp = self._client.post(path, json=body)
        except httpx.TimeoutException as exc:
            logger.error("ledger gateway timed out after %ss (%s)", self._timeout, function)
            raise LedgerUnavailableError(f"Ledger gateway timed out ({function})") from exc
        except httpx.HTTPError as exc:
            logger.error("ledger gateway unreachable (%s): %s", function, exc)
            raise LedgerUnavailableError(f"Ledger gateway unreachable ({function})") from exc

        if not resp.is_success:
            logger.error("ledger gateway returned HTTP %s for %s: %s", resp.status_code, function, resp.text[:200])
            raise LedgerUnavailableError(f"Ledger gateway returned HTTP {resp.status_code} ({function})")

        try:
            data = resp.json()
        except ValueError as exc:
            raise LedgerUnavailableError(f"Ledger gateway returned invalid JSON ({function})") from exc
        if not isinstance(data, dict):
            raise LedgerUnavailableError(f"Ledger gateway returned an unexpected payload ({function})")
        return data

    def submit_transaction(self, function: str, args: list[str]) -> dict:
        return self._post("/transactions/submit", function, args)

    def evaluate_transaction(self, function: str, args: list[str]) -> dict:
        return self._post("/transactions/evaluate", function, args)

    def describe(self) -> dict:
        return {
            "mode": self.mode,
            "gatewayUrl": self._base_url,
            "channel": self._channel,
            "chaincode": self._chaincode,
            "timeoutSeconds": self._timeout,
        }

    def close(self) -> None:
        self._client.close()


class NullLedgerClient(LedgerClient):
    """Offline stand-in: synthetic receipts, never blocks, never fails."""

    mode = "offline"

    def submit_transaction(self, function: str, args: list[str]) -> dict:
        return {
            "transactionId": f"offline-tx-{uuid.uuid4()}",
            "status": "success",
            "timestamp": to_utc_z(utcnow()),
        }

    def evaluate_transaction(self, function: str, args: list[str]) -> dict:
        return {
            "function": function,
            "args": args,
            "status": "offline",
            "timestamp": to_utc_z(utcnow()),
        }


def build_client(config) -> LedgerClient:
    mode = config.get("LEDGER_MODE", "offline")
    if mode == "offline":
        return NullLedgerClient()
    if mode == "gateway":
        return GatewayLedgerClient(
            config["LEDGER_GATEWAY_URL"],
            channel=config.get("LEDGER_CHANNEL", "herb-channel"),
            chaincode=config.get("LEDGER_CHAINCODE", "herb-traceability"),
            timeout_s=float(config.get("LEDGER_TIMEOUT_SECONDS", 10)),
        )
    raise ValueError(f"Invalid LEDGER_MODE '{mode}'. Must be 'offline' or 'gateway'")


# =============================================================================
# ANCHOR
# =============================================================================

class LedgerAnchor:
    def __init__(self, client: LedgerClient):
        self.client = client

    @property
    def mode(self) -> str:
        return self.client.mode

    def submit(self, operation: str, payload: dict) -> Receipt:
        if operation not in SUBMIT_OPERATIONS:
            raise ValueError(f"'{operation}' is not a submit operation")
        data = self.client.submit_transaction(operation, chaincode_args(operation, payload))

        tx_id = data.get("transactionId") or data.get("txId")
        if not tx_id:
            raise LedgerUnavailableError(f"Ledger returned no transaction id ({operation})")

        try:
            timestamp = parse_iso_datetime(data.get("timestamp")) or utcnow()
        except ValueError:
            timestamp = utcnow()

        block_number = data.get("blockNumber")
        receipt = Receipt(
            transaction_id=str(tx_id),
            status=str(data.get("status") or "success"),
            timestamp=timestamp,
            block_number=int(block_number) if block_number is not None else None,
            mode=self.mode,
        )
        if self.mode == "offline":
            logger.warning("ledger offline: issued synthetic receipt %s for %s", receipt.transaction_id, operation)
        else:
            logger.info("ledger anchored %s as %s", operation, receipt.transaction_id)
        return receipt

    def query(self, operation: str, payload: dict) -> dict:
        return self.client.evaluate_transaction(operation, chaincode_args(operation, payload))


def init_ledger(app) -> LedgerAnchor:
    anchor = LedgerAnchor(build_client(app.config))
    app.extensions[EXTENSION_KEY] = anchor
    return anchor


def get_ledger() -> LedgerAnchor:
    anchor = current_app.extensions.get(EXTENSION_KEY)
    if anchor is None:
        anchor = init_ledger(current_app)
    return anchor


# =============================================================================
# DOMAIN HELPERS
# =============================================================================

def _record_receipt(batch, operation: str, receipt: Receipt, *, event_id: str | None = None) -> LedgerReceipt:
    row = LedgerReceipt(
        event_id=event_id,
        operation=operation,
        transaction_id=receipt.transaction_id,
        block_number=receipt.block_number,
        status=receipt.status,
        mode=receipt.mode,
        anchored_at=receipt.timestamp,
    )
    batch.receipts.append(row)
    return row


def anchor_create_batch(batch) -> LedgerReceipt:
    receipt = get_ledger().submit(OP_CREATE_BATCH, {
        "batchId": batch.batch_id,
        "species": batch.species,
        "farmerId": batch.farmer_id,
        "quantity": batch.quantity,
        "unit": batch.unit,
        "latitude": batch.harvest_latitude,
        "longitude": batch.harvest_longitude,
        "address": batch.harvest_address,
    })
    batch.ledger_tx_id = receipt.transaction_id
    return _record_receipt(batch, OP_CREATE_BATCH, receipt)


def anchor_add_event(batch, event) -> LedgerReceipt:
    certificates = event.certificates or []
    receipt = get_ledger().submit(OP_ADD_EVENT, {
        "batchId": batch.batch_id,
        "eventType": event.event_type,
        "actorId": event.actor_id,
        "description": event.description,
        "latitude": event.latitude,
        "longitude": event.longitude,
        "ipfsHash": certificates[0] if certificates else None,
        "qualityData": event.quality_data,
    })
    return _record_receipt(batch, OP_ADD_EVENT, receipt, event_id=event.event_id)


def anchor_generate_qr(batch) -> LedgerReceipt:
    receipt = get_ledger().submit(OP_GENERATE_QR, {"batchId": batch.batch_id})
    return _record_receipt(batch, OP_GENERATE_QR, receipt)


def query_batch(batch_id: str) -> dict[str, Any]:
    """The ledger's own view of a batch (GetHerbBatch)."""
    return get_ledger().query(OP_GET_BATCH, {"batchId": batch_id})
