"""
Ledger anchor tests.

The gateway client is exercised against httpx.MockTransport so no network
is touched. A failing gateway must leave the database exactly as it was.
"""

import json

import httpx
import pytest

from conftest import make_batch
from herbtrace.extensions import db
from herbtrace.models import BatchEvent, HerbBatch, LedgerReceipt
from herbtrace.services import event_service, ledger_service
from herbtrace.services.ledger_service import (
    EXTENSION_KEY,
    GatewayLedgerClient,
    LedgerAnchor,
    LedgerUnavailableError,
    NullLedgerClient,
    build_client,
    chaincode_args,
)


def gateway(handler) -> GatewayLedgerClient:
    return GatewayLedgerClient(
        "http://ledger.test",
        channel="herb-channel",
        chaincode="herb-traceability",
        timeout_s=2,
        transport=httpx.MockTransport(handler),
    )


def use_gateway(app, handler) -> list:
    """Install a mock gateway on the app; returns the list of captured request bodies."""
    seen = []

    def _capture(request: httpx.Request):
        seen.append((request.url.path, json.loads(request.content)))
        return handler(request)

    app.extensions[EXTENSION_KEY] = LedgerAnchor(gateway(_capture))
    return seen


def ok(request):
    return httpx.Response(200, json={
        "transactionId": "tx-123",
        "blockNumber": 42,
        "status": "VALID",
        "timestamp": "2024-06-15T08:00:05Z",
    })


def unavailable(request):
    return httpx.Response(503, text="peer down")


class TestChaincodeArgs:

    def test_positional_order_and_stringification(self):
        args = chaincode_args("CreateHerbBatch", {
            "batchId": "BATCH001",
            "species": "Ashwagandha",
            "farmerId": "farmer001",
            "quantity": 50.0,
            "unit": "kg",
            "latitude": 12.9716,
            "longitude": 77.5946,
            "address": "Bangalore",
        })
        assert args == ["BATCH001", "Ashwagandha", "farmer001", "50.0", "kg", "12.9716", "77.5946", "Bangalore"]

    def test_missing_values_become_empty_and_maps_become_json(self):
        args = chaincode_args("AddEvent", {
            "batchId": "BATCH001",
            "eventType": "quality_test",
            "qualityData": {"purity": 97, "heavyMetals": {"lead": 1}},
        })
        assert args[6] == ""
        assert json.loads(args[7]) == {"purity": 97, "heavyMetals": {"lead": 1}}

    def test_unknown_operation(self):
        with pytest.raises(ValueError):
            chaincode_args("DeleteEverything", {})


class TestClients:

    def test_build_client_modes(self):
        assert isinstance(build_client({"LEDGER_MODE": "offline"}), NullLedgerClient)
        client = build_client({"LEDGER_MODE": "gateway", "LEDGER_GATEWAY_URL": "http://ledger.test"})
        try:
            assert isinstance(client, GatewayLedgerClient)
            assert client.describe()["channel"] == "herb-channel"
        finally:
            client.close()
        with pytest.raises(ValueError):
            build_client({"LEDGER_MODE": "carrier-pigeon"})

    def test_offline_receipts_are_flagged(self):
        receipt = LedgerAnchor(NullLedgerClient()).submit("GenerateQRCode", {"batchId": "BATCH001"})
        assert receipt.mode == "offline"
        assert receipt.transaction_id.startswith("offline-tx-")

    def test_gateway_success(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return ok(request)

        receipt = LedgerAnchor(gateway(handler)).submit("GenerateQRCode", {"batchId": "BATCH001"})

        assert receipt.transaction_id == "tx-123"
        assert receipt.block_number == 42
        assert receipt.status == "VALID"
        assert receipt.mode == "ledger"
        assert seen == [{
            "channel": "herb-channel",
            "chaincode": "herb-traceability",
            "function": "GenerateQRCode",
            "args": ["BATCH001"],
        }]

    @pytest.mark.parametrize("handler", [
        unavailable,
        lambda request: httpx.Response(200, text="<html>not json</html>"),
        lambda request: httpx.Response(200, json=["not", "an", "object"]),
        lambda request: httpx.Response(200, json={"status": "VALID"}),
    ])
    def test_gateway_failures_raise_unavailable(self, handler):
        with pytest.raises(LedgerUnavailableError):
            LedgerAnchor(gateway(handler)).submit("GenerateQRCode", {"batchId": "BATCH001"})

    def test_timeout_raises_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow peer", request=request)

        with pytest.raises(LedgerUnavailableError):
            LedgerAnchor(gateway(handler)).submit("GenerateQRCode", {"batchId": "BATCH001"})

    def test_connect_error_raises_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LedgerUnavailableError):
            gateway(handler).evaluate_transaction("GetHerbBatch", ["BATCH001"])

    def test_query_uses_evaluate_endpoint(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"batchId": "BATCH001", "events": []})

        result = LedgerAnchor(gateway(handler)).query("GetHerbBatch", {"batchId": "BATCH001"})
        assert result == {"batchId": "BATCH001", "events": []}
        assert paths == ["/transactions/evaluate"]


class TestAnchoredWrites:

    def test_create_batch_stores_gateway_receipt(self, app, users):
        seen = use_gateway(app, ok)
        batch = make_batch(users["farmer"], "BATCH001")

        assert batch.ledger_tx_id == "tx-123"
        receipt = batch.receipts[0]
        assert (receipt.operation, receipt.block_number, receipt.mode) == ("CreateHerbBatch", 42, "ledger")
        assert seen[0][0] == "/transactions/submit"
        assert seen[0][1]["function"] == "CreateHerbBatch"
        assert seen[0][1]["args"][0] == "BATCH001"

    def test_failed_create_persists_nothing(self, app, users):
        use_gateway(app, unavailable)
        with pytest.raises(LedgerUnavailableError):
            make_batch(users["farmer"], "BATCH001")

        assert db.session.query(HerbBatch).count() == 0
        assert db.session.query(BatchEvent).count() == 0
        assert db.session.query(LedgerReceipt).count() == 0

    def test_failed_append_leaves_batch_untouched(self, app, users):
        make_batch(users["farmer"], "BATCH001")
        use_gateway(app, unavailable)

        with pytest.raises(LedgerUnavailableError):
            event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        batch = db.session.query(HerbBatch).filter_by(batch_id="BATCH001").one()
        assert batch.status == "harvested"
        assert len(batch.events) == 1
        assert [r.operation for r in batch.receipts] == ["CreateHerbBatch"]

    def test_anchor_is_independent_of_compliance(self, app, users):
        seen = use_gateway(app, ok)
        batch = make_batch(users["farmer"], "BATCH001", species="Sandalwood", harvestDate="2024-01-10")
        assert batch.compliance_overall is False
        assert [body["function"] for _, body in seen] == ["CreateHerbBatch"]

    def test_query_batch(self, app, db_session):
        seen = use_gateway(app, lambda request: httpx.Response(200, json={"batchId": "BATCH001"}))
        assert ledger_service.query_batch("BATCH001") == {"batchId": "BATCH001"}
        assert seen == [("/transactions/evaluate", {
            "channel": "herb-channel",
            "chaincode": "herb-traceability",
            "function": "GetHerbBatch",
            "args": ["BATCH001"],
        })]
