"""
Per-batch write serialization tests.

Verifies:
- A version conflict at flush re-runs the load/mutate steps and anchors once
- Event sequences stay contiguous with one AddEvent receipt per stored event
- A commit that fails after the ledger submit is reported, never resubmitted
"""

import logging

import pytest
from sqlalchemy import event as sa_event, update
from sqlalchemy.orm.exc import StaleDataError

from conftest import make_batch
from herbtrace.extensions import db
from herbtrace.models import BatchEvent, HerbBatch, LedgerReceipt
from herbtrace.services import batch_service, event_service, ledger_service
from herbtrace.services.ledger_service import OP_ADD_EVENT, OP_GENERATE_QR


@pytest.fixture
def submissions(db_session, monkeypatch):
    """Every ledger submit as (operation, batchId); submits still go through."""
    anchor = ledger_service.get_ledger()
    real_submit = anchor.submit
    calls = []

    def recording_submit(operation, payload):
        calls.append((operation, payload["batchId"]))
        return real_submit(operation, payload)

    monkeypatch.setattr(anchor, "submit", recording_submit)
    return calls


@pytest.fixture
def concurrent_writer(monkeypatch):
    """
    On the first load of a batch, another writer bumps its version_id
    before our flush, as if it had committed an append in between.
    Returns the list of loaded batch ids.
    """
    loads = []
    real_load = event_service.load_batch_for_update
    versions = HerbBatch.__table__

    def load_then_bump(batch_id):
        batch = real_load(batch_id)
        loads.append(batch_id)
        if len(loads) == 1:
            db.session.execute(
                update(versions)
                .where(versions.c.id == batch.id)
                .values(version_id=versions.c.version_id + 1)
            )
        return batch

    monkeypatch.setattr(event_service, "load_batch_for_update", load_then_bump)
    return loads


@pytest.fixture
def failing_commit(db_session):
    """Call the returned function to make the next commit raise StaleDataError."""
    session = db.session()
    armed = []

    def before_commit(_session):
        if armed:
            armed.clear()
            raise StaleDataError("herb_batches row changed by another writer")

    sa_event.listen(session, "before_commit", before_commit)
    yield lambda: armed.append(True)
    sa_event.remove(session, "before_commit", before_commit)


def stored_sequences(batch_id="BATCH001"):
    return [
        e.sequence
        for e in db.session.query(BatchEvent)
        .join(HerbBatch)
        .filter(HerbBatch.batch_id == batch_id)
        .order_by(BatchEvent.sequence)
    ]


def add_event_receipts(batch_id="BATCH001"):
    return (
        db.session.query(LedgerReceipt)
        .join(HerbBatch)
        .filter(HerbBatch.batch_id == batch_id, LedgerReceipt.operation == OP_ADD_EVENT)
        .all()
    )


class TestVersionConflict:

    def test_conflicting_append_is_retried_and_anchored_once(self, users, submissions, concurrent_writer, caplog):
        make_batch(users["farmer"], "BATCH001")

        with caplog.at_level(logging.WARNING, logger="herbtrace.services.concurrency"):
            batch = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        assert concurrent_writer == ["BATCH001", "BATCH001"]
        assert "concurrent write conflict (StaleDataError), retry 1/2" in caplog.text
        assert batch.status == "processed"
        assert stored_sequences() == [1, 2]
        assert [op for op, _ in submissions if op == OP_ADD_EVENT] == [OP_ADD_EVENT]

    def test_events_survive_with_one_receipt_each(self, users, submissions, concurrent_writer):
        make_batch(users["farmer"], "BATCH001")
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        event_service.append_event("BATCH001", "packaging", "Sealed in 1 kg pouches", users["processor"])

        assert len(concurrent_writer) == 3
        assert stored_sequences() == [1, 2, 3]

        appended = {
            e.event_id
            for e in db.session.query(BatchEvent).filter(BatchEvent.event_type != "harvest")
        }
        receipts = add_event_receipts()
        assert len(receipts) == 2
        assert {r.event_id for r in receipts} == appended
        assert len([op for op, _ in submissions if op == OP_ADD_EVENT]) == 2


class TestCommitFailure:

    def test_append_is_not_resubmitted(self, users, submissions, failing_commit):
        make_batch(users["farmer"], "BATCH001")
        failing_commit()

        with pytest.raises(StaleDataError):
            event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        assert [op for op, _ in submissions if op == OP_ADD_EVENT] == [OP_ADD_EVENT]
        assert stored_sequences() == [1]
        assert add_event_receipts() == []
        assert db.session.query(HerbBatch).filter_by(batch_id="BATCH001").one().status == "harvested"

    def test_qr_generation_is_not_resubmitted(self, users, submissions, failing_commit):
        make_batch(users["farmer"], "BATCH001")
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        event_service.append_event("BATCH001", "packaging", "Sealed in 1 kg pouches", users["processor"])
        failing_commit()

        with pytest.raises(StaleDataError):
            batch_service.generate_qr("BATCH001", users["admin"], client_url="http://localhost:3000")

        assert [op for op, _ in submissions if op == OP_GENERATE_QR] == [OP_GENERATE_QR]
        batch = db.session.query(HerbBatch).filter_by(batch_id="BATCH001").one()
        assert batch.qr_code_generated is False
        assert batch.qr_code_hash is None

    def test_later_writes_go_through(self, users, submissions, failing_commit):
        make_batch(users["farmer"], "BATCH001")
        failing_commit()

        with pytest.raises(StaleDataError):
            event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        batch = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        assert [e.sequence for e in batch.events] == [1, 2]
        assert len(add_event_receipts()) == 1
