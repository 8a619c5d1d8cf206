"""
Event log tests.

Verifies:
- Appends extend the log by one with the next sequence and update status
- quality_test readings merge into the batch metrics and flip compliance
- Role permissions gate each event type
- Timeline ordering, event edits (owner or admin) and event listing
"""

from datetime import timedelta

import pytest

from conftest import make_batch
from herbtrace.services import event_service
from herbtrace.services.lifecycle_service import InvalidEventTypeError, LifecycleError
from herbtrace.services.permission_service import PermissionDeniedError
from herbtrace.validation import NotFoundError, ValidationError


LAB_READINGS = {
    "purity": 97.2,
    "moisture": 7.5,
    "ashContent": 4.1,
    "heavyMetals": {"lead": 1.2, "cadmium": 0.1},
}


@pytest.fixture
def batch(users):
    return make_batch(users["farmer"], "BATCH001")


class TestAppendEvent:

    def test_append_extends_log_and_sets_status(self, users, batch):
        updated = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        assert updated.status == "processed"
        assert [e.event_type for e in updated.events] == ["harvest", "processing"]
        assert [e.sequence for e in updated.events] == [1, 2]
        assert updated.latest_event.actor_id == "processor001"
        assert updated.latest_event.actor_role == "processor"

    def test_event_defaults_to_harvest_location(self, users, batch):
        updated = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        assert updated.latest_event.location_dict() == {
            "latitude": 12.9716,
            "longitude": 77.5946,
            "address": "Bangalore, Karnataka",
        }

    def test_explicit_location_is_kept(self, users, batch):
        location = {"latitude": 13.0, "longitude": 77.6, "address": "Warehouse 4"}
        updated = event_service.append_event(
            "BATCH001", "transport", "Truck to Mysore", users["retailer"], location=location,
        )
        assert updated.latest_event.location_dict() == location

    def test_quality_test_merges_readings_and_passes_compliance(self, users, batch):
        assert batch.compliance_quality is False

        updated = event_service.append_event(
            "BATCH001", "quality_test", "Lab analysis", users["laboratory"], quality_data=LAB_READINGS,
        )

        assert updated.status == "tested"
        assert updated.quality_metrics["purity"] == 97.2
        assert updated.quality_metrics["labTested"] is True
        assert updated.compliance_quality is True
        assert updated.compliance_overall is True
        assert updated.latest_event.compliance_passed is True

    def test_second_quality_test_merges_metal_readings(self, users, batch):
        event_service.append_event(
            "BATCH001", "quality_test", "Lab analysis", users["laboratory"], quality_data=LAB_READINGS,
        )
        updated = event_service.append_event(
            "BATCH001", "quality_test", "Retest", users["laboratory"],
            quality_data={"heavyMetals": {"lead": 12.0}},
        )

        metals = updated.quality_metrics["heavyMetals"]
        assert metals == {"lead": 12.0, "cadmium": 0.1}
        assert updated.compliance_quality is False
        assert "lead content above maximum threshold (10 ppm)" in updated.violation_messages

    def test_each_append_is_anchored(self, users, batch):
        updated = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        operations = [r.operation for r in updated.receipts]
        assert operations == ["CreateHerbBatch", "AddEvent"]
        assert updated.receipts[-1].event_id == updated.latest_event.event_id
        assert updated.receipts[-1].mode == "offline"

    def test_unknown_event_type(self, users, batch):
        with pytest.raises(InvalidEventTypeError):
            event_service.append_event("BATCH001", "teleport", "Beam me up", users["admin"])

    def test_blank_description(self, users, batch):
        with pytest.raises(ValidationError):
            event_service.append_event("BATCH001", "processing", "   ", users["processor"])

    def test_unknown_batch(self, users):
        with pytest.raises(NotFoundError):
            event_service.append_event("NOPE", "processing", "Sun dried", users["processor"])

    @pytest.mark.parametrize("username,event_type", [
        ("processor", "retail"),
        ("consumer", "transport"),
        ("farmer", "processing"),
        ("laboratory", "packaging"),
    ])
    def test_role_without_permission_is_rejected(self, users, batch, username, event_type):
        with pytest.raises(PermissionDeniedError) as exc_info:
            event_service.append_event("BATCH001", event_type, "Not allowed", users[username])
        assert exc_info.value.required_permission == f"add_{event_type}_event"

        reloaded = event_service.list_batch_events(batch)
        assert len(reloaded) == 1

    def test_strict_policy_rejects_out_of_order(self, app, users, batch):
        app.config["STATUS_TRANSITION_POLICY"] = "strict"
        with pytest.raises(LifecycleError):
            event_service.append_event("BATCH001", "retail", "Straight to shelf", users["retailer"])
        assert len(batch.events) == 1
        assert batch.status == "harvested"

    def test_permissive_policy_accepts_out_of_order(self, users, batch):
        updated = event_service.append_event("BATCH001", "retail", "Straight to shelf", users["retailer"])
        assert updated.status == "retailed"


class TestTimeline:

    def test_timeline_is_ascending(self, users, batch):
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        updated = event_service.append_event("BATCH001", "packaging", "Sealed", users["processor"])

        entries = event_service.timeline(updated)
        assert [e["eventType"] for e in entries] == ["harvest", "processing", "packaging"]
        assert [e["actor"] for e in entries] == ["farmer001", "processor001", "processor001"]
        assert entries[0]["location"]["address"] == "Bangalore, Karnataka"

    def test_filters_on_one_batch(self, users, batch):
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        updated = event_service.append_event("BATCH001", "transport", "Truck", users["retailer"])

        assert [e.event_type for e in event_service.events_by_type(updated, "processing")] == ["processing"]
        assert [e.event_type for e in event_service.events_by_actor(updated, "retailer001")] == ["transport"]
        newest_first = event_service.list_batch_events(updated)
        assert [e.event_type for e in newest_first] == ["transport", "processing", "harvest"]


class TestUpdateEvent:

    def test_actor_can_edit_description(self, users, batch):
        updated = event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        event_id = updated.latest_event.event_id

        event = event_service.update_event(event_id, {"description": "Shade dried"}, users["processor"])
        assert event.description == "Shade dried"
        assert event.event_type == "processing"
        assert event.updated_at is not None

    def test_admin_can_edit_any_event(self, users, batch):
        event_id = batch.events[0].event_id
        event = event_service.update_event(event_id, {"event_metadata": {"note": "fixed"}}, users["admin"])
        assert event.event_metadata == {"note": "fixed"}

    def test_other_actor_cannot_edit(self, users, batch):
        event_id = batch.events[0].event_id
        with pytest.raises(PermissionDeniedError):
            event_service.update_event(event_id, {"description": "Hijacked"}, users["processor"])

    def test_event_type_is_immutable(self, users, batch):
        event = batch.events[0]
        with pytest.raises(ValueError):
            event.event_type = "retail"

    def test_unknown_event(self, users):
        with pytest.raises(NotFoundError):
            event_service.get_event("event_missing")


class TestListEvents:

    def test_regulator_sees_everything(self, users, batch):
        make_batch(users["farmer2"], "BATCH002")
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        result = event_service.list_events(users["regulator"])
        assert result["total"] == 3
        # newest first
        assert result["data"][0]["eventType"] == "processing"

    def test_farmer_sees_own_batches_only(self, users, batch):
        make_batch(users["farmer2"], "BATCH002")
        result = event_service.list_events(users["farmer"])
        assert [e["batchId"] for e in result["data"]] == ["BATCH001"]

    def test_actor_sees_events_they_recorded(self, users, batch):
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        result = event_service.list_events(users["processor"])
        assert result["total"] == 2

    def test_participant_sees_whole_history_of_visible_batches_only(self, users, batch):
        make_batch(users["farmer2"], "BATCH002")
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        result = event_service.list_events(users["processor"])
        assert {e["eventType"] for e in result["data"]} == {"harvest", "processing"}
        assert {e["batchId"] for e in result["data"]} == {"BATCH001"}

    def test_stats_follow_batch_visibility(self, users, batch):
        make_batch(users["farmer2"], "BATCH002")
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])

        stats = event_service.event_stats(users["processor"])
        assert stats["overview"]["totalEvents"] == 2
        counts = {row["eventType"]: row["count"] for row in stats["eventTypeBreakdown"]}
        assert counts == {"harvest": 1, "processing": 1}

        assert event_service.event_stats(users["farmer2"])["overview"]["totalEvents"] == 1

    def test_filter_by_type_and_actor(self, users, batch):
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        by_type = event_service.list_events(users["admin"], event_type="harvest")
        by_actor = event_service.list_events(users["admin"], actor_id="processor001")
        assert by_type["total"] == 1
        assert by_actor["data"][0]["actorId"] == "processor001"

    def test_date_range(self, users, batch):
        harvested_at = batch.events[0].timestamp
        before = (harvested_at - timedelta(days=1)).isoformat()
        after = (harvested_at + timedelta(days=1)).isoformat()

        assert event_service.list_events(users["admin"], start_date=before, end_date=after)["total"] == 1
        assert event_service.list_events(users["admin"], start_date=after)["total"] == 0

    def test_invalid_date(self, users):
        with pytest.raises(ValidationError):
            event_service.list_events(users["admin"], start_date="yesterday")

    def test_pagination(self, users, batch):
        for i in range(3):
            event_service.append_event("BATCH001", "processing", f"Pass {i}", users["processor"])
        result = event_service.list_events(users["admin"], page=2, limit=3)
        assert result["count"] == 1
        assert result["total"] == 4
        assert result["pagination"] == {"page": 2, "pages": 2, "limit": 3}

    def test_stats(self, users, batch):
        event_service.append_event("BATCH001", "processing", "Sun dried", users["processor"])
        stats = event_service.event_stats(users["admin"])

        assert stats["overview"]["totalEvents"] == 2
        assert stats["overview"]["todayEvents"] == 2
        counts = {row["eventType"]: row["count"] for row in stats["eventTypeBreakdown"]}
        assert counts == {"harvest": 1, "processing": 1}
        assert sum(day["count"] for day in stats["dailyActivity"]) == 2
