from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from herbtrace.time_utils import to_utc_z, utcnow


# Valid enums (must match services/lifecycle_service.py)
EVENT_TYPES = ("harvest", "processing", "quality_test", "packaging", "transport", "retail")
BATCH_STATUSES = ("harvested", "processed", "tested", "packaged", "in_transit", "retailed")
UNITS = ("kg", "g", "lb", "oz", "tons", "pieces")


class HerbBatch(db.Model):
    """
    Aggregate root: one harvested quantity of a herb species.

    INVARIANTS:
    - batch_id is unique and never changes after creation
    - status always reflects the type of the most recently appended event
    - compliance_overall == geo_fencing AND seasonal AND quality AND species
      (written only by compliance_service.recompute_compliance)
    - events are ordered by sequence and never reordered

    CONCURRENCY: version_id is an optimistic lock. Appends to the same batch
    also take a row lock (see services/concurrency.py).
    """
    __tablename__ = "herb_batches"
    __table_args__ = (
        db.Index("ix_herb_batches_species", "species"),
        db.Index("ix_herb_batches_status", "status"),
        db.Index("ix_herb_batches_location", "harvest_latitude", "harvest_longitude"),
        db.Index("ix_herb_batches_compliance_overall", "compliance_overall"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    batch_id = db.Column(db.String(50), nullable=False, unique=True, index=True)
    species = db.Column(db.String(100), nullable=False)

    harvest_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    harvest_latitude = db.Column(db.Float, nullable=False)
    harvest_longitude = db.Column(db.Float, nullable=False)
    harvest_address = db.Column(db.String(255), nullable=False)
    harvest_zone = db.Column(db.String(64), nullable=True)

    farmer_id = db.Column(db.String(50), db.ForeignKey("users.user_id"), nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="harvested")

    # purity / moisture / ashContent / heavyMetals / pesticides / labTested / testDate / labId / certificateId
    quality_metrics = db.Column(db.JSON, nullable=True)

    # Compliance snapshot (recomputed as a whole, never partially updated)
    compliance_geo_fencing = db.Column(db.Boolean, nullable=False, default=True)
    compliance_seasonal = db.Column(db.Boolean, nullable=False, default=True)
    compliance_quality = db.Column(db.Boolean, nullable=False, default=True)
    compliance_species = db.Column(db.Boolean, nullable=False, default=True)
    compliance_overall = db.Column(db.Boolean, nullable=False, default=True)
    compliance_last_checked = db.Column(db.DateTime(timezone=True), nullable=True)
    # [{"kind": ..., "severity": ..., "message": ...}] in generation order
    compliance_violations = db.Column(db.JSON, nullable=False, default=list)

    qr_code_generated = db.Column(db.Boolean, nullable=False, default=False)
    qr_code_hash = db.Column(db.Text, nullable=True)
    qr_scan_count = db.Column(db.Integer, nullable=False, default=0)
    qr_last_scanned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Transaction id of the CreateHerbBatch anchor
    ledger_tx_id = db.Column(db.String(128), nullable=True)

    batch_metadata = db.Column("metadata", db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    farmer = db.relationship("User", foreign_keys=[farmer_id], lazy="joined")
    events = db.relationship(
        "BatchEvent",
        back_populates="batch",
        order_by="BatchEvent.sequence",
        cascade="all, delete-orphan",
    )
    receipts = db.relationship(
        "LedgerReceipt",
        back_populates="batch",
        order_by="LedgerReceipt.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<HerbBatch batch_id={self.batch_id!r} species={self.species!r} status={self.status!r}>"

    @validates("batch_id")
    def _freeze_batch_id(self, key, value):
        if self.batch_id is not None and self.batch_id != value:
            raise ValueError("batch_id is immutable")
        return value

    @property
    def latest_event(self):
        return self.events[-1] if self.events else None

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def violation_messages(self) -> list[str]:
        return [v["message"] for v in (self.compliance_violations or [])]

    def harvest_location_dict(self) -> dict:
        location = {
            "latitude": self.harvest_latitude,
            "longitude": self.harvest_longitude,
            "address": self.harvest_address,
        }
        if self.harvest_zone:
            location["zone"] = self.harvest_zone
        return location

    def compliance_to_dict(self) -> dict:
        return {
            "geoFencing": self.compliance_geo_fencing,
            "seasonal": self.compliance_seasonal,
            "quality": self.compliance_quality,
            "species": self.compliance_species,
            "overall": self.compliance_overall,
            "lastChecked": to_utc_z(self.compliance_last_checked),
            "violations": self.violation_messages,
        }

    def farmer_summary(self) -> dict:
        if self.farmer is None:
            return {"userId": self.farmer_id, "username": None, "organization": None}
        return {
            "userId": self.farmer.user_id,
            "username": self.farmer.username,
            "organization": self.farmer.organization,
        }

    def to_dict(self, include_events: bool = True) -> dict:
        data = {
            "batchId": self.batch_id,
            "species": self.species,
            "harvestDate": to_utc_z(self.harvest_date),
            "harvestLocation": self.harvest_location_dict(),
            "farmerId": self.farmer_id,
            "quantity": self.quantity,
            "unit": self.unit,
            "status": self.status,
            "complianceStatus": self.compliance_to_dict(),
            "qualityMetrics": self.quality_metrics or {},
            "qrCodeGenerated": self.qr_code_generated,
            "qrCodeHash": self.qr_code_hash,
            "qrScanCount": self.qr_scan_count or 0,
            "ledgerTxId": self.ledger_tx_id,
            "ledgerReceipts": [r.to_dict() for r in self.receipts],
            "metadata": self.batch_metadata or {},
            "isActive": self.is_active,
            "eventCount": self.event_count,
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if include_events:
            data["events"] = [e.to_dict() for e in self.events]
        return data


class BatchEvent(db.Model):
    """
    One immutable, timestamped supply-chain record on a batch.

    event_id, event_type and timestamp cannot change once set. Only
    description / quality_data / certificates / metadata are editable, and
    only through event_service.update_event.

    certificates holds blob-store content hashes, never file bytes.
    """
    __tablename__ = "batch_events"
    __table_args__ = (
        db.UniqueConstraint("batch_pk", "sequence", name="uq_batch_events_batch_sequence"),
        db.Index("ix_batch_events_type", "event_type"),
        db.Index("ix_batch_events_actor", "actor_id"),
        db.Index("ix_batch_events_timestamp", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(96), nullable=False, unique=True, index=True)

    batch_pk = db.Column(db.Integer, db.ForeignKey("herb_batches.id"), nullable=False, index=True)
    # Per-batch append order (1-based)
    sequence = db.Column(db.Integer, nullable=False)

    event_type = db.Column(db.String(32), nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    address = db.Column(db.String(255), nullable=False)

    actor_id = db.Column(db.String(50), nullable=False)
    actor_role = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=False)

    quality_data = db.Column(db.JSON, nullable=True)
    certificates = db.Column(db.JSON, nullable=True)

    compliance_passed = db.Column(db.Boolean, nullable=False, default=True)
    compliance_checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    compliance_checked_by = db.Column(db.String(64), nullable=True)

    event_metadata = db.Column("metadata", db.JSON, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    batch = db.relationship("HerbBatch", back_populates="events")

    def __repr__(self) -> str:
        return f"<BatchEvent event_id={self.event_id!r} type={self.event_type!r} seq={self.sequence}>"

    @validates("event_id", "event_type", "timestamp")
    def _freeze_identity(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is immutable once the event is appended")
        return value

    def location_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }

    def compliance_dict(self) -> dict:
        return {
            "passed": self.compliance_passed,
            "checkedAt": to_utc_z(self.compliance_checked_at),
            "checkedBy": self.compliance_checked_by,
        }

    def to_dict(self) -> dict:
        return {
            "eventId": self.event_id,
            "batchId": self.batch.batch_id if self.batch is not None else None,
            "eventType": self.event_type,
            "sequence": self.sequence,
            "timestamp": to_utc_z(self.timestamp),
            "location": self.location_dict(),
            "actorId": self.actor_id,
            "actorRole": self.actor_role,
            "description": self.description,
            "qualityData": self.quality_data or {},
            "certificates": self.certificates or [],
            "compliance": self.compliance_dict(),
            "metadata": self.event_metadata or {},
            "updatedAt": to_utc_z(self.updated_at),
        }


class LedgerReceipt(db.Model):
    """
    Receipt for one anchored mutation (CreateHerbBatch / AddEvent / GenerateQRCode).

    mode is "ledger" for receipts returned by a live gateway and "offline"
    for synthetic receipts issued while no ledger is connected.
    """
    __tablename__ = "ledger_receipts"
    __table_args__ = (
        db.Index("ix_ledger_receipts_batch_operation", "batch_pk", "operation"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_pk = db.Column(db.Integer, db.ForeignKey("herb_batches.id"), nullable=False, index=True)
    event_id = db.Column(db.String(96), nullable=True)

    operation = db.Column(db.String(32), nullable=False)
    transaction_id = db.Column(db.String(128), nullable=False, index=True)
    block_number = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(32), nullable=False)
    mode = db.Column(db.String(16), nullable=False)
    anchored_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    batch = db.relationship("HerbBatch", back_populates="receipts")

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "transactionId": self.transaction_id,
            "blockNumber": self.block_number,
            "status": self.status,
            "mode": self.mode,
            "eventId": self.event_id,
            "timestamp": to_utc_z(self.anchored_at),
        }
