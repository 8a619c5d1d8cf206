from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Float, Integer, String, Text, JSON
from sqlalchemy.orm import DeclarativeMeta

from herbtrace.time_utils import parse_iso_datetime


MAX_PAGE_LIMIT = 100


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate batchId)."""


class NotFoundError(LookupError):
    """404-level: unknown batch or event."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: camelCase payload key -> model column key (security boundary)
    - required_on_create: payload keys required for POST
    """
    writable_fields: dict[str, str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.column_attrs}


def _coerce_number(key: str, value: Any) -> float:
    # bool is an int subclass; never accept it as a number
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be a number")
        try:
            number = float(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be a number")
    else:
        raise ValidationError(f"{key} must be a number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _coerce_value(key: str, col, value: Any):
    coltype = col.columns[0].type

    if value is None:
        return None

    if isinstance(coltype, (Float, Integer)):
        return _coerce_number(key, value)

    if isinstance(coltype, JSON):
        if not isinstance(value, (dict, list)):
            raise ValidationError(f"{key} must be an object")
        return value

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{key} must be a string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model column key.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = [f for f in sorted(policy.required_on_create) if payload.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col_key = policy.writable_fields[k]
        col = cols[col_key]
        column = col.columns[0]

        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[col_key] = None
            continue

        val = _coerce_value(k, col, raw)

        if isinstance(column.type, (String, Text)) and not column.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(column.type, String) and column.type.length and isinstance(val, str):
            if len(val) > column.type.length:
                raise ValidationError(f"{k} exceeds max length {column.type.length}")

        patch[col_key] = val

    return patch


# =============================================================================
# DOMAIN RULES
# =============================================================================

def enforce_rules_coordinates(latitude: float, longitude: float) -> None:
    if not -90 <= latitude <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise ValidationError("longitude must be between -180 and 180")


def enforce_rules_batch(patch: dict) -> None:
    from .models import UNITS

    if "quantity" in patch and patch["quantity"] is not None and patch["quantity"] < 0:
        raise ValidationError("quantity cannot be negative")
    if "unit" in patch and patch["unit"] not in UNITS:
        raise ValidationError(f"Invalid unit. Must be one of: {', '.join(UNITS)}")
    if "harvest_latitude" in patch or "harvest_longitude" in patch:
        enforce_rules_coordinates(patch["harvest_latitude"], patch["harvest_longitude"])


def parse_location(raw: Any) -> dict | None:
    """
    Accepts either {"latitude", "longitude", "address"} or a
    "lat,lng[,address]" string. Returns None when nothing usable was given.

    A plain string without coordinates is rejected: events need a position.
    """
    if raw is None or raw == "":
        return None

    if isinstance(raw, dict):
        if raw.get("latitude") is None or raw.get("longitude") is None:
            raise ValidationError("location requires latitude and longitude")
        lat = _coerce_number("location.latitude", raw["latitude"])
        lng = _coerce_number("location.longitude", raw["longitude"])
        enforce_rules_coordinates(lat, lng)
        address = str(raw.get("address") or "").strip() or f"{lat}, {lng}"
        return {"latitude": lat, "longitude": lng, "address": address}

    if isinstance(raw, str):
        parts = [p.strip() for p in raw.split(",")]
        if len(parts) < 2:
            raise ValidationError("location must be 'latitude,longitude[,address]'")
        lat = _coerce_number("location.latitude", parts[0])
        lng = _coerce_number("location.longitude", parts[1])
        enforce_rules_coordinates(lat, lng)
        address = ", ".join(p for p in parts[2:] if p) or raw.strip()
        return {"latitude": lat, "longitude": lng, "address": address}

    raise ValidationError("location must be an object or a string")


def parse_harvest_date(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str):
        raise ValidationError("harvestDate must be an ISO-8601 date")
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError("harvestDate must be an ISO-8601 date")


def validate_batch_create(payload: dict) -> dict:
    """
    Validate POST /batches: batchId, species, quantity, unit, latitude,
    longitude, address (+ optional harvestDate, zone, metadata).
    """
    from .models import HerbBatch

    policy = ModelValidationPolicy(
        writable_fields={
            "batchId": "batch_id",
            "species": "species",
            "quantity": "quantity",
            "unit": "unit",
            "latitude": "harvest_latitude",
            "longitude": "harvest_longitude",
            "address": "harvest_address",
            "zone": "harvest_zone",
            "metadata": "batch_metadata",
        },
        required_on_create=frozenset({
            "batchId", "species", "quantity", "unit", "latitude", "longitude", "address",
        }),
    )
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    body = dict(payload)
    harvest_date = parse_harvest_date(body.pop("harvestDate", None))

    patch = validate_payload(model=HerbBatch, payload=body, policy=policy, partial=False)
    enforce_rules_batch(patch)
    patch["harvest_date"] = harvest_date
    return patch


def validate_batch_update(payload: dict) -> dict:
    """Only species / quantity / unit / metadata may change after creation."""
    from .models import HerbBatch

    policy = ModelValidationPolicy(
        writable_fields={
            "species": "species",
            "quantity": "quantity",
            "unit": "unit",
            "metadata": "batch_metadata",
        },
    )
    patch = validate_payload(model=HerbBatch, payload=payload, policy=policy, partial=True)
    if not patch:
        raise ValidationError("No updatable fields provided")
    enforce_rules_batch(patch)
    return patch


QUALITY_NUMERIC_FIELDS = ("purity", "moisture", "ashContent")
QUALITY_READING_MAPS = ("heavyMetals", "pesticides")


def validate_quality_data(raw: Any) -> dict | None:
    """
    Lab readings: purity / moisture / ashContent are percentages (0..100),
    heavyMetals and pesticides map a substance to a non-negative ppm reading.
    Other keys (labId, certificateId, ...) pass through untouched.
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("qualityData must be an object")

    cleaned = dict(raw)
    for key in QUALITY_NUMERIC_FIELDS:
        if cleaned.get(key) is None:
            continue
        value = _coerce_number(f"qualityData.{key}", cleaned[key])
        if not 0 <= value <= 100:
            raise ValidationError(f"qualityData.{key} must be between 0 and 100")
        cleaned[key] = value

    for key in QUALITY_READING_MAPS:
        if cleaned.get(key) is None:
            continue
        readings = cleaned[key]
        if not isinstance(readings, dict):
            raise ValidationError(f"qualityData.{key} must be an object")
        parsed = {}
        for substance, level in readings.items():
            number = _coerce_number(f"qualityData.{key}.{substance}", level)
            if number < 0:
                raise ValidationError(f"qualityData.{key}.{substance} cannot be negative")
            parsed[str(substance).lower()] = number
        cleaned[key] = parsed

    return cleaned


def validate_event_create(payload: dict) -> dict:
    """
    Validate POST /events. Event type membership is checked by the
    lifecycle service so that unknown types fail in one place.
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    batch_id = str(payload.get("batchId") or "").strip()
    if not batch_id:
        raise ValidationError("Batch ID is required")

    event_type = payload.get("type", payload.get("eventType"))
    if not isinstance(event_type, str) or not event_type.strip():
        raise ValidationError("Event type is required")

    description = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Description is required")

    quality_data = validate_quality_data(payload.get("qualityData"))

    certificates = payload.get("certificates")
    if certificates is not None:
        if not isinstance(certificates, list) or not all(isinstance(c, str) and c for c in certificates):
            raise ValidationError("certificates must be a list of content hashes")

    metadata = payload.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    return {
        "batch_id": batch_id,
        "event_type": event_type.strip(),
        "description": description.strip(),
        "location": parse_location(payload.get("location")),
        "quality_data": quality_data,
        "certificates": certificates,
        "metadata": metadata,
    }


EVENT_UPDATABLE_FIELDS = {
    "description": "description",
    "qualityData": "quality_data",
    "certificates": "certificates",
    "metadata": "event_metadata",
}


def validate_event_update(payload: dict) -> dict:
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    patch: dict = {}
    for key, value in payload.items():
        if key not in EVENT_UPDATABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")
        if key == "description":
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Description cannot be empty")
            value = value.strip()
        elif key == "certificates":
            if not isinstance(value, list) or not all(isinstance(c, str) and c for c in value):
                raise ValidationError("certificates must be a list of content hashes")
        elif key == "qualityData":
            value = validate_quality_data(value)
        elif not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        patch[EVENT_UPDATABLE_FIELDS[key]] = value

    if not patch:
        raise ValidationError("No updatable fields provided")
    return patch


def parse_pagination(args, *, default_limit: int = 10) -> tuple[int, int]:
    """Read page/limit query args (page >= 1, 1 <= limit <= 100)."""
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        raise ValidationError("Page must be a positive integer")
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_LIMIT}")
    return page, limit
