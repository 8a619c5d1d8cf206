# Overview: Service-layer operations for compliance; evaluates batches against the rule tables.

"""
HerbTrace Compliance Rule Evaluator

================================================================================
PURPOSE: Decide whether a batch complies with geo-fencing, seasonal, quality
and species-conservation rules, and explain every failure.
================================================================================

CHECKS (independent, always all four run):
    geo_fencing  harvest point within radius_m of at least one approved zone
    seasonal     harvest month inside the inclusive approved window
    quality      metrics present and inside regulatory thresholds
    species      species on the (case-insensitive) approved whitelist

RULES:
1. overall == geo_fencing AND seasonal AND quality AND species (derived, never stored alone)
2. Violations are reported in check order: geo, seasonal, quality, species
3. evaluate() is pure: same batch + same rules -> same verdict (no clock)
4. recompute_compliance() is the only writer of the compliance columns

Each violation is tagged with its kind and severity when it is generated.
classify_severity() exists only for untagged violation text.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from flask import current_app, has_app_context

from ..compliance_rules import (
    DEFAULT_RULES,
    ComplianceRules,
    HEAVY_METAL_LIMITS_PPM,
    MAX_ASH_CONTENT_PERCENT,
    MAX_MOISTURE_PERCENT,
    MIN_PURITY_PERCENT,
    rules_from_config,
)
from ..geo_utils import is_within_radius
from herbtrace.time_utils import to_utc_z, utcnow


SEVERITIES = ("critical", "high", "medium", "low")

# First matching bucket wins
SEVERITY_KEYWORDS = (
    ("critical", ("heavy metals", "pesticides", "contamination")),
    ("high", ("purity", "quality", "species")),
    ("medium", ("seasonal", "season", "geo-fencing", "approved zones")),
)

MSG_OUTSIDE_ZONES = "Harvest location outside approved zones"
MSG_OUTSIDE_SEASON = "Harvest outside approved season"
MSG_NO_METRICS = "No quality metrics available"
MSG_LOW_PURITY = f"Purity below minimum threshold ({MIN_PURITY_PERCENT}%)"
MSG_HIGH_MOISTURE = f"Moisture content above maximum threshold ({MAX_MOISTURE_PERCENT}%)"
MSG_HIGH_ASH = f"Ash content above maximum threshold ({MAX_ASH_CONTENT_PERCENT}%)"
MSG_SPECIES = "Species not approved for harvesting"


@dataclass(frozen=True)
class Violation:
    kind: str
    severity: str
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "severity": self.severity, "message": self.message}

    @classmethod
    def from_dict(cls, data) -> "Violation":
        """Rebuild a stored violation; bare strings get a keyword-derived severity."""
        if isinstance(data, str):
            return cls(kind="unknown", severity=classify_severity(data), message=data)
        message = data.get("message", "")
        severity = data.get("severity") or classify_severity(message)
        return cls(kind=data.get("kind", "unknown"), severity=severity, message=message)


@dataclass
class ComplianceStatus:
    geo_fencing: bool
    seasonal: bool
    quality: bool
    species: bool
    violations: list[Violation] = field(default_factory=list)
    last_checked: Optional[datetime] = None

    @property
    def overall(self) -> bool:
        return self.geo_fencing and self.seasonal and self.quality and self.species

    @property
    def violation_messages(self) -> list[str]:
        return [v.message for v in self.violations]

    def to_dict(self) -> dict:
        return {
            "geoFencing": self.geo_fencing,
            "seasonal": self.seasonal,
            "quality": self.quality,
            "species": self.species,
            "overall": self.overall,
            "lastChecked": to_utc_z(self.last_checked),
            "violations": self.violation_messages,
        }


def classify_severity(text: str) -> str:
    """Keyword triage for violation text (case-insensitive)."""
    lowered = (text or "").lower()
    for severity, keywords in SEVERITY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return severity
    return "low"


# =============================================================================
# INDIVIDUAL CHECKS
# =============================================================================

def check_geo_fencing(latitude, longitude, rules: ComplianceRules = DEFAULT_RULES) -> list[Violation]:
    if latitude is not None and longitude is not None:
        for zone in rules.approved_zones:
            if is_within_radius(latitude, longitude, zone.latitude, zone.longitude, zone.radius_m):
                return []
    return [Violation("geo_fencing", "medium", MSG_OUTSIDE_ZONES)]


def month_in_window(month: int, window: tuple[int, int]) -> bool:
    start, end = window
    if start <= end:
        return start <= month <= end
    # Window wraps the new year (e.g. Nov..Feb)
    return month >= start or month <= end


def check_seasonal(harvest_date, rules: ComplianceRules = DEFAULT_RULES) -> list[Violation]:
    if harvest_date is not None and month_in_window(harvest_date.month, rules.harvest_months):
        return []
    return [Violation("seasonal", "medium", MSG_OUTSIDE_SEASON)]


def _metric(metrics: dict, key: str):
    value = metrics.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def check_quality(metrics: Optional[dict]) -> list[Violation]:
    """
    Missing metrics fail the check outright. Absent individual readings are
    not violations; present ones must be inside thresholds.
    """
    if not metrics:
        return [Violation("quality_missing", "high", MSG_NO_METRICS)]

    violations: list[Violation] = []

    purity = _metric(metrics, "purity")
    if purity is not None and purity < MIN_PURITY_PERCENT:
        violations.append(Violation("quality_purity", "high", MSG_LOW_PURITY))

    moisture = _metric(metrics, "moisture")
    if moisture is not None and moisture > MAX_MOISTURE_PERCENT:
        violations.append(Violation("quality_moisture", "high", MSG_HIGH_MOISTURE))

    ash = _metric(metrics, "ashContent")
    if ash is not None and ash > MAX_ASH_CONTENT_PERCENT:
        violations.append(Violation("quality_ash", "high", MSG_HIGH_ASH))

    heavy_metals = metrics.get("heavyMetals") or {}
    if isinstance(heavy_metals, dict):
        for metal, limit in HEAVY_METAL_LIMITS_PPM.items():
            level = _metric(heavy_metals, metal)
            if level is not None and level > limit:
                violations.append(Violation(
                    "heavy_metal",
                    "critical",
                    f"{metal} content above maximum threshold ({limit} ppm)",
                ))

    return violations


def check_species(species: Optional[str], rules: ComplianceRules = DEFAULT_RULES) -> list[Violation]:
    if species and species.strip().lower() in rules.approved_species:
        return []
    return [Violation("species", "high", MSG_SPECIES)]


# =============================================================================
# VERDICT
# =============================================================================

def evaluate(batch, rules: ComplianceRules = DEFAULT_RULES) -> ComplianceStatus:
    """
    Evaluate a batch snapshot. Reads harvest_latitude, harvest_longitude,
    harvest_date, quality_metrics and species; never mutates the batch.
    """
    geo = check_geo_fencing(batch.harvest_latitude, batch.harvest_longitude, rules)
    seasonal = check_seasonal(batch.harvest_date, rules)
    quality = check_quality(batch.quality_metrics)
    species = check_species(batch.species, rules)

    return ComplianceStatus(
        geo_fencing=not geo,
        seasonal=not seasonal,
        quality=not quality,
        species=not species,
        violations=geo + seasonal + quality + species,
    )


def recompute_compliance(batch, *, rules: ComplianceRules = DEFAULT_RULES, checked_at: datetime | None = None) -> ComplianceStatus:
    """
    Evaluate and store the verdict on the batch (whole snapshot replaced).

    Caller owns the transaction; nothing is flushed or committed here.
    """
    status = evaluate(batch, rules)
    status.last_checked = checked_at or utcnow()

    batch.compliance_geo_fencing = status.geo_fencing
    batch.compliance_seasonal = status.seasonal
    batch.compliance_quality = status.quality
    batch.compliance_species = status.species
    batch.compliance_overall = status.overall
    batch.compliance_last_checked = status.last_checked
    batch.compliance_violations = [v.to_dict() for v in status.violations]
    return status


def stored_status(batch) -> ComplianceStatus:
    """Rebuild the persisted verdict without re-evaluating."""
    return ComplianceStatus(
        geo_fencing=bool(batch.compliance_geo_fencing),
        seasonal=bool(batch.compliance_seasonal),
        quality=bool(batch.compliance_quality),
        species=bool(batch.compliance_species),
        violations=[Violation.from_dict(v) for v in (batch.compliance_violations or [])],
        last_checked=batch.compliance_last_checked,
    )


def current_rules() -> ComplianceRules:
    """Rule set from the active Flask config (defaults outside an app context)."""
    if not has_app_context():
        return DEFAULT_RULES
    return rules_from_config(current_app.config)
