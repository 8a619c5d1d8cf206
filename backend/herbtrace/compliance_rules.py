"""
Static compliance rule tables.

These are the defaults the evaluator uses when the Flask config does not
override them (COMPLIANCE_APPROVED_ZONES, COMPLIANCE_HARVEST_MONTHS,
COMPLIANCE_APPROVED_SPECIES).

Quality ceilings are not configurable: they are regulatory limits.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ApprovedZone:
    name: str
    latitude: float
    longitude: float
    radius_m: float


DEFAULT_APPROVED_ZONES = (
    ApprovedZone("Bangalore", 12.9716, 77.5946, 1000),
    ApprovedZone("Mumbai", 19.0760, 72.8777, 1000),
    ApprovedZone("Delhi", 28.7041, 77.1025, 1000),
)

# Inclusive calendar-month window (March..November)
DEFAULT_HARVEST_MONTHS = (3, 11)

DEFAULT_APPROVED_SPECIES = frozenset({
    "ashwagandha",
    "tulsi",
    "neem",
    "amla",
    "brahmi",
    "shankhpushpi",
    "guduchi",
    "arjuna",
})

MIN_PURITY_PERCENT = 95
MAX_MOISTURE_PERCENT = 12
MAX_ASH_CONTENT_PERCENT = 8

# ppm ceilings; iteration order is the order violations are reported in
HEAVY_METAL_LIMITS_PPM = {
    "lead": 10,
    "cadmium": 2,
    "mercury": 1,
    "arsenic": 5,
}


@dataclass(frozen=True)
class ComplianceRules:
    approved_zones: tuple[ApprovedZone, ...] = DEFAULT_APPROVED_ZONES
    harvest_months: tuple[int, int] = DEFAULT_HARVEST_MONTHS
    approved_species: frozenset[str] = field(default=DEFAULT_APPROVED_SPECIES)


DEFAULT_RULES = ComplianceRules()


def rules_from_config(config) -> ComplianceRules:
    """
    Build a rule set from a Flask config mapping, falling back to defaults.

    Zones may be given as ApprovedZone instances or dicts with
    name/latitude/longitude/radius_m (or lat/lng/radius as in older configs).
    """
    zones = config.get("COMPLIANCE_APPROVED_ZONES")
    months = config.get("COMPLIANCE_HARVEST_MONTHS")
    species = config.get("COMPLIANCE_APPROVED_SPECIES")

    if zones is None:
        parsed_zones = DEFAULT_APPROVED_ZONES
    else:
        parsed_zones = tuple(_coerce_zone(z) for z in zones)

    if months is None:
        parsed_months = DEFAULT_HARVEST_MONTHS
    else:
        start, end = months
        if not (1 <= int(start) <= 12 and 1 <= int(end) <= 12):
            raise ValueError("COMPLIANCE_HARVEST_MONTHS must be two months in 1..12")
        parsed_months = (int(start), int(end))

    if species is None:
        parsed_species = DEFAULT_APPROVED_SPECIES
    else:
        parsed_species = frozenset(s.strip().lower() for s in species)

    return ComplianceRules(
        approved_zones=parsed_zones,
        harvest_months=parsed_months,
        approved_species=parsed_species,
    )


def _coerce_zone(zone) -> ApprovedZone:
    if isinstance(zone, ApprovedZone):
        return zone
    return ApprovedZone(
        name=zone.get("name", "zone"),
        latitude=float(zone.get("latitude", zone.get("lat"))),
        longitude=float(zone.get("longitude", zone.get("lng"))),
        radius_m=float(zone.get("radius_m", zone.get("radius"))),
    )
