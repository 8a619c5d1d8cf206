"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes, role defaults and the event-type -> permission mapping live here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for display
- Default role mappings follow the supply-chain position of each role
- Admin has all permissions by default
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    BATCHES = "BATCHES"
    EVENTS = "EVENTS"
    LAB = "LAB"
    COMPLIANCE = "COMPLIANCE"
    QR = "QR"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # BATCH PERMISSIONS
    (
        "create_batch",
        "Create Batch",
        "Register a new harvested batch (first harvest event)",
        PermissionCategory.BATCHES
    ),
    (
        "view_all",
        "View All Batches",
        "View batches and events owned by any farmer",
        PermissionCategory.BATCHES
    ),

    # EVENT PERMISSIONS
    (
        "add_harvest_event",
        "Add Harvest Event",
        "Append harvest events",
        PermissionCategory.EVENTS
    ),
    (
        "add_processing_event",
        "Add Processing Event",
        "Append processing events (drying, grinding, extraction)",
        PermissionCategory.EVENTS
    ),
    (
        "add_quality_test",
        "Add Quality Test",
        "Append quality_test events with lab measurements",
        PermissionCategory.EVENTS
    ),
    (
        "add_packaging_event",
        "Add Packaging Event",
        "Append packaging events",
        PermissionCategory.EVENTS
    ),
    (
        "add_transport_event",
        "Add Transport Event",
        "Append transport events",
        PermissionCategory.EVENTS
    ),
    (
        "add_retail_event",
        "Add Retail Event",
        "Append retail events",
        PermissionCategory.EVENTS
    ),

    # LAB PERMISSIONS
    (
        "add_lab_test",
        "Add Lab Test",
        "Record laboratory test results",
        PermissionCategory.LAB
    ),
    (
        "upload_certificate",
        "Upload Certificate",
        "Attach certificate content hashes to events",
        PermissionCategory.LAB
    ),

    # COMPLIANCE PERMISSIONS
    (
        "audit",
        "Audit",
        "Query the ledger view of batches and review violations",
        PermissionCategory.COMPLIANCE
    ),
    (
        "compliance_check",
        "Compliance Check",
        "Re-run compliance checks and read compliance reports",
        PermissionCategory.COMPLIANCE
    ),

    # QR PERMISSIONS
    (
        "generate_qr",
        "Generate QR",
        "Anchor and generate the consumer QR payload for a packaged batch",
        PermissionCategory.QR
    ),
    (
        "scan_qr",
        "Scan QR",
        "Scan and verify QR payloads",
        PermissionCategory.QR
    ),
]


# =============================================================================
# ROLES
# =============================================================================

ROLES = (
    "farmer",
    "processor",
    "laboratory",
    "regulator",
    "retailer",
    "consumer",
    "admin",
)

# Roles that may see every batch regardless of ownership
GLOBAL_VIEW_ROLES = frozenset({"admin", "regulator"})


# =============================================================================
# DEFAULT ROLE PERMISSIONS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    "farmer": [
        "create_batch",
        "add_harvest_event",
    ],

    "processor": [
        "add_processing_event",
        "add_quality_test",
        "add_packaging_event",
        "add_transport_event",
    ],

    "laboratory": [
        "add_lab_test",
        "add_quality_test",
        "upload_certificate",
    ],

    "regulator": [
        "view_all",
        "audit",
        "compliance_check",
    ],

    "retailer": [
        "add_transport_event",
        "add_retail_event",
        "scan_qr",
    ],

    "consumer": [
        "scan_qr",
    ],

    # Admin: full access
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
}


# =============================================================================
# EVENT TYPE -> REQUIRED PERMISSION
# =============================================================================

EVENT_TYPE_PERMISSIONS = {
    "harvest": "add_harvest_event",
    "processing": "add_processing_event",
    "quality_test": "add_quality_test",
    "packaging": "add_packaging_event",
    "transport": "add_transport_event",
    "retail": "add_retail_event",
}


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def permissions_for_role(role: str) -> set[str]:
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, []))


def permissions_for_user(user) -> set[str]:
    """Role defaults plus per-user extras (unknown codes are ignored)."""
    codes = permissions_for_role(user.role)
    for code in user.extra_permissions or []:
        if validate_permission_code(code):
            codes.add(code)
    return codes
