"""
Central constants (enumerations) for the CVMS application.
"""
from __future__ import annotations

# Application roles, most privileged first.
APP_ROLES = ("super_admin", "admin", "validator", "responsible", "reader")

ROLE_NAMES = {
    "super_admin": "Super Administrator",
    "admin": "Administrator",
    "validator": "Validator",
    "responsible": "Responsible",
    "reader": "Reader",
}

GAMP_CATEGORIES = ("1", "3", "4", "5")

GAMP_LABELS = {
    "1": "Infrastructure",
    "3": "COTS",
    "4": "Configured",
    "5": "Custom",
}

RISK_LEVELS = ("low", "medium", "high", "critical")

STATUS_TYPES = ("draft", "pending", "approved", "rejected", "completed", "cancelled")

STATUS_LABELS = {
    "draft": "Draft",
    "pending": "In Review",
    "approved": "Approved",
    "rejected": "Rejected",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

VALIDATION_STATUSES = ("not_started", "in_progress", "validated", "expired", "pending_revalidation")

INSTALLATION_LOCATIONS = ("on_premise", "cloud", "hybrid")

ASSESSMENT_TYPES = ("IRA", "FRA", "FMEA")

PRIORITIES = ("low", "medium", "high")

DOCUMENT_TYPE_LABELS = {
    "URS": "User Requirements Specification",
    "FS": "Functional Specification",
    "DS": "Design Specification",
    "IQ": "Installation Qualification",
    "OQ": "Operational Qualification",
    "PQ": "Performance Qualification",
    "RTM": "Requirements Traceability Matrix",
    "Report": "Validation Report",
    "PV": "Validation Plan",
    "RA": "Risk Analysis",
    "SOP": "Standard Operating Procedure",
}

DOCUMENT_TYPES = tuple(DOCUMENT_TYPE_LABELS)

REQUIREMENT_TYPES = ("URS", "FS", "DS")

TEST_STATUSES = ("pending", "in_progress", "passed", "failed", "blocked")
TEST_RESULTS = ("passed", "failed", "blocked")

WORK_ITEM_STATUSES = ("pending", "in_progress", "completed")
TASK_STATUSES = ("pending", "in_progress", "completed", "blocked")

ACTIVATION_STATUSES = ("pending", "approved", "rejected")

INVITATION_STATUSES = ("pending", "accepted", "cancelled", "expired")
INVITABLE_ROLES = tuple(r for r in APP_ROLES if r != "super_admin")
INVITATION_TTL_DAYS = 7

MIN_PASSWORD_LENGTH = 8

# Permission catalogue: key -> display name.
PERMISSIONS = {
    "admin.view": "Admin: view shell",
    "admin.edit": "Admin: manage accounts",
    "audit.view": "Audit trail: view",
    "companies.manage": "Companies: manage",
    "systems.view": "Systems: view",
    "systems.edit": "Systems: create/edit",
    "risks.view": "Risks: view",
    "risks.edit": "Risks: create/edit",
    "rtm.view": "RTM: view",
    "rtm.edit": "RTM: create/edit",
    "documents.view": "Documents: view",
    "documents.edit": "Documents: create/edit",
    "documents.approve": "Documents: approve",
    "projects.view": "Projects: view",
    "projects.edit": "Projects: create/edit",
    "projects.approve": "Projects: approve",
    "changes.view": "Changes: view",
    "changes.edit": "Changes: create/edit",
    "templates.view": "Templates: view",
    "templates.edit": "Templates: create/edit",
    "packages.approve": "Template packages: approve activations",
}

_VIEW_PERMISSIONS = (
    "systems.view",
    "risks.view",
    "rtm.view",
    "documents.view",
    "projects.view",
    "changes.view",
    "templates.view",
)

_EDIT_PERMISSIONS = (
    "systems.edit",
    "risks.edit",
    "rtm.edit",
    "documents.edit",
    "documents.approve",
    "projects.edit",
    "projects.approve",
    "changes.edit",
    "templates.edit",
)

# Default role -> permission keys (mirrors the module access matrix).
ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "reader": _VIEW_PERMISSIONS,
    "responsible": _VIEW_PERMISSIONS,
    "validator": _VIEW_PERMISSIONS + _EDIT_PERMISSIONS + ("audit.view",),
    "admin": _VIEW_PERMISSIONS + _EDIT_PERMISSIONS + ("audit.view", "admin.view", "admin.edit"),
    "super_admin": tuple(PERMISSIONS),
}
