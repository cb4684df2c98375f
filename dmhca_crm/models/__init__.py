"""
DMHCA CRM - Models package

from dmhca_crm.models import User, Lead, BranchCode, ...
"""

from .branch import (
    BranchCode,
    Branch,
    BRANCHES,
    validate_branch,
    get_branch_or_raise,
)

from .auth import (
    UserRole,
    Resource,
    PermissionAction,
    PermissionScope,
    VALID_ROLES,
    Permission,
    User,
    UserLogin,
    RefreshRequest,
    UserCreate,
    UserUpdate,
)

from .lead import (
    LeadStatus,
    Qualification,
    VALID_LEAD_STATUSES,
    Note,
    Lead,
    LeadCreate,
    LeadUpdate,
    LeadAssign,
    LeadNoteCreate,
    LeadStatusUpdate,
)

__all__ = [
    # Branch
    "BranchCode",
    "Branch",
    "BRANCHES",
    "validate_branch",
    "get_branch_or_raise",
    # Auth
    "UserRole",
    "Resource",
    "PermissionAction",
    "PermissionScope",
    "VALID_ROLES",
    "Permission",
    "User",
    "UserLogin",
    "RefreshRequest",
    "UserCreate",
    "UserUpdate",
    # Lead
    "LeadStatus",
    "Qualification",
    "VALID_LEAD_STATUSES",
    "Note",
    "Lead",
    "LeadCreate",
    "LeadUpdate",
    "LeadAssign",
    "LeadNoteCreate",
    "LeadStatusUpdate",
]
