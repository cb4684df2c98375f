"""
DMHCA CRM - Auth & user models
Role + Permission hybrid model.
Roles are presets. Permissions are the real authority.
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .branch import BranchCode


class UserRole(str, Enum):
    MANAGER = "manager"
    TEAM_LEAD = "team_lead"
    COUNSELOR = "counselor"


class Resource(str, Enum):
    LEADS = "leads"
    ANALYTICS = "analytics"
    SALES = "sales"
    COMMUNICATIONS = "communications"
    USERS = "users"
    SETTINGS = "settings"
    HOSPITALS = "hospitals"
    COURSES = "courses"


class PermissionAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"  # implies every other action


class PermissionScope(str, Enum):
    ALL = "all"    # cross-branch, cross-team
    TEAM = "team"  # own team within the branch
    OWN = "own"    # self-assigned records only


VALID_ROLES = [r.value for r in UserRole]


class Permission(BaseModel):
    """
    One grant per resource. A missing scope only matches unscoped checks.
    """
    model_config = ConfigDict(frozen=True)

    resource: str
    actions: List[PermissionAction] = []
    scope: Optional[PermissionScope] = None


class User(BaseModel):
    """
    Session user as returned by the CRM backend (camelCase on the wire).
    Frozen: a session replaces its user, it never edits one.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    username: str = ""
    name: str = ""
    email: str = ""
    role: UserRole
    branch: BranchCode
    avatar: Optional[str] = None
    team_lead_id: Optional[str] = Field(None, alias="teamLeadId")
    team_members: Optional[List[str]] = Field(None, alias="teamMembers")
    is_active: bool = Field(True, alias="isActive")
    permissions: List[Permission] = []
    created_at: Optional[str] = Field(None, alias="createdAt")
    last_login: Optional[str] = Field(None, alias="lastLogin")
    created_by: Optional[str] = Field(None, alias="createdBy")


class UserLogin(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.lower().strip()


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refreshToken")


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    name: str
    email: str
    password: str
    role: UserRole = UserRole.COUNSELOR
    branch: BranchCode
    team_lead_id: Optional[str] = Field(None, alias="teamLeadId")
    team_members: Optional[List[str]] = Field(None, alias="teamMembers")
    is_active: bool = Field(True, alias="isActive")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v

    @model_validator(mode="after")
    def check_team_fields(self):
        if self.team_lead_id and self.role != UserRole.COUNSELOR:
            raise ValueError("teamLeadId is only allowed for counselors")
        if self.team_members and self.role != UserRole.TEAM_LEAD:
            raise ValueError("teamMembers is only allowed for team leads")
        return self


class UserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    branch: Optional[BranchCode] = None
    team_lead_id: Optional[str] = Field(None, alias="teamLeadId")
    team_members: Optional[List[str]] = Field(None, alias="teamMembers")
    permissions: Optional[List[Permission]] = None
    is_active: Optional[bool] = Field(None, alias="isActive")

