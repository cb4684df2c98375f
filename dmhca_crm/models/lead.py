"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DMHCA CRM - Lead model                                                      ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. Leads are owned by the CRM backend, the gateway only filters snapshots   ║
║  2. A lead belongs to one branch and at most one assigned counselor          ║
║  3. A lead with no assigned counselor is hidden from counselors/team leads   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .branch import BranchCode


class LeadStatus(str, Enum):
    HOT = "hot"
    WARM = "warm"
    FOLLOWUP = "followup"
    NOT_INTERESTED = "not interested"
    JUNK = "junk"
    FRESH = "fresh"
    ADMISSION_DONE = "admission done"


class Qualification(str, Enum):
    MBBS = "mbbs"
    MD = "md"
    MS = "ms"
    BDS = "bds"
    AYUSH = "ayush"
    MD_MS = "md/ms"
    OTHERS = "others"


VALID_LEAD_STATUSES = [s.value for s in LeadStatus]


class Note(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    content: str
    timestamp: Optional[str] = None
    author: str = ""
    is_system: bool = Field(False, alias="isSystem")


def _normalize(v):
    if v is None:
        return None
    if isinstance(v, Enum):
        v = v.value
    return str(v).strip().lower()


class Lead(BaseModel):
    """
    Lead snapshot as served by the CRM backend.
    Fields the gateway does not know about are kept as-is.

    status and qualification are free text (lower-cased): rows with values
    outside LeadStatus / Qualification stay visible. Only branch is strict,
    a row without a known branch cannot be placed and is rejected.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    lead_id: Optional[str] = Field(None, alias="leadId")
    name: str = ""
    email: str = ""
    country: str = ""
    phone: str = ""
    course: str = ""
    qualification: Optional[str] = None
    follow_up_date: Optional[str] = Field(None, alias="followUpDate")
    status: str = LeadStatus.FRESH.value
    notes: List[Note] = []
    assigned_counselor: Optional[str] = Field(None, alias="assignedCounselor")
    branch: BranchCode
    source: Optional[str] = None
    campaign: Optional[str] = None
    lead_score: int = Field(0, alias="leadScore")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    @field_validator("qualification", "branch", mode="before")
    @classmethod
    def normalize_case(cls, v):
        return _normalize(v)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return _normalize(v) or LeadStatus.FRESH.value


class LeadCreate(BaseModel):
    """Lead creation payload (UI form)"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str = ""
    country: str = ""
    phone: str
    course: str = ""
    qualification: Optional[Qualification] = None
    follow_up_date: Optional[str] = Field(None, alias="followUpDate")
    status: LeadStatus = LeadStatus.FRESH
    notes: Optional[str] = None
    assigned_counselor: Optional[str] = Field(None, alias="assignedCounselor")
    branch: Optional[BranchCode] = None
    source: Optional[str] = None
    campaign: Optional[str] = None


class LeadUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    course: Optional[str] = None
    qualification: Optional[Qualification] = None
    follow_up_date: Optional[str] = Field(None, alias="followUpDate")
    source: Optional[str] = None
    campaign: Optional[str] = None


class LeadAssign(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assigned_to: str = Field(alias="assignedTo")
    reason: Optional[str] = None


class LeadNoteCreate(BaseModel):
    note: str


class LeadStatusUpdate(BaseModel):
    status: LeadStatus
    note: Optional[str] = None
