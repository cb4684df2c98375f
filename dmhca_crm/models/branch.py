"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DMHCA CRM - Branch (visibility partition)                                   ║
║                                                                              ║
║  RULE:                                                                       ║
║  - Every user and every lead belongs to exactly one branch                   ║
║  - Team leads and counselors only see leads of their own branch              ║
║  - Managers see every branch                                                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Dict
from pydantic import BaseModel


class BranchCode(str, Enum):
    """Academy locations"""
    DELHI = "delhi"
    HYDERABAD = "hyderabad"
    KASHMIR = "kashmir"


class Branch(BaseModel):
    code: BranchCode
    name: str
    city: str
    state: str
    region: str


BRANCHES: Dict[BranchCode, Branch] = {
    BranchCode.DELHI: Branch(
        code=BranchCode.DELHI,
        name="DMHCA Delhi",
        city="New Delhi",
        state="Delhi",
        region="North India",
    ),
    BranchCode.HYDERABAD: Branch(
        code=BranchCode.HYDERABAD,
        name="DMHCA Hyderabad",
        city="Hyderabad",
        state="Telangana",
        region="South India",
    ),
    BranchCode.KASHMIR: Branch(
        code=BranchCode.KASHMIR,
        name="DMHCA Kashmir",
        city="Srinagar",
        state="Jammu & Kashmir",
        region="North India",
    ),
}


# ==================== VALIDATION HELPER ====================

def validate_branch(branch: str) -> bool:
    return branch in [b.value for b in BranchCode]


def get_branch_or_raise(branch: str) -> BranchCode:
    """
    Returns the BranchCode or raises ValueError
    """
    if not validate_branch(branch):
        raise ValueError(f"Invalid branch: {branch}. Valid: {[b.value for b in BranchCode]}")
    return BranchCode(branch)
