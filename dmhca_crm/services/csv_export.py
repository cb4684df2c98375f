"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DMHCA CRM - Lead CSV export                                                 ║
║                                                                              ║
║  Exports the caller's VISIBLE leads only: callers pass the snapshot          ║
║  already narrowed by get_accessible_leads.                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import csv
import io
from datetime import datetime, timezone
from typing import List

from dmhca_crm.models.lead import Lead

CSV_COLUMNS = [
    "lead_id",
    "name",
    "email",
    "phone",
    "country",
    "course",
    "qualification",
    "status",
    "branch",
    "assigned_counselor",
    "source",
    "follow_up_date",
    "created_at",
]


def _value(v) -> str:
    if v is None:
        return ""
    return getattr(v, "value", v)


def generate_csv_content(leads: List[Lead]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_COLUMNS)
    writer.writeheader()

    for lead in leads:
        writer.writerow({
            "lead_id": lead.lead_id or lead.id,
            "name": lead.name,
            "email": lead.email,
            "phone": lead.phone,
            "country": lead.country,
            "course": lead.course,
            "qualification": _value(lead.qualification),
            "status": _value(lead.status),
            "branch": _value(lead.branch),
            "assigned_counselor": lead.assigned_counselor or "",
            "source": lead.source or "",
            "follow_up_date": lead.follow_up_date or "",
            "created_at": lead.created_at or "",
        })

    return output.getvalue()


def generate_csv_filename(scope_label: str) -> str:
    """
    Format: leads_{SCOPE}_{DATE}.csv
    """
    date_str = datetime.now(timezone.utc).strftime("%Y%m%d")
    clean = "".join(c if c.isalnum() else "_" for c in scope_label)
    return f"leads_{clean}_{date_str}.csv"
