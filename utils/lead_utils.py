"""Helpers for lead data: ids, input validation, CSV export, per-project stats."""
import csv
import io
import random
import re
import time
from collections import Counter
from typing import Any, Dict, List, Tuple

from stats_aggregator import parse_timestamp

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

CSV_COLUMNS = [
    ("lead_id", "Lead ID"),
    ("project_id", "Project ID"),
    ("name", "Name"),
    ("email", "Email"),
    ("company", "Company"),
    ("position", "Position"),
    ("source", "Source"),
    ("status", "Status"),
    ("phone", "Phone"),
    ("website", "Website"),
    ("address", "Address"),
    ("rating", "Rating"),
    ("scraped_at", "Scraped At"),
    ("error", "Error"),
]


def generate_lead_id(project_id: str) -> str:
    return f"lead_{project_id}_{int(time.time() * 1000)}_{random.randint(0, 999)}"


def validate_lead_data(data: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Returns (is_valid, errors) for a manually entered lead."""
    errors = []

    if not (data.get("name") or "").strip():
        errors.append("Name is required")

    email = (data.get("email") or "").strip()
    if not email:
        errors.append("Email is required")
    elif not EMAIL_PATTERN.match(email):
        errors.append("Email format is invalid")

    if not (data.get("company") or "").strip():
        errors.append("Company is required")

    if not (data.get("project_id") or "").strip():
        errors.append("Project ID is required")

    return len(errors) == 0, errors


def export_leads_to_csv(leads: List[Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([header for _, header in CSV_COLUMNS])
    for lead in leads:
        writer.writerow([getattr(lead, attr, "") or "" for attr, _ in CSV_COLUMNS])
    return buffer.getvalue()


def project_lead_stats(leads: List[Any]) -> Dict[str, Any]:
    """Totals for the project dashboard card."""
    # blank or unparsable scraped_at parses to the epoch; leave those out
    oldest = parse_timestamp("")
    stamps = [parse_timestamp(lead.scraped_at) for lead in leads]
    last = max((stamp for stamp in stamps if stamp > oldest), default=None)
    return {
        "total_leads": len(leads),
        "active_leads": sum(1 for lead in leads if lead.status == "Active"),
        "sources": dict(Counter(lead.source for lead in leads)),
        "companies": len({lead.company for lead in leads}),
        "last_updated": last.isoformat() if last else None,
    }
