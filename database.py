"""
Spreadsheet tables used as the lead database.

Each tab is described by a TableSchema (column order = physical layout) and
exposed through a RecordStore subclass with the lookups the dashboard needs.
Nothing here enforces referential integrity: project_id is just a column, so
duplicates and orphans are handled by filtering.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import pytz

import config
from record_store import Column, RecordStore, TableSchema
from sheets_client import SheetsClient

logger = logging.getLogger("leadsync.database")


def utc_now_iso() -> str:
    return datetime.now(pytz.utc).isoformat()


# =============================================================================
# SCHEMAS
# =============================================================================

# Leads!A:V - contact + scrape metadata (A-N), validation block (O-V)
LEAD_COLUMNS = [
    Column("lead_id", required=True),
    Column("project_id", required=True),
    Column("name", required=True),
    Column("email"),
    Column("company"),
    Column("position"),
    Column("source"),
    Column("status", default="Active"),
    Column("phone"),
    Column("website"),
    Column("address"),
    Column("rating"),
    Column("scraped_at"),
    Column("error"),
    # Validation block - empty until the validation run fills it in
    Column("validation_status"),
    Column("validation_score", kind="int"),
    Column("validation_reason"),
    Column("is_deliverable", kind="bool"),
    Column("is_free_email", kind="bool"),
    Column("is_role_email", kind="bool"),
    Column("is_disposable", kind="bool"),
    Column("validated_at"),
]

VALIDATION_FIELDS = (
    "validation_status",
    "validation_score",
    "validation_reason",
    "is_deliverable",
    "is_free_email",
    "is_role_email",
    "is_disposable",
    "validated_at",
)

# Email_Templates!G:N - columns A-F of that tab belong to the n8n workflow
TEMPLATE_COLUMNS = [
    Column("template_id", required=True),
    Column("project_id", required=True),
    Column("subject"),
    Column("body"),
    Column("user_edited", kind="bool", default=False, true_value="Yes"),
    Column("final_version"),
    Column("ai_generated", kind="bool", default=False),
    Column("model_used"),
]

# Campaign_Stats!A:Y - written by the Mailgun stats workflow, read-only here
CAMPAIGN_STATS_COLUMNS = [
    Column("campaign_id", required=True),
    Column("project_id", required=True),
    Column("total_sent", kind="int", default=0),
    Column("accepted", kind="int", default=0),
    Column("delivered", kind="int", default=0),
    Column("opened_total", kind="int", default=0),
    Column("opened_unique", kind="int", default=0),
    Column("clicked_total", kind="int", default=0),
    Column("clicked_unique", kind="int", default=0),
    Column("failed", kind="int", default=0),
    Column("bounced", kind="int", default=0),
    Column("complained", kind="int", default=0),
    Column("unsubscribed", kind="int", default=0),
    Column("delivery_rate", kind="float", default=0.0),
    Column("open_rate", kind="float", default=0.0),
    Column("click_rate", kind="float", default=0.0),
    Column("click_to_open_rate", kind="float", default=0.0),
    Column("bounce_rate", kind="float", default=0.0),
    Column("failure_rate", kind="float", default=0.0),
    Column("complaint_rate", kind="float", default=0.0),
    Column("stats_fetched_at"),
    Column("mailgun_events_found", kind="int", default=0),
    Column("time_range_begin"),
    Column("time_range_end"),
    Column("update_type"),
]

# Projects!A:H
PROJECT_COLUMNS = [
    Column("project_id", required=True),
    Column("user_id", required=True),
    Column("company_name"),
    Column("niche"),
    Column("no_of_leads", kind="int", default=0),
    Column("status", default="Created"),
    Column("created_at"),
    Column("error"),
]


def lead_schema(table: str = None) -> TableSchema:
    return TableSchema(table or config.LEADS_TABLE, LEAD_COLUMNS, key="lead_id")


def template_schema(table: str = None) -> TableSchema:
    return TableSchema(table or config.TEMPLATES_TABLE, TEMPLATE_COLUMNS, key="template_id", first_column="G")


def campaign_stats_schema(table: str = None) -> TableSchema:
    return TableSchema(table or config.CAMPAIGN_STATS_TABLE, CAMPAIGN_STATS_COLUMNS, key="campaign_id")


def project_schema(table: str = None) -> TableSchema:
    return TableSchema(table or config.PROJECTS_TABLE, PROJECT_COLUMNS, key="project_id")


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class Lead:
    """Lead/Contact row"""
    lead_id: str
    project_id: str
    name: str
    email: str = ""
    company: str = ""
    position: str = ""
    source: str = ""
    status: str = "Active"
    phone: str = ""
    website: str = ""
    address: str = ""
    rating: str = ""
    scraped_at: str = ""
    error: str = ""
    validation_status: str = ""
    validation_score: Optional[int] = None
    validation_reason: str = ""
    is_deliverable: Optional[bool] = None
    is_free_email: Optional[bool] = None
    is_role_email: Optional[bool] = None
    is_disposable: Optional[bool] = None
    validated_at: str = ""

    STATUS_ACTIVE = "Active"

    @property
    def has_email(self) -> bool:
        return bool(self.email and self.email.strip())

    @property
    def is_validated(self) -> bool:
        return bool(self.validation_status and self.validation_status.strip())


@dataclass
class Template:
    """Email template row (AI generated, optionally edited by a human)"""
    template_id: str
    project_id: str
    subject: str = ""
    body: str = ""
    user_edited: bool = False
    final_version: str = ""
    ai_generated: bool = False
    model_used: str = ""


@dataclass
class CampaignStats:
    """Aggregated Mailgun numbers for one campaign"""
    campaign_id: str
    project_id: str
    total_sent: int = 0
    accepted: int = 0
    delivered: int = 0
    opened_total: int = 0
    opened_unique: int = 0
    clicked_total: int = 0
    clicked_unique: int = 0
    failed: int = 0
    bounced: int = 0
    complained: int = 0
    unsubscribed: int = 0
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    click_to_open_rate: float = 0.0
    bounce_rate: float = 0.0
    failure_rate: float = 0.0
    complaint_rate: float = 0.0
    stats_fetched_at: str = ""
    mailgun_events_found: int = 0
    time_range_begin: str = ""
    time_range_end: str = ""
    update_type: str = ""


@dataclass
class Project:
    project_id: str
    user_id: str
    company_name: str = ""
    niche: str = ""
    no_of_leads: int = 0
    status: str = "Created"
    created_at: str = ""
    error: str = ""


# =============================================================================
# STORES
# =============================================================================

class LeadStore(RecordStore[Lead]):

    def __init__(self, client: SheetsClient, schema: TableSchema = None):
        super().__init__(client, schema or lead_schema(), Lead)

    def list_by_project(self, project_id: str) -> List[Lead]:
        return self.filter_by_field("project_id", project_id)

    def update_validation(self, lead_id: str, updates: Dict) -> Lead:
        """Write the validation block only; contact columns are carried over untouched."""
        stray = set(updates) - set(VALIDATION_FIELDS)
        if stray:
            raise ValueError(f"Not validation fields: {', '.join(sorted(stray))}")
        return self.update_by_key(lead_id, updates)


class TemplateStore(RecordStore[Template]):

    def __init__(self, client: SheetsClient, schema: TableSchema = None):
        super().__init__(client, schema or template_schema(), Template)

    def list_by_project(self, project_id: str) -> List[Template]:
        return self.filter_by_field("project_id", project_id)

    def update_content(self, template_id: str, subject: str, body: str) -> Template:
        """Human edit: new subject/body, flag as edited, snapshot body as the final version."""
        return self.update_by_key(template_id, {
            "subject": subject,
            "body": body,
            "user_edited": True,
            "final_version": body,
        })


class CampaignStatsStore(RecordStore[CampaignStats]):

    def __init__(self, client: SheetsClient, schema: TableSchema = None):
        super().__init__(client, schema or campaign_stats_schema(), CampaignStats)

    def list_by_project(self, project_id: str) -> List[CampaignStats]:
        return self.filter_by_field("project_id", project_id)


class ProjectStore(RecordStore[Project]):

    def __init__(self, client: SheetsClient, schema: TableSchema = None):
        super().__init__(client, schema or project_schema(), Project)

    def refresh_lead_count(self, project_id: str, leads: LeadStore) -> int:
        """Recount the project's leads and store the number on the project row."""
        count = len(leads.list_by_project(project_id))
        self.update_by_key(project_id, {"no_of_leads": count})
        logger.info(f"Project {project_id} lead count updated to {count}")
        return count
