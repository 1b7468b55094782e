#!/usr/bin/env python3
"""
Lead Sync & Email Validation
============================

Entry points used by the dashboard backend, plus a small CLI for running
them by hand. Every call takes explicit Google credentials (access token,
refresh token, expiry in epoch ms); there is no ambient session.

Usage:
    python main.py validate <project_id> [--strict]
    python main.py stats <project_id> [--refresh] [--all]
    python main.py leads <project_id>
    python main.py export-leads <project_id>
    python main.py auth-url [project_id]
    python main.py auth-exchange <code>
    python main.py auth-check

Credentials: --access-token / --refresh-token / --expires-at, or the
GOOGLE_ACCESS_TOKEN / GOOGLE_REFRESH_TOKEN / GOOGLE_TOKEN_EXPIRY env vars.
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional, Union

import config
from database import (
    CampaignStats,
    CampaignStatsStore,
    Lead,
    LeadStore,
    ProjectStore,
    Template,
    TemplateStore,
    utc_now_iso,
)
from email_verifier import EmailVerifier
from errors import AuthRequired, Conflict, LeadSyncError, NotFound, PartialFailure, RemoteError
from project_lock import ProjectLock
from sheets_client import SheetsClient
from stats_aggregator import StatsAggregator
from token_store import AuthTokens, TokenStore
from utils.elk_logging import LogTimer, setup_elk_logging
from utils.lead_utils import export_leads_to_csv, generate_lead_id, project_lead_stats, validate_lead_data
from utils.logging_utils import setup_logging
from validation_orchestrator import ValidationOrchestrator, ValidationSummary

logger = logging.getLogger("leadsync.main")

# Fields a user may change on a lead from the dashboard (validation block is pipeline-owned)
EDITABLE_LEAD_FIELDS = (
    "name", "email", "company", "position", "source", "status", "phone", "website", "address",
)


def open_sheets(auth_tokens: Union[AuthTokens, Mapping[str, str], None], project_id: str = None) -> SheetsClient:
    """
    SheetsClient bound to the caller's credentials. Missing credentials -> AuthRequired.

    auth_tokens may also be the dashboard's request headers (x-google-*).
    """
    token_store = TokenStore()
    if isinstance(auth_tokens, Mapping):
        auth_tokens = AuthTokens.from_headers(auth_tokens)
    if not auth_tokens or not auth_tokens.access_token or not auth_tokens.refresh_token:
        raise AuthRequired(auth_url=token_store.get_auth_url(project_id))
    token_store.load(auth_tokens)
    return SheetsClient(token_store)


def exchange_auth_code(code: str, project_id: str = None) -> AuthTokens:
    """OAuth callback: trade the authorization code for a token set."""
    if not code:
        raise ValueError("Authorization code is required")
    token_store = TokenStore()
    if not token_store.exchange_code(code):
        raise AuthRequired("Authorization code was rejected", auth_url=token_store.get_auth_url(project_id))
    return token_store.tokens


def check_auth(auth_tokens: AuthTokens, project_id: str = None) -> AuthTokens:
    """Current (possibly refreshed) tokens, or AuthRequired if they can't be used."""
    token_store = TokenStore()
    if auth_tokens:
        token_store.load(auth_tokens)
    if not auth_tokens or not token_store.is_authenticated():
        raise AuthRequired(auth_url=token_store.get_auth_url(project_id))
    return token_store.tokens


def validate_project_emails(project_id: str,
                            auth_tokens: AuthTokens,
                            lock: ProjectLock = None,
                            verifier: EmailVerifier = None,
                            client: SheetsClient = None) -> ValidationSummary:
    """
    Validate every unvalidated lead email in a project and write the results back.

    Raises Conflict if a run for this project is already going, AuthRequired
    if the Google token can't be used or refreshed, NotFound if the project
    has no leads with an email, RemoteError for provider/sheet failures.
    """
    if not project_id:
        raise ValueError("Project ID is required")

    client = client or open_sheets(auth_tokens, project_id)
    orchestrator = ValidationOrchestrator(
        leads=LeadStore(client),
        verifier=verifier or EmailVerifier(),
        lock=lock,
    )
    with LogTimer("validate_project_emails", project_id=project_id):
        return orchestrator.run(project_id)


def get_campaign_stats(project_id: str,
                       auth_tokens: AuthTokens,
                       force_refresh: bool = False,
                       client: SheetsClient = None,
                       aggregator: StatsAggregator = None) -> CampaignStats:
    """Latest stats row for the project; with force_refresh, poke the stats workflow first."""
    if not project_id:
        raise ValueError("Project ID is required")

    if aggregator is None:
        client = client or open_sheets(auth_tokens, project_id)
        aggregator = StatsAggregator(CampaignStatsStore(client))

    if force_refresh:
        return aggregator.refresh_then_fetch(project_id)
    return aggregator.fetch(project_id)


def list_campaign_stats(project_id: str, auth_tokens: AuthTokens, client: SheetsClient = None) -> List[CampaignStats]:
    client = client or open_sheets(auth_tokens, project_id)
    return StatsAggregator(CampaignStatsStore(client)).list_for_project(project_id)


# =============================================================================
# LEADS / TEMPLATES
# =============================================================================

def _refresh_lead_count(client: SheetsClient, project_id: str):
    """Keep the project's no_of_leads in step after a manual add or delete."""
    try:
        ProjectStore(client).refresh_lead_count(project_id, LeadStore(client))
    except NotFound:
        logger.warning(f"Project {project_id} has no project row, lead count not updated")


def list_leads(project_id: str, auth_tokens: AuthTokens, client: SheetsClient = None) -> List[Lead]:
    client = client or open_sheets(auth_tokens, project_id)
    return LeadStore(client).list_by_project(project_id)


def create_lead(project_id: str, data: Dict[str, Any], auth_tokens: AuthTokens,
                client: SheetsClient = None) -> Lead:
    """Manual entry: validate input, assign an id, append with an empty validation block."""
    data = dict(data, project_id=project_id)
    is_valid, errors = validate_lead_data(data)
    if not is_valid:
        raise ValueError("; ".join(errors))

    lead = Lead(
        lead_id=generate_lead_id(project_id),
        project_id=project_id,
        name=data["name"].strip(),
        email=data["email"].strip(),
        company=data["company"].strip(),
        position=data.get("position") or "",
        source=data.get("source") or "Manual Entry",
        status=Lead.STATUS_ACTIVE,
        phone=data.get("phone") or "",
        website=data.get("website") or "",
        address=data.get("address") or "",
        scraped_at=utc_now_iso(),
    )
    client = client or open_sheets(auth_tokens, project_id)
    LeadStore(client).append(lead)
    logger.info(f"New lead created: {lead.lead_id}")
    _refresh_lead_count(client, project_id)
    return lead


def update_lead(lead_id: str, updates: Dict[str, Any], auth_tokens: AuthTokens,
                client: SheetsClient = None) -> Lead:
    if not lead_id:
        raise ValueError("Lead ID is required")
    not_editable = set(updates) - set(EDITABLE_LEAD_FIELDS)
    if not_editable:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(not_editable))}")

    client = client or open_sheets(auth_tokens)
    return LeadStore(client).update_by_key(lead_id, updates)


def delete_lead(lead_id: str, auth_tokens: AuthTokens, client: SheetsClient = None) -> bool:
    if not lead_id:
        raise ValueError("Lead ID is required")
    client = client or open_sheets(auth_tokens)
    leads = LeadStore(client)
    lead = leads.find_by_key(lead_id)
    deleted = leads.delete_by_key(lead_id)
    if lead is not None:
        _refresh_lead_count(client, lead.project_id)
    return deleted


def list_templates(project_id: str, auth_tokens: AuthTokens, client: SheetsClient = None) -> List[Template]:
    client = client or open_sheets(auth_tokens, project_id)
    return TemplateStore(client).list_by_project(project_id)


def update_template(template_id: str, subject: str, body: str, auth_tokens: AuthTokens,
                    client: SheetsClient = None) -> Template:
    if not template_id:
        raise ValueError("Template ID is required")
    if not subject or not body:
        raise ValueError("Subject and body are required")
    client = client or open_sheets(auth_tokens)
    return TemplateStore(client).update_content(template_id, subject, body)


# =============================================================================
# CLI
# =============================================================================

def _tokens_from_args(args) -> Optional[AuthTokens]:
    access = args.access_token or os.getenv("GOOGLE_ACCESS_TOKEN")
    refresh = args.refresh_token or os.getenv("GOOGLE_REFRESH_TOKEN")
    expiry = args.expires_at or os.getenv("GOOGLE_TOKEN_EXPIRY") or "0"
    if not access or not refresh:
        return None
    try:
        expires_at = int(expiry)
    except ValueError:
        expires_at = 0
    return AuthTokens(access, refresh, expires_at)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_validate(args, tokens):
    summary = validate_project_emails(args.project_id, tokens)
    if summary.already_validated:
        print("All leads have already been validated")
    _print_json(summary.to_dict())
    if args.strict:
        summary.raise_for_partial_failure()


def cmd_stats(args, tokens):
    if args.all:
        _print_json([asdict(s) for s in list_campaign_stats(args.project_id, tokens)])
        return
    stats = get_campaign_stats(args.project_id, tokens, force_refresh=args.refresh)
    _print_json(asdict(stats))


def cmd_leads(args, tokens):
    leads = list_leads(args.project_id, tokens)
    _print_json({"count": len(leads), "stats": project_lead_stats(leads), "leads": [asdict(l) for l in leads]})


def cmd_export_leads(args, tokens):
    sys.stdout.write(export_leads_to_csv(list_leads(args.project_id, tokens)))


def cmd_auth_url(args, tokens):
    print(TokenStore().get_auth_url(args.project_id))


def cmd_auth_exchange(args, tokens):
    _print_json(asdict(exchange_auth_code(args.code, args.project_id)))


def cmd_auth_check(args, tokens):
    _print_json(asdict(check_auth(tokens)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lead sync and email validation")
    parser.add_argument("--access-token")
    parser.add_argument("--refresh-token")
    parser.add_argument("--expires-at", help="Access token expiry, epoch milliseconds")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("validate", help="Validate a project's lead emails")
    p.add_argument("project_id")
    p.add_argument("--strict", action="store_true", help="Exit non-zero if any sheet update failed")
    p.set_defaults(func=cmd_validate)

    p = subparsers.add_parser("stats", help="Show campaign stats for a project")
    p.add_argument("project_id")
    p.add_argument("--refresh", action="store_true", help="Trigger the stats workflow first")
    p.add_argument("--all", action="store_true", help="List every stats row, not just the latest")
    p.set_defaults(func=cmd_stats)

    p = subparsers.add_parser("leads", help="List a project's leads")
    p.add_argument("project_id")
    p.set_defaults(func=cmd_leads)

    p = subparsers.add_parser("export-leads", help="Export a project's leads as CSV")
    p.add_argument("project_id")
    p.set_defaults(func=cmd_export_leads)

    p = subparsers.add_parser("auth-url", help="Print the Google consent URL")
    p.add_argument("project_id", nargs="?")
    p.set_defaults(func=cmd_auth_url)

    p = subparsers.add_parser("auth-exchange", help="Trade an OAuth authorization code for tokens")
    p.add_argument("code")
    p.add_argument("--project-id")
    p.set_defaults(func=cmd_auth_exchange)

    p = subparsers.add_parser("auth-check", help="Check (and refresh) the given credentials")
    p.set_defaults(func=cmd_auth_check)

    return parser


def main(argv=None) -> int:
    if config.LOG_FORMAT == "json":
        setup_elk_logging(config.LOG_LEVEL, config.LOG_FILE)
    else:
        setup_logging(config.LOG_LEVEL, config.LOG_FILE)

    args = build_parser().parse_args(argv)
    tokens = _tokens_from_args(args)

    try:
        args.func(args, tokens)
    except Conflict:
        print("Validation already running for this project, please wait and try again.")
        return 3
    except AuthRequired as e:
        print(f"Authentication required: {e}")
        if e.auth_url:
            print(f"Re-authenticate at: {e.auth_url}")
        return 2
    except PartialFailure as e:
        print(f"Finished with errors: {e}")
        for message in e.summary.errors:
            print(f"  - {message}")
        return 4
    except NotFound as e:
        print(f"Not found: {e}")
        return 1
    except RemoteError as e:
        print(f"Remote service error: {e.summary}")
        return 1
    except (LeadSyncError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
