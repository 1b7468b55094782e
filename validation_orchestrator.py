"""
Validation run for one project.

    IDLE -> LOCKED -> LOADING -> VERIFYING -> WRITING -> RELEASED

- LOCKED: the project lock is taken or the run ends at once with Conflict
  (no queueing).
- LOADING: the project's leads are read fresh; the work list is every lead
  with an email and an empty validation status. If everything with an email
  is already validated the run short-circuits with stats over that subset and
  makes no provider calls.
- VERIFYING: the work list goes to the EmailVerifier (single or batch path).
- WRITING: each result is merged into its lead row. One failed write does not
  stop the loop; failures are counted and sampled.
- RELEASED: the lock is released whatever happened above.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List

import config
from database import Lead, LeadStore
from email_verifier import EmailVerifier, ValidationResult, VerificationStatus
from errors import AuthRequired, Conflict, LeadSyncError, NotFound, PartialFailure
from project_lock import ProjectLock, validation_locks
from utils.elk_logging import log_validation_event

logger = logging.getLogger("leadsync.validation")


class RunState(Enum):
    IDLE = "idle"
    LOCKED = "locked"
    LOADING = "loading"
    VERIFYING = "verifying"
    WRITING = "writing"
    RELEASED = "released"


@dataclass
class ValidationSummary:
    project_id: str
    validated: int = 0
    deliverable: int = 0
    undeliverable: int = 0
    risky: int = 0
    unknown: int = 0
    free_emails: int = 0
    role_emails: int = 0
    disposable_emails: int = 0
    update_successes: int = 0
    update_failures: int = 0
    already_validated: bool = False
    errors: List[str] = field(default_factory=list)
    results: List[ValidationResult] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "partial_failure" if self.update_failures else "success"

    @property
    def is_partial_failure(self) -> bool:
        return self.update_failures > 0

    def raise_for_partial_failure(self):
        if self.is_partial_failure:
            raise PartialFailure(self)

    def add_error(self, message: str, limit: int):
        if len(self.errors) < limit:
            self.errors.append(message)

    def count_status(self, status: str):
        if status == VerificationStatus.DELIVERABLE.value:
            self.deliverable += 1
        elif status == VerificationStatus.UNDELIVERABLE.value:
            self.undeliverable += 1
        elif status == VerificationStatus.RISKY.value:
            self.risky += 1
        else:
            self.unknown += 1

    @classmethod
    def from_results(cls, project_id: str, results: List[ValidationResult]) -> "ValidationSummary":
        summary = cls(project_id=project_id, validated=len(results), results=list(results))
        for r in results:
            summary.count_status(r.validation_status)
            summary.free_emails += int(bool(r.is_free_email))
            summary.role_emails += int(bool(r.is_role_email))
            summary.disposable_emails += int(bool(r.is_disposable))
        return summary

    @classmethod
    def from_leads(cls, project_id: str, leads: Iterable[Lead]) -> "ValidationSummary":
        """Stats over leads that already carry a validation block."""
        leads = list(leads)
        summary = cls(project_id=project_id, validated=len(leads), already_validated=True)
        for lead in leads:
            summary.count_status(lead.validation_status)
            summary.free_emails += int(bool(lead.is_free_email))
            summary.role_emails += int(bool(lead.is_role_email))
            summary.disposable_emails += int(bool(lead.is_disposable))
        return summary

    def to_dict(self, include_results: bool = False) -> Dict[str, Any]:
        data = {
            "project_id": self.project_id,
            "status": self.status,
            "validated": self.validated,
            "deliverable": self.deliverable,
            "undeliverable": self.undeliverable,
            "risky": self.risky,
            "unknown": self.unknown,
            "free_emails": self.free_emails,
            "role_emails": self.role_emails,
            "disposable_emails": self.disposable_emails,
            "update_successes": self.update_successes,
            "update_failures": self.update_failures,
            "already_validated": self.already_validated,
            "errors": list(self.errors),
        }
        if include_results:
            data["results"] = [asdict(r) for r in self.results]
        return data


class ValidationOrchestrator:
    """Drives one validation run per call to run()."""

    def __init__(self,
                 leads: LeadStore,
                 verifier: EmailVerifier,
                 lock: ProjectLock = None,
                 error_sample_limit: int = None):
        self.leads = leads
        self.verifier = verifier
        self.lock = lock if lock is not None else validation_locks
        self.error_sample_limit = error_sample_limit or config.ERROR_SAMPLE_LIMIT
        self.state = RunState.IDLE

    def _enter(self, state: RunState, project_id: str):
        logger.debug(f"Validation {project_id}: {self.state.value} -> {state.value}")
        self.state = state

    def run(self, project_id: str) -> ValidationSummary:
        self.state = RunState.IDLE
        if not self.lock.try_acquire(project_id):
            log_validation_event("validation_conflict", project_id)
            raise Conflict(project_id)

        self._enter(RunState.LOCKED, project_id)
        log_validation_event("validation_started", project_id)
        try:
            summary = self._run_locked(project_id)
        except LeadSyncError as e:
            log_validation_event("validation_failed", project_id, error=type(e).__name__)
            raise
        finally:
            self.lock.release(project_id)
            self._enter(RunState.RELEASED, project_id)

        log_validation_event(
            "validation_finished",
            project_id,
            outcome=summary.status,
            validated=summary.validated,
            update_failures=summary.update_failures,
        )
        return summary

    def select_work(self, leads: List[Lead]) -> List[Lead]:
        return [lead for lead in leads if lead.has_email and not lead.is_validated]

    def _run_locked(self, project_id: str) -> ValidationSummary:
        self._enter(RunState.LOADING, project_id)
        leads = self.leads.list_by_project(project_id)
        logger.info(f"Project {project_id}: {len(leads)} leads found")
        if not leads:
            raise NotFound(f"No leads found for project {project_id}")

        with_email = [lead for lead in leads if lead.has_email]
        work = self.select_work(leads)
        logger.info(f"Project {project_id}: {len(work)} leads to validate")

        if not work:
            if not with_email:
                raise NotFound(f"No leads with an email address in project {project_id}")
            logger.info(f"Project {project_id}: all leads already validated")
            return ValidationSummary.from_leads(project_id, with_email)

        self._enter(RunState.VERIFYING, project_id)
        results = self.verifier.validate_emails((lead.lead_id, lead.email.strip()) for lead in work)

        self._enter(RunState.WRITING, project_id)
        summary = ValidationSummary.from_results(project_id, results)
        for r in results:
            if r.error:
                summary.add_error(r.error, self.error_sample_limit)
        self._write_results(summary, results)

        logger.info(
            f"Project {project_id}: validated {summary.validated}, "
            f"sheet updates ok={summary.update_successes} failed={summary.update_failures}"
        )
        return summary

    def _write_results(self, summary: ValidationSummary, results: List[ValidationResult]):
        auth_error = None
        for r in results:
            try:
                self.leads.update_validation(r.lead_id, r.to_updates())
                summary.update_successes += 1
            except AuthRequired as e:
                auth_error = e
                summary.update_failures += 1
                summary.add_error(f"{r.lead_id}: {e}", self.error_sample_limit)
            except (LeadSyncError, ValueError) as e:
                logger.error(f"Error updating lead {r.lead_id}: {e}")
                summary.update_failures += 1
                message = e.summary if hasattr(e, "summary") else str(e)
                summary.add_error(f"{r.lead_id}: {message}", self.error_sample_limit)

        # Nothing could be written because the token is gone: that's a re-auth, not a partial failure
        if auth_error is not None and summary.update_successes == 0:
            raise auth_error
