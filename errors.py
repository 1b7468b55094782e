"""
Error taxonomy for the lead sync / validation pipeline.

    AuthRequired    - no usable Google token; the user must re-authenticate
    Conflict        - a validation run already holds the project lock
    NotFound        - no matching record / stats row
    RemoteError     - non-2xx (or no response) from an external API
    PartialFailure  - a run finished but some per-record writes failed
    MalformedRow    - a sheet row that can't be parsed; logged and dropped
"""

from typing import Optional


class LeadSyncError(Exception):
    """Base class for every error raised by this package."""


class AuthRequired(LeadSyncError):
    def __init__(self, message: str = "Not authenticated with Google Sheets", auth_url: Optional[str] = None):
        super().__init__(message)
        self.auth_url = auth_url


# Name used for the missing-token case in record store callers
NotAuthenticated = AuthRequired


class Conflict(LeadSyncError):
    def __init__(self, project_id: str):
        super().__init__(f"Validation already in progress for project {project_id}")
        self.project_id = project_id


class NotFound(LeadSyncError):
    pass


class RecordNotFound(NotFound):
    def __init__(self, table: str, key: str):
        super().__init__(f"{table}: no record with key {key!r}")
        self.table = table
        self.key = key


class RemoteError(LeadSyncError):
    SUMMARY_LENGTH = 200

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body or ""

    @property
    def summary(self) -> str:
        """Short, user-safe description (full body stays in the logs)."""
        status = self.status if self.status is not None else "no response"
        body = self.body.strip().replace("\n", " ")
        if len(body) > self.SUMMARY_LENGTH:
            body = body[:self.SUMMARY_LENGTH] + "..."
        return f"{self.args[0]} (status {status}){': ' + body if body else ''}"


class MalformedRow(LeadSyncError):
    def __init__(self, table: str, row_number: int, reason: str):
        super().__init__(f"{table} row {row_number}: {reason}")
        self.table = table
        self.row_number = row_number
        self.reason = reason


class PartialFailure(LeadSyncError):
    def __init__(self, summary):
        super().__init__(
            f"{summary.update_failures} of {summary.update_successes + summary.update_failures} "
            f"record updates failed"
        )
        self.summary = summary
