"""
Email Verification Service

Verifies lead email addresses through the Emailable API before campaigns go out.

Two paths depending on volume:
1. Small lists (<= BATCH_THRESHOLD): one /verify call per address, paced so we
   stay under the provider's requests-per-second ceiling.
2. Larger lists: one /batch job, polled on a fixed interval until it completes,
   fails, or runs out of polls.

Retry policy for single verifications:
- HTTP 249 ("still processing" / rate limited) and 5xx are retried with a
  LINEAR backoff (attempt * VERIFY_BACKOFF_SECONDS).
- Any other non-2xx (bad address format, bad API key, ...) is terminal and
  raised straight away. A 4xx is never treated as transient.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

import config
from database import utc_now_iso
from errors import RemoteError

logger = logging.getLogger("leadsync.email_verifier")

PROCESSING_STATUS = 249


def _decode(response, what: str) -> Dict[str, Any]:
    """JSON object body, or RemoteError (proxies sometimes answer 200 with an HTML page)."""
    try:
        data = response.json()
    except ValueError:
        logger.error(f"{what} returned a non-JSON body ({response.status_code}): {response.text[:200]}")
        raise RemoteError(f"{what} returned a non-JSON response", status=response.status_code,
                          body=response.text) from None
    if not isinstance(data, dict):
        raise RemoteError(f"{what} returned an unexpected payload", status=response.status_code,
                          body=response.text)
    return data


class VerificationStatus(Enum):
    DELIVERABLE = "deliverable"
    UNDELIVERABLE = "undeliverable"
    RISKY = "risky"  # Catch-all domains, etc.
    UNKNOWN = "unknown"  # Couldn't verify

    @classmethod
    def from_state(cls, state: Optional[str]) -> "VerificationStatus":
        try:
            return cls((state or "").lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class VerificationResult:
    """What the provider said about one address."""
    email: str
    status: VerificationStatus
    score: int  # 0-100, higher = more likely valid
    reason: str
    free: bool = False
    role: bool = False
    disposable: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, email: str, data: Dict[str, Any]) -> "VerificationResult":
        return cls(
            email=data.get("email") or email,
            status=VerificationStatus.from_state(data.get("state")),
            score=int(data.get("score") or 0),
            reason=data.get("reason") or "",
            free=bool(data.get("free")),
            role=bool(data.get("role")),
            disposable=bool(data.get("disposable")),
            raw=data,
        )


@dataclass
class ValidationResult:
    """A verification mapped onto a lead's validation block."""
    lead_id: str
    email: str
    validation_status: str
    validation_score: int
    validation_reason: str
    is_deliverable: bool
    is_free_email: bool
    is_role_email: bool
    is_disposable: bool
    validated_at: str
    error: Optional[str] = None  # set when the provider call failed for this lead

    def to_updates(self) -> Dict[str, Any]:
        """Field values for LeadStore.update_validation"""
        return {
            "validation_status": self.validation_status,
            "validation_score": self.validation_score or 0,
            "validation_reason": self.validation_reason or "",
            "is_deliverable": self.is_deliverable,
            "is_free_email": self.is_free_email,
            "is_role_email": self.is_role_email,
            "is_disposable": self.is_disposable,
            "validated_at": self.validated_at,
        }


def map_to_validation_result(lead_id: str, email: str, result: VerificationResult) -> ValidationResult:
    """Deterministic mapping; validated_at is stamped now, not when the provider answered."""
    return ValidationResult(
        lead_id=lead_id,
        email=email,
        validation_status=result.status.value,
        validation_score=result.score,
        validation_reason=result.reason,
        is_deliverable=result.status == VerificationStatus.DELIVERABLE,
        is_free_email=result.free,
        is_role_email=result.role,
        is_disposable=result.disposable,
        validated_at=utc_now_iso(),
    )


def failed_validation_result(lead_id: str, email: str, error: str) -> ValidationResult:
    return ValidationResult(
        lead_id=lead_id,
        email=email,
        validation_status=VerificationStatus.UNKNOWN.value,
        validation_score=0,
        validation_reason="API Error",
        is_deliverable=False,
        is_free_email=False,
        is_role_email=False,
        is_disposable=False,
        validated_at=utc_now_iso(),
        error=error,
    )


@dataclass
class BatchHandle:
    batch_id: str
    emails: List[str]


@dataclass
class BatchResult:
    batch_id: str
    status: str  # processing | completed | failed
    total: int = 0
    processed: int = 0
    results: List[VerificationResult] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"


class EmailVerifier:
    """Client for the Emailable verification API"""

    def __init__(self,
                 api_key: str = None,
                 base_url: str = None,
                 max_attempts: int = None,
                 backoff_seconds: float = None,
                 pacing_seconds: float = None,
                 batch_threshold: int = None,
                 poll_interval: float = None,
                 max_polls: int = None,
                 timeout: float = None):
        self.api_key = api_key if api_key is not None else config.EMAILABLE_API_KEY
        self.base_url = (base_url or config.EMAILABLE_BASE_URL).rstrip("/")
        self.max_attempts = max_attempts or config.VERIFY_MAX_ATTEMPTS
        self.backoff_seconds = config.VERIFY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.pacing_seconds = config.VERIFY_PACING_SECONDS if pacing_seconds is None else pacing_seconds
        self.batch_threshold = config.BATCH_THRESHOLD if batch_threshold is None else batch_threshold
        self.poll_interval = config.BATCH_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_polls = max_polls or config.BATCH_MAX_POLLS
        self.timeout = timeout or config.HTTP_TIMEOUT

    def _backoff(self, attempt: int, why: str):
        delay = attempt * self.backoff_seconds
        logger.warning(f"{why}, retrying in {delay:g}s (attempt {attempt}/{self.max_attempts})")
        time.sleep(delay)

    def verify_one(self, email: str) -> VerificationResult:
        """
        Verify a single address with retries.

        Raises RemoteError on a terminal (non-retryable) response or when
        every attempt was used up.
        """
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            logger.debug(f"Verifying {email} (attempt {attempt}/{self.max_attempts})")
            try:
                response = requests.get(
                    f"{self.base_url}/verify",
                    params={"email": email, "api_key": self.api_key},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                last_error = RemoteError(f"Emailable request failed: {e}")
                if attempt < self.max_attempts:
                    self._backoff(attempt, f"Network error verifying {email}")
                    continue
                raise last_error

            if response.status_code == PROCESSING_STATUS:
                last_error = RemoteError(
                    "Emailable still processing", status=PROCESSING_STATUS, body=response.text
                )
                if attempt < self.max_attempts:
                    self._backoff(attempt, f"Rate limit / processing (249) for {email}")
                    continue
                raise last_error

            if response.status_code >= 500:
                logger.error(f"Emailable server error {response.status_code}: {response.text}")
                last_error = RemoteError("Emailable server error", status=response.status_code, body=response.text)
                if attempt < self.max_attempts:
                    self._backoff(attempt, f"Server error ({response.status_code})")
                    continue
                raise last_error

            if not response.ok:
                # 4xx: bad input or bad key, retrying won't help
                logger.error(f"Emailable API error {response.status_code} for {email}: {response.text}")
                raise RemoteError("Emailable API error", status=response.status_code, body=response.text)

            return VerificationResult.from_response(email, _decode(response, "Emailable"))

        raise last_error or RemoteError("Max retries exceeded")

    def verify_batch(self, emails: List[str]) -> BatchHandle:
        """Submit a bulk job. Returns a handle for poll_batch."""
        try:
            response = requests.post(
                f"{self.base_url}/batch",
                json={"emails": emails, "api_key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Emailable batch request failed: {e}")

        if not response.ok:
            logger.error(f"Emailable batch API error {response.status_code}: {response.text}")
            raise RemoteError("Emailable batch API error", status=response.status_code, body=response.text)

        data = _decode(response, "Emailable batch API")
        batch_id = data.get("batch_id") or data.get("id")
        if not batch_id:
            raise RemoteError("Emailable batch response had no batch id", status=response.status_code,
                              body=response.text)
        logger.info(f"Submitted verification batch {batch_id} ({len(emails)} emails)")
        return BatchHandle(batch_id=str(batch_id), emails=list(emails))

    def poll_batch(self, handle: BatchHandle) -> BatchResult:
        try:
            response = requests.get(
                f"{self.base_url}/batch/{handle.batch_id}",
                params={"api_key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Emailable batch status request failed: {e}")

        if not response.ok:
            logger.error(f"Emailable batch status error {response.status_code}: {response.text}")
            raise RemoteError("Emailable batch status API error", status=response.status_code,
                              body=response.text)

        data = _decode(response, "Emailable batch status API")
        results = [
            VerificationResult.from_response(item.get("email", ""), item)
            for item in (data.get("results") or data.get("emails") or [])
        ]
        return BatchResult(
            batch_id=handle.batch_id,
            status=(data.get("status") or "processing").lower(),
            total=int(data.get("total") or 0),
            processed=int(data.get("processed") or 0),
            results=results,
        )

    def wait_for_batch(self, handle: BatchHandle) -> BatchResult:
        """Poll every poll_interval seconds, at most max_polls times."""
        for poll in range(1, self.max_polls + 1):
            time.sleep(self.poll_interval)
            status = self.poll_batch(handle)
            logger.info(
                f"Batch {handle.batch_id}: {status.status} "
                f"({status.processed}/{status.total or len(handle.emails)}) poll {poll}/{self.max_polls}"
            )
            if status.is_complete:
                return status
            if status.is_failed:
                raise RemoteError(f"Verification batch {handle.batch_id} failed")

        raise RemoteError(
            f"Verification batch {handle.batch_id} did not complete after "
            f"{self.max_polls} polls ({self.max_polls * self.poll_interval:g}s)"
        )

    def validate_emails(self, leads: Iterable[Tuple[str, str]]) -> List[ValidationResult]:
        """
        Verify (lead_id, email) pairs and map them to validation results.

        Small lists go one by one; a failure for one address becomes an
        'unknown' result carrying the error. Large lists go through the batch
        API, where a failed or timed-out batch raises RemoteError.
        """
        leads = list(leads)
        if not leads:
            return []

        if len(leads) <= self.batch_threshold:
            return self._validate_individually(leads)
        return self._validate_as_batch(leads)

    def _validate_individually(self, leads: List[Tuple[str, str]]) -> List[ValidationResult]:
        results = []
        for i, (lead_id, email) in enumerate(leads):
            if i > 0:
                time.sleep(self.pacing_seconds)
            try:
                verification = self.verify_one(email)
                results.append(map_to_validation_result(lead_id, email, verification))
            except RemoteError as e:
                logger.error(f"Error validating email {email}: {e.summary}")
                results.append(failed_validation_result(lead_id, email, f"{email}: {e.summary}"))
        return results

    def _validate_as_batch(self, leads: List[Tuple[str, str]]) -> List[ValidationResult]:
        handle = self.verify_batch([email for _, email in leads])
        batch = self.wait_for_batch(handle)

        by_email = {r.email.lower(): r for r in batch.results if r.email}
        results = []
        for index, (lead_id, email) in enumerate(leads):
            verification = by_email.get(email.lower())
            # Positional match only when the provider didn't echo addresses back
            if verification is None and not by_email and index < len(batch.results):
                verification = batch.results[index]
            if verification is None:
                results.append(failed_validation_result(lead_id, email, f"{email}: no result in batch"))
                continue
            results.append(map_to_validation_result(lead_id, email, verification))
        return results
