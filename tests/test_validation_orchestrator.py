"""
Unit tests for validation_orchestrator.py

Tests cover:
- End-to-end run against an in-memory sheet (only unvalidated emails verified)
- Second run is a no-op with already_validated stats
- Conflict when the project lock is held; lock released on every exit path
- Partial write failures: counted, sampled, capped, loop keeps going
- NotFound for empty projects / projects without emails
- Auth loss during the write phase
"""

import unittest
from unittest.mock import patch, MagicMock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeSheetsClient, lead_row


def _ok(email, state="deliverable"):
    resp = MagicMock()
    resp.status_code = 200
    resp.ok = True
    resp.json.return_value = {"email": email, "state": state, "score": 95, "reason": "accepted_email"}
    return resp


def _result(lead_id, email, status="deliverable", error=None):
    from email_verifier import ValidationResult

    return ValidationResult(
        lead_id=lead_id, email=email, validation_status=status, validation_score=90,
        validation_reason="accepted_email", is_deliverable=status == "deliverable",
        is_free_email=False, is_role_email=False, is_disposable=False,
        validated_at="2024-06-01T00:00:00+00:00", error=error,
    )


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        from database import LeadStore, lead_schema
        from project_lock import InMemoryProjectLock

        self.rows = [
            lead_row("a", "P1", "Ann", "a@x.com"),
            lead_row("b", "P1", "Bob", "b@x.com", "deliverable", validation_score="88",
                     is_deliverable="TRUE", validated_at="2024-01-01T00:00:00+00:00"),
            lead_row("c", "P1", "Cy", ""),
            lead_row("z", "P2", "Zed", "z@x.com"),
        ]
        self.client = FakeSheetsClient({"Leads": [["header"]] + self.rows})
        self.leads = LeadStore(self.client, lead_schema("Leads"))
        self.lock = InMemoryProjectLock()

    def _orchestrator(self, verifier, **kwargs):
        from validation_orchestrator import ValidationOrchestrator

        return ValidationOrchestrator(self.leads, verifier, lock=self.lock, **kwargs)

    def _row(self, lead_id):
        return next(r for r in self.client.tables["Leads"][1:] if r[0] == lead_id)


class TestEndToEnd(OrchestratorTestCase):

    @patch("email_verifier.time.sleep")
    @patch("email_verifier.requests.get")
    def test_only_unvalidated_email_is_verified(self, mock_get, mock_sleep):
        from email_verifier import EmailVerifier

        mock_get.return_value = _ok("a@x.com")
        before_b = list(self._row("b"))
        before_c = list(self._row("c"))
        before_z = list(self._row("z"))

        summary = self._orchestrator(EmailVerifier(api_key="key")).run("P1")

        self.assertEqual(mock_get.call_count, 1)
        self.assertEqual(mock_get.call_args[1]["params"]["email"], "a@x.com")
        self.assertEqual(summary.validated, 1)
        self.assertEqual(summary.deliverable, 1)
        self.assertEqual(summary.update_successes, 1)
        self.assertEqual(summary.update_failures, 0)
        self.assertEqual(summary.status, "success")
        self.assertFalse(summary.already_validated)

        row_a = self._row("a")
        self.assertEqual(row_a[14], "deliverable")
        self.assertEqual(row_a[17], "TRUE")
        self.assertTrue(row_a[21])
        self.assertEqual(row_a[:14], self.rows[0][:14])

        self.assertEqual(self._row("b"), before_b)
        self.assertEqual(self._row("c"), before_c)
        self.assertEqual(self._row("z"), before_z)
        self.assertFalse(self.lock.is_locked("P1"))

    @patch("email_verifier.time.sleep")
    @patch("email_verifier.requests.get")
    def test_second_run_is_noop(self, mock_get, mock_sleep):
        from email_verifier import EmailVerifier

        mock_get.return_value = _ok("a@x.com")
        orchestrator = self._orchestrator(EmailVerifier(api_key="key"))
        orchestrator.run("P1")
        updates_after_first = self.client.count("update")

        summary = orchestrator.run("P1")

        self.assertEqual(mock_get.call_count, 1)
        self.assertEqual(self.client.count("update"), updates_after_first)
        self.assertTrue(summary.already_validated)
        self.assertEqual(summary.validated, 2)
        self.assertEqual(summary.deliverable, 2)

    @patch("email_verifier.time.sleep")
    @patch("email_verifier.requests.get")
    def test_html_reply_from_provider_does_not_abort_run(self, mock_get, mock_sleep):
        from email_verifier import EmailVerifier

        self.client.tables["Leads"].append(lead_row("d", "P1", "Dee", "d@x.com"))
        page = MagicMock()
        page.status_code = 200
        page.ok = True
        page.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        page.text = "<html>502 Bad Gateway</html>"
        mock_get.side_effect = [_ok("a@x.com"), page]

        summary = self._orchestrator(EmailVerifier(api_key="key")).run("P1")

        self.assertEqual(summary.update_successes, 2)
        self.assertEqual(summary.deliverable, 1)
        self.assertEqual(summary.unknown, 1)
        self.assertEqual(summary.status, "success")
        self.assertEqual(len(summary.errors), 1)
        self.assertIn("d@x.com", summary.errors[0])
        self.assertEqual(self._row("a")[14], "deliverable")
        self.assertEqual(self._row("d")[14], "unknown")
        self.assertEqual(self._row("d")[16], "API Error")
        self.assertFalse(self.lock.is_locked("P1"))


class TestLocking(OrchestratorTestCase):

    def test_conflict_when_locked(self):
        from errors import Conflict

        verifier = MagicMock()
        self.lock.try_acquire("P1")

        with self.assertRaises(Conflict):
            self._orchestrator(verifier).run("P1")

        verifier.validate_emails.assert_not_called()
        self.assertEqual(self.client.calls, [])
        # still held by the first owner
        self.assertTrue(self.lock.is_locked("P1"))

    def test_other_project_not_blocked(self):
        verifier = MagicMock()
        verifier.validate_emails.return_value = [_result("z", "z@x.com")]
        self.lock.try_acquire("P1")

        summary = self._orchestrator(verifier).run("P2")
        self.assertEqual(summary.validated, 1)

    def test_lock_released_when_verifier_raises(self):
        from errors import RemoteError

        verifier = MagicMock()
        verifier.validate_emails.side_effect = RemoteError("Verification batch b-1 failed")

        with self.assertRaises(RemoteError):
            self._orchestrator(verifier).run("P1")
        self.assertFalse(self.lock.is_locked("P1"))

    def test_lock_released_on_unexpected_error(self):
        verifier = MagicMock()
        verifier.validate_emails.side_effect = KeyError("boom")

        with self.assertRaises(KeyError):
            self._orchestrator(verifier).run("P1")
        self.assertFalse(self.lock.is_locked("P1"))

    def test_default_lock_is_process_wide(self):
        from project_lock import validation_locks
        from validation_orchestrator import ValidationOrchestrator

        self.assertIs(ValidationOrchestrator(self.leads, MagicMock()).lock, validation_locks)


class TestPartialFailure(OrchestratorTestCase):

    def _many(self, n):
        rows = [lead_row(f"l{i}", "P9", f"Lead {i}", f"user{i}@x.com") for i in range(n)]
        self.client.tables["Leads"].extend(rows)
        return [_result(f"l{i}", f"user{i}@x.com") for i in range(n)]

    def test_failed_writes_are_counted_and_loop_continues(self):
        results = self._many(5)
        verifier = MagicMock()
        verifier.validate_emails.return_value = results
        self.client.fail_updates_for = {"l1", "l3"}

        summary = self._orchestrator(verifier).run("P9")

        self.assertEqual(summary.update_successes, 3)
        self.assertEqual(summary.update_failures, 2)
        self.assertEqual(summary.status, "partial_failure")
        self.assertEqual(len(summary.errors), 2)
        self.assertTrue(summary.errors[0].startswith("l1:"))
        self.assertEqual(self._row("l4")[14], "deliverable")

    def test_error_sample_is_capped(self):
        from errors import PartialFailure

        results = self._many(15)
        verifier = MagicMock()
        verifier.validate_emails.return_value = results
        self.client.fail_updates_for = {f"l{i}" for i in range(15)}

        summary = self._orchestrator(verifier).run("P9")

        self.assertEqual(summary.update_failures, 15)
        self.assertEqual(len(summary.errors), 10)
        with self.assertRaises(PartialFailure) as ctx:
            summary.raise_for_partial_failure()
        self.assertIs(ctx.exception.summary, summary)

    def test_provider_errors_are_sampled(self):
        verifier = MagicMock()
        verifier.validate_emails.return_value = [_result("a", "a@x.com", "unknown", error="a@x.com: timeout")]

        summary = self._orchestrator(verifier).run("P1")

        self.assertEqual(summary.unknown, 1)
        self.assertEqual(summary.errors, ["a@x.com: timeout"])
        self.assertEqual(self._row("a")[14], "unknown")

    def test_auth_lost_for_every_write(self):
        from errors import AuthRequired

        verifier = MagicMock()
        verifier.validate_emails.return_value = [_result("a", "a@x.com")]
        self.client.update_row = MagicMock(side_effect=AuthRequired(auth_url="https://auth.test"))

        with self.assertRaises(AuthRequired):
            self._orchestrator(verifier).run("P1")
        self.assertFalse(self.lock.is_locked("P1"))


class TestNotFound(OrchestratorTestCase):

    def test_project_without_leads(self):
        from errors import NotFound

        verifier = MagicMock()
        with self.assertRaises(NotFound):
            self._orchestrator(verifier).run("EMPTY")
        verifier.validate_emails.assert_not_called()
        self.assertFalse(self.lock.is_locked("EMPTY"))

    def test_project_without_emails(self):
        from errors import NotFound

        self.client.tables["Leads"].append(lead_row("n1", "P3", "No Mail", ""))
        with self.assertRaises(NotFound):
            self._orchestrator(MagicMock()).run("P3")


class TestSummary(unittest.TestCase):

    def test_to_dict(self):
        from validation_orchestrator import ValidationSummary

        summary = ValidationSummary.from_results("P1", [
            _result("a", "a@x.com"), _result("b", "b@x.com", "risky"), _result("c", "c@x.com", "undeliverable"),
        ])
        data = summary.to_dict()
        self.assertEqual(data["validated"], 3)
        self.assertEqual((data["deliverable"], data["risky"], data["undeliverable"]), (1, 1, 1))
        self.assertEqual(data["status"], "success")
        self.assertNotIn("results", data)
        self.assertEqual(len(summary.to_dict(include_results=True)["results"]), 3)


if __name__ == "__main__":
    unittest.main()
