"""
Unit tests for sheets_client.py

Tests cover:
- Bearer header, range quoting, RAW value input
- 401/403 -> AuthRequired, other non-2xx -> RemoteError with status/body
- Missing token -> AuthRequired before any request
- Row delete through batchUpdate with a cached sheet id
"""

import unittest
from unittest.mock import patch, MagicMock
import sys
import os

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _response(status=200, payload=None, text=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = payload if payload is not None else {}
    resp.text = text if text is not None else str(payload)
    resp.content = b"{}" if payload is not None else b""
    return resp


class SheetsClientTestCase(unittest.TestCase):

    def setUp(self):
        from sheets_client import SheetsClient

        self.token_store = MagicMock()
        self.token_store.get_valid_access_token.return_value = "tok"
        self.token_store.get_auth_url.return_value = "https://auth.test"
        self.client = SheetsClient(self.token_store, document_id="DOC", base_url="https://sheets.test/v4/spreadsheets")


class TestRequests(SheetsClientTestCase):

    @patch("sheets_client.requests.request")
    def test_get_values(self, mock_request):
        mock_request.return_value = _response(200, {"values": [["a", "b"], ["c"]]})

        rows = self.client.get_values("Leads!A2:V")

        self.assertEqual(rows, [["a", "b"], ["c"]])
        method, url = mock_request.call_args[0]
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://sheets.test/v4/spreadsheets/DOC/values/Leads!A2:V")
        self.assertEqual(mock_request.call_args[1]["headers"]["Authorization"], "Bearer tok")
        self.assertIsNotNone(mock_request.call_args[1]["timeout"])

    @patch("sheets_client.requests.request")
    def test_empty_range_returns_empty_list(self, mock_request):
        mock_request.return_value = _response(200, {"range": "Leads!A2:V"})
        self.assertEqual(self.client.get_values("Leads!A2:V"), [])

    @patch("sheets_client.requests.request")
    def test_table_names_with_spaces_are_quoted(self, mock_request):
        mock_request.return_value = _response(200, {})
        self.client.get_values("Email Templates!G2:N")
        self.assertIn("/values/Email%20Templates!G2:N", mock_request.call_args[0][1])

    @patch("sheets_client.requests.request")
    def test_append_row(self, mock_request):
        mock_request.return_value = _response(200, {})
        self.client.append_row("Leads!A:V", ["l1", "P1"])

        method, url = mock_request.call_args[0]
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/values/Leads!A:V:append"))
        self.assertEqual(mock_request.call_args[1]["params"]["valueInputOption"], "RAW")
        self.assertEqual(mock_request.call_args[1]["json"], {"values": [["l1", "P1"]]})

    @patch("sheets_client.requests.request")
    def test_update_row(self, mock_request):
        mock_request.return_value = _response(200, {})
        self.client.update_row("Leads!A5:V5", ["x"])
        self.assertEqual(mock_request.call_args[0][0], "PUT")
        self.assertTrue(mock_request.call_args[0][1].endswith("/values/Leads!A5:V5"))


class TestErrors(SheetsClientTestCase):

    @patch("sheets_client.requests.request")
    def test_401_is_auth_required(self, mock_request):
        from errors import AuthRequired

        mock_request.return_value = _response(401, {"error": "unauthorized"})
        with self.assertRaises(AuthRequired) as ctx:
            self.client.get_values("Leads!A2:V")
        self.assertEqual(ctx.exception.auth_url, "https://auth.test")

    @patch("sheets_client.requests.request")
    def test_403_is_auth_required(self, mock_request):
        from errors import AuthRequired

        mock_request.return_value = _response(403, {})
        with self.assertRaises(AuthRequired):
            self.client.update_row("Leads!A2:V2", [])

    @patch("sheets_client.requests.request")
    def test_500_is_remote_error(self, mock_request):
        from errors import RemoteError

        mock_request.return_value = _response(500, {}, text="backend exploded")
        with self.assertRaises(RemoteError) as ctx:
            self.client.get_values("Leads!A2:V")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.body, "backend exploded")
        self.assertIn("500", ctx.exception.summary)

    @patch("sheets_client.requests.request")
    def test_network_error_is_remote_error(self, mock_request):
        from errors import RemoteError

        mock_request.side_effect = requests.exceptions.Timeout("slow")
        with self.assertRaises(RemoteError) as ctx:
            self.client.get_values("Leads!A2:V")
        self.assertIsNone(ctx.exception.status)

    @patch("sheets_client.requests.request")
    def test_no_token_is_auth_required(self, mock_request):
        from errors import AuthRequired, NotAuthenticated

        self.token_store.get_valid_access_token.return_value = None
        with self.assertRaises(NotAuthenticated) as ctx:
            self.client.get_values("Leads!A2:V")
        self.assertIsInstance(ctx.exception, AuthRequired)
        mock_request.assert_not_called()


class TestDeleteRow(SheetsClientTestCase):

    @patch("sheets_client.requests.request")
    def test_delete_row_uses_batch_update(self, mock_request):
        meta = _response(200, {"sheets": [
            {"properties": {"title": "Leads", "sheetId": 42}},
            {"properties": {"title": "Projects", "sheetId": 7}},
        ]})
        mock_request.side_effect = [meta, _response(200, {}), _response(200, {})]

        self.client.delete_row("Leads", 5)
        self.client.delete_row("Leads", 3)

        # metadata fetched once, then two batchUpdates
        self.assertEqual(mock_request.call_count, 3)
        method, url = mock_request.call_args_list[1][0]
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/DOC:batchUpdate"))
        dim = mock_request.call_args_list[1][1]["json"]["requests"][0]["deleteDimension"]["range"]
        self.assertEqual(dim, {"sheetId": 42, "dimension": "ROWS", "startIndex": 4, "endIndex": 5})

    @patch("sheets_client.requests.request")
    def test_unknown_tab(self, mock_request):
        from errors import RemoteError

        mock_request.return_value = _response(200, {"sheets": []})
        with self.assertRaises(RemoteError):
            self.client.delete_row("Nope", 2)


if __name__ == "__main__":
    unittest.main()
