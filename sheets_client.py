"""
Thin authenticated wrapper around the Google Sheets values API.

Only whole-range reads and ranged writes are used: no server-side query,
upsert or transaction exists, so anything smarter lives in record_store.py.
"""

import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

import config
from errors import AuthRequired, RemoteError
from token_store import TokenStore

logger = logging.getLogger("leadsync.sheets")


class SheetsClient:
    """Client for one spreadsheet document"""

    def __init__(self,
                 token_store: TokenStore,
                 document_id: str = None,
                 base_url: str = None,
                 timeout: float = None):
        self.token_store = token_store
        self.document_id = document_id or config.GOOGLE_SHEETS_DOCUMENT_ID
        self.base_url = (base_url or config.SHEETS_API_BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT
        self._sheet_ids: Dict[str, int] = {}

    def _request(self, method: str, path: str, params: dict = None, json: dict = None) -> dict:
        token = self.token_store.get_valid_access_token()
        if not token:
            raise AuthRequired(
                "No valid access token. Please authenticate first.",
                auth_url=self.token_store.get_auth_url(),
            )

        url = f"{self.base_url}/{self.document_id}{path}"
        try:
            response = requests.request(
                method,
                url,
                params=params,
                json=json,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Google Sheets {method} {path} failed: {e}")
            raise RemoteError(f"Google Sheets request failed: {e}")

        if response.status_code in (401, 403):
            logger.warning(f"Google Sheets rejected token: {response.status_code}")
            raise AuthRequired(
                "Token expired or revoked, please re-authenticate",
                auth_url=self.token_store.get_auth_url(),
            )

        if not response.ok:
            logger.error(f"Google Sheets API error {response.status_code} on {method} {path}: {response.text}")
            raise RemoteError("Google Sheets API error", status=response.status_code, body=response.text)

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _range_path(range_: str) -> str:
        return "/values/" + quote(range_, safe="!:")

    def get_values(self, range_: str) -> List[List[str]]:
        """All rows in the range. Trailing empty cells are omitted by the API."""
        data = self._request("GET", self._range_path(range_))
        return data.get("values") or []

    def append_row(self, range_: str, values: List[str]):
        self._request(
            "POST",
            self._range_path(range_) + ":append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )

    def update_row(self, range_: str, values: List[str]):
        self._request(
            "PUT",
            self._range_path(range_),
            params={"valueInputOption": "RAW"},
            json={"values": [values]},
        )

    def get_sheet_id(self, table: str) -> int:
        """Numeric sheet id for a tab name (needed for structural edits like row deletes)."""
        if table not in self._sheet_ids:
            data = self._request("GET", "", params={"fields": "sheets.properties"})
            for sheet in data.get("sheets", []):
                props = sheet.get("properties", {})
                self._sheet_ids[props.get("title")] = props.get("sheetId")
        sheet_id: Optional[int] = self._sheet_ids.get(table)
        if sheet_id is None:
            raise RemoteError(f"Sheet tab {table!r} not found in document", status=404)
        return sheet_id

    def delete_row(self, table: str, row_number: int):
        """Remove a whole row (1-based). Rows below move up by one."""
        self._request(
            "POST",
            ":batchUpdate",
            json={
                "requests": [{
                    "deleteDimension": {
                        "range": {
                            "sheetId": self.get_sheet_id(table),
                            "dimension": "ROWS",
                            "startIndex": row_number - 1,
                            "endIndex": row_number,
                        }
                    }
                }]
            },
        )
