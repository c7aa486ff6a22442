"""
Google Sheets Import Source

DESIGN DECISION: Google Sheets is read-only here. Users point the
importer at a spreadsheet they already keep; rows are pulled out and
handed to the same column inference as an uploaded CSV file.

TRADEOFFS:
- Every call hits the Sheets API (retried with backoff)
- Cell values arrive as displayed strings; the importer parses them
"""

from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from finora.config import GoogleSheetsSettings, get_settings
from finora.services.storage.interface import StorageConnectionError


SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._settings = settings

    @property
    def settings(self) -> GoogleSheetsSettings:
        if self._settings is None:
            self._settings = get_settings().google_sheets
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self.settings.credentials_path,
                    scopes=SCOPES,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self.settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_worksheet(
        self,
        spreadsheet_id: str,
        worksheet: Optional[str] = None,
    ) -> gspread.Worksheet:
        """Open a worksheet by title, or the first one if no title is given."""
        client = self.connect()
        try:
            spreadsheet = client.open_by_key(spreadsheet_id)
        except gspread.SpreadsheetNotFound:
            raise StorageConnectionError(f"Spreadsheet not found: {spreadsheet_id}")

        if worksheet is None:
            return spreadsheet.sheet1
        try:
            return spreadsheet.worksheet(worksheet)
        except gspread.WorksheetNotFound:
            raise StorageConnectionError(f"Worksheet not found: {worksheet}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def read_rows(
        self,
        spreadsheet_id: str,
        worksheet: Optional[str] = None,
    ) -> list[list[str]]:
        """
        Read every row of a worksheet, header first.

        Returns:
            A list of rows, each a list of cell strings
        """
        sheet = self.get_worksheet(spreadsheet_id, worksheet)
        return sheet.get_all_values()
