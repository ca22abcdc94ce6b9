"""Google Sheets v4 values calls used for row delivery."""

from __future__ import annotations

from typing import Any

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError

from extractify.errors import GoogleSheetsApiError

DEFAULT_TIMEOUT_SECONDS = 30.0


def _sheet_range(sheet_name: str, cell_range: str | None = None) -> str:
    quoted = "'" + sheet_name.replace("'", "''") + "'"
    return f"{quoted}!{cell_range}" if cell_range else quoted


def build_sheets_service(
    access_token: str,
    *,
    http: httplib2.Http | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Resource:
    """Build a Sheets service authorized with a bearer access token.

    A 401 is surfaced as an ``HttpError`` instead of triggering the library's
    own refresh, because these credentials carry no refresh token.
    """

    authorized = google_auth_httplib2.AuthorizedHttp(
        Credentials(token=access_token),
        http=http or httplib2.Http(timeout=timeout_seconds),
        refresh_status_codes=(),
    )
    return build("sheets", "v4", http=authorized, cache_discovery=False)


class GoogleSheetsClient:
    """Header read, header write and row append against one spreadsheet service."""

    def __init__(self, service: Resource) -> None:
        self._values = service.spreadsheets().values()

    def get_header(self, spreadsheet_id: str, sheet_name: str, header_row: int) -> list[str]:
        """Read the header row; trailing blank cells are dropped."""

        payload = self._execute(
            self._values.get(
                spreadsheetId=spreadsheet_id,
                range=_sheet_range(sheet_name, f"{header_row}:{header_row}"),
                majorDimension="ROWS",
            )
        )
        rows = payload.get("values") or []
        if not rows:
            return []
        headers = [str(cell) for cell in rows[0]]
        while headers and not headers[-1].strip():
            headers.pop()
        return headers

    def write_header(self, spreadsheet_id: str, sheet_name: str, header_row: int, headers: list[str]) -> None:
        cell_range = _sheet_range(sheet_name, f"{header_row}:{header_row}")
        self._execute(
            self._values.update(
                spreadsheetId=spreadsheet_id,
                range=cell_range,
                valueInputOption="RAW",
                body={"range": cell_range, "majorDimension": "ROWS", "values": [headers]},
            )
        )

    def append_row(self, spreadsheet_id: str, sheet_name: str, header_row: int, values: list[str]) -> None:
        """Append one row below the table anchored at the header row."""

        self._execute(
            self._values.append(
                spreadsheetId=spreadsheet_id,
                range=_sheet_range(sheet_name, f"A{header_row}"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"majorDimension": "ROWS", "values": [values]},
            )
        )

    def _execute(self, request: Any) -> dict[str, Any]:
        try:
            payload = request.execute()
        except HttpError as exc:
            status = exc.resp.status
            raise GoogleSheetsApiError(
                exc.reason or f"Google Sheets API request failed with HTTP {status}",
                status,
            ) from exc
        except ValueError as exc:
            raise GoogleSheetsApiError("Google Sheets returned a malformed response") from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise GoogleSheetsApiError(f"Google Sheets request failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise GoogleSheetsApiError("Google Sheets returned a malformed response")
        return payload
