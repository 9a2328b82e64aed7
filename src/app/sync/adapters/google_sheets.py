"""Google Sheets adapter -- reads contact rows from and writes them back to a sheet tab.

All Google API calls are wrapped in asyncio.to_thread() to avoid blocking
the event loop. Credentials are built from the integration's OAuth access
token; refreshing that token is handled outside this service.

Ranges quote the tab title ('My Tab'!A1) so titles with spaces work.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

import structlog
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel, Field

from src.app.config import get_settings
from src.app.sync.adapters.base import SourceAdapter, TabularWriter
from src.app.sync.exceptions import ReadFailure
from src.app.sync.field_mapping import FieldMapper
from src.app.sync.matching import normalize_phone
from src.app.sync.schemas import IntegrationRead, LinkRead, Provider, SourceReadResult

logger = structlog.get_logger(__name__)

SHEETS_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
]

# Header row styling applied after a full overwrite
HEADER_BACKGROUND = {"red": 0.93, "green": 0.93, "blue": 0.93}


class SheetTab(BaseModel):
    sheet_id: int
    title: str
    row_count: int = 0
    column_count: int = 0


class SpreadsheetInfo(BaseModel):
    """Spreadsheet title and tabs, used to fill in link details."""

    spreadsheet_id: str
    title: str = ""
    tabs: list[SheetTab] = Field(default_factory=list)

    def find_tab(self, title: str) -> SheetTab | None:
        for tab in self.tabs:
            if tab.title == title:
                return tab
        return None


def quote_tab(title: str) -> str:
    """A1-notation sheet reference for a tab title."""
    return "'" + title.replace("'", "''") + "'"


def _build_sheets_service(access_token: str) -> Any:
    credentials = Credentials(token=access_token, scopes=SHEETS_SCOPES)
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class GoogleSheetsAdapter(SourceAdapter, TabularWriter):
    """Reads and writes a single spreadsheet tab.

    External IDs are sheet row numbers (header row = 1), so selective syncs
    address rows by number.

    Args:
        service_factory: Builds a Sheets v4 Resource from an access token.
            Defaults to googleapiclient discovery; tests inject a fake.
        max_rows: Maximum data rows read per sync. Defaults to
            settings.SHEETS_MAX_ROWS.
    """

    provider = Provider.GOOGLE_SHEETS
    default_object_type = "sheet"
    object_types = ("sheet",)
    uses_contact_mappings = False

    def __init__(
        self,
        service_factory: Callable[[str], Any] | None = None,
        max_rows: int | None = None,
    ) -> None:
        self._service_factory = service_factory or _build_sheets_service
        self._max_rows = max_rows or get_settings().SHEETS_MAX_ROWS

    def _service(self, integration: IntegrationRead) -> Any:
        return self._service_factory(integration.access_token)

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_values(
        self, integration: IntegrationRead, spreadsheet_id: str, tab_title: str
    ) -> list[list[str]]:
        """Fetch every populated row of a tab as formatted strings."""
        service = self._service(integration)

        def _get() -> dict:
            return (
                service.spreadsheets()
                .values()
                .get(
                    spreadsheetId=spreadsheet_id,
                    range=quote_tab(tab_title),
                    valueRenderOption="FORMATTED_VALUE",
                )
                .execute()
            )

        result = await asyncio.to_thread(_get)
        return [[str(v) if v is not None else "" for v in row] for row in result.get("values", [])]

    async def describe_spreadsheet(
        self, integration: IntegrationRead, spreadsheet_id: str
    ) -> SpreadsheetInfo:
        """Fetch the spreadsheet title and its tabs."""
        service = self._service(integration)

        def _get() -> dict:
            return (
                service.spreadsheets()
                .get(
                    spreadsheetId=spreadsheet_id,
                    fields=(
                        "spreadsheetId,properties.title,"
                        "sheets.properties(sheetId,title,gridProperties(rowCount,columnCount))"
                    ),
                )
                .execute()
            )

        try:
            result = await asyncio.to_thread(_get)
        except HttpError as exc:
            raise ReadFailure(f"Failed to read spreadsheet {spreadsheet_id}: {exc}") from exc

        tabs = []
        for sheet in result.get("sheets", []):
            props = sheet.get("properties", {})
            grid = props.get("gridProperties", {})
            tabs.append(
                SheetTab(
                    sheet_id=props.get("sheetId", 0),
                    title=props.get("title", ""),
                    row_count=grid.get("rowCount", 0),
                    column_count=grid.get("columnCount", 0),
                )
            )
        return SpreadsheetInfo(
            spreadsheet_id=result.get("spreadsheetId", spreadsheet_id),
            title=result.get("properties", {}).get("title", ""),
            tabs=tabs,
        )

    async def read(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        ids: Sequence[str] | None = None,
        since: datetime | None = None,
    ) -> SourceReadResult:
        """Read the linked tab and map its rows to ExternalRecords.

        `since` is ignored: sheets carry no modification timestamps.
        """
        if not link.spreadsheet_id or not link.sheet_tab_title:
            raise ReadFailure("Link has no spreadsheet tab configured")

        try:
            values = await self.get_values(
                integration, link.spreadsheet_id, link.sheet_tab_title
            )
        except HttpError as exc:
            raise ReadFailure(f"Failed to read sheet: {exc}") from exc

        if not values:
            return SourceReadResult(records=[], total=0)

        headers = values[0]
        if len(values) - 1 > self._max_rows:
            logger.warning(
                "google_sheets.rows_truncated",
                spreadsheet_id=link.spreadsheet_id,
                tab=link.sheet_tab_title,
                rows=len(values) - 1,
                max_rows=self._max_rows,
            )
        data_rows = [
            [row[i] if i < len(row) else "" for i in range(len(headers))]
            for row in values[1 : self._max_rows + 1]
        ]
        if not headers or not data_rows:
            return SourceReadResult(records=[], total=0)

        mapper = FieldMapper(headers, link.field_mapping)
        records = mapper.records_from_rows(data_rows, first_row_number=2)

        if ids is not None:
            wanted = {str(i).strip() for i in ids}
            records = [r for r in records if r.external_id in wanted]
            return SourceReadResult(records=records, total=len(records))

        logger.info(
            "google_sheets.read",
            spreadsheet_id=link.spreadsheet_id,
            tab=link.sheet_tab_title,
            rows=len(records),
            columns=mapper.columns,
        )
        return SourceReadResult(records=records, total=len(records))

    # ── Writes ──────────────────────────────────────────────────────────────

    async def write_all(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        header: Sequence[str],
        rows: Sequence[Sequence[str]],
    ) -> int:
        """Clear the tab, then write header + rows in one call.

        Header styling is best-effort; a failure there is logged and ignored
        because the data is already written.
        """
        service = self._service(integration)
        tab = quote_tab(link.sheet_tab_title or "")
        values = [list(header), *[list(r) for r in rows]]

        def _clear() -> dict:
            return (
                service.spreadsheets()
                .values()
                .clear(spreadsheetId=link.spreadsheet_id, range=tab, body={})
                .execute()
            )

        def _update() -> dict:
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=link.spreadsheet_id,
                    range=f"{tab}!A1",
                    valueInputOption="USER_ENTERED",
                    body={"values": values},
                )
                .execute()
            )

        await asyncio.to_thread(_clear)
        await asyncio.to_thread(_update)

        try:
            await self._style_header(service, link)
        except Exception as exc:
            logger.warning(
                "google_sheets.header_format_failed",
                spreadsheet_id=link.spreadsheet_id,
                error=str(exc),
            )

        logger.info(
            "google_sheets.write_all",
            spreadsheet_id=link.spreadsheet_id,
            tab=link.sheet_tab_title,
            rows=len(rows),
        )
        return len(rows)

    async def _style_header(self, service: Any, link: LinkRead) -> None:
        grid_range: dict[str, int] = {"startRowIndex": 0, "endRowIndex": 1}
        if link.sheet_tab_id is not None:
            grid_range["sheetId"] = link.sheet_tab_id
        body = {
            "requests": [
                {
                    "repeatCell": {
                        "range": grid_range,
                        "cell": {
                            "userEnteredFormat": {
                                "textFormat": {"bold": True},
                                "backgroundColor": HEADER_BACKGROUND,
                            }
                        },
                        "fields": "userEnteredFormat(textFormat,backgroundColor)",
                    }
                }
            ]
        }

        def _batch_update() -> dict:
            return (
                service.spreadsheets()
                .batchUpdate(spreadsheetId=link.spreadsheet_id, body=body)
                .execute()
            )

        await asyncio.to_thread(_batch_update)

    async def write_one(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        header: Sequence[str],
        row: Sequence[str],
        key_column: int,
    ) -> int:
        """Overwrite the data row whose key column has the same digits, else append."""
        service = self._service(integration)
        tab = quote_tab(link.sheet_tab_title or "")
        existing = await self.get_values(
            integration, link.spreadsheet_id or "", link.sheet_tab_title or ""
        )
        row_index = locate_row(existing, row[key_column] if key_column < len(row) else "", key_column)

        def _update(range_: str, values: list[list[str]]) -> dict:
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=link.spreadsheet_id,
                    range=range_,
                    valueInputOption="USER_ENTERED",
                    body={"values": values},
                )
                .execute()
            )

        def _append() -> dict:
            return (
                service.spreadsheets()
                .values()
                .append(
                    spreadsheetId=link.spreadsheet_id,
                    range=f"{tab}!A1",
                    valueInputOption="USER_ENTERED",
                    insertDataOption="INSERT_ROWS",
                    body={"values": [list(row)]},
                )
                .execute()
            )

        if row_index > 0:
            await asyncio.to_thread(_update, f"{tab}!A{row_index + 1}", [list(row)])
            data_rows = len(existing) - 1
        else:
            if not existing:
                await asyncio.to_thread(_update, f"{tab}!A1", [list(header)])
            await asyncio.to_thread(_append)
            data_rows = max(len(existing) - 1, 0) + 1

        logger.info(
            "google_sheets.write_one",
            spreadsheet_id=link.spreadsheet_id,
            tab=link.sheet_tab_title,
            updated_row=row_index + 1 if row_index > 0 else None,
        )
        return data_rows


def locate_row(values: Sequence[Sequence[str]], key: str, key_column: int) -> int:
    """Index into values of the first data row whose key column matches key.

    Comparison is digits only. Returns -1 when no data row matches; the
    header row (index 0) is never matched.
    """
    wanted = normalize_phone(key)
    if not wanted:
        return -1
    for idx in range(1, len(values)):
        row = values[idx]
        cell = row[key_column] if key_column < len(row) else ""
        if normalize_phone(cell) == wanted:
            return idx
    return -1
