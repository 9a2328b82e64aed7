"""Unit tests for GoogleSheetsAdapter against a fake Sheets v4 service."""

from __future__ import annotations

import httplib2
import pytest
from googleapiclient.errors import HttpError
from structlog.testing import capture_logs

from src.app.sync.adapters.google_sheets import (
    GoogleSheetsAdapter,
    locate_row,
    quote_tab,
)
from src.app.sync.exceptions import MissingRequiredField, ReadFailure
from tests.fakes import make_integration, make_link


def _http_error(status: int = 403) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status), "reason": "Forbidden"}), b"denied")


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _Values:
    def __init__(self, parent: FakeSheetsService) -> None:
        self._parent = parent

    def get(self, **kwargs):
        self._parent.calls.append(("get", kwargs))

        def run():
            if self._parent.get_error is not None:
                raise self._parent.get_error
            return {"values": self._parent.values} if self._parent.values else {}

        return _Request(run)

    def clear(self, **kwargs):
        self._parent.calls.append(("clear", kwargs))
        return _Request(lambda: {})

    def update(self, **kwargs):
        self._parent.calls.append(("update", kwargs))
        return _Request(lambda: {"updatedRows": len(kwargs["body"]["values"])})

    def append(self, **kwargs):
        self._parent.calls.append(("append", kwargs))
        return _Request(lambda: {})


class _Spreadsheets:
    def __init__(self, parent: FakeSheetsService) -> None:
        self._parent = parent

    def values(self):
        return _Values(self._parent)

    def get(self, **kwargs):
        self._parent.calls.append(("describe", kwargs))
        return _Request(lambda: self._parent.metadata)

    def batchUpdate(self, **kwargs):  # noqa: N802 - mirrors the Google API name
        self._parent.calls.append(("batchUpdate", kwargs))

        def run():
            if self._parent.style_error is not None:
                raise self._parent.style_error
            return {}

        return _Request(run)


class FakeSheetsService:
    """Records every call; serves `values` for values().get()."""

    def __init__(
        self,
        values: list[list] | None = None,
        get_error: Exception | None = None,
        style_error: Exception | None = None,
        metadata: dict | None = None,
    ) -> None:
        self.values = values or []
        self.get_error = get_error
        self.style_error = style_error
        self.metadata = metadata or {}
        self.calls: list[tuple[str, dict]] = []

    def spreadsheets(self):
        return _Spreadsheets(self)

    def named(self, name: str) -> list[dict]:
        return [kwargs for call, kwargs in self.calls if call == name]


def _adapter(service: FakeSheetsService, max_rows: int = 100, tokens: list | None = None):
    def factory(token: str):
        if tokens is not None:
            tokens.append(token)
        return service

    return GoogleSheetsAdapter(service_factory=factory, max_rows=max_rows)


# ── Reads ───────────────────────────────────────────────────────────────────


class TestRead:
    async def test_maps_rows_and_pads_short_ones(self):
        service = FakeSheetsService(
            values=[
                ["Name", "Phone", "Email"],
                ["Jane", "555-0100", "jane@x.com"],
                ["Bob", "555-0101"],
            ]
        )
        tokens: list[str] = []
        adapter = _adapter(service, tokens=tokens)

        result = await adapter.read(make_integration(), make_link())

        assert tokens == ["token-abc"]
        assert result.total == 2
        jane, bob = result.records
        assert jane.match_key == "5550100"
        assert jane.external_id == "2"
        assert jane.fields == {"contact_name": "Jane", "email": "jane@x.com"}
        assert bob.row_number == 3
        assert "email" not in bob.fields

        get_call = service.named("get")[0]
        assert get_call["spreadsheetId"] == "sheet-1"
        assert get_call["range"] == "'Contacts'"

    async def test_numeric_cells_are_stringified(self):
        service = FakeSheetsService(values=[["Phone", "Name"], [5550100, None]])
        result = await _adapter(service).read(make_integration(), make_link())
        assert result.records[0].match_key == "5550100"

    async def test_empty_and_header_only_sheets(self):
        empty = await _adapter(FakeSheetsService()).read(make_integration(), make_link())
        header_only = await _adapter(FakeSheetsService(values=[["Phone"]])).read(
            make_integration(), make_link()
        )
        assert empty.total == 0
        assert header_only.records == []

    async def test_max_rows_caps_data_rows(self):
        rows = [["Phone"]] + [[f"55501{i:02d}"] for i in range(10)]
        result = await _adapter(FakeSheetsService(values=rows), max_rows=3).read(
            make_integration(), make_link()
        )
        assert [r.row_number for r in result.records] == [2, 3, 4]

    async def test_truncation_is_logged_with_real_row_count(self):
        rows = [["Phone"]] + [[f"55501{i:02d}"] for i in range(10)]
        with capture_logs() as logs:
            result = await _adapter(FakeSheetsService(values=rows), max_rows=3).read(
                make_integration(), make_link()
            )

        assert result.total == 3
        truncated = [e for e in logs if e["event"] == "google_sheets.rows_truncated"]
        assert len(truncated) == 1
        assert truncated[0]["rows"] == 10
        assert truncated[0]["max_rows"] == 3
        assert truncated[0]["log_level"] == "warning"

    async def test_rows_within_cap_are_not_flagged(self):
        rows = [["Phone"], ["5550100"], ["5550101"]]
        with capture_logs() as logs:
            await _adapter(FakeSheetsService(values=rows), max_rows=2).read(
                make_integration(), make_link()
            )
        assert not [e for e in logs if e["event"] == "google_sheets.rows_truncated"]

    async def test_ids_select_rows_by_number(self):
        rows = [["Phone"], ["5550100"], ["5550101"], ["5550102"]]
        result = await _adapter(FakeSheetsService(values=rows)).read(
            make_integration(), make_link(), ids=["3", " 4 "]
        )
        assert [r.match_key for r in result.records] == ["5550101", "5550102"]
        assert result.total == 2

    async def test_http_error_becomes_read_failure(self):
        service = FakeSheetsService(get_error=_http_error())
        with pytest.raises(ReadFailure):
            await _adapter(service).read(make_integration(), make_link())

    async def test_link_without_tab_is_rejected(self):
        service = FakeSheetsService(values=[["Phone"], ["1"]])
        with pytest.raises(ReadFailure):
            await _adapter(service).read(
                make_integration(), make_link(sheet_tab_title=None)
            )
        assert service.calls == []

    async def test_missing_phone_column_propagates(self):
        service = FakeSheetsService(values=[["Name", "Email"], ["Jane", "j@x.com"]])
        with pytest.raises(MissingRequiredField):
            await _adapter(service).read(make_integration(), make_link())

    async def test_explicit_mapping_from_link(self):
        service = FakeSheetsService(values=[["Tel", "Celular"], ["111", "5550100"]])
        link = make_link(field_mapping={"phone": "Celular"})
        result = await _adapter(service).read(make_integration(), link)
        assert result.records[0].match_key == "5550100"


class TestDescribeSpreadsheet:
    async def test_parses_tabs(self):
        service = FakeSheetsService(
            metadata={
                "spreadsheetId": "sheet-1",
                "properties": {"title": "Leads"},
                "sheets": [
                    {
                        "properties": {
                            "sheetId": 0,
                            "title": "Contacts",
                            "gridProperties": {"rowCount": 1000, "columnCount": 26},
                        }
                    },
                    {"properties": {"sheetId": 7, "title": "Archive"}},
                ],
            }
        )

        info = await _adapter(service).describe_spreadsheet(make_integration(), "sheet-1")

        assert info.title == "Leads"
        assert [t.title for t in info.tabs] == ["Contacts", "Archive"]
        assert info.find_tab("Archive").sheet_id == 7
        assert info.find_tab("Missing") is None


# ── Writes ──────────────────────────────────────────────────────────────────


class TestWriteAll:
    async def test_clears_then_writes_header_and_rows(self):
        service = FakeSheetsService()
        count = await _adapter(service).write_all(
            make_integration(), make_link(), ["Name", "Phone"], [["Jane", "1"], ["Bob", "2"]]
        )

        assert count == 2
        names = [call for call, _ in service.calls]
        assert names == ["clear", "update", "batchUpdate"]
        update = service.named("update")[0]
        assert update["range"] == "'Contacts'!A1"
        assert update["body"]["values"] == [["Name", "Phone"], ["Jane", "1"], ["Bob", "2"]]
        style = service.named("batchUpdate")[0]
        grid = style["body"]["requests"][0]["repeatCell"]["range"]
        assert grid == {"startRowIndex": 0, "endRowIndex": 1, "sheetId": 0}

    async def test_header_styling_failure_is_not_fatal(self):
        service = FakeSheetsService(style_error=_http_error(500))
        count = await _adapter(service).write_all(
            make_integration(), make_link(), ["Phone"], [["1"]]
        )
        assert count == 1


class TestWriteOne:
    async def test_overwrites_matching_row(self):
        service = FakeSheetsService(
            values=[["Name", "Phone"], ["Bob", "555-0101"], ["Jane", "(555) 0100"]]
        )
        data_rows = await _adapter(service).write_one(
            make_integration(), make_link(), ["Name", "Phone"], ["Jane D", "5550100"], 1
        )

        assert data_rows == 2
        update = service.named("update")[0]
        assert update["range"] == "'Contacts'!A3"
        assert update["body"]["values"] == [["Jane D", "5550100"]]
        assert service.named("append") == []

    async def test_appends_when_no_row_matches(self):
        service = FakeSheetsService(values=[["Name", "Phone"], ["Bob", "5550101"]])
        data_rows = await _adapter(service).write_one(
            make_integration(), make_link(), ["Name", "Phone"], ["Jane", "5550100"], 1
        )

        assert data_rows == 2
        assert service.named("update") == []
        append = service.named("append")[0]
        assert append["insertDataOption"] == "INSERT_ROWS"
        assert append["body"]["values"] == [["Jane", "5550100"]]

    async def test_empty_sheet_gets_header_first(self):
        service = FakeSheetsService()
        data_rows = await _adapter(service).write_one(
            make_integration(), make_link(), ["Name", "Phone"], ["Jane", "5550100"], 1
        )

        assert data_rows == 1
        names = [call for call, _ in service.calls]
        assert names == ["get", "update", "append"]
        assert service.named("update")[0]["body"]["values"] == [["Name", "Phone"]]


class TestHelpers:
    def test_locate_row_compares_digits_and_skips_header(self):
        values = [["Name", "5550100"], ["Bob", "555-0101"], ["Jane", "+5550100"]]
        assert locate_row(values, "555 0100", 1) == 2
        assert locate_row(values, "5550199", 1) == -1

    def test_locate_row_empty_key_never_matches(self):
        assert locate_row([["Phone"], [""]], "", 0) == -1
        assert locate_row([["Phone"], ["x"]], "n/a", 0) == -1

    def test_locate_row_short_rows(self):
        assert locate_row([["Name", "Phone"], ["Bob"]], "5550100", 1) == -1

    def test_quote_tab_escapes_apostrophes(self):
        assert quote_tab("My Tab") == "'My Tab'"
        assert quote_tab("O'Brien") == "'O''Brien'"
