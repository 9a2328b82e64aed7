"""Unit tests for sync completion notifications."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

from src.app.sync.notifier import (
    SYNC_COMPLETED,
    SYNC_FAILED,
    SyncNotifier,
    build_notification,
)
from src.app.sync.schemas import (
    InboundResult,
    LinkSyncResult,
    OutboundResult,
    Provider,
    SyncDirection,
)
from tests.fakes import COMPANY_ID, LINK_ID, make_link


def _result(**kwargs) -> LinkSyncResult:
    kwargs.setdefault("link_id", LINK_ID)
    kwargs.setdefault("direction", SyncDirection.INBOUND)
    return LinkSyncResult(**kwargs)


def _inbound(**overrides) -> InboundResult:
    defaults = {"created": 3, "updated": 2, "skipped": 1, "total": 6}
    defaults.update(overrides)
    return InboundResult(**defaults)


class TestBuildNotification:
    def test_import_complete(self):
        result = _result(success=True, run_id="r1", inbound=_inbound())

        kind, title, message = build_notification(make_link(), result)

        assert kind == SYNC_COMPLETED
        assert title == "Google Sheets Import Complete"
        assert message == (
            '"Leads": 3 contacts created, 2 updated, 1 skipped (6 total rows processed)'
        )

    def test_bidirectional_mentions_export(self):
        result = _result(
            success=True,
            inbound=_inbound(),
            outbound=OutboundResult(success=True, row_count=11),
        )
        _, _, message = build_notification(make_link(), result)
        assert message.endswith("; 11 rows exported")

    def test_export_only(self):
        result = _result(success=True, outbound=OutboundResult(success=True, row_count=4))
        _, title, message = build_notification(make_link(), result)
        assert title == "Google Sheets Export Complete"
        assert message == '"Leads": 4 contacts exported'

    def test_failure_prefers_inbound_error(self):
        result = _result(
            success=False,
            error="generic",
            inbound=InboundResult(success=False, error="No phone number column found in sheet"),
        )

        kind, title, message = build_notification(make_link(), result)

        assert kind == SYNC_FAILED
        assert title == "Google Sheets Import Failed"
        assert message == '"Leads": Import failed: No phone number column found in sheet'

    def test_failure_without_detail(self):
        link = make_link(
            provider=Provider.HUBSPOT,
            spreadsheet_name=None,
            sheet_tab_title=None,
            object_type="contacts",
        )
        _, title, message = build_notification(link, _result(success=False))
        assert title == "HubSpot Import Failed"
        assert message == '"contacts": Import failed: Unknown error'


class TestSyncNotifier:
    async def test_writes_notification_row(self):
        session = AsyncMock()
        session.add = MagicMock()

        async def session_factory():
            yield session

        notifier = SyncNotifier(session_factory)
        user_id = str(uuid.uuid4())
        result = _result(success=True, run_id="r1", inbound=_inbound())

        sent = await notifier.notify(COMPANY_ID, user_id, make_link(), result)

        assert sent is True
        row = session.add.call_args.args[0]
        assert row.type == SYNC_COMPLETED
        assert row.user_id == uuid.UUID(user_id)
        assert row.read is False
        assert row.metadata_json["run_id"] == "r1"
        assert row.metadata_json["created"] == 3
        session.commit.assert_awaited_once()

    async def test_write_failure_returns_false(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.commit.side_effect = RuntimeError("connection reset")

        async def session_factory():
            yield session

        notifier = SyncNotifier(session_factory)

        sent = await notifier.notify(
            COMPANY_ID, None, make_link(), _result(success=True, inbound=_inbound())
        )

        assert sent is False
