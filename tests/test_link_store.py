"""Unit tests for the link, mapping and integration stores."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError, ProgrammingError

from src.app.sync.links import (
    ContactMappingStore,
    IntegrationStore,
    LinkStore,
    make_external_object_id,
    tolerate_missing_table,
)
from src.app.sync.models import IntegrationModel, LinkModel
from src.app.sync.schemas import Provider, SyncDirection
from tests.fakes import COMPANY_ID, INTEGRATION_ID, LINK_ID


class UndefinedTableError(Exception):
    """Named like asyncpg's error class; is_missing_table_error keys on the name."""

    sqlstate = "42P01"


def _missing_table() -> DBAPIError:
    return ProgrammingError(
        "SELECT", {}, UndefinedTableError('relation "sync_links" does not exist')
    )


def _session(scalar=None, scalars: list | None = None, rowcount: int = 1) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    result.rowcount = rowcount
    session.execute.return_value = result
    return session


def _factory(session):
    async def session_factory():
        yield session

    return session_factory


def _link_model(**overrides) -> LinkModel:
    defaults = {
        "id": uuid.UUID(LINK_ID),
        "company_id": uuid.UUID(COMPANY_ID),
        "integration_id": uuid.UUID(INTEGRATION_ID),
        "provider": "google_sheets",
        "external_object_id": "sheet-1/Contacts",
        "spreadsheet_id": "sheet-1",
        "sheet_tab_title": "Contacts",
        "field_mapping": None,
        "sync_direction": "bidirectional",
        "is_active": True,
    }
    defaults.update(overrides)
    return LinkModel(**defaults)


class TestExternalObjectId:
    def test_spreadsheet_tab(self):
        assert (
            make_external_object_id(Provider.GOOGLE_SHEETS, "sheet-1", "Leads 2026")
            == "sheet-1/Leads 2026"
        )

    def test_crm_object(self):
        assert make_external_object_id(Provider.SALESFORCE, object_type="Lead") == "salesforce:Lead"


class TestTolerateMissingTable:
    async def test_missing_table_returns_default(self):
        @tolerate_missing_table(list)
        async def query():
            raise _missing_table()

        assert await query() == []

    async def test_other_database_errors_propagate(self):
        @tolerate_missing_table(list)
        async def query():
            raise ProgrammingError("SELECT", {}, Exception("syntax error at or near"))

        with pytest.raises(ProgrammingError):
            await query()

    async def test_non_database_errors_propagate(self):
        @tolerate_missing_table(dict)
        async def query():
            raise ValueError("bad uuid")

        with pytest.raises(ValueError):
            await query()


class TestLinkStore:
    async def test_get_link_converts_model(self):
        store = LinkStore(_factory(_session(scalar=_link_model())))

        link = await store.get_link(COMPANY_ID, LINK_ID)

        assert link.id == LINK_ID
        assert link.provider == Provider.GOOGLE_SHEETS
        assert link.sync_direction == SyncDirection.BIDIRECTIONAL
        assert link.field_mapping == {}

    async def test_get_link_missing(self):
        store = LinkStore(_factory(_session(scalar=None)))
        assert await store.get_link(COMPANY_ID, LINK_ID) is None

    async def test_missing_table_reads_as_no_links(self):
        session = _session()
        session.execute.side_effect = _missing_table()
        store = LinkStore(_factory(session))

        assert await store.list_active_links(COMPANY_ID) == []
        assert await store.get_link(COMPANY_ID, LINK_ID) is None
        await store.mark_synced(LINK_ID, 10)

    async def test_list_active_links(self):
        models = [_link_model(), _link_model(id=uuid.uuid4(), external_object_id="sheet-2/A")]
        store = LinkStore(_factory(_session(scalars=models)))

        links = await store.list_active_links(COMPANY_ID, integration_id=INTEGRATION_ID)

        assert [link.external_object_id for link in links] == ["sheet-1/Contacts", "sheet-2/A"]

    async def test_deactivate_reports_whether_found(self):
        found = LinkStore(_factory(_session(rowcount=1)))
        missing = LinkStore(_factory(_session(rowcount=0)))

        assert await found.deactivate_link(COMPANY_ID, LINK_ID) is True
        assert await missing.deactivate_link(COMPANY_ID, LINK_ID) is False


class TestContactMappingStore:
    async def test_empty_lookup_skips_query(self):
        session = _session()
        store = ContactMappingStore(_factory(session))

        assert await store.find_contacts_by_external_ids(COMPANY_ID, INTEGRATION_ID, []) == {}
        session.execute.assert_not_called()

    async def test_upsert_collapses_repeated_external_ids(self):
        session = _session()
        store = ContactMappingStore(_factory(session))
        first, second = str(uuid.uuid4()), str(uuid.uuid4())

        written = await store.upsert_mappings(
            COMPANY_ID, INTEGRATION_ID, "contacts", [("crm-1", first), ("crm-1", second)]
        )

        assert written == 1
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    async def test_upsert_nothing(self):
        session = _session()
        store = ContactMappingStore(_factory(session))
        assert await store.upsert_mappings(COMPANY_ID, INTEGRATION_ID, None, []) == 0
        session.execute.assert_not_called()


class TestIntegrationStore:
    async def test_get_integration_converts_model(self):
        model = IntegrationModel(
            id=uuid.UUID(INTEGRATION_ID),
            company_id=uuid.UUID(COMPANY_ID),
            provider="salesforce",
            access_token=None,
            instance_url="https://acme.my.salesforce.com",
            is_active=True,
            metadata_json=None,
        )
        store = IntegrationStore(_factory(_session(scalar=model)))

        integration = await store.get_integration(COMPANY_ID, INTEGRATION_ID)

        assert integration.provider == Provider.SALESFORCE
        assert integration.access_token == ""
        assert integration.metadata == {}
        assert integration.instance_url == "https://acme.my.salesforce.com"
