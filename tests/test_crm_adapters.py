"""Unit tests for the HubSpot, Salesforce and Pipedrive adapters.

HTTP is served by httpx.MockTransport; only 2xx and 4xx responses are used
so tenacity never sleeps between attempts.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from src.app.sync.adapters import AdapterRegistry, default_registry
from src.app.sync.adapters.hubspot import (
    HubSpotAdapter,
    HubSpotContact,
    hubspot_contact_to_record,
)
from src.app.sync.adapters.pipedrive import (
    PipedriveAdapter,
    PipedrivePerson,
    PipedriveValue,
    pipedrive_person_to_record,
    primary_value,
)
from src.app.sync.adapters.salesforce import (
    SalesforceAdapter,
    SalesforceRecord,
    build_soql,
    salesforce_record_to_external,
    soql_id_list,
)
from src.app.sync.exceptions import ReadFailure
from src.app.sync.schemas import Provider
from tests.fakes import make_integration, make_link


def _hubspot_link(**overrides):
    defaults = {
        "provider": Provider.HUBSPOT,
        "external_object_id": "hubspot:contacts",
        "object_type": "contacts",
        "spreadsheet_id": None,
        "sheet_tab_title": None,
    }
    defaults.update(overrides)
    return make_link(**defaults)


class Recorder:
    """MockTransport handler that records requests and serves canned responses."""

    def __init__(self, handler):
        self._handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


# ── HubSpot ─────────────────────────────────────────────────────────────────


class TestHubSpotConversion:
    def test_full_contact(self):
        contact = HubSpotContact(
            id="101",
            properties={
                "firstname": "Jane",
                "lastname": "Doe",
                "email": "jane@x.com",
                "phone": "+1 (555) 010-0100",
                "company": "Acme",
                "lifecyclestage": "lead",
                "city": None,
            },
        )

        rec = hubspot_contact_to_record(contact)

        assert rec.match_key == "15550100100"
        assert rec.external_id == "101"
        assert rec.fields["contact_name"] == "Jane Doe"
        assert rec.fields["company_name"] == "Acme"
        assert rec.fields["tags"] == ["hubspot-import"]
        assert rec.fields["custom_fields"] == {
            "hs_contact_id": "101",
            "hs_firstname": "Jane",
            "hs_lastname": "Doe",
            "hs_company": "Acme",
            "hs_lifecyclestage": "lead",
        }

    def test_mobile_phone_fallback_and_empty_values_dropped(self):
        contact = HubSpotContact(id="7", properties={"mobilephone": "555-0199", "email": ""})
        rec = hubspot_contact_to_record(contact)
        assert rec.match_key == "5550199"
        assert "email" not in rec.fields
        assert "contact_name" not in rec.fields


class TestHubSpotAdapter:
    async def test_full_read_follows_after_cursor(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer token-abc"
            if "after" not in request.url.params:
                return httpx.Response(200, json={
                    "results": [{"id": "1", "properties": {"phone": "5550001"}}],
                    "paging": {"next": {"after": "cursor-2"}},
                })
            assert request.url.params["after"] == "cursor-2"
            return httpx.Response(200, json={
                "results": [{"id": "2", "properties": {"phone": "5550002"}}],
            })

        recorder = Recorder(handler)
        adapter = HubSpotAdapter(transport=recorder.transport)

        result = await adapter.read(make_integration(provider=Provider.HUBSPOT), _hubspot_link())

        assert [r.external_id for r in result.records] == ["1", "2"]
        assert [r.row_number for r in result.records] == [1, 2]
        assert result.total == 2
        assert len(recorder.requests) == 2
        assert recorder.requests[0].url.path == "/crm/v3/objects/contacts"
        assert recorder.requests[0].url.params["limit"] == "100"

    async def test_since_filters_on_updated_at(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"results": [
                {"id": "old", "properties": {"phone": "1"}, "updatedAt": "2026-01-01T00:00:00Z"},
                {"id": "new", "properties": {"phone": "2"}, "updatedAt": "2026-03-01T00:00:00Z"},
                {"id": "unknown", "properties": {"phone": "3"}},
            ]})

        adapter = HubSpotAdapter(transport=httpx.MockTransport(handler))
        result = await adapter.read(
            make_integration(provider=Provider.HUBSPOT),
            _hubspot_link(),
            since=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )

        assert [r.external_id for r in result.records] == ["new", "unknown"]

    async def test_selective_read_uses_batch_endpoint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"id": item["id"], "properties": {"phone": "555000" + item["id"]}}
                for item in body["inputs"]
            ]})

        recorder = Recorder(handler)
        adapter = HubSpotAdapter(transport=recorder.transport)
        adapter.page_size = 2

        result = await adapter.read(
            make_integration(provider=Provider.HUBSPOT), _hubspot_link(), ids=["1", "2", "3"]
        )

        assert [r.external_id for r in result.records] == ["1", "2", "3"]
        assert [r.method for r in recorder.requests] == ["POST", "POST"]
        assert recorder.requests[0].url.path == "/crm/v3/objects/contacts/batch/read"

    async def test_empty_id_list_makes_no_request(self):
        recorder = Recorder(lambda request: httpx.Response(500))
        adapter = HubSpotAdapter(transport=recorder.transport)

        result = await adapter.read(
            make_integration(provider=Provider.HUBSPOT), _hubspot_link(), ids=[]
        )

        assert result.records == []
        assert recorder.requests == []

    async def test_client_error_becomes_read_failure(self):
        adapter = HubSpotAdapter(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="expired"))
        )
        with pytest.raises(ReadFailure) as exc_info:
            await adapter.read(make_integration(provider=Provider.HUBSPOT), _hubspot_link())
        assert "401" in exc_info.value.message
        assert "expired" in exc_info.value.message

    async def test_unknown_object_type_rejected(self):
        adapter = HubSpotAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ReadFailure):
            await adapter.read(
                make_integration(provider=Provider.HUBSPOT), _hubspot_link(object_type="deals")
            )


# ── Salesforce ──────────────────────────────────────────────────────────────


class TestSoql:
    def test_full_query_orders_by_last_modified(self):
        soql = build_soql("Lead")
        assert soql.startswith("SELECT Id, FirstName")
        assert soql.endswith("FROM Lead ORDER BY LastModifiedDate DESC")

    def test_incremental_query(self):
        since = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert "WHERE LastModifiedDate > 2026-03-01T12:00:00Z" in build_soql("Contact", since=since)

    def test_selective_query_escapes_ids(self):
        assert soql_id_list(["003A", "x'y"]) == "'003A','x\\'y'"
        assert build_soql("Contact", ids=["003A"]).endswith("WHERE Id IN ('003A')")


class TestSalesforceConversion:
    def test_contact_uses_account_name(self):
        record = SalesforceRecord.model_validate({
            "Id": "003A",
            "Name": "Jane Doe",
            "Email": " jane@x.com ",
            "MobilePhone": "555-0100",
            "Account": {"Name": "Acme"},
            "AccountId": "001X",
            "Title": "CTO",
        })

        rec = salesforce_record_to_external(record, "Contact")

        assert rec.match_key == "5550100"
        assert rec.fields["email"] == "jane@x.com"
        assert rec.fields["company_name"] == "Acme"
        assert rec.fields["tags"] == ["salesforce-import"]
        assert rec.fields["custom_fields"] == {
            "sf_contact_id": "003A",
            "sf_account_id": "001X",
            "sf_title": "CTO",
        }

    def test_lead_tags_and_company(self):
        record = SalesforceRecord(
            Id="00QA", FirstName="Bob", LastName="Ray", Phone="5550101",
            Company="Initech", Status="Open",
        )

        rec = salesforce_record_to_external(record, "Lead")

        assert rec.fields["contact_name"] == "Bob Ray"
        assert rec.fields["company_name"] == "Initech"
        assert rec.fields["tags"] == ["salesforce-import", "salesforce-lead"]
        assert rec.fields["custom_fields"] == {"sf_lead_id": "00QA", "sf_lead_status": "Open"}


class TestSalesforceAdapter:
    async def test_follows_next_records_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/query"):
                assert "FROM Contact" in request.url.params["q"]
                return httpx.Response(200, json={
                    "done": False,
                    "nextRecordsUrl": "/services/data/v59.0/query/01g-2000",
                    "records": [{"Id": "003A", "Phone": "5550001"}],
                })
            assert request.url.path == "/services/data/v59.0/query/01g-2000"
            return httpx.Response(200, json={
                "done": True,
                "records": [{"Id": "003B", "Phone": "5550002"}],
            })

        recorder = Recorder(handler)
        adapter = SalesforceAdapter(transport=recorder.transport)
        integration = make_integration(
            provider=Provider.SALESFORCE, instance_url="https://acme.my.salesforce.com/"
        )
        link = _hubspot_link(
            provider=Provider.SALESFORCE, object_type="Contact",
            external_object_id="salesforce:Contact",
        )

        result = await adapter.read(integration, link)

        assert [r.external_id for r in result.records] == ["003A", "003B"]
        assert recorder.requests[0].url.host == "acme.my.salesforce.com"

    async def test_missing_instance_url(self):
        adapter = SalesforceAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        link = _hubspot_link(provider=Provider.SALESFORCE, object_type="Lead")
        with pytest.raises(ReadFailure):
            await adapter.read(make_integration(provider=Provider.SALESFORCE), link)

    async def test_defaults_to_contact_object(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params["q"])
            return httpx.Response(200, json={"done": True, "records": []})

        adapter = SalesforceAdapter(transport=httpx.MockTransport(handler))
        link = _hubspot_link(provider=Provider.SALESFORCE, object_type=None)
        integration = make_integration(
            provider=Provider.SALESFORCE, instance_url="https://acme.my.salesforce.com"
        )

        result = await adapter.read(integration, link)

        assert result.records == []
        assert "FROM Contact" in seen[0]


# ── Pipedrive ───────────────────────────────────────────────────────────────


class TestPipedriveConversion:
    def test_primary_value_preference(self):
        values = [
            PipedriveValue(value="555-0001", primary=False),
            PipedriveValue(value="555-0002", primary=True),
        ]
        assert primary_value(values) == "555-0002"
        assert primary_value([PipedriveValue(value=""), PipedriveValue(value="x")]) == "x"
        assert primary_value([]) == ""

    def test_person_record(self):
        person = PipedrivePerson.model_validate({
            "id": 42,
            "name": "Jane Doe",
            "phone": [{"value": "555-0100", "primary": True}],
            "email": [{"value": "jane@x.com", "primary": True}],
            "org_id": {"value": 9, "name": "Acme"},
            "open_deals_count": 2,
        })

        rec = pipedrive_person_to_record(person)

        assert rec.match_key == "5550100"
        assert rec.external_id == "42"
        assert rec.fields["company_name"] == "Acme"
        assert rec.fields["tags"] == ["pipedrive-import"]
        assert rec.fields["custom_fields"] == {
            "pd_person_id": 42,
            "pd_org_id": 9,
            "pd_org_name": "Acme",
            "pd_open_deals": 2,
        }


class TestPipedriveAdapter:
    def _link(self):
        return _hubspot_link(
            provider=Provider.PIPEDRIVE, object_type="persons",
            external_object_id="pipedrive:persons",
        )

    async def test_pages_until_no_more_items(self):
        def handler(request: httpx.Request) -> httpx.Response:
            start = int(request.url.params["start"])
            if start == 0:
                return httpx.Response(200, json={
                    "success": True,
                    "data": [{"id": 1, "phone": [{"value": "5550001"}]}],
                    "additional_data": {
                        "pagination": {"more_items_in_collection": True, "next_start": 1}
                    },
                })
            return httpx.Response(200, json={
                "success": True,
                "data": [{"id": 2, "phone": [{"value": "5550002"}]}],
                "additional_data": {"pagination": {"more_items_in_collection": False}},
            })

        recorder = Recorder(handler)
        adapter = PipedriveAdapter(transport=recorder.transport)

        result = await adapter.read(make_integration(provider=Provider.PIPEDRIVE), self._link())

        assert [r.external_id for r in result.records] == ["1", "2"]
        assert recorder.requests[0].url.path == "/api/v1/persons"

    async def test_empty_data_ends_paging(self):
        adapter = PipedriveAdapter(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"success": True, "data": None})
            )
        )
        result = await adapter.read(make_integration(provider=Provider.PIPEDRIVE), self._link())
        assert result.records == []

    async def test_selective_read_skips_unknown_ids(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/404"):
                return httpx.Response(404, json={"success": False})
            person_id = int(request.url.path.rsplit("/", 1)[1])
            return httpx.Response(200, json={
                "success": True,
                "data": {"id": person_id, "phone": [{"value": "555000" + str(person_id)}]},
            })

        adapter = PipedriveAdapter(transport=httpx.MockTransport(handler))

        result = await adapter.read(
            make_integration(provider=Provider.PIPEDRIVE), self._link(), ids=["1", "404", "3"]
        )

        assert [r.external_id for r in result.records] == ["1", "3"]

    async def test_instance_url_overrides_default_base(self):
        recorder = Recorder(lambda r: httpx.Response(200, json={"success": True, "data": []}))
        adapter = PipedriveAdapter(transport=recorder.transport)
        integration = make_integration(
            provider=Provider.PIPEDRIVE, instance_url="https://acme.pipedrive.com/"
        )

        await adapter.read(integration, self._link())

        assert recorder.requests[0].url.host == "acme.pipedrive.com"


# ── Registry ────────────────────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_default_registry_covers_every_provider(self):
        registry = default_registry()
        assert len(registry) == len(Provider)
        for provider in Provider:
            assert provider in registry
            assert registry.get(provider.value).provider == provider

    def test_unknown_provider(self):
        registry = AdapterRegistry()
        assert "zoho" not in registry
        with pytest.raises(KeyError):
            registry.get(Provider.HUBSPOT)
