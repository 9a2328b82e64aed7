"""Unit tests for MatchResolver and BatchMatches."""

from __future__ import annotations

from src.app.sync.matching import BatchMatches, MatchResolver
from tests.fakes import (
    COMPANY_ID,
    INTEGRATION_ID,
    OTHER_COMPANY_ID,
    make_contact,
    record,
)


class TestMatchResolver:
    async def test_phone_match_in_one_query(self, contacts):
        jane = contacts.add(make_contact(phone_number="5550100"))
        resolver = MatchResolver(contacts)

        matches = await resolver.resolve_batch(
            COMPANY_ID, [record("5550100", 2), record("5550199", 3), record("", 4)]
        )

        assert contacts.find_calls == 1
        assert matches.lookup(record("5550100", 2)) == jane
        assert matches.lookup(record("5550199", 3)) is None
        assert matches.lookup(record("", 4)) is None

    async def test_scoped_to_company(self, contacts):
        contacts.add(make_contact(phone_number="5550100", company_id=OTHER_COMPANY_ID))
        resolver = MatchResolver(contacts)

        contact = await resolver.resolve(COMPANY_ID, record("5550100"))
        assert contact is None

    async def test_mapping_is_authoritative_over_phone(self, contacts, mappings):
        mapped = contacts.add(make_contact(phone_number="5550111"))
        contacts.add(make_contact(phone_number="5550100"))
        mappings.mappings[(INTEGRATION_ID, "crm-1")] = mapped.id
        resolver = MatchResolver(contacts, mappings)

        rec = record("5550100", external_id="crm-1")
        contact = await resolver.resolve(COMPANY_ID, rec, integration_id=INTEGRATION_ID)

        assert contact == mapped

    async def test_mapping_ignored_without_integration(self, contacts, mappings):
        mapped = contacts.add(make_contact(phone_number="5550111"))
        by_phone = contacts.add(make_contact(phone_number="5550100"))
        mappings.mappings[(INTEGRATION_ID, "crm-1")] = mapped.id
        resolver = MatchResolver(contacts, mappings)

        contact = await resolver.resolve(COMPANY_ID, record("5550100", external_id="crm-1"))
        assert contact == by_phone

    async def test_unmapped_records_fall_back_to_phone(self, contacts, mappings):
        jane = contacts.add(make_contact(phone_number="5550100"))
        resolver = MatchResolver(contacts, mappings)

        contact = await resolver.resolve(
            COMPANY_ID, record("5550100", external_id="crm-9"), integration_id=INTEGRATION_ID
        )
        assert contact == jane


class TestBatchMatches:
    def test_remember_replaces_snapshot(self):
        old = make_contact(id="c1", phone_number="5550100", contact_name="Old")
        matches = BatchMatches(by_external_id={"crm-1": old}, by_phone={"5550100": old})

        new = old.model_copy(update={"contact_name": "New"})
        matches.remember(new)

        assert matches.by_phone["5550100"].contact_name == "New"
        assert matches.by_external_id["crm-1"].contact_name == "New"

    def test_remember_drops_stale_phone_key(self):
        old = make_contact(id="c1", phone_number="5550100")
        matches = BatchMatches(by_phone={"5550100": old})

        matches.remember(old.model_copy(update={"phone_number": "5550999"}))

        assert "5550100" not in matches.by_phone
        assert matches.by_phone["5550999"].id == "c1"
