"""Unit tests for header resolution and row conversion in FieldMapper."""

from __future__ import annotations

import pytest

from src.app.sync.exceptions import MissingRequiredField
from src.app.sync.field_mapping import FieldMapper
from src.app.sync.matching import normalize_phone


class TestNormalizePhone:
    def test_strips_everything_but_digits(self):
        assert normalize_phone("+1 (555) 010-0100") == "15550100100"

    def test_none_and_empty(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""

    def test_letters_only_gives_empty_key(self):
        assert normalize_phone("n/a") == ""

    def test_numeric_cell(self):
        assert normalize_phone(5550100) == "5550100"


class TestHeaderResolution:
    def test_synonyms_match_case_insensitively(self):
        mapper = FieldMapper(["Full Name", "MOBILE", "E-mail", "Organization", "Notas"])
        assert mapper.columns == {
            "name": 0,
            "phone": 1,
            "email": 2,
            "company": 3,
            "notes": 4,
        }

    def test_substring_match(self):
        mapper = FieldMapper(["Customer Phone Number", "Primary Email Address"])
        assert mapper.phone_column == 0
        assert mapper.columns["email"] == 1

    def test_first_synonym_wins_over_later_synonym(self):
        # "phone" is tried before "cell", so the Phone column wins even though
        # the Cell column comes first.
        mapper = FieldMapper(["Cell", "Phone"])
        assert mapper.phone_column == 1

    def test_first_header_wins_for_same_synonym(self):
        mapper = FieldMapper(["Home Phone", "Work Phone"])
        assert mapper.phone_column == 0

    def test_explicit_mapping_takes_precedence(self):
        mapper = FieldMapper(
            ["Phone", "Celular", "Name"],
            explicit_mapping={"phone": "celular"},
        )
        assert mapper.phone_column == 1

    def test_legacy_mapping_keys_accepted(self):
        mapper = FieldMapper(
            ["Tel 1", "Tel 2", "Who", "Org"],
            explicit_mapping={
                "phoneNumber": "Tel 2",
                "contactName": "Who",
                "companyName": "Org",
            },
        )
        assert mapper.columns["phone"] == 1
        assert mapper.columns["name"] == 2
        assert mapper.columns["company"] == 3

    def test_explicit_header_missing_falls_back_to_synonyms(self):
        mapper = FieldMapper(["Phone", "Name"], explicit_mapping={"phone": "Mobile #"})
        assert mapper.phone_column == 0

    def test_missing_phone_raises(self):
        with pytest.raises(MissingRequiredField) as exc_info:
            FieldMapper(["Name", "Email"])
        assert exc_info.value.message == "No phone number column found in sheet"
        assert exc_info.value.status_code == 422
        assert exc_info.value.details["headers"] == ["Name", "Email"]

    def test_custom_synonym_table(self):
        mapper = FieldMapper(["Telefono"], synonyms={"phone": ("telefono",)})
        assert mapper.phone_column == 0


class TestRowConversion:
    def test_to_record_normalizes_and_maps(self):
        mapper = FieldMapper(["Name", "Phone", "Email"])
        rec = mapper.to_record(["  Jane Doe ", "555-0100", "jane@x.com"], row_number=2)

        assert rec.match_key == "5550100"
        assert rec.external_id == "2"
        assert rec.row_number == 2
        assert rec.fields == {"contact_name": "Jane Doe", "email": "jane@x.com"}

    def test_empty_values_dropped_and_short_rows_padded(self):
        mapper = FieldMapper(["Name", "Phone", "Email", "Notes"])
        rec = mapper.to_record(["", "5550100"], row_number=7)
        assert rec.fields == {}
        assert rec.match_key == "5550100"

    def test_row_without_phone_has_empty_match_key(self):
        mapper = FieldMapper(["Name", "Phone"])
        rec = mapper.to_record(["Jane", ""], row_number=3)
        assert rec.match_key == ""

    def test_records_from_rows_numbers_from_two(self):
        mapper = FieldMapper(["Phone"])
        records = mapper.records_from_rows([["1"], ["2"], ["3"]])
        assert [r.row_number for r in records] == [2, 3, 4]
        assert [r.external_id for r in records] == ["2", "3", "4"]
