"""Header-to-contact field resolution for tabular sources.

Defines:
- DEFAULT_FIELD_SYNONYMS: Header fragments recognised for each canonical field
- LEGACY_MAPPING_KEYS: Older explicit-mapping key names still accepted
- FieldMapper: Resolves a column index per canonical field and turns rows
  into ExternalRecords
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from src.app.sync.exceptions import MissingRequiredField
from src.app.sync.matching import normalize_phone
from src.app.sync.schemas import ExternalRecord

logger = structlog.get_logger(__name__)


# ── Canonical Fields ───────────────────────────────────────────────────────
# Phone is the only required field: it is the match key.

REQUIRED_FIELD = "phone"

CANONICAL_FIELDS: tuple[str, ...] = ("phone", "name", "email", "company", "notes")

# Canonical field -> contacts table column (phone is carried as the match key)
FIELD_COLUMNS: dict[str, str] = {
    "name": "contact_name",
    "email": "email",
    "company": "company_name",
    "notes": "notes",
}

DEFAULT_FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "phone": ("phone", "tel", "mobile", "cell"),
    "name": ("name", "contact name", "full name", "nombre"),
    "email": ("email", "e-mail", "correo"),
    "company": ("company", "empresa", "organization"),
    "notes": ("notes", "note", "notas", "comentarios"),
}

LEGACY_MAPPING_KEYS: dict[str, str] = {
    "phoneNumber": "phone",
    "phone_number": "phone",
    "contactName": "name",
    "contact_name": "name",
    "companyName": "company",
    "company_name": "company",
}


def _canonical_mapping(explicit: Mapping[str, str] | None) -> dict[str, str]:
    """Normalize explicit mapping keys to canonical field names."""
    resolved: dict[str, str] = {}
    for key, header in (explicit or {}).items():
        if not header:
            continue
        field = LEGACY_MAPPING_KEYS.get(key, key)
        if field in CANONICAL_FIELDS:
            resolved[field] = header
    return resolved


class FieldMapper:
    """Resolves which header holds each canonical contact field.

    Resolution per field: the explicit mapping value when it matches a
    header case-insensitively, otherwise the first header containing one
    of the field's synonyms (synonyms tried in order).

    Args:
        headers: Header row of the source.
        explicit_mapping: Optional {canonical field: header} overrides.
        synonyms: Synonym table; defaults to DEFAULT_FIELD_SYNONYMS.

    Raises:
        MissingRequiredField: If no header resolves to the phone field.
    """

    def __init__(
        self,
        headers: Sequence[str],
        explicit_mapping: Mapping[str, str] | None = None,
        synonyms: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._headers = [str(h) for h in headers]
        self._lower = [h.strip().lower() for h in self._headers]
        self._explicit = _canonical_mapping(explicit_mapping)
        self._synonyms = synonyms or DEFAULT_FIELD_SYNONYMS
        self.columns: dict[str, int] = self._resolve()

    def _find(self, field: str) -> int:
        wanted = self._explicit.get(field)
        if wanted:
            target = wanted.strip().lower()
            if target in self._lower:
                return self._lower.index(target)
            logger.debug("field_mapping.explicit_header_missing", field=field, header=wanted)

        for synonym in self._synonyms.get(field, ()):
            needle = synonym.lower()
            for idx, header in enumerate(self._lower):
                if needle in header:
                    return idx
        return -1

    def _resolve(self) -> dict[str, int]:
        columns: dict[str, int] = {}
        for field in CANONICAL_FIELDS:
            idx = self._find(field)
            if idx >= 0:
                columns[field] = idx
        if REQUIRED_FIELD not in columns:
            raise MissingRequiredField(REQUIRED_FIELD, headers=self._headers)
        return columns

    @property
    def phone_column(self) -> int:
        return self.columns[REQUIRED_FIELD]

    def to_record(self, row: Sequence[str], row_number: int) -> ExternalRecord:
        """Convert one data row into an ExternalRecord.

        Values are trimmed; empty optional values are dropped. A row with no
        usable phone yields an empty match key.
        """

        def cell(idx: int) -> str:
            if idx >= len(row) or row[idx] is None:
                return ""
            return str(row[idx]).strip()

        fields: dict[str, str] = {}
        for field, column in FIELD_COLUMNS.items():
            idx = self.columns.get(field)
            if idx is None:
                continue
            value = cell(idx)
            if value:
                fields[column] = value

        return ExternalRecord(
            match_key=normalize_phone(cell(self.phone_column)),
            external_id=str(row_number),
            row_number=row_number,
            fields=fields,
        )

    def records_from_rows(
        self, rows: Sequence[Sequence[str]], first_row_number: int = 2
    ) -> list[ExternalRecord]:
        """Convert data rows; first_row_number is the sheet row of rows[0]."""
        return [
            self.to_record(row, first_row_number + offset)
            for offset, row in enumerate(rows)
        ]
