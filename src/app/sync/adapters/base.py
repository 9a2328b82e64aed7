"""Source adapter abstract base classes -- the contract every provider implements.

The reconciliation engine only ever talks to these interfaces and only ever
sees ExternalRecords. Provider payloads are decoded into explicit schemas
inside each adapter and never leak past it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from src.app.sync.schemas import IntegrationRead, LinkRead, Provider, SourceReadResult


class SourceAdapter(ABC):
    """Read side of an external system.

    Attributes:
        provider: Provider handled by this adapter; also the contact source tag.
        default_object_type: Object type synced when a link does not name one.
        object_types: Object types this adapter can read.
        uses_contact_mappings: Whether external IDs are stable provider IDs
            worth persisting in the ContactMapping table.
    """

    provider: Provider
    default_object_type: str = "contacts"
    object_types: tuple[str, ...] = ("contacts",)
    uses_contact_mappings: bool = True

    @property
    def supports_write(self) -> bool:
        return isinstance(self, TabularWriter)

    @property
    def source_tag(self) -> str:
        return self.provider.value

    @abstractmethod
    async def read(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        ids: Sequence[str] | None = None,
        since: datetime | None = None,
    ) -> SourceReadResult:
        """Fetch records from the external object behind link.

        Args:
            integration: Connection carrying the access token.
            link: The linked external object.
            ids: When given, fetch only these external IDs (selective sync).
            since: When given, fetch only records modified after this time.

        Returns:
            SourceReadResult with normalized records and the total seen.

        Raises:
            ReadFailure: The provider could not be read.
            MissingRequiredField: The source has no phone field.
        """
        ...


class TabularWriter(ABC):
    """Write side for sources that accept rows (spreadsheets)."""

    @abstractmethod
    async def write_all(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        header: Sequence[str],
        rows: Sequence[Sequence[str]],
    ) -> int:
        """Replace the target with header + rows. Returns rows written."""
        ...

    @abstractmethod
    async def write_one(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        header: Sequence[str],
        row: Sequence[str],
        key_column: int,
    ) -> int:
        """Overwrite the row whose key_column matches, or append it.

        Returns:
            Number of data rows in the target after the write.
        """
        ...
