"""Source adapters -- one per provider, all exposing the same read/write shape.

- SourceAdapter / TabularWriter: Abstract interfaces used by the engine
- GoogleSheetsAdapter: Spreadsheet tabs (read + write)
- HubSpotAdapter, SalesforceAdapter, PipedriveAdapter: CRM reads
- AdapterRegistry: Provider -> adapter lookup
"""

from __future__ import annotations

from src.app.sync.adapters.base import SourceAdapter, TabularWriter
from src.app.sync.adapters.google_sheets import GoogleSheetsAdapter
from src.app.sync.adapters.hubspot import HubSpotAdapter
from src.app.sync.adapters.pipedrive import PipedriveAdapter
from src.app.sync.adapters.salesforce import SalesforceAdapter
from src.app.sync.schemas import Provider


class AdapterRegistry:
    """Maps providers to adapter instances."""

    def __init__(self, adapters: list[SourceAdapter] | None = None) -> None:
        self._adapters: dict[Provider, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        self._adapters[adapter.provider] = adapter

    def get(self, provider: Provider | str) -> SourceAdapter:
        """Return the adapter for provider.

        Raises:
            KeyError: If no adapter is registered for provider.
        """
        return self._adapters[Provider(provider)]

    def __contains__(self, provider: object) -> bool:
        try:
            return Provider(provider) in self._adapters
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._adapters)


def default_registry() -> AdapterRegistry:
    """Registry with every built-in provider adapter."""
    return AdapterRegistry([
        GoogleSheetsAdapter(),
        HubSpotAdapter(),
        SalesforceAdapter(),
        PipedriveAdapter(),
    ])


__all__ = [
    "AdapterRegistry",
    "GoogleSheetsAdapter",
    "HubSpotAdapter",
    "PipedriveAdapter",
    "SalesforceAdapter",
    "SourceAdapter",
    "TabularWriter",
    "default_registry",
]
