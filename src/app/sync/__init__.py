"""Contact synchronization with spreadsheets and CRMs.

- ReconciliationEngine: batched inbound upsert from any source adapter
- OutboundWriter: fixed-layout export to writable targets
- SyncService: link/run orchestration used by the API
- LinkStore, ContactMappingStore, IntegrationStore, SyncRunLog: persistence
"""

from src.app.sync.engine import ReconciliationEngine
from src.app.sync.links import ContactMappingStore, IntegrationStore, LinkStore
from src.app.sync.notifier import SyncNotifier
from src.app.sync.outbound import OutboundWriter
from src.app.sync.run_log import SyncRunLog
from src.app.sync.service import ProgressRegistry, SyncService

__all__ = [
    "ContactMappingStore",
    "IntegrationStore",
    "LinkStore",
    "OutboundWriter",
    "ProgressRegistry",
    "ReconciliationEngine",
    "SyncNotifier",
    "SyncRunLog",
    "SyncService",
]
