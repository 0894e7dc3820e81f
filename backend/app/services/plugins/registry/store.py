"""
Installed plugin record store

The admission pipeline hands a record to a persistence collaborator after
each successful install and asks it to forget the record on removal. The
collaborator is anything implementing ``PluginRecordStore``; the in-memory
store backs tests and the CLI.
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol, runtime_checkable

from app.models.plugin_models import InstalledPluginRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class PluginRecordStore(Protocol):
    """Persistence interface for installed plugin records"""

    def install(self, record: InstalledPluginRecord) -> None: ...

    def uninstall(self, plugin_id: str) -> bool: ...

    def list(self) -> List[InstalledPluginRecord]: ...

    def get(self, plugin_id: str) -> Optional[InstalledPluginRecord]: ...


class InMemoryPluginRecordStore:
    """Thread-safe dict-backed record store"""

    def __init__(self) -> None:
        self._records: Dict[str, InstalledPluginRecord] = {}
        self._lock = threading.Lock()

    def install(self, record: InstalledPluginRecord) -> None:
        with self._lock:
            self._records[record.plugin_id] = record
        logger.debug(f"Recorded installed plugin {record.plugin_id}")

    def uninstall(self, plugin_id: str) -> bool:
        with self._lock:
            return self._records.pop(plugin_id, None) is not None

    def list(self) -> List[InstalledPluginRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda record: record.plugin_id)

    def get(self, plugin_id: str) -> Optional[InstalledPluginRecord]:
        with self._lock:
            return self._records.get(plugin_id)
