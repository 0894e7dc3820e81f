"""
Plugin Registry Subpackage

Persistence boundary for installed plugins. The admission pipeline only
depends on the ``PluginRecordStore`` protocol.

Components:
    - PluginRecordStore: install/uninstall/list/get interface
    - InMemoryPluginRecordStore: Process-local implementation

Usage:
    from app.services.plugins.registry import InMemoryPluginRecordStore

    store = InMemoryPluginRecordStore()
    extractor = PluginExtractor(record_store=store)
"""

from .store import InMemoryPluginRecordStore, PluginRecordStore

__all__ = [
    "InMemoryPluginRecordStore",
    "PluginRecordStore",
]
