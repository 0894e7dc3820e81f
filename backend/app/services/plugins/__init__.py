"""
Plugin System Module

Admission pipeline for third-party UI plugins: manifest validation, static
security scanning and safe installation of uploaded archives.

Module Architecture:
    plugins/
    +-- __init__.py          # This file - public API
    +-- exceptions.py        # Custom exception classes
    +-- permissions.py       # Host permission whitelist
    +-- manifest/            # Semantic manifest validation
    +-- security/            # Security scanner, rules and reports
    +-- import_export/       # Archive extraction and installation
    +-- registry/            # Installed plugin record storage

Usage:
    from app.services.plugins import PluginExtractor

    extractor = PluginExtractor()
    result = extractor.extract_plugin(data, "my-plugin.zip")
    if not result.success:
        print(result.message)
"""

from .exceptions import (
    ArchiveExtractionError,
    PluginAlreadyExistsError,
    PluginError,
    PluginImportError,
    PluginNotFoundError,
    PluginSecurityError,
    PluginValidationError,
)
from .import_export import PluginExtractor
from .manifest import PluginManifestValidator
from .registry import InMemoryPluginRecordStore, PluginRecordStore
from .security import PluginSecurityScanner, generate_security_report

__all__ = [
    # Exceptions
    "PluginError",
    "PluginNotFoundError",
    "PluginImportError",
    "ArchiveExtractionError",
    "PluginValidationError",
    "PluginSecurityError",
    "PluginAlreadyExistsError",
    # Pipeline
    "PluginManifestValidator",
    "PluginSecurityScanner",
    "PluginExtractor",
    "generate_security_report",
    # Records
    "PluginRecordStore",
    "InMemoryPluginRecordStore",
]
