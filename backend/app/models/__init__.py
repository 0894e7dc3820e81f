"""
PluginGate Models Package
Pydantic models shared by the admission pipeline, HTTP routes and CLI
"""

from .plugin_models import (
    ExtractResult,
    InstalledPluginRecord,
    IssueCategory,
    IssueSeverity,
    ManifestError,
    ManifestValidationResult,
    ManifestWarning,
    PluginManifest,
    PluginPermission,
    SecurityIssue,
    SecurityScanResult,
)

__all__ = [
    "ExtractResult",
    "InstalledPluginRecord",
    "IssueCategory",
    "IssueSeverity",
    "ManifestError",
    "ManifestValidationResult",
    "ManifestWarning",
    "PluginManifest",
    "PluginPermission",
    "SecurityIssue",
    "SecurityScanResult",
]
