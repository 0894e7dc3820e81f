"""
Plugin Manifest Subpackage

Semantic validation of plugin manifest.json files.

Usage:
    from app.services.plugins.manifest import PluginManifestValidator

    result = PluginManifestValidator().validate(json.loads(raw))
    if not result.valid:
        print(result.error_summary())
"""

from .validator import PluginManifestValidator

__all__ = [
    "PluginManifestValidator",
]
