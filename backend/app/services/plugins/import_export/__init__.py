"""
Plugin Import Subpackage

Admission of uploaded plugin archives into the plugins directory.

Components:
    - PluginExtractor: Unpack, validate, scan and install a ZIP upload
    - find_plugin_root: Locate manifest.json in an extracted archive
    - safe_extract_zip: Traversal and zip-bomb safe ZIP unpacking

Usage:
    from app.services.plugins.import_export import PluginExtractor

    extractor = PluginExtractor()
    result = extractor.extract_plugin(data, "my-plugin.zip")
"""

from .extractor import PluginExtractor, PluginRoot, RootLocation, find_plugin_root, safe_extract_zip

__all__ = [
    "PluginExtractor",
    "PluginRoot",
    "RootLocation",
    "find_plugin_root",
    "safe_extract_zip",
]
