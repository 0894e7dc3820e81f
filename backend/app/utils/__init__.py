"""
PluginGate Utility Functions
Shared filesystem and logging helpers for the admission pipeline
"""

from app.utils.file_security import (  # noqa: F401
    is_path_traversal,
    sanitize_filename,
    validate_file_extension,
    validate_storage_path,
)
from app.utils.logging_security import sanitize_for_log, sanitize_path_for_log  # noqa: F401
