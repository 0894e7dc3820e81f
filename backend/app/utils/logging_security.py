"""
Security Logging Utilities for PluginGate
Prevents log injection (CWE-117) from untrusted upload names, archive entries and plugin ids.

Uploaded archives are attacker-controlled: file names, member names and
manifest fields must never reach a log line verbatim.
"""

import re
from typing import Any, Optional
from urllib.parse import quote

# Patterns for detecting potentially malicious content
LOG_INJECTION_PATTERNS = [
    r"[\r\n]",  # CRLF injection
    r"%0[ad]",  # URL-encoded CRLF
    r"\\[rn]",  # Escaped newlines
    r"\x00",  # Null bytes
    r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]",  # Control characters
]

SAFE_LOG_PATTERN = re.compile(r"[a-zA-Z0-9._@\-\s]+")
PLUGIN_ID_PATTERN = re.compile(r"[a-z0-9-]{1,50}")


def sanitize_for_log(value: Optional[Any], max_length: int = 100, allow_special: bool = False) -> str:
    """
    Sanitize any value for safe logging.

    Args:
        value: Value to sanitize
        max_length: Maximum length of output
        allow_special: Whether to allow some special characters

    Returns:
        str: Sanitized string safe for logging
    """
    if value is None:
        return "null"

    str_value = str(value)

    if len(str_value) > max_length:
        str_value = str_value[:max_length] + "..."

    for pattern in LOG_INJECTION_PATTERNS:
        str_value = re.sub(pattern, "", str_value)

    if not allow_special and not SAFE_LOG_PATTERN.fullmatch(str_value):
        str_value = re.sub(r"[^a-zA-Z0-9._@\-\s]", "", str_value)

    if not str_value.strip():
        return "[sanitized]"

    return str_value.strip()


def sanitize_plugin_id_for_log(plugin_id: Optional[Any]) -> str:
    """Well-formed plugin ids pass through; anything else is sanitized."""
    if plugin_id is None:
        return "[no_id]"

    str_id = str(plugin_id)
    if PLUGIN_ID_PATTERN.fullmatch(str_id):
        return str_id

    return sanitize_for_log(str_id, max_length=50)


def sanitize_path_for_log(path: Optional[Any]) -> str:
    """
    Sanitize file paths and archive member names for logging.

    Args:
        path: Path to sanitize

    Returns:
        str: Sanitized path
    """
    if not path:
        return "[no_path]"

    sanitized = quote(str(path), safe="/.:-_")
    return sanitize_for_log(sanitized, max_length=200, allow_special=True)
