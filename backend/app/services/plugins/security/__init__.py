"""
Plugin Security Subpackage

Static security scanning for uploaded plugin bundles. This is the gate
between a structurally valid bundle and the installed plugins directory.

Components:
    - PluginSecurityScanner: Walks a plugin tree and scores it 0-100
    - rules: Declarative detector tables and the generic matcher
    - obfuscation: Per-file obfuscation heuristic
    - report: Markdown rendering of scan results

Security Checks Performed:
    - Manifest permission and URL review
    - Dangerous code pattern detection (eval, process access, XSS sinks, ...)
    - Obfuscation scoring
    - Sensitive string handling
    - Suspicious file types and oversized files
    - package.json dependency and install script review

Usage:
    from app.services.plugins.security import PluginSecurityScanner

    scanner = PluginSecurityScanner()
    result = scanner.scan_plugin(plugin_root)
    report = scanner.generate_security_report(result)
"""

from .report import generate_security_report
from .scanner import PluginSecurityScanner, calculate_security_score

__all__ = [
    "PluginSecurityScanner",
    "calculate_security_score",
    "generate_security_report",
]
