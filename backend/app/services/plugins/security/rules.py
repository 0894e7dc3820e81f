"""
Security Rule Tables

Declarative detector tables for the plugin security scanner. Each table is
plain data; ``match_rules`` is the single matcher that evaluates a rule
table against file content, so the rule set can be audited and tested
independently of directory traversal.
"""

import bisect
import re
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from app.models.plugin_models import IssueCategory, IssueSeverity, SecurityIssue

CRITICAL = IssueSeverity.CRITICAL
HIGH = IssueSeverity.HIGH
MEDIUM = IssueSeverity.MEDIUM
LOW = IssueSeverity.LOW


@dataclass(frozen=True)
class PatternRule:
    """Regex detector run against the full content of a source file"""

    pattern: "re.Pattern[str]"
    severity: IssueSeverity
    message: str
    category: IssueCategory = IssueCategory.CODE_PATTERN


@dataclass(frozen=True)
class FileTypeRule:
    """Flags files by extension regardless of content"""

    extension: str
    severity: IssueSeverity
    message: str


def _rule(pattern: str, severity: IssueSeverity, message: str, category: IssueCategory = IssueCategory.CODE_PATTERN):
    return PatternRule(re.compile(pattern, re.IGNORECASE), severity, message, category)


NETWORK = IssueCategory.NETWORK
OBFUSCATION = IssueCategory.OBFUSCATION

DANGEROUS_PATTERN_RULES: Sequence[PatternRule] = (
    # Direct eval and code execution
    _rule(r"\beval\s*\(", CRITICAL, "Direct eval() usage detected"),
    _rule(r"new\s+Function\s*\(", CRITICAL, "Dynamic function creation detected"),
    _rule(r"setTimeout\s*\([^,]{1,200},", HIGH, "Dynamic setTimeout detected"),
    _rule(r"setInterval\s*\([^,]{1,200},", HIGH, "Dynamic setInterval detected"),
    # Process and system access
    _rule(r"require\s*\(\s*['\"]child_process['\"]\s*\)", CRITICAL, "Child process access attempted"),
    _rule(r"require\s*\(\s*['\"]fs['\"]\s*\)", CRITICAL, "File system access attempted"),
    _rule(r"require\s*\(\s*['\"]net['\"]\s*\)", HIGH, "Network module access attempted"),
    _rule(r"require\s*\(\s*['\"]os['\"]\s*\)", HIGH, "OS module access attempted"),
    _rule(r"require\s*\(\s*['\"]cluster['\"]\s*\)", HIGH, "Cluster module access attempted"),
    # Environment and secrets access
    _rule(r"process\.env", CRITICAL, "Environment variable access detected"),
    _rule(r"BTCPAYSERVER_API_KEY", CRITICAL, "API key access attempted"),
    _rule(r"localStorage\s*\.", HIGH, "LocalStorage access detected"),
    _rule(r"sessionStorage\s*\.", HIGH, "SessionStorage access detected"),
    _rule(r"document\.cookie", CRITICAL, "Cookie access detected"),
    _rule(r"indexedDB", HIGH, "IndexedDB access detected"),
    # XSS sinks
    _rule(r"innerHTML\s*=", HIGH, "innerHTML usage detected (XSS risk)"),
    _rule(r"outerHTML\s*=", HIGH, "outerHTML usage detected (XSS risk)"),
    _rule(r"document\.write", HIGH, "document.write usage detected"),
    _rule(r"insertAdjacentHTML", MEDIUM, "insertAdjacentHTML usage detected"),
    # Outbound network primitives
    _rule(r"fetch\s*\(", MEDIUM, "External fetch detected", NETWORK),
    _rule(r"XMLHttpRequest", MEDIUM, "XMLHttpRequest usage detected", NETWORK),
    _rule(r"WebSocket", HIGH, "WebSocket usage detected", NETWORK),
    _rule(r"EventSource", MEDIUM, "EventSource usage detected", NETWORK),
    # Crypto mining
    _rule(r"CryptoNight|Monero|coinhive|coin-hive", CRITICAL, "Potential crypto mining code detected"),
    _rule(r"WebAssembly", HIGH, "WebAssembly usage detected"),
    # Prototype pollution
    _rule(r"__proto__|constructor\s*\[|Object\.prototype", HIGH, "Potential prototype pollution"),
    # Frame and domain manipulation
    _rule(r"document\.domain\s*=", CRITICAL, "Document domain manipulation detected"),
    _rule(r"window\.location\s*=", HIGH, "Window location manipulation detected"),
    _rule(r"top\.location", HIGH, "Top frame location access detected"),
    _rule(r"parent\.", MEDIUM, "Parent frame access detected"),
    # ES module imports of dangerous modules
    _rule(r"import\s+[^\n]{0,200}['\"]fs['\"]", CRITICAL, "File system import detected"),
    _rule(r"import\s+[^\n]{0,200}['\"]child_process['\"]", CRITICAL, "Child process import detected"),
    _rule(r"import\s+[^\n]{0,200}['\"]crypto['\"]", MEDIUM, "Crypto module import detected"),
    # Obfuscation markers
    _rule(r"\\x[0-9a-f]{2}", MEDIUM, "Hex encoded strings detected (possible obfuscation)", OBFUSCATION),
    _rule(r"\\u[0-9a-f]{4}", LOW, "Unicode encoded strings detected", OBFUSCATION),
    _rule(r"atob|btoa", MEDIUM, "Base64 encoding/decoding detected", OBFUSCATION),
    _rule(r"String\.fromCharCode", MEDIUM, "String.fromCharCode usage detected (possible obfuscation)", OBFUSCATION),
)

# First match wins; reported at most once per file
SENSITIVE_STRING_PATTERNS: Sequence["re.Pattern[str]"] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"password|passwd|pwd",
        r"secret|token|key",
        r"api[_-]?key",
        r"private[_-]?key",
    )
)

SUSPICIOUS_FILE_RULES: Sequence[FileTypeRule] = (
    FileTypeRule(".exe", CRITICAL, "Executable file found"),
    FileTypeRule(".dll", CRITICAL, "DLL file found"),
    FileTypeRule(".so", HIGH, "Shared library file found"),
    FileTypeRule(".wasm", HIGH, "WebAssembly file found"),
    FileTypeRule(".sh", HIGH, "Shell script found"),
    FileTypeRule(".bat", HIGH, "Batch file found"),
    FileTypeRule(".cmd", HIGH, "Command file found"),
    FileTypeRule(".ps1", HIGH, "PowerShell script found"),
)

# suspicious-file findings at high severity naming one of these always fail the scan
HIGH_RISK_FILE_MARKERS = ("WebAssembly", "Shell script", "PowerShell")

CODE_EXTENSIONS = frozenset([".js", ".jsx", ".ts", ".tsx", ".mjs"])

SUSPICIOUS_PACKAGES = frozenset(
    [
        "child_process",
        "fs-extra",
        "node-ssh",
        "node-cmd",
        "shelljs",
        "node-powershell",
    ]
)

INSTALL_SCRIPT_MARKERS = ("postinstall", "preinstall")
DANGEROUS_NPM_SCRIPTS = ("postinstall", "preinstall", "prepare")

TRUSTED_DOMAINS = (
    "btcpayserver.org",
    "api.btcpayserver.org",
    "docs.btcpayserver.org",
)

URL_PATTERN = re.compile(r"https?://[^\s\"']+", re.IGNORECASE)
MANIFEST_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+")

SKIPPED_DIRECTORIES = frozenset(["node_modules"])


class ScanDeadlineExceeded(Exception):
    """Raised by match_rules when its deadline passes mid-table"""


def _line_starts(content: str) -> List[int]:
    starts = [0]
    position = content.find("\n")
    while position != -1:
        starts.append(position + 1)
        position = content.find("\n", position + 1)
    return starts


def match_rules(
    content: str,
    rules: Sequence[PatternRule] = DANGEROUS_PATTERN_RULES,
    file: Optional[str] = None,
    deadline: Optional[float] = None,
) -> List[SecurityIssue]:
    """
    Evaluate a rule table against file content.

    Every match becomes one issue carrying its 1-based line number and the
    trimmed source line. Issues are ordered by line, then by rule order.

    Args:
        content: Full text of the file
        rules: Rule table to evaluate
        file: Path reported on each issue, relative to the plugin root
        deadline: time.monotonic() value after which evaluation stops

    Returns:
        List of SecurityIssue, one per match

    Raises:
        ScanDeadlineExceeded: deadline passed before every rule was evaluated
    """
    starts = _line_starts(content)
    lines = content.split("\n")
    found = []

    for rule_index, rule in enumerate(rules):
        if deadline is not None and time.monotonic() > deadline:
            raise ScanDeadlineExceeded(f"Rule evaluation stopped at rule {rule_index} of {len(rules)}")
        for match in rule.pattern.finditer(content):
            line_number = bisect.bisect_right(starts, match.start())
            issue = SecurityIssue(
                severity=rule.severity,
                type=rule.category,
                message=rule.message,
                file=file,
                line=line_number,
                code=lines[line_number - 1].strip(),
            )
            found.append((line_number, rule_index, match.start(), issue))

    found.sort(key=lambda item: item[:3])
    return [item[3] for item in found]


def match_sensitive_strings(content: str) -> Optional["re.Pattern[str]"]:
    """Return the first sensitive-string pattern found in content, if any"""
    for pattern in SENSITIVE_STRING_PATTERNS:
        if pattern.search(content):
            return pattern
    return None


def match_file_type(filename: str) -> List[FileTypeRule]:
    lowered = filename.lower()
    return [rule for rule in SUSPICIOUS_FILE_RULES if lowered.endswith(rule.extension)]


def is_trusted_host(hostname: str) -> bool:
    hostname = hostname.lower().rstrip(".")
    return any(hostname == domain or hostname.endswith("." + domain) for domain in TRUSTED_DOMAINS)
