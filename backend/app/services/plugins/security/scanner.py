"""
Plugin Security Scanner
Static, read-only security scan of an extracted plugin bundle

Sub-scans, each contributing issues:
    1. Manifest scan: dangerous permissions, untrusted URLs, version format
    2. Code-pattern scan: rule table over every JS/TS source file
    3. Obfuscation heuristic: per-file 0.0-1.0 score
    4. Sensitive-string scan: at most one finding per file
    5. Suspicious-file scan: file types and large files across the tree
    6. Dependency scan: package.json dependencies and npm install scripts

The score starts at 100 and loses a fixed penalty per issue. A bundle passes
only with score >= threshold, no critical issue and no high-risk file type.
"""

import json
import logging
import os
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

from app.config import Settings, get_settings
from app.models.plugin_models import IssueCategory, IssueSeverity, SecurityIssue, SecurityScanResult
from app.services.plugins.permissions import DANGEROUS_PERMISSIONS
from app.services.plugins.security.obfuscation import obfuscation_issue
from app.services.plugins.security.report import generate_security_report
from app.services.plugins.security.rules import (
    CODE_EXTENSIONS,
    DANGEROUS_NPM_SCRIPTS,
    DANGEROUS_PATTERN_RULES,
    HIGH_RISK_FILE_MARKERS,
    INSTALL_SCRIPT_MARKERS,
    MANIFEST_VERSION_PATTERN,
    SKIPPED_DIRECTORIES,
    SUSPICIOUS_PACKAGES,
    URL_PATTERN,
    PatternRule,
    ScanDeadlineExceeded,
    is_trusted_host,
    match_file_type,
    match_rules,
    match_sensitive_strings,
)
from app.utils.logging_security import sanitize_path_for_log

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES: Dict[IssueSeverity, int] = {
    IssueSeverity.CRITICAL: 30,
    IssueSeverity.HIGH: 15,
    IssueSeverity.MEDIUM: 5,
    IssueSeverity.LOW: 2,
}

MAX_MANIFEST_PERMISSIONS = 5

RECOMMEND_DO_NOT_INSTALL = "This plugin contains critical security issues and should not be installed."
RECOMMEND_OBFUSCATION = "Plugin code appears to be obfuscated, which may hide malicious behavior."
RECOMMEND_VERIFY_ENDPOINTS = "Plugin makes external network requests. Verify all endpoints are trusted."
RECOMMEND_LOW_SCORE = "This plugin has a low security score. Review all issues before installation."
RECOMMEND_SCAN_FAILED = "Unable to complete security scan. Do not install this plugin."


def calculate_security_score(issues: List[SecurityIssue]) -> int:
    """Start at 100, subtract the severity penalty of each issue, clamp to [0, 100]"""
    score = 100 - sum(SEVERITY_PENALTIES[issue.severity] for issue in issues)
    return max(0, min(100, score))


def has_high_risk_file(issues: List[SecurityIssue]) -> bool:
    return any(
        issue.type == IssueCategory.SUSPICIOUS_FILE
        and issue.severity == IssueSeverity.HIGH
        and any(marker in issue.message for marker in HIGH_RISK_FILE_MARKERS)
        for issue in issues
    )


def is_passing(issues: List[SecurityIssue], score: int, threshold: int = 70) -> bool:
    return (
        score >= threshold
        and not any(issue.severity == IssueSeverity.CRITICAL for issue in issues)
        and not has_high_risk_file(issues)
    )


def build_recommendations(issues: List[SecurityIssue], score: int) -> List[str]:
    recommendations = []

    if any(issue.severity == IssueSeverity.CRITICAL for issue in issues):
        recommendations.append(RECOMMEND_DO_NOT_INSTALL)

    if any(issue.type == IssueCategory.OBFUSCATION for issue in issues):
        recommendations.append(RECOMMEND_OBFUSCATION)

    if any(issue.type == IssueCategory.NETWORK for issue in issues):
        recommendations.append(RECOMMEND_VERIFY_ENDPOINTS)

    if score < 50:
        recommendations.append(RECOMMEND_LOW_SCORE)

    return recommendations


class PluginSecurityScanner:
    """Pattern and heuristic based security scanner for plugin bundles"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rules: Tuple[PatternRule, ...] = DANGEROUS_PATTERN_RULES,
    ):
        self.settings = settings or get_settings()
        self.rules = rules

    def scan_plugin(self, plugin_path: Union[str, Path]) -> SecurityScanResult:
        """
        Scan an extracted plugin directory.

        Never raises: an unexpected failure becomes a single critical
        scan-error issue and a failing result.

        Args:
            plugin_path: Plugin root directory (contains manifest.json)

        Returns:
            SecurityScanResult
        """
        root = Path(plugin_path)

        try:
            files = self.collect_files(root)
            issues: List[SecurityIssue] = []

            issues.extend(self.scan_manifest(root))

            code_files = [f for f in files if f.suffix.lower() in CODE_EXTENSIONS]
            issues.extend(self.scan_code_files(code_files, root))

            issues.extend(self.check_suspicious_files(files, root))
            issues.extend(self.check_dependencies(root))

        except Exception as e:
            logger.exception(f"Security scan failed for {sanitize_path_for_log(root)}")
            return SecurityScanResult(
                passed=False,
                score=0,
                issues=[
                    SecurityIssue(
                        severity=IssueSeverity.CRITICAL,
                        type=IssueCategory.SCAN_ERROR,
                        message=f"Security scan failed: {e}",
                    )
                ],
                recommendations=[RECOMMEND_SCAN_FAILED],
            )

        score = calculate_security_score(issues)
        passed = is_passing(issues, score, self.settings.pass_threshold)

        logger.info(
            f"Security scan of {sanitize_path_for_log(root.name)}: score={score} "
            f"issues={len(issues)} passed={passed}"
        )

        return SecurityScanResult(
            passed=passed,
            score=score,
            issues=issues,
            recommendations=build_recommendations(issues, score),
            files_scanned=len(code_files),
        )

    def generate_security_report(self, scan_result: SecurityScanResult) -> str:
        return generate_security_report(scan_result)

    def collect_files(self, root: Path) -> List[Path]:
        """
        Iteratively walk the tree under root, skipping node_modules.

        Symlinks are never followed. Files are returned in sorted order so
        that issue ordering is reproducible.
        """
        if not root.is_dir():
            raise FileNotFoundError(f"Plugin directory not found: {root}")

        files: List[Path] = []
        pending = deque([root])

        while pending:
            directory = pending.popleft()
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        if entry.name not in SKIPPED_DIRECTORIES:
                            pending.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False):
                        files.append(Path(entry.path))

        files.sort(key=lambda path: path.relative_to(root).as_posix())
        return files

    def scan_manifest(self, root: Path) -> List[SecurityIssue]:
        issues: List[SecurityIssue] = []
        manifest_path = root / "manifest.json"

        try:
            content = manifest_path.read_text(encoding="utf-8")
            manifest = json.loads(content)
            if not isinstance(manifest, dict):
                raise ValueError("manifest.json is not a JSON object")
        except (OSError, ValueError) as e:
            logger.debug(f"Unable to read manifest.json: {e}")
            return [
                SecurityIssue(
                    severity=IssueSeverity.CRITICAL,
                    type=IssueCategory.MANIFEST,
                    message="Unable to read or parse manifest.json",
                    file="manifest.json",
                )
            ]

        permissions = manifest.get("requiredPermissions")
        if isinstance(permissions, list):
            for entry in permissions:
                permission = entry.get("permission") if isinstance(entry, dict) else None
                if isinstance(permission, str) and permission in DANGEROUS_PERMISSIONS:
                    issues.append(
                        SecurityIssue(
                            severity=IssueSeverity.HIGH,
                            type=IssueCategory.PERMISSION,
                            message=f"Requests dangerous permission: {permission}",
                            file="manifest.json",
                        )
                    )

            if len(permissions) > MAX_MANIFEST_PERMISSIONS:
                issues.append(
                    SecurityIssue(
                        severity=IssueSeverity.MEDIUM,
                        type=IssueCategory.PERMISSION,
                        message="Plugin requests excessive number of permissions",
                        file="manifest.json",
                    )
                )

        for url in URL_PATTERN.findall(content):
            try:
                hostname = urlparse(url).hostname or ""
            except ValueError:
                hostname = ""
            if not is_trusted_host(hostname):
                issues.append(
                    SecurityIssue(
                        severity=IssueSeverity.MEDIUM,
                        type=IssueCategory.NETWORK,
                        message=f"External URL found in manifest: {url}",
                        file="manifest.json",
                    )
                )

        version = manifest.get("version")
        if not isinstance(version, str) or not MANIFEST_VERSION_PATTERN.match(version):
            issues.append(
                SecurityIssue(
                    severity=IssueSeverity.LOW,
                    type=IssueCategory.MANIFEST,
                    message="Invalid version format in manifest",
                    file="manifest.json",
                )
            )

        return issues

    def scan_code_files(self, code_files: List[Path], root: Path) -> List[SecurityIssue]:
        """
        Scan source files on a thread pool, bounded by max_scan_seconds.

        Results are collected in submission order, so the issue list is
        deterministic regardless of which worker finishes first. On timeout
        the pool is released without waiting; running workers stop at the
        next rule boundary.
        """
        issues: List[SecurityIssue] = []
        if not code_files:
            return issues

        deadline = time.monotonic() + self.settings.max_scan_seconds
        pool = ThreadPoolExecutor(max_workers=self.settings.scan_workers, thread_name_prefix="plugin-scan")
        timed_out = False

        try:
            futures = [pool.submit(self.scan_file, path, root, deadline) for path in code_files]

            for future in futures:
                try:
                    issues.extend(future.result(timeout=max(deadline - time.monotonic(), 0)))
                except (FuturesTimeoutError, ScanDeadlineExceeded):
                    timed_out = True
                    break
        finally:
            pool.shutdown(wait=not timed_out, cancel_futures=True)

        if timed_out:
            logger.warning(f"Security scan exceeded {self.settings.max_scan_seconds}s time limit")
            issues.append(
                SecurityIssue(
                    severity=IssueSeverity.CRITICAL,
                    type=IssueCategory.SCAN_ERROR,
                    message=f"Security scan exceeded time limit ({self.settings.max_scan_seconds}s)",
                )
            )

        return issues

    def scan_file(self, file_path: Path, root: Path, deadline: Optional[float] = None) -> List[SecurityIssue]:
        """Run the rule table, obfuscation heuristic and sensitive-string check on one file"""
        relative_path = file_path.relative_to(root).as_posix()

        try:
            if file_path.stat().st_size > self.settings.max_scan_file_size:
                return [
                    SecurityIssue(
                        severity=IssueSeverity.HIGH,
                        type=IssueCategory.FILE_ERROR,
                        message=f"Source file too large to scan (limit: {self.settings.max_scan_file_size} bytes)",
                        file=relative_path,
                    )
                ]
            content = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Unable to scan file {sanitize_path_for_log(relative_path)}: {e}")
            return [
                SecurityIssue(
                    severity=IssueSeverity.LOW,
                    type=IssueCategory.FILE_ERROR,
                    message=f"Unable to scan file: {e.strerror or e}",
                    file=relative_path,
                )
            ]

        issues = match_rules(content, self.rules, relative_path, deadline)

        obfuscation = obfuscation_issue(content, relative_path)
        if obfuscation:
            issues.append(obfuscation)

        sensitive = match_sensitive_strings(content)
        if sensitive:
            issues.append(
                SecurityIssue(
                    severity=IssueSeverity.MEDIUM,
                    type=IssueCategory.SENSITIVE_DATA,
                    message=f"Potential sensitive data handling detected: {sensitive.pattern}",
                    file=relative_path,
                )
            )

        return issues

    def check_suspicious_files(self, files: List[Path], root: Path) -> List[SecurityIssue]:
        issues: List[SecurityIssue] = []

        for file_path in files:
            relative_path = file_path.relative_to(root).as_posix()

            for rule in match_file_type(file_path.name):
                issues.append(
                    SecurityIssue(
                        severity=rule.severity,
                        type=IssueCategory.SUSPICIOUS_FILE,
                        message=rule.message,
                        file=relative_path,
                    )
                )

            size = file_path.stat().st_size
            if size >= self.settings.large_file_threshold:
                issues.append(
                    SecurityIssue(
                        severity=IssueSeverity.MEDIUM,
                        type=IssueCategory.SUSPICIOUS_FILE,
                        message=f"Large file detected ({size / 1024 / 1024:.2f} MB)",
                        file=relative_path,
                    )
                )

        return issues

    def check_dependencies(self, root: Path) -> List[SecurityIssue]:
        package_json_path = root / "package.json"
        if not package_json_path.is_file():
            return []

        try:
            package_json = json.loads(package_json_path.read_text(encoding="utf-8"))
            if not isinstance(package_json, dict):
                raise ValueError("package.json is not a JSON object")
        except (OSError, ValueError) as e:
            logger.debug(f"Unable to parse package.json: {e}")
            return [
                SecurityIssue(
                    severity=IssueSeverity.LOW,
                    type=IssueCategory.DEPENDENCY,
                    message="Unable to parse package.json",
                    file="package.json",
                )
            ]

        issues: List[SecurityIssue] = []
        all_dependencies: Dict[str, object] = {}
        for section in ("dependencies", "devDependencies"):
            declared = package_json.get(section)
            if isinstance(declared, dict):
                all_dependencies.update(declared)

        for name, version in all_dependencies.items():
            if name in SUSPICIOUS_PACKAGES:
                issues.append(
                    SecurityIssue(
                        severity=IssueSeverity.HIGH,
                        type=IssueCategory.DEPENDENCY,
                        message=f"Suspicious dependency detected: {name}@{version}",
                        file="package.json",
                    )
                )

            if any(marker in name for marker in INSTALL_SCRIPT_MARKERS):
                issues.append(
                    SecurityIssue(
                        severity=IssueSeverity.HIGH,
                        type=IssueCategory.DEPENDENCY,
                        message=f"Package with install scripts detected: {name}",
                        file="package.json",
                    )
                )

        scripts = package_json.get("scripts")
        if isinstance(scripts, dict):
            for script in DANGEROUS_NPM_SCRIPTS:
                if scripts.get(script):
                    issues.append(
                        SecurityIssue(
                            severity=IssueSeverity.HIGH,
                            type=IssueCategory.NPM_SCRIPT,
                            message=f"Dangerous npm script detected: {script}",
                            file="package.json",
                            code=str(scripts[script]),
                        )
                    )

        return issues
