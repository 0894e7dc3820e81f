"""
Security report rendering

Renders a SecurityScanResult as the Markdown report shown to operators
when a plugin is uploaded.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.models.plugin_models import IssueSeverity, SecurityIssue, SecurityScanResult

SEVERITY_ORDER = (
    IssueSeverity.CRITICAL,
    IssueSeverity.HIGH,
    IssueSeverity.MEDIUM,
    IssueSeverity.LOW,
)


def group_issues_by_severity(issues: List[SecurityIssue]) -> Dict[IssueSeverity, List[SecurityIssue]]:
    grouped: Dict[IssueSeverity, List[SecurityIssue]] = {severity: [] for severity in SEVERITY_ORDER}
    for issue in issues:
        grouped[issue.severity].append(issue)
    return grouped


def generate_security_report(scan_result: SecurityScanResult, generated_at: Optional[datetime] = None) -> str:
    """
    Render a scan result as Markdown.

    Sections: Summary (status, score, issue counts by severity),
    Recommendations, and Issues Found grouped critical to low.

    Args:
        scan_result: Result returned by PluginSecurityScanner.scan_plugin
        generated_at: Report timestamp, defaults to now (UTC)

    Returns:
        Markdown text
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    grouped = group_issues_by_severity(scan_result.issues)

    report = [
        "# Plugin Security Scan Report",
        f"Generated: {generated_at.isoformat()}\n",
        "## Summary",
        f"- **Status**: {'✅ PASSED' if scan_result.passed else '❌ FAILED'}",
        f"- **Security Score**: {scan_result.score}/100",
        f"- **Total Issues**: {len(scan_result.issues)}",
    ]
    for severity in SEVERITY_ORDER:
        report.append(f"- **{severity.value.capitalize()} Issues**: {len(grouped[severity])}")
    report.append("")

    if scan_result.recommendations:
        report.append("## Recommendations")
        for recommendation in scan_result.recommendations:
            report.append(f"- {recommendation}")
        report.append("")

    if scan_result.issues:
        report.append("## Issues Found\n")

        for severity in SEVERITY_ORDER:
            issues = grouped[severity]
            if not issues:
                continue

            report.append(f"### {severity.value.upper()} Severity\n")
            for issue in issues:
                report.append(f"**{issue.message}**")
                if issue.file:
                    report.append(f"- File: `{issue.file}`")
                if issue.line:
                    report.append(f"- Line: {issue.line}")
                if issue.code:
                    report.append(f"- Code: `{issue.code}`")
                report.append("")

    return "\n".join(report)
