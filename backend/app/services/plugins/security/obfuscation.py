"""
Obfuscation heuristic for plugin source files

Scores how deliberately a file's identifiers and strings appear disguised,
from 0.0 (plain source) to 1.0 (heavily obfuscated).
"""

import re
from typing import Optional, Tuple

from app.models.plugin_models import IssueCategory, IssueSeverity, SecurityIssue

# (pattern, weight); each signal contributes weight * min(matches / 100, 1)
OBFUSCATION_SIGNALS = (
    (re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]{50,}"), 0.3),  # Very long identifiers
    (re.compile(r"\\x[0-9a-f]{2}", re.IGNORECASE), 0.2),  # Hex escapes
    (re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE), 0.1),  # Unicode escapes
    (re.compile(r"[^\x20-\x7E\n\r\t]"), 0.2),  # Non-printable characters
    (re.compile(r"['\"][^'\"]{200,}['\"]"), 0.2),  # Very long string literals
)

IDENTIFIER_PATTERN = re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*")
MEAN_IDENTIFIER_LENGTH_LIMIT = 30
MEAN_IDENTIFIER_LENGTH_PENALTY = 0.2

HIGH_OBFUSCATION_THRESHOLD = 0.7
MODERATE_OBFUSCATION_THRESHOLD = 0.4


def detect_obfuscation(code: str) -> float:
    """
    Compute the obfuscation score of a source file.

    Args:
        code: Full file content

    Returns:
        Score in [0.0, 1.0]
    """
    score = 0.0

    for pattern, weight in OBFUSCATION_SIGNALS:
        count = sum(1 for _ in pattern.finditer(code))
        if count:
            score += min(count / 100, 1) * weight

    total_length = 0
    identifiers = 0
    for match in IDENTIFIER_PATTERN.finditer(code):
        total_length += len(match.group())
        identifiers += 1
    if total_length / (identifiers or 1) > MEAN_IDENTIFIER_LENGTH_LIMIT:
        score += MEAN_IDENTIFIER_LENGTH_PENALTY

    # Rounded so summed weights compare cleanly against thresholds
    return round(min(score, 1.0), 6)


def classify_obfuscation(score: float) -> Optional[Tuple[IssueSeverity, str]]:
    if score >= HIGH_OBFUSCATION_THRESHOLD:
        return IssueSeverity.HIGH, "High"
    if score >= MODERATE_OBFUSCATION_THRESHOLD:
        return IssueSeverity.MEDIUM, "Moderate"
    return None


def obfuscation_issue(code: str, file: Optional[str] = None) -> Optional[SecurityIssue]:
    """Build the per-file obfuscation finding, or None below the moderate threshold"""
    score = detect_obfuscation(code)
    classified = classify_obfuscation(score)
    if classified is None:
        return None

    severity, label = classified
    return SecurityIssue(
        severity=severity,
        type=IssueCategory.OBFUSCATION,
        message=f"{label} obfuscation detected (score: {score * 100:.0f}%)",
        file=file,
    )
