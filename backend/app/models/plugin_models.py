"""
Plugin Models for PluginGate
Manifest, security finding and admission result models for the plugin pipeline
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IssueSeverity(str, Enum):
    """Security finding severity levels, most severe first"""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueCategory(str, Enum):
    """Category tag attached to every security finding"""

    CODE_PATTERN = "code-pattern"
    OBFUSCATION = "obfuscation"
    SENSITIVE_DATA = "sensitive-data"
    SUSPICIOUS_FILE = "suspicious-file"
    DEPENDENCY = "dependency"
    NPM_SCRIPT = "npm-script"
    PERMISSION = "permission"
    NETWORK = "network"
    MANIFEST = "manifest"
    FILE_ERROR = "file-error"
    SCAN_ERROR = "scan-error"


class PluginPermission(BaseModel):
    """A capability the plugin declares it needs"""

    permission: str
    description: Optional[str] = None
    required: bool = True


class PluginManifest(BaseModel):
    """
    Plugin self-description parsed from manifest.json.

    JSON keys stay camelCase on the wire; attributes are snake_case.
    Only built from data that already passed ``PluginManifestValidator``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    name: str
    version: str
    description: str = ""
    author: str = ""
    homepage: Optional[str] = None
    license: Optional[str] = None
    main: Optional[str] = None
    icon: Optional[Any] = None
    routes: Dict[str, str] = Field(default_factory=dict)
    required_permissions: List[PluginPermission] = Field(default_factory=list, alias="requiredPermissions")
    dependencies: Dict[str, str] = Field(default_factory=dict)
    is_paid: bool = Field(default=False, alias="isPaid")
    price: Optional[float] = None
    category: Optional[Any] = None
    tags: Optional[Any] = None
    screenshots: Optional[Any] = None
    min_app_version: Optional[str] = Field(default=None, alias="minAppVersion")

    @property
    def entry_point(self) -> str:
        """Declared entry file, or the packaging default"""
        return self.main or "index.tsx"


class ManifestError(BaseModel):
    """Blocking manifest validation finding"""

    field: str
    message: str
    value: Optional[Any] = None


class ManifestWarning(BaseModel):
    """Advisory manifest validation finding"""

    field: str
    message: str
    recommendation: Optional[str] = None


class ManifestValidationResult(BaseModel):
    """Outcome of semantic manifest validation; valid iff errors is empty"""

    valid: bool
    errors: List[ManifestError] = Field(default_factory=list)
    warnings: List[ManifestWarning] = Field(default_factory=list)
    manifest: Optional[PluginManifest] = None

    def error_summary(self) -> str:
        return "; ".join(f"{e.field}: {e.message}" for e in self.errors)


class SecurityIssue(BaseModel):
    """Single security finding"""

    model_config = ConfigDict(frozen=True)

    severity: IssueSeverity
    type: IssueCategory
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    code: Optional[str] = None


class SecurityScanResult(BaseModel):
    """Aggregate result of a scanner run"""

    passed: bool
    score: int = Field(..., ge=0, le=100)
    issues: List[SecurityIssue] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    files_scanned: int = 0

    def count_by_severity(self, severity: IssueSeverity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)


class ExtractResult(BaseModel):
    """Terminal outcome of one admission attempt (install or removal)"""

    success: bool
    message: str
    manifest: Optional[PluginManifest] = None
    plugin_id: Optional[str] = None
    security_report: Optional[str] = None
    security_score: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)


class InstalledPluginRecord(BaseModel):
    """Record handed to the persistence collaborator after a successful install"""

    plugin_id: str
    manifest: PluginManifest
    config: Dict[str, Any] = Field(default_factory=dict)
    source: str = "upload"
    installed_path: str
    security_score: Optional[int] = None
    installed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
