"""
Plugin Manifest Validator
Semantic validation of manifest.json before a plugin is admitted

The validator is a pure function over the parsed JSON value: no I/O, no
shared state, and no exception escapes ``validate``. Errors block the
install; warnings are advisory and surfaced to the operator.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from app.models.plugin_models import (
    ManifestError,
    ManifestValidationResult,
    ManifestWarning,
    PluginManifest,
)
from app.services.plugins.permissions import DANGEROUS_PERMISSIONS, VALID_PERMISSIONS

logger = logging.getLogger(__name__)

PLUGIN_ID_PATTERN = re.compile(r"^[a-z0-9-]+$")
SEMVER_PATTERN = re.compile(
    r"^\d+\.\d+\.\d+"
    r"(-[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*)?"
    r"(\+[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*)?$"
)
NAME_PATTERN = re.compile(r"^[\w\s\-.]+$", re.ASCII)
FILE_PATH_PATTERN = re.compile(r"^[a-zA-Z0-9\-_./]+$")
ROUTE_PATTERN = re.compile(r"^/[a-zA-Z0-9\-_./]*$")
ENTRY_EXTENSION_PATTERN = re.compile(r"\.(js|jsx|ts|tsx)$")

MAX_ID_LENGTH = 50
MAX_NAME_LENGTH = 100
MAX_AUTHOR_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_PERMISSIONS = 10


class PluginManifestValidator:
    """Validates plugin manifests against structural and semantic rules"""

    REQUIRED_FIELDS = ["id", "name", "version", "description", "author"]

    STRING_FIELDS = [
        "id",
        "name",
        "version",
        "description",
        "author",
        "homepage",
        "license",
        "main",
        "minAppVersion",
    ]

    KNOWN_FIELDS = frozenset(
        REQUIRED_FIELDS
        + [
            "homepage",
            "license",
            "main",
            "icon",
            "routes",
            "requiredPermissions",
            "dependencies",
            "isPaid",
            "price",
            "category",
            "tags",
            "screenshots",
            "minAppVersion",
        ]
    )

    VALID_PERMISSIONS = VALID_PERMISSIONS
    DANGEROUS_PERMISSIONS = DANGEROUS_PERMISSIONS

    STANDARD_LICENSES = frozenset(["MIT", "Apache-2.0", "GPL-3.0", "BSD-3-Clause", "ISC", "MPL-2.0"])

    SUSPICIOUS_DESCRIPTION_PATTERNS = [
        re.compile(pattern, re.IGNORECASE)
        for pattern in (r"hack", r"crack", r"bypass", r"exploit", r"unlimited", r"free.*premium", r"cheat")
    ]

    SUSPICIOUS_TLDS = (".tk", ".ml", ".ga", ".cf")
    SUSPICIOUS_HOST_KEYWORDS = ("hack", "crack", "keygen", "warez")

    SUSPICIOUS_PACKAGES = (
        "eval",
        "child_process",
        "fs-extra",
        "node-cmd",
        "shelljs",
        "node-ssh",
        "node-powershell",
    )

    def validate(self, manifest_data: Any) -> ManifestValidationResult:
        """
        Validate a parsed manifest.json value.

        Args:
            manifest_data: Result of ``json.loads`` on the manifest file

        Returns:
            ManifestValidationResult; ``manifest`` is populated only when valid
        """
        if not isinstance(manifest_data, dict):
            return ManifestValidationResult(
                valid=False,
                errors=[ManifestError(field="manifest", message="Manifest must be a valid JSON object")],
            )

        errors: List[ManifestError] = []
        warnings: List[ManifestWarning] = []

        for field in self.REQUIRED_FIELDS:
            if not manifest_data.get(field):
                errors.append(ManifestError(field=field, message=f'Required field "{field}" is missing'))

        # Fields with the wrong JSON type are reported once and skipped below
        mistyped = set()
        for field in self.STRING_FIELDS:
            value = manifest_data.get(field)
            if value is not None and not isinstance(value, str):
                mistyped.add(field)
                errors.append(ManifestError(field=field, message=f'Field "{field}" must be a string', value=value))

        def text(field: str) -> Optional[str]:
            if field in mistyped:
                return None
            return manifest_data.get(field) or None

        self._validate_identity(text, errors, warnings)
        self._validate_description(text("description"), warnings)
        self._validate_homepage(text("homepage"), errors, warnings)
        self._validate_license(text("license"), warnings)
        self._validate_main(text("main"), errors)

        if manifest_data.get("routes"):
            self._validate_routes(manifest_data["routes"], errors)

        if manifest_data.get("requiredPermissions"):
            self._validate_permissions(manifest_data["requiredPermissions"], errors, warnings)

        if manifest_data.get("dependencies"):
            self._validate_dependencies(manifest_data["dependencies"], errors, warnings)

        self._validate_pricing(manifest_data, errors)

        min_app_version = text("minAppVersion")
        if min_app_version and not SEMVER_PATTERN.fullmatch(min_app_version):
            errors.append(
                ManifestError(
                    field="minAppVersion",
                    message="minAppVersion must follow semantic versioning",
                    value=min_app_version,
                )
            )

        for field in manifest_data:
            if field not in self.KNOWN_FIELDS:
                warnings.append(
                    ManifestWarning(
                        field=str(field),
                        message=f"Unknown field in manifest: {field}",
                        recommendation="Remove unknown fields from manifest",
                    )
                )

        manifest = None
        if not errors:
            try:
                manifest = PluginManifest.model_validate(manifest_data)
            except ValidationError as e:
                logger.debug(f"Manifest passed rule checks but failed model parsing: {e}")
                errors.append(
                    ManifestError(
                        field="manifest",
                        message=f"Manifest could not be parsed: {e.error_count()} error(s)",
                    )
                )

        return ManifestValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            manifest=manifest if not errors else None,
        )

    def _validate_identity(self, text, errors: List[ManifestError], warnings: List[ManifestWarning]) -> None:
        plugin_id = text("id")
        if plugin_id:
            if not PLUGIN_ID_PATTERN.fullmatch(plugin_id):
                errors.append(
                    ManifestError(
                        field="id",
                        message="Plugin ID must contain only lowercase letters, numbers, and hyphens",
                        value=plugin_id,
                    )
                )
            if len(plugin_id) > MAX_ID_LENGTH:
                errors.append(
                    ManifestError(
                        field="id",
                        message=f"Plugin ID must be {MAX_ID_LENGTH} characters or less",
                        value=plugin_id,
                    )
                )

        name = text("name")
        if name:
            if len(name) > MAX_NAME_LENGTH:
                errors.append(
                    ManifestError(
                        field="name",
                        message=f"Plugin name must be {MAX_NAME_LENGTH} characters or less",
                        value=name,
                    )
                )
            if not NAME_PATTERN.fullmatch(name):
                warnings.append(
                    ManifestWarning(
                        field="name",
                        message="Plugin name contains special characters",
                        recommendation="Use only letters, numbers, spaces, hyphens, and periods",
                    )
                )

        version = text("version")
        if version and not SEMVER_PATTERN.fullmatch(version):
            errors.append(
                ManifestError(
                    field="version",
                    message="Version must follow semantic versioning (e.g., 1.0.0)",
                    value=version,
                )
            )

        author = text("author")
        if author and len(author) > MAX_AUTHOR_LENGTH:
            errors.append(
                ManifestError(
                    field="author",
                    message=f"Author name must be {MAX_AUTHOR_LENGTH} characters or less",
                    value=author,
                )
            )

    def _validate_description(self, description: Optional[str], warnings: List[ManifestWarning]) -> None:
        if not description:
            return

        if len(description) > MAX_DESCRIPTION_LENGTH:
            warnings.append(
                ManifestWarning(
                    field="description",
                    message=f"Description is very long (>{MAX_DESCRIPTION_LENGTH} characters)",
                    recommendation="Consider keeping description concise",
                )
            )

        if self.contains_suspicious_content(description):
            warnings.append(
                ManifestWarning(
                    field="description",
                    message="Description contains potentially suspicious content",
                    recommendation="Review description for misleading or malicious content",
                )
            )

    def _validate_homepage(
        self, homepage: Optional[str], errors: List[ManifestError], warnings: List[ManifestWarning]
    ) -> None:
        if not homepage:
            return

        if not self.is_valid_url(homepage):
            errors.append(ManifestError(field="homepage", message="Homepage must be a valid URL", value=homepage))
            return

        if self.is_suspicious_domain(homepage):
            warnings.append(
                ManifestWarning(
                    field="homepage",
                    message="Homepage URL points to a potentially suspicious domain",
                    recommendation="Verify the domain is legitimate",
                )
            )

    def _validate_license(self, license_name: Optional[str], warnings: List[ManifestWarning]) -> None:
        if license_name and license_name not in self.STANDARD_LICENSES:
            warnings.append(
                ManifestWarning(
                    field="license",
                    message=f"Non-standard license: {license_name}",
                    recommendation="Consider using a standard open-source license",
                )
            )

    def _validate_main(self, main: Optional[str], errors: List[ManifestError]) -> None:
        if not main:
            return

        if not self.is_valid_file_path(main):
            errors.append(
                ManifestError(field="main", message="Main entry point must be a valid file path", value=main)
            )

        if not ENTRY_EXTENSION_PATTERN.search(main):
            errors.append(
                ManifestError(
                    field="main",
                    message="Main entry point must be a JavaScript or TypeScript file",
                    value=main,
                )
            )

    def _validate_routes(self, routes: Any, errors: List[ManifestError]) -> None:
        if not isinstance(routes, dict):
            errors.append(ManifestError(field="routes", message="Routes must be an object", value=routes))
            return

        for key, value in routes.items():
            if not isinstance(value, str):
                errors.append(ManifestError(field=f"routes.{key}", message="Route value must be a string", value=value))
            elif not self.is_valid_route(value):
                errors.append(
                    ManifestError(
                        field=f"routes.{key}",
                        message="Route must start with / and contain only valid URL characters",
                        value=value,
                    )
                )

    def _validate_permissions(
        self, permissions: Any, errors: List[ManifestError], warnings: List[ManifestWarning]
    ) -> None:
        if not isinstance(permissions, list):
            errors.append(
                ManifestError(
                    field="requiredPermissions",
                    message="Required permissions must be an array",
                    value=permissions,
                )
            )
            return

        seen = set()
        for index, entry in enumerate(permissions):
            prefix = f"requiredPermissions[{index}]"

            if not isinstance(entry, dict):
                errors.append(ManifestError(field=prefix, message="Permission must be an object", value=entry))
                continue

            permission = entry.get("permission")
            if not permission:
                errors.append(ManifestError(field=f"{prefix}.permission", message="Permission string is required"))
            elif not isinstance(permission, str):
                errors.append(
                    ManifestError(
                        field=f"{prefix}.permission",
                        message="Permission must be a string",
                        value=permission,
                    )
                )
            else:
                if permission in seen:
                    errors.append(
                        ManifestError(field=f"{prefix}.permission", message="Duplicate permission", value=permission)
                    )
                seen.add(permission)

                if permission not in self.VALID_PERMISSIONS:
                    errors.append(
                        ManifestError(
                            field=f"{prefix}.permission",
                            message="Invalid permission string",
                            value=permission,
                        )
                    )

                if permission in self.DANGEROUS_PERMISSIONS:
                    warnings.append(
                        ManifestWarning(
                            field=f"{prefix}.permission",
                            message=f"Dangerous permission requested: {permission}",
                            recommendation="This permission grants significant access. Ensure it is necessary.",
                        )
                    )

            description = entry.get("description")
            if not description:
                warnings.append(
                    ManifestWarning(
                        field=f"{prefix}.description",
                        message="Permission description is missing",
                        recommendation="Add a description to explain why this permission is needed",
                    )
                )
            elif not isinstance(description, str):
                errors.append(
                    ManifestError(
                        field=f"{prefix}.description",
                        message="Permission description must be a string",
                        value=description,
                    )
                )

            if not isinstance(entry.get("required"), bool):
                errors.append(
                    ManifestError(
                        field=f"{prefix}.required",
                        message="Permission required field must be a boolean",
                        value=entry.get("required"),
                    )
                )

        if len(permissions) > MAX_PERMISSIONS:
            warnings.append(
                ManifestWarning(
                    field="requiredPermissions",
                    message=f"Plugin requests many permissions (>{MAX_PERMISSIONS})",
                    recommendation="Consider reducing permissions to the minimum necessary",
                )
            )

    def _validate_dependencies(
        self, dependencies: Any, errors: List[ManifestError], warnings: List[ManifestWarning]
    ) -> None:
        if not isinstance(dependencies, dict):
            errors.append(
                ManifestError(field="dependencies", message="Dependencies must be an object", value=dependencies)
            )
            return

        for package, version in dependencies.items():
            if not isinstance(version, str):
                errors.append(
                    ManifestError(
                        field=f"dependencies.{package}",
                        message="Dependency version must be a string",
                        value=version,
                    )
                )

            if self.is_suspicious_package(package):
                warnings.append(
                    ManifestWarning(
                        field=f"dependencies.{package}",
                        message=f"Potentially suspicious package: {package}",
                        recommendation="Review this dependency carefully",
                    )
                )

    def _validate_pricing(self, manifest_data: Dict[str, Any], errors: List[ManifestError]) -> None:
        if "isPaid" in manifest_data:
            is_paid = manifest_data["isPaid"]
            if not isinstance(is_paid, bool):
                errors.append(ManifestError(field="isPaid", message="isPaid must be a boolean", value=is_paid))

            if is_paid and "price" not in manifest_data:
                errors.append(ManifestError(field="price", message="Price is required when isPaid is true"))

        if "price" in manifest_data:
            price = manifest_data["price"]
            # bool is an int subclass and is not a price
            if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
                errors.append(ManifestError(field="price", message="Price must be a positive number", value=price))

    def contains_suspicious_content(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.SUSPICIOUS_DESCRIPTION_PATTERNS)

    def is_suspicious_domain(self, url: str) -> bool:
        hostname = urlparse(url).hostname or ""
        return hostname.endswith(self.SUSPICIOUS_TLDS) or any(
            keyword in hostname for keyword in self.SUSPICIOUS_HOST_KEYWORDS
        )

    def is_suspicious_package(self, package_name: str) -> bool:
        return any(suspicious in package_name for suspicious in self.SUSPICIOUS_PACKAGES)

    @staticmethod
    def is_valid_url(url: str) -> bool:
        try:
            parsed = urlparse(url)
            # Accessing port raises for out-of-range or non-numeric ports
            parsed.port
        except ValueError:
            return False
        return bool(parsed.scheme) and bool(parsed.netloc)

    @staticmethod
    def is_valid_file_path(path: str) -> bool:
        """Relative path under the plugin root, restricted character set"""
        if ".." in path or path.startswith("/"):
            return False
        return bool(FILE_PATH_PATTERN.fullmatch(path))

    @staticmethod
    def is_valid_route(route: str) -> bool:
        if not route.startswith("/") or "//" in route:
            return False
        return bool(ROUTE_PATTERN.fullmatch(route))
