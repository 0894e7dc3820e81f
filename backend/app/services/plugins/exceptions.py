"""
Plugin System Exceptions

Centralized exception hierarchy for the plugin admission pipeline. Each
stage of an install raises one of these; ``PluginExtractor`` converts them
into a failure ``ExtractResult`` at its boundary so callers never see a
crash for a bad upload.

Exception Hierarchy:
    PluginError (base)
    +-- PluginNotFoundError: Plugin is not installed
    +-- PluginImportError: Install attempt failed at a named stage
    |   +-- ArchiveExtractionError: Corrupt or hostile archive
    +-- PluginValidationError: Structural or semantic manifest failure
    +-- PluginSecurityError: Security scan rejected the bundle
    +-- PluginAlreadyExistsError: A plugin with the same id is installed

Usage:
    from app.services.plugins.exceptions import PluginError, PluginNotFoundError

    try:
        extractor.validate_structure(root)
    except PluginError as e:
        logger.warning(f"Plugin rejected: {e}")
"""

from typing import Any, Dict, List, Optional


class PluginError(Exception):
    """
    Base exception for all plugin-related errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error (optional).
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for API responses.

        Returns:
            Dictionary containing error type, message, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class PluginNotFoundError(PluginError):
    """
    Raised when a requested plugin is not installed.

    Attributes:
        plugin_id: The ID of the plugin that was not found.
    """

    def __init__(self, plugin_id: str, message: Optional[str] = None) -> None:
        self.plugin_id = plugin_id
        super().__init__(
            message=message or f'Plugin "{plugin_id}" not found',
            details={"plugin_id": plugin_id},
        )


class PluginImportError(PluginError):
    """
    Raised when an install attempt fails.

    Attributes:
        stage: The pipeline stage where failure occurred
               (extraction, structure, manifest_validation, security_scan, commit).
        source: The original upload filename.
    """

    def __init__(
        self,
        message: str,
        stage: str = "unknown",
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.stage = stage
        self.source = source
        error_details = details or {}
        error_details.update({"stage": stage, "source": source})
        super().__init__(message=message, details=error_details)


class ArchiveExtractionError(PluginImportError):
    """
    Raised when an archive cannot be unpacked safely.

    Covers corrupt ZIP data, path traversal entries and archives that
    exceed the configured entry count, size or compression ratio bounds.
    """

    def __init__(
        self,
        message: str,
        entry: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        self.entry = entry
        super().__init__(message=message, stage="extraction", source=source, details={"entry": entry})


class PluginValidationError(PluginError):
    """
    Raised when a plugin's packaging or manifest fails validation.

    Attributes:
        validation_errors: List of specific validation error messages.
        warnings: Advisory findings collected before the failure.
    """

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.validation_errors = validation_errors or []
        self.warnings = warnings or []
        error_details = details or {}
        error_details.update({"validation_errors": self.validation_errors})
        super().__init__(message=message, details=error_details)


class PluginSecurityError(PluginError):
    """
    Raised when a plugin fails the security scan.

    Attributes:
        score: Security score of the rejected bundle (0-100).
        report: Rendered Markdown security report.
    """

    def __init__(
        self,
        message: str,
        score: int = 0,
        report: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.score = score
        self.report = report
        error_details = details or {}
        error_details.update({"score": score})
        super().__init__(message=message, details=error_details)


class PluginAlreadyExistsError(PluginError):
    """
    Raised when an upload targets an id that is already installed.

    Attributes:
        plugin_id: The conflicting plugin id.
    """

    def __init__(self, plugin_id: str, name: Optional[str] = None) -> None:
        self.plugin_id = plugin_id
        label = name or plugin_id
        super().__init__(
            message=(
                f'Plugin "{label}" ({plugin_id}) already exists. '
                "Please remove it first or update the version."
            ),
            details={"plugin_id": plugin_id},
        )
