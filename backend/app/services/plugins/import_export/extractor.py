"""
Plugin Extractor
End-to-end admission of an uploaded plugin archive

Install flow:
    1. Check upload (filename, size)
    2. Create a collision-free temporary extraction directory
    3. Unpack the ZIP with path traversal and zip-bomb protection
    4. Discover the plugin root (archive root or a wrapper folder)
    5. Validate packaging structure, then the manifest semantics
    6. Run the security scan
    7. Refuse duplicates, then rename the root into the plugins directory

The temporary directory is removed on every exit path. No partially
installed plugin is ever left in the plugins directory.
"""

import errno
import io
import json
import logging
import os
import re
import shutil
import stat
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from app.config import Settings, get_settings
from app.models.plugin_models import ExtractResult, InstalledPluginRecord, PluginManifest
from app.services.plugins.exceptions import (
    ArchiveExtractionError,
    PluginAlreadyExistsError,
    PluginError,
    PluginImportError,
    PluginNotFoundError,
    PluginSecurityError,
    PluginValidationError,
)
from app.services.plugins.manifest import PluginManifestValidator
from app.services.plugins.registry import PluginRecordStore
from app.services.plugins.security import PluginSecurityScanner, generate_security_report
from app.utils.file_security import (
    is_path_traversal,
    sanitize_filename,
    validate_file_extension,
    validate_storage_path,
)
from app.utils.logging_security import sanitize_for_log, sanitize_path_for_log, sanitize_plugin_id_for_log

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
COMPONENTS_DIRNAME = "components"
DEFAULT_ENTRY_FILE = "index.tsx"
ALLOWED_ARCHIVE_EXTENSIONS = [".zip"]
PLUGIN_ID_PATTERN = re.compile(r"^[a-z0-9-]+$")

# Compression ratio is only enforced on members at least this large
RATIO_CHECK_MIN_SIZE = 1024 * 1024

INSTALLED_DIR_MODE = 0o755

_commit_locks: Dict[str, "_CommitLock"] = {}
_commit_locks_guard = threading.Lock()


class RootLocation(str, Enum):
    """Where root discovery found manifest.json"""

    FOUND_AT_ROOT = "found_at_root"
    FOUND_IN_SUBDIR = "found_in_subdir"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class PluginRoot:
    """Result of root discovery; path is the extraction root when NOT_FOUND"""

    location: RootLocation
    path: Path

    @property
    def found(self) -> bool:
        return self.location != RootLocation.NOT_FOUND


def find_plugin_root(extract_path: Path) -> PluginRoot:
    """
    Locate the plugin directory inside an extracted archive.

    Checks the archive root first, then a single wrapper folder (the
    usual GitHub-style download), then every top-level folder in name
    order.
    """
    if (extract_path / MANIFEST_FILENAME).is_file():
        return PluginRoot(RootLocation.FOUND_AT_ROOT, extract_path)

    directories = sorted(
        (entry for entry in extract_path.iterdir() if entry.is_dir() and not entry.is_symlink()),
        key=lambda entry: entry.name,
    )

    if len(directories) == 1 and (directories[0] / MANIFEST_FILENAME).is_file():
        logger.info(f"Found plugin in subdirectory: {sanitize_path_for_log(directories[0].name)}")
        return PluginRoot(RootLocation.FOUND_IN_SUBDIR, directories[0])

    for directory in directories:
        if (directory / MANIFEST_FILENAME).is_file():
            logger.info(f"Found plugin in subdirectory: {sanitize_path_for_log(directory.name)}")
            return PluginRoot(RootLocation.FOUND_IN_SUBDIR, directory)

    return PluginRoot(RootLocation.NOT_FOUND, extract_path)


def safe_extract_zip(data: bytes, target: Path, settings: Settings, source: Optional[str] = None) -> int:
    """
    Unpack a ZIP archive into target without trusting its contents.

    Every member is screened before anything is written: traversal names,
    symlinks, entry count, total declared size and compression ratio.
    Existing files are never overwritten.

    Returns:
        Number of files written

    Raises:
        ArchiveExtractionError: If the archive is corrupt or hostile
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise ArchiveExtractionError(f"Failed to extract ZIP file: {e}", source=source)

    with archive:
        members = archive.infolist()

        if len(members) > settings.max_archive_entries:
            raise ArchiveExtractionError(
                f"Archive has too many entries ({len(members)}, max: {settings.max_archive_entries})",
                source=source,
            )

        total_size = sum(member.file_size for member in members)
        if total_size > settings.max_uncompressed_size:
            raise ArchiveExtractionError(
                f"Archive expands to {total_size} bytes (max: {settings.max_uncompressed_size})",
                source=source,
            )

        for member in members:
            _screen_member(member, settings, source)

        written = 0
        for member in members:
            logger.debug(
                f"Extracting {sanitize_path_for_log(member.filename)} "
                f"({'directory' if member.is_dir() else f'{member.file_size} bytes'})"
            )
            try:
                destination = validate_storage_path(target, member.filename)
            except ValueError:
                raise ArchiveExtractionError(
                    f"Path escapes extraction directory: {member.filename}",
                    entry=member.filename,
                    source=source,
                )

            if member.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
                continue

            if destination.exists():
                raise ArchiveExtractionError(
                    f"Duplicate archive entry: {member.filename}",
                    entry=member.filename,
                    source=source,
                )

            destination.parent.mkdir(parents=True, exist_ok=True)
            try:
                with archive.open(member) as src, open(destination, "xb") as out:
                    shutil.copyfileobj(src, out)
            except (zipfile.BadZipFile, RuntimeError, NotImplementedError, EOFError) as e:
                raise ArchiveExtractionError(
                    f"Failed to extract ZIP file: {e}",
                    entry=member.filename,
                    source=source,
                )
            written += 1

    return written


def _screen_member(member: zipfile.ZipInfo, settings: Settings, source: Optional[str]) -> None:
    name = member.filename

    if is_path_traversal(name):
        raise ArchiveExtractionError(f"Path traversal detected: {name}", entry=name, source=source)

    if stat.S_ISLNK(member.external_attr >> 16):
        raise ArchiveExtractionError(f"Symbolic link entries are not allowed: {name}", entry=name, source=source)

    if (
        member.file_size >= RATIO_CHECK_MIN_SIZE
        and member.compress_size > 0
        and member.file_size / member.compress_size > settings.max_compression_ratio
    ):
        raise ArchiveExtractionError(
            f"Suspicious compression ratio for entry: {name}",
            entry=name,
            source=source,
        )


@dataclass
class _CommitLock:
    lock: threading.Lock
    holders: int = 0


def _acquire_lock_dir(lock_dir: Path, plugin_id: str, stale_after: float) -> None:
    """
    Create the cross-process lock directory, reclaiming it once if stale.

    The directory holds an ``owner`` file with the creating pid; its mtime
    is the lock age.
    """
    for attempt in range(2):
        try:
            os.mkdir(lock_dir)
        except FileExistsError:
            try:
                age = time.time() - lock_dir.stat().st_mtime
            except FileNotFoundError:
                continue
            if attempt == 0 and age > stale_after:
                logger.warning(
                    f"Reclaiming stale install lock for {sanitize_plugin_id_for_log(plugin_id)} "
                    f"(age {age:.0f}s)"
                )
                shutil.rmtree(lock_dir, ignore_errors=True)
                continue
            raise PluginImportError(
                f'Another installation of "{plugin_id}" is in progress '
                f"(remove {lock_dir.name} if no install is running)",
                stage="commit",
            )
        (lock_dir / "owner").write_text(f"{os.getpid()}\n", encoding="utf-8")
        return

    raise PluginImportError(f'Could not acquire install lock for "{plugin_id}"', stage="commit")


@contextmanager
def _locked_plugin_id(plugins_dir: Path, plugin_id: str, stale_after: float = 600.0) -> Iterator[None]:
    """
    Serialise commits of the same plugin id.

    An in-process lock covers threads; a lock directory created with
    mkdir covers other processes sharing the plugins directory. Lock
    directories older than stale_after seconds are left over from a
    crashed process and are reclaimed.
    """
    with _commit_locks_guard:
        entry = _commit_locks.setdefault(plugin_id, _CommitLock(threading.Lock()))
        entry.holders += 1

    try:
        with entry.lock:
            lock_dir = plugins_dir / f".{plugin_id}.lock"
            _acquire_lock_dir(lock_dir, plugin_id, stale_after)
            try:
                yield
            finally:
                try:
                    shutil.rmtree(lock_dir)
                except OSError as e:
                    logger.warning(f"Failed to release install lock for {plugin_id}: {e}")
    finally:
        with _commit_locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                del _commit_locks[plugin_id]


class PluginExtractor:
    """Unpacks, validates, scans and installs uploaded plugin archives"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        validator: Optional[PluginManifestValidator] = None,
        scanner: Optional[PluginSecurityScanner] = None,
        record_store: Optional[PluginRecordStore] = None,
    ):
        self.settings = settings or get_settings()
        self.plugins_dir = Path(self.settings.plugins_dir)
        self.temp_dir = Path(self.settings.temp_dir)
        self.validator = validator or PluginManifestValidator()
        self.scanner = scanner or PluginSecurityScanner(self.settings)
        self.record_store = record_store

    def extract_plugin(self, data: bytes, filename: str) -> ExtractResult:
        """
        Run the full admission pipeline on an uploaded archive.

        Never raises: every failure is returned as an unsuccessful
        ExtractResult after the temporary directory has been removed.

        Args:
            data: Raw ZIP archive bytes
            filename: Original upload filename

        Returns:
            ExtractResult
        """
        try:
            source = sanitize_filename(filename)
        except ValueError:
            source = "upload.zip"

        logger.info(f"Plugin upload received: {sanitize_for_log(source)} ({len(data)} bytes)")

        try:
            self.check_upload(data, filename)
            self.ensure_directories()

            with self.temporary_directory() as temp_path:
                return self._install(data, source, temp_path)

        except PluginSecurityError as e:
            logger.warning(f"Plugin {sanitize_for_log(source)} rejected by security scan: {e.message}")
            return ExtractResult(
                success=False,
                message=e.message,
                security_report=e.report,
                security_score=e.score,
            )
        except PluginValidationError as e:
            logger.warning(f"Plugin {sanitize_for_log(source)} failed validation: {sanitize_for_log(e.message, 300, True)}")
            return ExtractResult(success=False, message=e.message, warnings=e.warnings)
        except PluginError as e:
            logger.warning(f"Plugin {sanitize_for_log(source)} rejected: {sanitize_for_log(e.message, 300, True)}")
            return ExtractResult(success=False, message=e.message)
        except Exception as e:
            logger.exception(f"Plugin extraction failed for {sanitize_for_log(source)}")
            return ExtractResult(success=False, message=str(e) or "Failed to extract plugin")

    def _install(self, data: bytes, source: str, temp_path: Path) -> ExtractResult:
        written = safe_extract_zip(data, temp_path, self.settings, source=source)
        logger.info(f"Extracted {written} files from {sanitize_for_log(source)}")

        root = find_plugin_root(temp_path)
        manifest_data = self.validate_structure(root.path)

        validation = self.validator.validate(manifest_data)
        warnings = [f"{w.field}: {w.message}" for w in validation.warnings]
        for warning in warnings:
            logger.info(f"Manifest warning for {sanitize_for_log(source)}: {sanitize_for_log(warning, 200, True)}")

        if not validation.valid:
            raise PluginValidationError(
                f"Manifest validation failed: {validation.error_summary()}",
                validation_errors=[f"{e.field}: {e.message}" for e in validation.errors],
                warnings=warnings,
            )
        manifest = validation.manifest

        scan = self.scanner.scan_plugin(root.path)
        report = generate_security_report(scan)

        if not scan.passed:
            first = scan.recommendations[0] if scan.recommendations else "Review security report for details."
            raise PluginSecurityError(
                f"Plugin failed security scan (score: {scan.score}/100). {first}",
                score=scan.score,
                report=report,
            )

        def register(destination: Path) -> None:
            if self.record_store is None:
                return
            self.record_store.install(
                InstalledPluginRecord(
                    plugin_id=manifest.id,
                    manifest=manifest,
                    source=source,
                    installed_path=str(destination),
                    security_score=scan.score,
                )
            )

        self.commit(root, manifest, register)

        logger.info(f"Installed plugin {manifest.id} v{manifest.version} (score {scan.score}/100)")

        return ExtractResult(
            success=True,
            message=(
                f'Successfully installed plugin "{manifest.name}" v{manifest.version} '
                f"(Security Score: {scan.score}/100)"
            ),
            manifest=manifest,
            plugin_id=manifest.id,
            security_report=report,
            security_score=scan.score,
            warnings=warnings,
        )

    def check_upload(self, data: bytes, filename: str) -> None:
        if not filename or not validate_file_extension(filename, ALLOWED_ARCHIVE_EXTENSIONS):
            raise PluginImportError("File must be a ZIP archive", stage="extraction", source=filename)

        if not data:
            raise PluginImportError("Uploaded file is empty", stage="extraction", source=filename)

        if len(data) > self.settings.max_upload_size:
            raise PluginImportError(
                f"File size must be less than {self.settings.max_upload_size // (1024 * 1024)}MB",
                stage="extraction",
                source=filename,
            )

    def ensure_directories(self) -> None:
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def temporary_directory(self) -> Iterator[Path]:
        """Yield a fresh extraction directory and always remove what is left of it"""
        path = Path(tempfile.mkdtemp(prefix=f"plugin-{int(time.time() * 1000)}-", dir=self.temp_dir))
        try:
            yield path
        finally:
            self.cleanup(path)

    def cleanup(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to clean up temp directory {sanitize_path_for_log(path)}: {e}")

    def validate_structure(self, plugin_path: Path) -> Dict[str, Any]:
        """
        Packaging checks on a discovered plugin root.

        Returns:
            Parsed manifest.json object

        Raises:
            PluginValidationError: On the first structural problem found
        """
        manifest_path = plugin_path / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise PluginValidationError("Invalid plugin: manifest.json not found")

        try:
            manifest_data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PluginValidationError(f"Invalid plugin: manifest.json is not valid JSON ({e})")

        if not isinstance(manifest_data, dict):
            raise PluginValidationError("Invalid plugin: manifest.json must contain a JSON object")

        for field in ("id", "name", "version"):
            if not manifest_data.get(field):
                raise PluginValidationError(f"Invalid plugin: manifest.{field} is required")

        plugin_id = manifest_data["id"]
        if not isinstance(plugin_id, str) or not PLUGIN_ID_PATTERN.fullmatch(plugin_id):
            raise PluginValidationError(
                "Invalid plugin ID: must contain only lowercase letters, numbers, and hyphens"
            )

        entry_file = manifest_data.get("main") or DEFAULT_ENTRY_FILE
        if not isinstance(entry_file, str):
            raise PluginValidationError("Invalid plugin: manifest.main must be a file path")

        try:
            entry_path = validate_storage_path(plugin_path, entry_file)
        except ValueError:
            raise PluginValidationError(f'Invalid plugin: main entry file "{entry_file}" is outside the plugin')

        if not entry_path.is_file():
            raise PluginValidationError(f'Invalid plugin: main entry file "{entry_file}" not found')

        if not (plugin_path / COMPONENTS_DIRNAME).is_dir():
            raise PluginValidationError("Invalid plugin: components directory not found")

        return manifest_data

    def commit(
        self,
        root: PluginRoot,
        manifest: PluginManifest,
        register: Optional[Callable[[Path], None]] = None,
    ) -> Path:
        """
        Move a validated plugin root into the plugins directory under its id.

        Args:
            root: Discovered plugin root
            manifest: Validated manifest
            register: Called with the installed path while the id is still
                locked; if it raises, the installed directory is removed

        Raises:
            PluginAlreadyExistsError: If the id is already installed
        """
        destination = self.plugins_dir / manifest.id

        with _locked_plugin_id(self.plugins_dir, manifest.id, self.settings.commit_lock_stale_seconds):
            if destination.exists():
                raise PluginAlreadyExistsError(manifest.id, manifest.name)

            try:
                os.rename(root.path, destination)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                # Scratch area on another filesystem: stage a copy next to the destination
                staging = Path(tempfile.mkdtemp(prefix=f".{manifest.id}.staging-", dir=self.plugins_dir))
                try:
                    shutil.copytree(root.path, staging, dirs_exist_ok=True)
                    os.rename(staging, destination)
                except OSError:
                    shutil.rmtree(staging, ignore_errors=True)
                    raise

            # mkdtemp roots are created 0700
            os.chmod(destination, INSTALLED_DIR_MODE)

            if register is not None:
                try:
                    register(destination)
                except Exception:
                    logger.error(f"Registering plugin {manifest.id} failed, removing installed files")
                    shutil.rmtree(destination, ignore_errors=True)
                    raise

        return destination

    def remove_plugin(self, plugin_id: str) -> ExtractResult:
        """
        Uninstall a plugin by id.

        Args:
            plugin_id: Installed plugin id

        Returns:
            ExtractResult describing the removal
        """
        try:
            if not isinstance(plugin_id, str) or not PLUGIN_ID_PATTERN.fullmatch(plugin_id):
                raise PluginNotFoundError(str(plugin_id), message=f"Invalid plugin ID: {plugin_id}")

            plugin_path = self.plugins_dir / plugin_id
            if not plugin_path.is_dir():
                raise PluginNotFoundError(plugin_id)

            manifest = self.read_installed_manifest(plugin_path)
            name = manifest.name if manifest else plugin_id

            shutil.rmtree(plugin_path)

            if self.record_store is not None:
                self.record_store.uninstall(plugin_id)

            logger.info(f"Removed plugin {sanitize_plugin_id_for_log(plugin_id)}")
            return ExtractResult(
                success=True,
                message=f'Successfully removed plugin "{name}"',
                manifest=manifest,
                plugin_id=plugin_id,
            )

        except PluginError as e:
            logger.warning(f"Plugin removal rejected: {sanitize_for_log(e.message, 200, True)}")
            return ExtractResult(success=False, message=e.message)
        except Exception as e:
            logger.exception(f"Failed to remove plugin {sanitize_plugin_id_for_log(plugin_id)}")
            return ExtractResult(success=False, message=str(e) or "Failed to remove plugin")

    def plugin_exists(self, plugin_id: str) -> bool:
        return bool(PLUGIN_ID_PATTERN.fullmatch(plugin_id)) and (self.plugins_dir / plugin_id).is_dir()

    def read_installed_manifest(self, plugin_path: Path) -> Optional[PluginManifest]:
        try:
            data = json.loads((plugin_path / MANIFEST_FILENAME).read_text(encoding="utf-8"))
            return PluginManifest.model_validate(data)
        except (OSError, ValueError) as e:
            logger.warning(f"Unable to read manifest of {sanitize_path_for_log(plugin_path.name)}: {e}")
            return None

    def list_installed_plugins(self) -> List[PluginManifest]:
        """Manifests of every installed plugin, sorted by id; unreadable ones are skipped"""
        if not self.plugins_dir.is_dir():
            return []

        manifests = []
        for entry in self.plugins_dir.iterdir():
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            manifest = self.read_installed_manifest(entry)
            if manifest is not None:
                manifests.append(manifest)

        return sorted(manifests, key=lambda manifest: manifest.id)
