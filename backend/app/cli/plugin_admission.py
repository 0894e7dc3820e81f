#!/usr/bin/env python3
"""
CLI tool for plugin admission operations
Validate manifests, scan plugin directories and manage installed plugins
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from app.config import Settings, get_settings
from app.models.plugin_models import IssueSeverity
from app.services.plugins import PluginExtractor, PluginManifestValidator, PluginSecurityScanner

logger = logging.getLogger(__name__)


def build_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.plugins_dir:
        overrides["plugins_dir"] = Path(args.plugins_dir)
    if args.temp_dir:
        overrides["temp_dir"] = Path(args.temp_dir)
    return Settings(**overrides) if overrides else get_settings()


def validate_manifest(args: argparse.Namespace) -> int:
    """Validate a manifest.json file."""
    try:
        with open(args.manifest, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"Error loading manifest from {args.manifest}: {e}")
        return 1

    result = PluginManifestValidator().validate(data)

    for error in result.errors:
        print(f"ERROR   {error.field}: {error.message}")
    for warning in result.warnings:
        line = f"WARNING {warning.field}: {warning.message}"
        if warning.recommendation:
            line += f" ({warning.recommendation})"
        print(line)

    if result.valid:
        print(f"Manifest is valid: {result.manifest.id} v{result.manifest.version}")
        return 0

    print(f"Manifest is invalid ({len(result.errors)} errors)")
    return 1


def scan_directory(args: argparse.Namespace) -> int:
    """Security scan an extracted plugin directory."""
    plugin_path = Path(args.directory)
    if not plugin_path.is_dir():
        print(f"Plugin directory not found: {plugin_path}")
        return 1

    scanner = PluginSecurityScanner(build_settings(args))
    result = scanner.scan_plugin(plugin_path)

    print(f"Security score: {result.score}/100")
    print(f"Status: {'PASSED' if result.passed else 'FAILED'}")
    for severity in IssueSeverity:
        print(f"  {severity.value}: {result.count_by_severity(severity)}")
    for recommendation in result.recommendations:
        print(f"- {recommendation}")

    if args.report:
        Path(args.report).write_text(scanner.generate_security_report(result), encoding="utf-8")
        print(f"Report written to {args.report}")

    return 0 if result.passed else 1


def install_archive(args: argparse.Namespace) -> int:
    """Install a plugin ZIP archive."""
    archive = Path(args.archive)
    try:
        data = archive.read_bytes()
    except OSError as e:
        print(f"Error reading {archive}: {e}")
        return 1

    result = PluginExtractor(build_settings(args)).extract_plugin(data, archive.name)

    print(result.message)
    for warning in result.warnings:
        print(f"WARNING {warning}")
    if not result.success and result.security_report and args.verbose:
        print()
        print(result.security_report)

    return 0 if result.success else 1


def remove_installed(args: argparse.Namespace) -> int:
    """Remove an installed plugin."""
    result = PluginExtractor(build_settings(args)).remove_plugin(args.plugin_id)
    print(result.message)
    return 0 if result.success else 1


def list_installed(args: argparse.Namespace) -> int:
    """List installed plugins."""
    manifests = PluginExtractor(build_settings(args)).list_installed_plugins()

    if not manifests:
        print("No plugins installed")
        return 0

    for manifest in manifests:
        print(f"{manifest.id:<30} {manifest.version:<12} {manifest.name}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Plugin admission tool: validate, scan, install and remove plugins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check a manifest before packaging
  python -m app.cli.plugin_admission validate my-plugin/manifest.json

  # Scan an unpacked plugin and save the Markdown report
  python -m app.cli.plugin_admission scan my-plugin --report report.md

  # Install, list and remove
  python -m app.cli.plugin_admission install my-plugin.zip
  python -m app.cli.plugin_admission list
  python -m app.cli.plugin_admission remove my-plugin
        """,
    )
    parser.add_argument("--plugins-dir", help="Installed plugins directory (overrides settings)")
    parser.add_argument("--temp-dir", help="Extraction scratch directory (overrides settings)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging and full reports")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser("validate", help="Validate a manifest.json file")
    validate_parser.add_argument("manifest", help="Path to manifest.json")

    scan_parser = subparsers.add_parser("scan", help="Security scan a plugin directory")
    scan_parser.add_argument("directory", help="Extracted plugin directory")
    scan_parser.add_argument("--report", help="Write the Markdown security report to this file")

    install_parser = subparsers.add_parser("install", help="Install a plugin ZIP archive")
    install_parser.add_argument("archive", help="Plugin .zip file")

    remove_parser = subparsers.add_parser("remove", help="Remove an installed plugin")
    remove_parser.add_argument("plugin_id", help="Plugin id")

    subparsers.add_parser("list", help="List installed plugins")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    commands = {
        "validate": validate_manifest,
        "scan": scan_directory,
        "install": install_archive,
        "remove": remove_installed,
        "list": list_installed,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
