"""
Unit test fixtures and helpers.

Provides lightweight fixtures for unit testing that do NOT require
running services: settings bound to a temporary directory, a plugin
bundle builder and an in-memory ZIP builder.
"""

import io
import json
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import pytest

from app.config import Settings

CLEAN_INDEX = """import React from 'react';
import { Widget } from './components/Widget';

export default function HelloPlugin() {
  return <Widget title="Hello" />;
}
"""

CLEAN_WIDGET = """import React from 'react';

export function Widget({ title }: { title: string }) {
  return <div className="widget">{title}</div>;
}
"""

FileContent = Union[str, bytes]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with plugins and scratch directories inside tmp_path."""
    return Settings(
        plugins_dir=tmp_path / "plugins",
        temp_dir=tmp_path / ".temp",
        max_scan_seconds=30.0,
        scan_workers=2,
    )


@pytest.fixture
def clean_manifest() -> Dict[str, Any]:
    """A manifest that passes every semantic and security rule."""
    return {
        "id": "hello-plugin",
        "name": "Hello Plugin",
        "version": "1.0.0",
        "description": "Shows a greeting on the dashboard",
        "author": "Plugin Team",
        "license": "MIT",
        "main": "index.tsx",
        "requiredPermissions": [
            {
                "permission": "btcpay.store.canviewinvoices",
                "description": "Read invoices to greet paying customers",
                "required": True,
            }
        ],
    }


@pytest.fixture
def bundle_files(clean_manifest: Dict[str, Any]) -> Dict[str, FileContent]:
    """Relative path -> content for a clean plugin bundle."""
    return {
        "manifest.json": json.dumps(clean_manifest, indent=2),
        "index.tsx": CLEAN_INDEX,
        "components/Widget.tsx": CLEAN_WIDGET,
    }


def write_tree(root: Path, files: Dict[str, FileContent]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_bundle(tmp_path: Path, bundle_files: Dict[str, FileContent]) -> Callable[..., Path]:
    """
    Build an extracted plugin directory.

    Usage: make_bundle(overrides={"index.tsx": "eval(x)"}, remove=["components/Widget.tsx"])
    """

    def _make(
        overrides: Optional[Dict[str, FileContent]] = None,
        remove: Optional[list] = None,
        name: str = "bundle",
    ) -> Path:
        files = dict(bundle_files)
        files.update(overrides or {})
        for path in remove or []:
            files.pop(path, None)
        return write_tree(tmp_path / name, files)

    return _make


@pytest.fixture
def make_zip(bundle_files: Dict[str, FileContent]) -> Callable[..., bytes]:
    """
    Build ZIP archive bytes in memory.

    By default the archive holds the clean bundle; ``files`` replaces it
    entirely, ``overrides`` patches it and ``prefix`` wraps every entry in
    a top-level folder.
    """

    def _make(
        files: Optional[Dict[str, FileContent]] = None,
        overrides: Optional[Dict[str, FileContent]] = None,
        prefix: str = "",
        compression: int = zipfile.ZIP_DEFLATED,
    ) -> bytes:
        entries = dict(bundle_files if files is None else files)
        entries.update(overrides or {})

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression) as archive:
            for name, content in entries.items():
                archive.writestr(prefix + name, content)
        return buffer.getvalue()

    return _make
