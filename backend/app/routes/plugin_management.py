"""
Plugin Management API Routes
Handles plugin upload, removal and listing
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..services.plugins import PluginExtractor
from ..utils.file_security import validate_file_extension
from ..utils.logging_security import sanitize_for_log, sanitize_plugin_id_for_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/plugins", tags=["Plugin Management"])


@lru_cache()
def get_plugin_extractor() -> PluginExtractor:
    return PluginExtractor()


class PluginSummary(BaseModel):
    id: str
    name: str
    version: str
    description: Optional[str] = None


class PluginUploadResponse(BaseModel):
    """Response model for plugin upload operations"""

    success: bool
    message: str
    plugin: Optional[PluginSummary] = None
    security_score: Optional[int] = None
    security_report: Optional[str] = None
    warnings: List[str] = []


class PluginRemoveResponse(BaseModel):
    success: bool
    message: str


@router.post("/upload", response_model=PluginUploadResponse)
async def upload_plugin(
    file: Optional[UploadFile] = File(None, description="Plugin package (.zip)"),
    extractor: PluginExtractor = Depends(get_plugin_extractor),
):
    """
    Upload and install a plugin

    The archive is extracted, structurally validated, checked against the
    manifest rules and security scanned before it is installed. Failed
    admissions return 400 with the security report when one was produced.
    """
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    filename = file.filename or ""
    if not validate_file_extension(filename, [".zip"]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a ZIP archive")

    try:
        content = await file.read()

        max_size = extractor.settings.max_upload_size
        if len(content) > max_size:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"File size must be less than {max_size // (1024 * 1024)}MB",
            )

        result = await asyncio.get_event_loop().run_in_executor(None, extractor.extract_plugin, content, filename)

        if not result.success:
            logger.warning(f"Plugin upload {sanitize_for_log(filename)} rejected")
            response = PluginUploadResponse(
                success=False,
                message=result.message,
                security_score=result.security_score,
                security_report=result.security_report,
                warnings=result.warnings,
            )
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response.model_dump())

        manifest = result.manifest
        logger.info(f"Plugin {sanitize_plugin_id_for_log(manifest.id)} uploaded and installed")

        return PluginUploadResponse(
            success=True,
            message=result.message,
            plugin=PluginSummary(
                id=manifest.id,
                name=manifest.name,
                version=manifest.version,
                description=manifest.description,
            ),
            security_score=result.security_score,
            security_report=result.security_report,
            warnings=result.warnings,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Plugin upload error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Plugin upload failed",
        )


@router.delete("/{plugin_id}", response_model=PluginRemoveResponse)
async def remove_plugin(plugin_id: str, extractor: PluginExtractor = Depends(get_plugin_extractor)):
    """Remove an installed plugin"""
    if not extractor.plugin_exists(plugin_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'Plugin "{plugin_id}" not found')

    try:
        result = await asyncio.get_event_loop().run_in_executor(None, extractor.remove_plugin, plugin_id)
    except Exception as e:
        logger.error(f"Plugin removal error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Plugin removal failed",
        )

    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message)

    return PluginRemoveResponse(success=True, message=result.message)


@router.get("/")
async def list_plugins(extractor: PluginExtractor = Depends(get_plugin_extractor)) -> Dict[str, Any]:
    """List installed plugins"""
    try:
        manifests = await asyncio.get_event_loop().run_in_executor(None, extractor.list_installed_plugins)
    except Exception as e:
        logger.error(f"Failed to list plugins: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list plugins",
        )

    return {
        "success": True,
        "plugins": [manifest.model_dump(by_alias=True, exclude_none=True) for manifest in manifests],
    }
