"""
UI/UX configuration endpoints.

POST /uiux  body: {config: {...}}
GET  /uiux
"""
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.models.responses import UIUXUpdateResponse
from app.routes.deps import get_uiux, sanitized_json_body
from app.services.uiux import UIUXConfigService

logger = get_logger(__name__)
router = APIRouter()


@router.post("")
async def update_uiux_config(
    payload: Any = Depends(sanitized_json_body),
    uiux: UIUXConfigService = Depends(get_uiux),
):
    if not isinstance(payload, dict):
        raise ValidationError(
            ["config is required and must be an object"],
            message="config is required and must be an object",
        )

    result = uiux.update_config(payload.get("config"))
    return UIUXUpdateResponse(version=result["version"], last_updated=result["last_updated"]).to_wire()


@router.get("")
async def get_uiux_config(uiux: UIUXConfigService = Depends(get_uiux)):
    """Current UI/UX configuration; 404 until one has been uploaded."""
    current = uiux.get_config()
    if current is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "No UI/UX configuration found"},
        )

    logger.info("uiux_config_retrieved", version=current["version"])
    return {
        "success": True,
        "config": current["config"],
        "lastUpdated": current["last_updated"],
        "version": current["version"],
    }
