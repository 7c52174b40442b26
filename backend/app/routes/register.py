"""
Service registration endpoint.

POST /register
Body: {serviceName, version, endpoint, healthCheck?, migrationFile?}
"""
from typing import Any

from fastapi import APIRouter, Depends

from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.models.responses import RegistrationResponse
from app.routes.deps import get_registry, sanitized_json_body
from app.services.registry import ServiceRegistry

logger = get_logger(__name__)
router = APIRouter()


@router.post("", status_code=201)
async def register_service(
    payload: Any = Depends(sanitized_json_body),
    registry: ServiceRegistry = Depends(get_registry),
):
    """
    Register a microservice.

    Validation failures answer 400 with one message per failing field.
    The knowledge graph is rebuilt in the background afterwards.
    """
    if not isinstance(payload, dict):
        raise ValidationError(["Request body must be a JSON object"])

    service_id = await registry.register(
        service_name=payload.get("serviceName"),
        version=payload.get("version"),
        endpoint=payload.get("endpoint"),
        health_check=payload.get("healthCheck"),
        migration_file=payload.get("migrationFile"),
    )

    logger.info(
        "service_registration_successful",
        service_id=service_id,
        service_name=payload.get("serviceName"),
    )
    return RegistrationResponse(service_id=service_id).to_wire()
