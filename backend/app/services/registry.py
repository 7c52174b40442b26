"""
Service registry.

Holds the records of registered microservices on top of a ServiceStore and
notifies change listeners (the knowledge graph cache) whenever the set of
services changes. Listeners run as background asyncio tasks: a failing
rebuild is logged and never fails the registration that triggered it.

Name uniqueness is not enforced; a re-registration under an existing name
adds a new record and lookups by name return the most recent one.
"""
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import StorageError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import record_registration, update_registered_services
from app.models.service import MigrationDescriptor, ServiceRecord, ServiceStatus, ServiceSummary
from app.services.storage.base import ServiceStore

logger = get_logger(__name__)

ChangeListener = Callable[[], Awaitable[Any]]


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_valid_url(value: str) -> bool:
    """True when the value parses as an absolute URL with scheme and host."""
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def validate_registration(payload: Dict[str, Any]) -> List[str]:
    """
    Validate a registration payload.

    Args:
        payload: Registration fields keyed by their wire names
            (serviceName, version, endpoint, healthCheck, migrationFile)

    Returns:
        List of error messages, one per failing field; empty when valid.
    """
    errors: List[str] = []

    if not _is_non_empty_string(payload.get("serviceName")):
        errors.append("serviceName is required and must be a non-empty string")

    if not _is_non_empty_string(payload.get("version")):
        errors.append("version is required and must be a non-empty string")

    endpoint = payload.get("endpoint")
    if not _is_non_empty_string(endpoint):
        errors.append("endpoint is required and must be a non-empty string")
    elif not is_valid_url(endpoint):
        errors.append("endpoint must be a valid URL")

    health_check = payload.get("healthCheck")
    if health_check is not None and not isinstance(health_check, str):
        errors.append("healthCheck must be a string if provided")

    migration_file = payload.get("migrationFile")
    if migration_file is not None and not isinstance(migration_file, (dict, str)):
        errors.append("migrationFile must be an object or string if provided")

    return errors


def _to_descriptor(migration_file: Any) -> Optional[MigrationDescriptor]:
    if migration_file is None:
        return None
    if isinstance(migration_file, str):
        return MigrationDescriptor(file=migration_file.strip())
    try:
        return MigrationDescriptor.model_validate(migration_file)
    except PydanticValidationError as e:
        raise ValidationError(
            [f"migrationFile is invalid: {err['msg']}" for err in e.errors()]
        ) from e


class ServiceRegistry:
    """Registered services plus change notification."""

    def __init__(self, store: ServiceStore):
        self.store = store
        self._listeners: List[ChangeListener] = []
        self._pending: Set[asyncio.Task] = set()

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    @property
    def pending_tasks(self) -> int:
        return len(self._pending)

    async def register(
        self,
        service_name: Any,
        version: Any,
        endpoint: Any,
        health_check: Any = None,
        migration_file: Any = None,
    ) -> str:
        """
        Register a service and schedule a background graph rebuild.

        Returns:
            The generated service id.

        Raises:
            ValidationError: One or more fields are missing or malformed
            StorageError: The record could not be persisted
        """
        errors = validate_registration({
            "serviceName": service_name,
            "version": version,
            "endpoint": endpoint,
            "healthCheck": health_check,
            "migrationFile": migration_file,
        })
        if errors:
            record_registration(success=False)
            logger.info("service_registration_rejected", errors=errors)
            raise ValidationError(errors)

        try:
            descriptor = _to_descriptor(migration_file)
        except ValidationError:
            record_registration(success=False)
            raise

        record = ServiceRecord(
            id=str(uuid.uuid4()),
            service_name=service_name.strip(),
            version=version.strip(),
            endpoint=endpoint.strip(),
            health_check=health_check.strip() if health_check else "/health",
            migration_file=descriptor,
            registered_at=datetime.now(timezone.utc),
            status=ServiceStatus.ACTIVE,
        )

        try:
            stored = self.store.insert(record)
        except StorageError:
            record_registration(success=False)
            logger.error("service_registration_failed", service_name=record.service_name)
            raise

        record_registration(success=True)
        update_registered_services(self.count())
        logger.info(
            "service_registered",
            service_id=stored.id,
            service_name=stored.service_name,
            version=stored.version,
            endpoint=stored.endpoint,
        )

        self._notify_change("register")
        return stored.id

    async def get_by_id(self, service_id: str) -> Optional[ServiceRecord]:
        return self.store.get(service_id)

    async def get_by_name(self, service_name: str) -> Optional[ServiceRecord]:
        return self.store.find_latest_by_name(service_name)

    async def list_full(self) -> List[ServiceRecord]:
        """All records, newest first. Storage errors propagate."""
        return self.store.list_all()

    async def list_summaries(self) -> List[ServiceSummary]:
        try:
            records = self.store.list_all()
        except StorageError as e:
            logger.warning("service_listing_failed", error=str(e))
            return []
        return [record.summary() for record in records]

    async def set_status(self, service_id: str, status: Any) -> Optional[ServiceRecord]:
        """
        Update a service's status and last health check time.

        Unknown ids return None and trigger nothing.
        """
        try:
            new_status = ServiceStatus(status)
        except ValueError as e:
            allowed = ", ".join(s.value for s in ServiceStatus)
            raise ValidationError([f"status must be one of: {allowed}"]) from e

        updated = self.store.update_status(service_id, new_status, datetime.now(timezone.utc))
        if updated is None:
            logger.info("service_status_update_unknown_id", service_id=service_id)
            return None

        logger.info(
            "service_status_updated",
            service_id=service_id,
            service_name=updated.service_name,
            status=new_status.value,
        )
        self._notify_change("status_update")
        return updated

    def count(self) -> int:
        try:
            return self.store.count()
        except StorageError as e:
            logger.warning("service_count_failed", error=str(e))
            return 0

    def count_active(self) -> int:
        try:
            return self.store.count(ServiceStatus.ACTIVE)
        except StorageError as e:
            logger.warning("service_count_failed", error=str(e), status=ServiceStatus.ACTIVE.value)
            return 0

    def _notify_change(self, reason: str) -> None:
        if not self._listeners:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("registry_change_not_scheduled", reason=reason, error="no running event loop")
            return

        for listener in self._listeners:
            task = loop.create_task(listener())
            self._pending.add(task)
            task.add_done_callback(self._on_listener_done)
        logger.debug("registry_change_scheduled", reason=reason, listeners=len(self._listeners))

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "background_graph_rebuild_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def drain(self) -> None:
        """Wait for every pending background listener task."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
