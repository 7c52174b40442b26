"""
Service registry models.

Python attributes are snake_case; the JSON wire format (API bodies and
persisted knowledge graph snapshots) uses camelCase aliases.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ServiceStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class MigrationDescriptor(CamelModel):
    """
    Schema/migration metadata declared by a service at registration.

    `file` holds a raw migration file reference when the registrant sent a
    string instead of a structured descriptor.
    """

    schema_name: Optional[str] = Field(None, alias="schema")
    tables: List[str] = Field(default_factory=list)
    file: Optional[str] = None


class ServiceSummary(CamelModel):
    """Discovery listing view of a registered service."""

    service_name: str
    version: str
    endpoint: str
    status: ServiceStatus
    registered_at: datetime


class ServiceRecord(CamelModel):
    """A registered microservice's identity and metadata."""

    id: str
    service_name: str
    version: str
    endpoint: str
    health_check: str = "/health"
    migration_file: Optional[MigrationDescriptor] = None
    registered_at: datetime
    last_health_check: Optional[datetime] = None
    status: ServiceStatus = ServiceStatus.ACTIVE

    @property
    def schema_name(self) -> Optional[str]:
        if self.migration_file is None:
            return None
        return self.migration_file.schema_name

    @property
    def tables(self) -> List[str]:
        if self.migration_file is None:
            return []
        return self.migration_file.tables

    @property
    def domain(self) -> str:
        """First hyphen-delimited token of the service name."""
        return self.service_name.split("-")[0]

    def summary(self) -> ServiceSummary:
        return ServiceSummary(
            service_name=self.service_name,
            version=self.version,
            endpoint=self.endpoint,
            status=self.status,
            registered_at=self.registered_at,
        )
