"""
Knowledge graph construction.

Infers relationships between registered services from the metadata they
declared at registration:

- shared_schema: both services declare the same non-empty schema (+3)
- shared_tables: the services declare overlapping tables (+2 per table)
- same_domain: both names start with the same hyphen-delimited token (+1)

Reasons fire independently and their weights add up. The relationship type
is taken from the last reason that fired, checked in the order above, so a
pair sharing a schema and a domain is labelled domain_related even though
the schema contributes most of the weight. Consumers rely on that labelling.

Every ordered pair is compared, so building costs O(n^2) in the number of
services. That is fine for registries of a few hundred services.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from app.models.graph import (
    GraphEdge,
    GraphMetadata,
    GraphNode,
    KnowledgeGraph,
    Relationship,
    SchemaGroup,
)
from app.models.service import ServiceRecord, ServiceStatus

SHARED_SCHEMA_WEIGHT = 3
SHARED_TABLE_WEIGHT = 2
SAME_DOMAIN_WEIGHT = 1

DEFAULT_SCHEMA = "default"


def infer_relationship(source: ServiceRecord, other: ServiceRecord) -> Optional[Tuple[str, List[str], int]]:
    """
    Compare two services.

    Returns:
        (type, reasons, weight), or None when no reason fired.
    """
    reasons: List[str] = []
    weight = 0
    rel_type = None

    if source.schema_name and source.schema_name == other.schema_name:
        reasons.append("shared_schema")
        rel_type = "schema_related"
        weight += SHARED_SCHEMA_WEIGHT

    other_tables = set(other.tables)
    shared_tables = [t for t in source.tables if t in other_tables]
    if shared_tables:
        reasons.append(f"shared_tables: {', '.join(shared_tables)}")
        rel_type = "data_related"
        weight += SHARED_TABLE_WEIGHT * len(shared_tables)

    if source.domain and source.domain == other.domain:
        reasons.append("same_domain")
        rel_type = "domain_related"
        weight += SAME_DOMAIN_WEIGHT

    if not reasons:
        return None
    return rel_type, reasons, weight


def group_schemas(services: Sequence[ServiceRecord]) -> Dict[str, SchemaGroup]:
    """
    Group services that declared a structured migration descriptor by schema.

    A descriptor that only references a migration file by name carries no
    schema information and is left out.
    """
    grouped: Dict[str, Tuple[List[str], set]] = {}
    for service in services:
        descriptor = service.migration_file
        if descriptor is None:
            continue
        if descriptor.file and not descriptor.schema_name and not descriptor.tables:
            continue
        name = service.schema_name or DEFAULT_SCHEMA
        names, tables = grouped.setdefault(name, ([], set()))
        names.append(service.service_name)
        tables.update(service.tables)

    return {
        name: SchemaGroup(services=names, tables=sorted(tables))
        for name, (names, tables) in grouped.items()
    }


def build_knowledge_graph(
    services: Sequence[ServiceRecord],
    previous_version: int = 0,
    now: Optional[datetime] = None,
) -> KnowledgeGraph:
    """
    Build a knowledge graph snapshot from service records.

    Pure function: no I/O, deterministic for a given input order and `now`.

    Args:
        services: Registered services (any order; output follows it)
        previous_version: Version of the graph being replaced
        now: Timestamp for metadata.lastUpdated (defaults to current UTC time)

    Returns:
        KnowledgeGraph with version previous_version + 1
    """
    nodes = [
        GraphNode(id=service.id, label=service.service_name, data=service)
        for service in services
    ]

    edges: List[GraphEdge] = []
    relationships: List[Relationship] = []
    for source in services:
        for other in services:
            if source.id == other.id:
                continue
            inferred = infer_relationship(source, other)
            if inferred is None:
                continue
            rel_type, reasons, weight = inferred
            edges.append(GraphEdge(
                from_=source.id,
                to=other.id,
                type=rel_type,
                label=", ".join(reasons),
                weight=weight,
            ))
            relationships.append(Relationship(
                from_=source.service_name,
                to=other.service_name,
                type=rel_type,
                reason=reasons,
                weight=weight,
            ))

    metadata = GraphMetadata(
        total_services=len(services),
        active_services=sum(1 for s in services if s.status == ServiceStatus.ACTIVE),
        version=previous_version + 1,
        last_updated=now or datetime.now(timezone.utc),
    )

    return KnowledgeGraph(
        metadata=metadata,
        nodes=nodes,
        edges=edges,
        relationships=relationships,
        schemas=group_schemas(services),
    )
