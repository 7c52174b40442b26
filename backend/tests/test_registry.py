"""
Unit tests for the service registry.

Tests verify:
- Registration validation (one error per failing field)
- Records are stored with generated ids, stripped values and defaults
- Lookups by id and by name (latest registration wins)
- Status updates
- Change listeners run in the background and their failures are contained
"""
import asyncio

import pytest

from app.core.errors import StorageError, ValidationError
from app.models.service import ServiceStatus
from app.services.registry import ServiceRegistry, is_valid_url, validate_registration
from app.services.storage.memory import InMemoryServiceStore


class FailingStore(InMemoryServiceStore):
    def insert(self, record):
        raise StorageError("insert failed", operation="insert")

    def list_all(self):
        raise StorageError("list failed", operation="list_all")

    def count(self, status=None):
        raise StorageError("count failed", operation="count")


@pytest.fixture
def registry():
    return ServiceRegistry(InMemoryServiceStore())


class TestValidation:
    def test_valid_payload(self):
        errors = validate_registration({
            "serviceName": "user-service",
            "version": "1.0.0",
            "endpoint": "http://localhost:4001",
        })
        assert errors == []

    def test_missing_required_fields(self):
        errors = validate_registration({})
        assert errors == [
            "serviceName is required and must be a non-empty string",
            "version is required and must be a non-empty string",
            "endpoint is required and must be a non-empty string",
        ]

    def test_blank_and_non_string_values(self):
        errors = validate_registration({"serviceName": "   ", "version": 1, "endpoint": "http://x"})
        assert len(errors) == 2

    def test_invalid_url(self):
        errors = validate_registration({"serviceName": "a", "version": "1", "endpoint": "not a url"})
        assert errors == ["endpoint must be a valid URL"]

    def test_optional_field_types(self):
        errors = validate_registration({
            "serviceName": "a",
            "version": "1",
            "endpoint": "http://a",
            "healthCheck": 42,
            "migrationFile": 7,
        })
        assert errors == [
            "healthCheck must be a string if provided",
            "migrationFile must be an object or string if provided",
        ]

    @pytest.mark.parametrize("url,expected", [
        ("http://localhost:3000", True),
        ("https://orders.internal/api", True),
        ("localhost:3000", False),
        ("/relative/path", False),
        ("", False),
    ])
    def test_is_valid_url(self, url, expected):
        assert is_valid_url(url) is expected


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_stores_record(self, registry):
        service_id = await registry.register(
            service_name="  user-service ",
            version="1.0.0",
            endpoint="http://localhost:4001 ",
        )

        record = await registry.get_by_id(service_id)
        assert record.service_name == "user-service"
        assert record.endpoint == "http://localhost:4001"
        assert record.health_check == "/health"
        assert record.status == ServiceStatus.ACTIVE
        assert record.migration_file is None
        assert record.registered_at.tzinfo is not None
        assert registry.count() == 1

    @pytest.mark.asyncio
    async def test_register_with_structured_migration(self, registry):
        service_id = await registry.register(
            service_name="order-service",
            version="2.1.0",
            endpoint="http://orders:8000",
            health_check="/status",
            migration_file={"schema": "orders", "tables": ["orders", "order_items"]},
        )

        record = await registry.get_by_id(service_id)
        assert record.health_check == "/status"
        assert record.schema_name == "orders"
        assert record.tables == ["orders", "order_items"]

    @pytest.mark.asyncio
    async def test_register_with_migration_file_reference(self, registry):
        service_id = await registry.register(
            service_name="order-service",
            version="2.1.0",
            endpoint="http://orders:8000",
            migration_file="migrations/001_init.sql",
        )

        record = await registry.get_by_id(service_id)
        assert record.migration_file.file == "migrations/001_init.sql"
        assert record.schema_name is None

    @pytest.mark.asyncio
    async def test_register_rejects_invalid_input(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.register(service_name="user-service", version="1.0.0", endpoint=None)

        assert exc_info.value.errors == ["endpoint is required and must be a non-empty string"]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_register_rejects_malformed_migration_descriptor(self, registry):
        with pytest.raises(ValidationError):
            await registry.register(
                service_name="order-service",
                version="1",
                endpoint="http://orders",
                migration_file={"tables": "not-a-list"},
            )
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self):
        registry = ServiceRegistry(FailingStore())
        with pytest.raises(StorageError):
            await registry.register(service_name="a", version="1", endpoint="http://a")


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_name_returns_latest_registration(self, registry):
        await registry.register(service_name="user-service", version="1.0.0", endpoint="http://old")
        await registry.register(service_name="user-service", version="2.0.0", endpoint="http://new")

        record = await registry.get_by_name("user-service")
        assert record.version == "2.0.0"
        assert record.endpoint == "http://new"
        assert registry.count() == 2

    @pytest.mark.asyncio
    async def test_get_unknown(self, registry):
        assert await registry.get_by_name("missing") is None
        assert await registry.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_list_summaries_newest_first(self, registry):
        await registry.register(service_name="a-service", version="1", endpoint="http://a")
        await registry.register(service_name="b-service", version="1", endpoint="http://b")

        summaries = await registry.list_summaries()
        assert [s.service_name for s in summaries] == ["b-service", "a-service"]
        assert set(summaries[0].to_wire()) == {"serviceName", "version", "endpoint", "status", "registeredAt"}

    @pytest.mark.asyncio
    async def test_read_failures_degrade(self):
        registry = ServiceRegistry(FailingStore())

        assert await registry.list_summaries() == []
        assert registry.count() == 0
        assert registry.count_active() == 0
        with pytest.raises(StorageError):
            await registry.list_full()


class TestStatusUpdates:
    @pytest.mark.asyncio
    async def test_set_status(self, registry):
        service_id = await registry.register(service_name="a", version="1", endpoint="http://a")

        updated = await registry.set_status(service_id, "inactive")

        assert updated.status == ServiceStatus.INACTIVE
        assert updated.last_health_check is not None
        assert registry.count_active() == 0

    @pytest.mark.asyncio
    async def test_set_status_unknown_id_has_no_side_effects(self, registry):
        calls = []

        async def listener():
            calls.append(1)

        registry.add_change_listener(listener)

        assert await registry.set_status("missing", "active") is None
        await registry.drain()
        assert calls == []

    @pytest.mark.asyncio
    async def test_set_status_rejects_unknown_status(self, registry):
        service_id = await registry.register(service_name="a", version="1", endpoint="http://a")
        with pytest.raises(ValidationError):
            await registry.set_status(service_id, "sleeping")


class TestChangeListeners:
    @pytest.mark.asyncio
    async def test_listener_runs_after_registration(self, registry):
        seen = []

        async def listener():
            seen.append(registry.count())

        registry.add_change_listener(listener)
        await registry.register(service_name="a", version="1", endpoint="http://a")
        await registry.drain()

        assert seen == [1]
        assert registry.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_registration_does_not_wait_for_listener(self, registry):
        release = asyncio.Event()
        finished = []

        async def slow_listener():
            await release.wait()
            finished.append(True)

        registry.add_change_listener(slow_listener)
        await registry.register(service_name="a", version="1", endpoint="http://a")

        assert finished == []
        assert registry.pending_tasks == 1

        release.set()
        await registry.drain()
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_fail_registration(self, registry):
        async def broken_listener():
            raise RuntimeError("rebuild exploded")

        registry.add_change_listener(broken_listener)
        service_id = await registry.register(service_name="a", version="1", endpoint="http://a")
        await registry.drain()

        assert await registry.get_by_id(service_id) is not None
        assert registry.pending_tasks == 0

    def test_no_running_loop_skips_scheduling(self, registry):
        registry.add_change_listener(lambda: None)
        # Called outside an event loop: nothing is scheduled and nothing raises
        registry._notify_change("register")
        assert registry.pending_tasks == 0
