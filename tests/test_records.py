"""Tests for test-case record operations."""

import pytest

from testgenr.models import TestCaseRecord
from testgenr.records import LimitExceededError, RecordService
from testgenr.storage import InMemoryPropertyStore, StorageGateway


@pytest.fixture
def gateway():
    return StorageGateway(InMemoryPropertyStore())


@pytest.fixture
def service(gateway):
    return RecordService(gateway)


async def seed(gateway, count):
    await gateway.set_test_cases(
        "PROJ-1", [TestCaseRecord(id=f"_{i:013x}", label=f"Case {i}") for i in range(count)]
    )


class TestCreate:
    """Tests for RecordService.create."""

    @pytest.mark.asyncio
    async def test_appends_with_fresh_id(self, gateway, service):
        """New records get a generated id and a trimmed label."""
        await seed(gateway, 1)

        record = await service.create("PROJ-1", "PROJ", {"label": "  New case  ", "id": "client"})

        assert record.label == "New case"
        assert record.id.startswith("_")
        assert record.id != "client"
        stored = await gateway.get_test_cases("PROJ-1")
        assert [r.label for r in stored] == ["Case 0", "New case"]

    @pytest.mark.asyncio
    async def test_allowed_below_limit(self, gateway, service):
        """Creating under the limit succeeds."""
        await gateway.set_limit("PROJ", 3)
        await seed(gateway, 2)

        await service.create("PROJ-1", "PROJ", {"label": "Third"})

        assert len(await gateway.get_test_cases("PROJ-1")) == 3

    @pytest.mark.asyncio
    async def test_rejected_at_limit(self, gateway, service):
        """Creating at the limit raises and stores nothing."""
        await gateway.set_limit("PROJ", 3)
        await seed(gateway, 3)

        with pytest.raises(LimitExceededError) as exc_info:
            await service.create("PROJ-1", "PROJ", {"label": "Fourth"})

        assert exc_info.value.limit == 3
        assert str(exc_info.value) == "Maximum test case limit of 3 reached"
        assert len(await gateway.get_test_cases("PROJ-1")) == 3

    @pytest.mark.asyncio
    async def test_default_limit(self, gateway, service):
        """Without a stored limit the default of 5 applies."""
        await seed(gateway, 5)

        with pytest.raises(LimitExceededError):
            await service.create("PROJ-1", "PROJ", {"label": "Sixth"})

    @pytest.mark.asyncio
    async def test_blank_label_rejected(self, service):
        """A blank label raises ValueError."""
        with pytest.raises(ValueError):
            await service.create("PROJ-1", "PROJ", {"label": "   "})

    @pytest.mark.asyncio
    async def test_missing_payload_rejected(self, service):
        """A create without a payload raises ValueError."""
        with pytest.raises(ValueError):
            await service.create("PROJ-1", "PROJ", None)

    @pytest.mark.asyncio
    async def test_extra_fields_kept(self, gateway, service):
        """Extra payload fields are stored."""
        await service.create("PROJ-1", "PROJ", {"label": "A", "priority": "high"})

        stored = await gateway.get_test_cases("PROJ-1")
        assert stored[0].to_dict()["priority"] == "high"


class TestUpdate:
    """Tests for RecordService.update."""

    @pytest.mark.asyncio
    async def test_replaces_matching_record(self, gateway, service):
        """The record with the id is replaced in place."""
        await seed(gateway, 2)
        target = "_0000000000001"

        updated = await service.update("PROJ-1", {"id": target, "label": "Changed"})

        assert updated.label == "Changed"
        stored = await gateway.get_test_cases("PROJ-1")
        assert [r.label for r in stored] == ["Case 0", "Changed"]
        assert [r.id for r in stored] == ["_0000000000000", target]

    @pytest.mark.asyncio
    async def test_unknown_id_is_no_op(self, gateway, service):
        """An unknown id leaves the list untouched."""
        await seed(gateway, 2)
        before = await gateway.get_test_cases("PROJ-1")

        assert await service.update("PROJ-1", {"id": "_missing", "label": "X"}) is None
        assert await gateway.get_test_cases("PROJ-1") == before


class TestDelete:
    """Tests for delete and delete_all."""

    @pytest.mark.asyncio
    async def test_delete_returns_payload(self, gateway, service):
        """Delete removes the record and echoes the payload."""
        await seed(gateway, 2)
        payload = {"id": "_0000000000000", "label": "Case 0"}

        assert await service.delete("PROJ-1", payload) == payload
        assert [r.label for r in await gateway.get_test_cases("PROJ-1")] == ["Case 1"]

    @pytest.mark.asyncio
    async def test_delete_unknown_id_keeps_list(self, gateway, service):
        """Deleting an unknown id changes nothing."""
        await seed(gateway, 2)
        await service.delete("PROJ-1", {"id": "_missing"})
        assert len(await gateway.get_test_cases("PROJ-1")) == 2

    @pytest.mark.asyncio
    async def test_delete_all(self, gateway, service):
        """delete_all empties the list."""
        await seed(gateway, 3)

        assert await service.delete_all("PROJ-1") == []
        assert await service.get_all("PROJ-1") == []
