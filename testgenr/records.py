"""Create, update and delete test-case records for an issue.

Every operation reads the issue's whole list, changes it, and writes the
whole list back; concurrent edits to one issue are last-writer-wins.
"""

import logging
from typing import Any, Mapping, Optional

from testgenr.bedrock import new_record_id
from testgenr.models import TestCaseRecord
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)


class LimitExceededError(Exception):
    """Raised when creating a record would exceed the project's limit."""

    def __init__(self, limit: int):
        super().__init__(f"Maximum test case limit of {limit} reached")
        self.limit = limit


def _label_from(payload: Mapping[str, Any]) -> str:
    label = payload.get("label") if isinstance(payload, Mapping) else None
    if not isinstance(label, str) or not label.strip():
        raise ValueError("Test case label must be a non-empty string")
    return label.strip()


class RecordService:
    """Record operations backing the issue panel."""

    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    async def get_all(self, issue_key: str) -> list[TestCaseRecord]:
        return await self.gateway.get_test_cases(issue_key)

    async def create(
        self, issue_key: str, project_key: str, payload: Mapping[str, Any]
    ) -> TestCaseRecord:
        """Append a record with a fresh id.

        Raises:
            LimitExceededError: If the issue already holds ``limit`` records.
            ValueError: If the payload has no label.
        """
        label = _label_from(payload)
        records = await self.gateway.get_test_cases(issue_key)
        limit = await self.gateway.get_limit(project_key)

        if len(records) >= limit:
            raise LimitExceededError(limit)

        existing_ids = {r.id for r in records}
        record_id = new_record_id()
        while record_id in existing_ids:
            record_id = new_record_id()

        extra = {k: v for k, v in payload.items() if k not in ("id", "label")}
        record = TestCaseRecord(id=record_id, label=label, extra=extra)
        await self.gateway.set_test_cases(issue_key, records + [record])
        return record

    async def update(
        self, issue_key: str, payload: Mapping[str, Any]
    ) -> Optional[TestCaseRecord]:
        """Replace the record whose id matches the payload.

        Returns:
            The updated record, or None when no record has that id (the
            list is left untouched).
        """
        record_id = payload.get("id")
        updated = TestCaseRecord(
            id=str(record_id),
            label=_label_from(payload),
            extra={k: v for k, v in payload.items() if k not in ("id", "label")},
        )

        records = await self.gateway.get_test_cases(issue_key)
        if not any(r.id == updated.id for r in records):
            logger.warning("No test case %s on issue %s; update ignored", record_id, issue_key)
            return None

        records = [updated if r.id == updated.id else r for r in records]
        await self.gateway.set_test_cases(issue_key, records)
        return updated

    async def delete(self, issue_key: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        """Remove the record with the payload's id; returns the payload."""
        records = await self.gateway.get_test_cases(issue_key)
        remaining = [r for r in records if r.id != payload.get("id")]
        await self.gateway.set_test_cases(issue_key, remaining)
        return payload

    async def delete_all(self, issue_key: str) -> list[TestCaseRecord]:
        await self.gateway.set_test_cases(issue_key, [])
        return []
