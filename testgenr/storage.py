"""Storage gateway over a key-value property store.

Per-project settings and per-issue state live as named properties,
mirroring entity properties in the issue tracker:

- Project scope: trigger status, AWS credentials, region, limit, prompt
- Issue scope: test-case list and generation status

All writes replace the whole value. The generation status flag can be
taken with a conditional write so that concurrent triggers for one issue
cannot both start a generation. A loading flag carries the time it was
set and expires after a lease, so a run that died mid-generation does
not block the issue forever.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Optional

from filelock import FileLock, Timeout

from testgenr.models import (
    DEFAULT_LIMIT,
    DEFAULT_PROMPT_TEMPLATE,
    DEFAULT_REGION,
    MAX_LIMIT,
    Credentials,
    GenerationStatus,
    TestCaseRecord,
)

logger = logging.getLogger(__name__)

PROJECT_SCOPE = "project"
ISSUE_SCOPE = "issue"

# Property keys, shared with the issue-tracker add-on
TRIGGER_STATUS_KEY = "test-genR-trigger-status"
ACCESS_KEY_KEY = "test-genR-aws-access-key"
SECRET_KEY_KEY = "test-genR-aws-secret-key"
SESSION_TOKEN_KEY = "test-genR-aws-session-token"
REGION_KEY = "test-genR-aws-region"
LIMIT_KEY = "test-genR-limit"
PROMPT_KEY = "test-genR-prompt"
TEST_CASES_KEY = "test_gen"
STATUS_KEY = "test-genR-status"
STATUS_SINCE_KEY = "test-genR-status-since"

REDACTED = "[REDACTED]"

# A loading flag older than this is treated as left behind by a dead run
LOADING_LEASE_SECONDS = 300.0
LOCK_TIMEOUT_SECONDS = 30.0


class PropertyStore(ABC):
    """Async key-value store addressed by (scope, owner, key).

    Subclasses provide raw synchronous access; this base class serializes
    every operation with a lock so that conditional writes are atomic
    with respect to other callers of the same store. Stores shared
    between processes also override ``_exclusive``.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @abstractmethod
    def _load(self, scope: str, owner: str, key: str) -> Any:
        """Return the stored value or None."""

    @abstractmethod
    def _save(self, scope: str, owner: str, values: Mapping[str, Any]) -> None:
        """Replace the stored values of an owner's keys in one write."""

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold off other processes for the duration of one operation."""
        yield

    async def get(self, scope: str, owner: str, key: str) -> Any:
        async with self._lock:
            with self._exclusive():
                return self._load(scope, owner, key)

    async def set(self, scope: str, owner: str, key: str, value: Any) -> None:
        async with self._lock:
            with self._exclusive():
                self._save(scope, owner, {key: value})

    async def set_many(self, scope: str, owner: str, values: Mapping[str, Any]) -> None:
        async with self._lock:
            with self._exclusive():
                self._save(scope, owner, values)

    async def set_if(
        self,
        scope: str,
        owner: str,
        values: Mapping[str, Any],
        condition: Callable[[dict[str, Any]], bool],
    ) -> tuple[bool, dict[str, Any]]:
        """Write values only if condition holds for the current ones.

        Args:
            scope: Property scope.
            owner: Project or issue key.
            values: New value per key, written together.
            condition: Called with the current value of every key in
                       ``values``.

        Returns:
            Tuple of (written, previous_values).
        """
        async with self._lock:
            with self._exclusive():
                current = {key: self._load(scope, owner, key) for key in values}
                if not condition(current):
                    return False, current
                self._save(scope, owner, values)
                return True, current


class InMemoryPropertyStore(PropertyStore):
    """Property store kept in a dictionary."""

    def __init__(self, initial: Optional[dict] = None) -> None:
        super().__init__()
        self._data: dict[tuple[str, str, str], Any] = dict(initial or {})

    def _load(self, scope: str, owner: str, key: str) -> Any:
        return self._data.get((scope, owner, key))

    def _save(self, scope: str, owner: str, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self._data[(scope, owner, key)] = value


class JsonFilePropertyStore(PropertyStore):
    """Property store persisted to a JSON file.

    Layout: ``{"project": {"PROJ": {"key": value}}, "issue": {...}}``.
    The file is read on every access so separate processes see each
    other's writes. Each operation holds a lock file next to the store,
    and writes replace the file atomically, so readers never see a
    partial document.
    """

    def __init__(self, path: str, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        super().__init__()
        self.path = Path(path)
        self._file_lock = FileLock(f"{self.path}.lock", timeout=lock_timeout)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._file_lock:
                yield
        except Timeout as e:
            raise OSError(f"Timed out waiting for lock on property store {self.path}") from e

    def _read_file(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in property store {self.path}: {e}") from e

    def _load(self, scope: str, owner: str, key: str) -> Any:
        return self._read_file().get(scope, {}).get(owner, {}).get(key)

    def _save(self, scope: str, owner: str, values: Mapping[str, Any]) -> None:
        data = self._read_file()
        data.setdefault(scope, {}).setdefault(owner, {}).update(values)

        # Write then rename so the file is always complete
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


def clamp_limit(value: Any) -> int:
    """Coerce a limit to an int within 1..MAX_LIMIT, defaulting on junk."""
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if limit == 0:
        return DEFAULT_LIMIT
    return min(max(limit, 1), MAX_LIMIT)


class StorageGateway:
    """Typed access to project configuration and issue state."""

    def __init__(
        self,
        store: PropertyStore,
        clock: Callable[[], float] = time.time,
        loading_lease: float = LOADING_LEASE_SECONDS,
    ):
        self.store = store
        self.clock = clock
        self.loading_lease = loading_lease

    async def _project_get(self, project_key: str, key: str) -> Any:
        return await self.store.get(PROJECT_SCOPE, project_key, key)

    async def _project_set(self, project_key: str, key: str, value: Any) -> None:
        await self.store.set(PROJECT_SCOPE, project_key, key, value)

    # Project scope

    async def get_trigger_status(self, project_key: str) -> Optional[str]:
        return await self._project_get(project_key, TRIGGER_STATUS_KEY)

    async def set_trigger_status(self, project_key: str, status: str) -> None:
        await self._project_set(project_key, TRIGGER_STATUS_KEY, status)

    async def get_credentials(self, project_key: str) -> Credentials:
        """Read the project's AWS credentials, including any session token."""
        credentials = Credentials(
            access_key_id=await self._project_get(project_key, ACCESS_KEY_KEY),
            secret_access_key=await self._project_get(project_key, SECRET_KEY_KEY),
            session_token=await self.get_session_token(project_key),
        )
        logger.debug(
            "Read credentials for project %s (access key %s, secret %s)",
            project_key,
            REDACTED if credentials.access_key_id else None,
            REDACTED if credentials.secret_access_key else None,
        )
        return credentials

    async def set_credentials(self, project_key: str, credentials: Credentials) -> None:
        await self._project_set(project_key, ACCESS_KEY_KEY, credentials.access_key_id)
        await self._project_set(project_key, SECRET_KEY_KEY, credentials.secret_access_key)
        await self.set_session_token(project_key, credentials.session_token)

    async def get_session_token(self, project_key: str) -> Optional[str]:
        return await self._project_get(project_key, SESSION_TOKEN_KEY)

    async def set_session_token(self, project_key: str, token: Optional[str]) -> None:
        await self._project_set(project_key, SESSION_TOKEN_KEY, token)

    async def get_region(self, project_key: str) -> str:
        return await self._project_get(project_key, REGION_KEY) or DEFAULT_REGION

    async def set_region(self, project_key: str, region: Optional[str]) -> None:
        await self._project_set(project_key, REGION_KEY, region or DEFAULT_REGION)

    async def get_limit(self, project_key: str) -> int:
        value = await self._project_get(project_key, LIMIT_KEY)
        return clamp_limit(value) if value is not None else DEFAULT_LIMIT

    async def set_limit(self, project_key: str, limit: Any) -> int:
        """Store a limit clamped to 1..MAX_LIMIT and return the stored value."""
        valid = clamp_limit(limit)
        await self._project_set(project_key, LIMIT_KEY, valid)
        return valid

    async def get_prompt_template(self, project_key: str) -> str:
        return await self._project_get(project_key, PROMPT_KEY) or DEFAULT_PROMPT_TEMPLATE

    async def set_prompt_template(self, project_key: str, template: str) -> None:
        await self._project_set(project_key, PROMPT_KEY, template)

    # Issue scope

    async def get_test_cases(self, issue_key: str) -> list[TestCaseRecord]:
        """Return the stored test-case list, empty if none was stored."""
        raw = await self.store.get(ISSUE_SCOPE, issue_key, TEST_CASES_KEY)
        if not isinstance(raw, list):
            return []
        return [TestCaseRecord.from_dict(item) for item in raw if isinstance(item, dict)]

    async def set_test_cases(self, issue_key: str, records: list[TestCaseRecord]) -> None:
        await self.store.set(
            ISSUE_SCOPE, issue_key, TEST_CASES_KEY, [r.to_dict() for r in records]
        )
        logger.debug("Stored %d test cases for issue %s", len(records), issue_key)

    async def get_status(self, issue_key: str) -> GenerationStatus:
        """Read the generation status; an expired loading flag reads as error."""
        value = await self.store.get(ISSUE_SCOPE, issue_key, STATUS_KEY)
        status = GenerationStatus.parse(value)
        if status == GenerationStatus.LOADING:
            since = await self.store.get(ISSUE_SCOPE, issue_key, STATUS_SINCE_KEY)
            if self._loading_expired(since):
                return GenerationStatus.ERROR
        return status

    async def set_status(self, issue_key: str, status: GenerationStatus) -> None:
        await self.store.set_many(
            ISSUE_SCOPE, issue_key, {STATUS_KEY: status.value, STATUS_SINCE_KEY: self.clock()}
        )
        logger.debug("Generation status for issue %s set to %s", issue_key, status.value)

    def _loading_expired(self, since: Any) -> bool:
        if not isinstance(since, (int, float)) or isinstance(since, bool):
            return True
        return self.clock() - since >= self.loading_lease

    async def try_begin_generation(
        self, issue_key: str
    ) -> tuple[bool, GenerationStatus]:
        """Atomically move the issue's status to loading.

        A loading flag older than the lease is taken over; the previous
        status is then reported as error, since that run never finished.

        Returns:
            Tuple of (acquired, previous_status). Not acquired when the
            status is loading and the lease has not expired.
        """
        def can_begin(current: dict[str, Any]) -> bool:
            if current[STATUS_KEY] != GenerationStatus.LOADING.value:
                return True
            return self._loading_expired(current[STATUS_SINCE_KEY])

        acquired, previous = await self.store.set_if(
            ISSUE_SCOPE,
            issue_key,
            {STATUS_KEY: GenerationStatus.LOADING.value, STATUS_SINCE_KEY: self.clock()},
            can_begin,
        )
        previous_status = GenerationStatus.parse(previous[STATUS_KEY])
        if acquired and previous_status == GenerationStatus.LOADING:
            logger.warning(
                "Taking over expired loading status for issue %s (set at %s)",
                issue_key, previous[STATUS_SINCE_KEY],
            )
            previous_status = GenerationStatus.ERROR
        return acquired, previous_status

    async def verify_stored_values(
        self, project_key: str, issue_key: Optional[str] = None
    ) -> dict[str, Any]:
        """Summarize stored values for diagnostics, without secrets."""
        credentials = await self.get_credentials(project_key)
        records = await self.get_test_cases(issue_key) if issue_key else None
        status = await self.get_status(issue_key) if issue_key else None

        verification = {
            "projectKey": project_key,
            "issueKey": issue_key,
            "triggerStatus": await self.get_trigger_status(project_key),
            "awsRegion": await self.get_region(project_key),
            "testCaseLimit": await self.get_limit(project_key),
            "promptTemplate": await self.get_prompt_template(project_key),
            "hasCredentials": credentials.is_complete,
            "hasSessionToken": bool(credentials.session_token),
            "isTemporaryCredentials": credentials.is_temporary,
            "generationStatus": status.value if status else None,
            "testCases": [r.to_dict() for r in records] if records is not None else None,
        }
        logger.info("Verified stored values for project %s, issue %s", project_key, issue_key)
        return verification
