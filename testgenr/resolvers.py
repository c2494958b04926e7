"""Named operations backing the issue panel and project settings page.

Each operation takes a ``payload`` (the UI's request data) and a
``context`` shaped like the platform's product context::

    {"extension": {"issue": {"key": "PROJ-1", "issueType": "Story"},
                   "project": {"key": "PROJ"}}}

and returns JSON-serializable data.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from testgenr.config import ConfigurationError, get_config, save_config
from testgenr.jira import JiraClientError
from testgenr.models import DEFAULT_REGION, ConnectionTestResult, Credentials
from testgenr.poller import POLL_FAILED, StatusPoller
from testgenr.records import RecordService
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)

Handler = Callable[[Any, dict], Awaitable[Any]]

OPERATION_NAMES = (
    "get-all",
    "create",
    "update",
    "delete",
    "delete-all",
    "get-status",
    "test-connection",
    "test-aws-connection",
    "execute-aws-test",
    "getStatuses",
    "getConfig",
    "saveConfig",
)


def _extension(context: Optional[dict]) -> dict:
    return (context or {}).get("extension") or {}


def issue_key_from_context(context: Optional[dict]) -> Optional[str]:
    issue_key = (_extension(context).get("issue") or {}).get("key")
    if not issue_key:
        logger.warning("No issue key found in resolver context")
    return issue_key


def project_key_from_context(context: Optional[dict]) -> Optional[str]:
    return (_extension(context).get("project") or {}).get("key")


class Resolver:
    """Registry of named async operations."""

    def __init__(self) -> None:
        self._definitions: dict[str, Handler] = {}

    def define(self, name: str) -> Callable[[Handler], Handler]:
        """Register the decorated coroutine function under ``name``."""

        def decorator(func: Handler) -> Handler:
            self._definitions[name] = func
            return func

        return decorator

    def get_definitions(self) -> dict[str, Handler]:
        return dict(self._definitions)

    async def invoke(
        self, name: str, payload: Any = None, context: Optional[dict] = None
    ) -> Any:
        """Run an operation.

        Raises:
            KeyError: If no operation has that name.
        """
        if name not in self._definitions:
            raise KeyError(f"Unknown resolver operation: {name}")
        logger.debug("Resolver %s called", name)
        return await self._definitions[name](payload, context or {})


def build_resolver(
    gateway: StorageGateway,
    records: RecordService,
    poller: StatusPoller,
    model_client: Any,
    status_source: Optional[Any] = None,
) -> Resolver:
    """Define every UI operation against the given collaborators.

    Args:
        gateway: Storage gateway.
        records: Record service for CRUD operations.
        poller: Poller serving test-case reads.
        model_client: Object with ``async test_connection(credentials, region)``.
        status_source: Object with ``async get_statuses()``; without it
                       getStatuses returns an empty list.
    """
    resolver = Resolver()

    @resolver.define("get-all")
    async def get_all(payload: Any, context: dict) -> Any:
        issue_key = issue_key_from_context(context)
        project_key = project_key_from_context(context)
        if project_key:
            await gateway.verify_stored_values(project_key, issue_key)

        result = await poller.poll_result(issue_key)
        if result == POLL_FAILED:
            return POLL_FAILED
        return [r.to_dict() for r in result]

    @resolver.define("create")
    async def create(payload: dict, context: dict) -> dict:
        record = await records.create(
            issue_key_from_context(context), project_key_from_context(context), payload
        )
        return record.to_dict()

    @resolver.define("update")
    async def update(payload: dict, context: dict) -> Optional[dict]:
        record = await records.update(issue_key_from_context(context), payload)
        return record.to_dict() if record else None

    @resolver.define("delete")
    async def delete(payload: dict, context: dict) -> Any:
        return await records.delete(issue_key_from_context(context), payload)

    @resolver.define("delete-all")
    async def delete_all(payload: Any, context: dict) -> list:
        await records.delete_all(issue_key_from_context(context))
        return []

    @resolver.define("get-status")
    async def get_status(payload: Any, context: dict) -> list[dict]:
        stored = await records.get_all(issue_key_from_context(context))
        return [r.to_dict() for r in stored]

    @resolver.define("test-connection")
    async def test_connection(payload: Any, context: dict) -> dict:
        issue = _extension(context).get("issue") or {}
        return {
            "success": True,
            "issueKey": issue.get("key"),
            "issueType": issue.get("issueType"),
            "projectKey": project_key_from_context(context),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @resolver.define("test-aws-connection")
    async def test_aws_connection(payload: Optional[dict], context: dict) -> dict:
        payload = payload or {}
        credentials = Credentials(
            access_key_id=payload.get("accessKeyId"),
            secret_access_key=payload.get("secretAccessKey"),
            session_token=payload.get("sessionToken"),
        )
        if not credentials.is_complete:
            return ConnectionTestResult(
                success=False, message="AWS credentials are required"
            ).to_dict()

        region = payload.get("region") or DEFAULT_REGION
        result = await model_client.test_connection(credentials, region)
        return result.to_dict()

    @resolver.define("execute-aws-test")
    async def execute_aws_test(payload: Any, context: dict) -> dict:
        project_key = project_key_from_context(context)
        if not project_key:
            return ConnectionTestResult(success=False, message="No project key found").to_dict()

        credentials = await gateway.get_credentials(project_key)
        if not credentials.is_complete:
            return ConnectionTestResult(
                success=False, message="No AWS credentials configured for this project"
            ).to_dict()

        region = await gateway.get_region(project_key)
        logger.info("Testing Bedrock access for project %s in %s", project_key, region)
        result = await model_client.test_connection(credentials, region)
        return result.to_dict()

    @resolver.define("getStatuses")
    async def get_statuses(payload: Any, context: dict) -> list[dict]:
        if status_source is None:
            logger.warning("No status source configured; returning no statuses")
            return []
        try:
            return await status_source.get_statuses()
        except JiraClientError as e:
            logger.warning("Failed to get statuses: %s", e)
            return []

    @resolver.define("getConfig")
    async def get_project_config(payload: Any, context: dict) -> dict:
        config = await get_config(gateway, project_key_from_context(context))
        return config.to_dict()

    @resolver.define("saveConfig")
    async def save_project_config(payload: dict, context: dict) -> dict:
        project_key = project_key_from_context(context)
        try:
            config = await save_config(gateway, project_key, payload or {})
        except ConfigurationError as e:
            logger.warning("Rejected configuration for project %s: %s", project_key, e)
            return {"success": False, "message": str(e)}
        return {"success": True, "config": config.to_dict()}

    return resolver
