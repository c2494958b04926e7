"""Generation coordinator.

Turns an issue transition event into stored test cases:

    IDLE -> VALIDATING -> GENERATING (loading) -> PERSISTED (done)
                                               -> FAILED (error)

Validation failures are not errors: the event is acknowledged and
nothing is generated. Once an issue's status is set to loading, a
terminal status is always written before the coordinator returns.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from testgenr.models import (
    GenerationOutcome,
    GenerationRequest,
    GenerationResult,
    GenerationStatus,
    TestCaseRecord,
    TransitionEvent,
)
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)

STORY_ISSUE_TYPE = "story"

# Max characters of user-controlled text written to the log
LOG_VALUE_LIMIT = 200

DescriptionSource = Callable[[str], Awaitable[Union[str, Sequence[str]]]]


def sanitize_for_log(value: Any) -> str:
    """Render a user-controlled value for logging, truncated."""
    text = value if isinstance(value, str) else repr(value)
    return text.replace("\n", "\\n")[:LOG_VALUE_LIMIT]


def statuses_match(to_status: Optional[str], trigger_status: Optional[str]) -> bool:
    """Compare workflow status names ignoring case and surrounding space."""
    if not to_status or not trigger_status:
        return False
    return to_status.strip().lower() == trigger_status.strip().lower()


class GenerationCoordinator:
    """Runs test-case generation for issues entering the trigger status.

    Generation for one issue is exclusive: the status flag is taken with a
    conditional write at the store, and within this process a per-issue
    lock turns a concurrent duplicate event into a no-op.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        model_client: Any,
        describe: DescriptionSource,
        reporter: Optional[Any] = None,
    ):
        """Initialize the coordinator.

        Args:
            gateway: Storage gateway for configuration and issue state.
            model_client: Object with ``async generate(prompt, project_key)``.
            describe: Coroutine function returning an issue's description
                      as text or as a sequence of paragraphs.
            reporter: Optional reporter for progress callbacks.
        """
        self.gateway = gateway
        self.model_client = model_client
        self.describe = describe
        self.reporter = reporter
        self._issue_locks: dict[str, asyncio.Lock] = {}

    async def handle_transition(self, event: Union[TransitionEvent, dict]) -> bool:
        """Handle a transition event and acknowledge it.

        Always returns True so the platform does not re-deliver the event;
        failures are recorded in the issue's generation status.
        """
        await self.run(event)
        return True

    async def process_events(
        self, events: Sequence[Union[TransitionEvent, dict]]
    ) -> list[GenerationResult]:
        """Handle several events in order and report the run."""
        results = [await self.run(event) for event in events]
        if self.reporter:
            self.reporter.on_run_complete(results)
        return results

    async def run(self, event: Union[TransitionEvent, dict]) -> GenerationResult:
        """Handle a transition event.

        Returns:
            GenerationResult describing what happened.
        """
        if isinstance(event, dict):
            event = TransitionEvent.from_payload(event)

        skip_reason = await self._validate(event)
        if skip_reason:
            return self._skipped(event, skip_reason)

        issue_key = event.issue_key
        lock = self._issue_locks.setdefault(issue_key, asyncio.Lock())
        if lock.locked():
            return self._skipped(event, "generation already running in this process")

        try:
            async with lock:
                return await self._generate(event)
        finally:
            if not lock.locked():
                self._issue_locks.pop(issue_key, None)

    async def _validate(self, event: TransitionEvent) -> Optional[str]:
        """Check whether an event should start generation.

        Returns:
            None to proceed, otherwise the reason for skipping.
        """
        if len(event.statuses) < 2:
            return "not a status transition"

        if not event.issue_type or event.issue_type.lower() != STORY_ISSUE_TYPE:
            return f"issue type '{sanitize_for_log(event.issue_type)}' is not a story"

        if not event.issue_key or not event.project_key:
            return "event has no issue or project key"

        trigger_status = await self.gateway.get_trigger_status(event.project_key)
        if not trigger_status:
            return f"no trigger status configured for project {event.project_key}"

        if not statuses_match(event.to_status, trigger_status):
            return (
                f"status '{sanitize_for_log(event.to_status)}' does not match "
                f"trigger '{sanitize_for_log(trigger_status)}'"
            )

        if await self.gateway.get_test_cases(event.issue_key):
            return "test cases already exist"

        return None

    async def _describe_text(self, event: TransitionEvent) -> str:
        description = await self.describe(event.issue_id or event.issue_key)
        if description is None:
            return ""
        if isinstance(description, str):
            return description
        return ".".join(description)

    async def _generate(self, event: TransitionEvent) -> GenerationResult:
        issue_key = event.issue_key
        project_key = event.project_key

        # Another invocation may have stored results while we waited
        if await self.gateway.get_test_cases(issue_key):
            return self._skipped(event, "test cases already exist")

        acquired, previous = await self.gateway.try_begin_generation(issue_key)
        if not acquired:
            return self._skipped(event, "generation already in progress")

        logger.info(
            "Generating test cases for issue %s (%s -> %s)",
            issue_key,
            sanitize_for_log(event.from_status),
            sanitize_for_log(event.to_status),
        )
        if self.reporter:
            self.reporter.on_generation_start(issue_key)

        start_time = time.monotonic()
        final_status = GenerationStatus.ERROR
        result: Optional[GenerationResult] = None

        try:
            story_text = await self._describe_text(event)
            if not story_text.strip():
                final_status = previous
                result = self._skipped(event, "issue has no description")
                return result

            request = GenerationRequest(
                issue_key=issue_key,
                project_key=project_key,
                story_text=story_text,
                prompt_template=await self.gateway.get_prompt_template(project_key),
                limit=await self.gateway.get_limit(project_key),
            )
            records = await self._invoke_model(request)
            await self.gateway.set_test_cases(issue_key, records)

            final_status = GenerationStatus.DONE
            result = GenerationResult(
                issue_key=issue_key,
                outcome=GenerationOutcome.GENERATED,
                status=final_status,
                records=records,
            )
            logger.info("Saved %d test cases for issue %s", len(records), issue_key)
        except Exception as e:
            logger.exception(
                "Failed to generate test cases for issue %s (project %s)",
                issue_key, project_key,
            )
            result = GenerationResult(
                issue_key=issue_key,
                outcome=GenerationOutcome.FAILED,
                status=GenerationStatus.ERROR,
                error_message=str(e),
            )
        finally:
            await self.gateway.set_status(issue_key, final_status)

        result.duration_seconds = time.monotonic() - start_time
        if self.reporter:
            self.reporter.on_generation_complete(result)
        return result

    async def _invoke_model(self, request: GenerationRequest) -> list[TestCaseRecord]:
        """Call the model and keep at most ``request.limit`` records."""
        records = await self.model_client.generate(request.prompt, request.project_key)
        if not records:
            logger.warning("No test cases generated for issue %s", request.issue_key)
            return []

        records = list(records)
        if len(records) > request.limit:
            logger.info(
                "Keeping %d of %d generated test cases for issue %s",
                request.limit, len(records), request.issue_key,
            )
            records = records[: request.limit]
        return records

    def _skipped(self, event: TransitionEvent, reason: str) -> GenerationResult:
        logger.info("Skipping issue %s: %s", sanitize_for_log(event.issue_key), reason)
        result = GenerationResult(
            issue_key=event.issue_key,
            outcome=GenerationOutcome.SKIPPED,
            reason=reason,
        )
        if self.reporter:
            self.reporter.on_generation_skipped(event.issue_key, reason)
        return result
