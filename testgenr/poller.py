"""Bounded polling of an issue's generation status.

Generation runs asynchronously from UI reads. Rather than returning a
partial list while an issue is still loading, a read waits a bounded
number of times and then gives up with a sentinel.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Union

from testgenr.models import GenerationStatus, TestCaseRecord
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)

POLL_FAILED = "failed"
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_DELAY_SECONDS = 4.0

PollResult = Union[list[TestCaseRecord], str]


class StatusPoller:
    """Reads test cases once an issue's generation is no longer loading."""

    def __init__(
        self,
        gateway: StorageGateway,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self._sleep = sleep

    async def poll_result(
        self,
        issue_key: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay: float = DEFAULT_DELAY_SECONDS,
    ) -> PollResult:
        """Return the issue's test cases, waiting while generation runs.

        Args:
            issue_key: Issue to read.
            max_attempts: Number of status reads before giving up.
            delay: Seconds to wait between reads.

        Returns:
            The stored test cases (possibly empty) once the status is not
            loading, or POLL_FAILED if it is still loading on the last read.
        """
        for attempt in range(1, max_attempts + 1):
            try:
                status = await self.gateway.get_status(issue_key)
            except Exception:
                logger.exception("Could not read generation status for issue %s", issue_key)
                return await self.gateway.get_test_cases(issue_key)

            if status != GenerationStatus.LOADING:
                return await self.gateway.get_test_cases(issue_key)

            if attempt >= max_attempts:
                logger.warning(
                    "Issue %s still loading after %d attempts", issue_key, max_attempts
                )
                return POLL_FAILED

            logger.debug(
                "Issue %s is loading, waiting %.1fs (attempt %d)", issue_key, delay, attempt
            )
            await self._sleep(delay)

        return POLL_FAILED
