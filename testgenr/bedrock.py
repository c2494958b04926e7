"""Model client for AWS Bedrock (Anthropic Claude).

Sends a SigV4-signed invoke request and turns the model's reply into
test-case records. The reply is expected to be a JSON object with a
``result`` array of ``{"label": ...}`` entries; when the model answers
with prose instead, bulleted and numbered lines are used.

Failure policy:
- Missing credentials raise ConfigurationError so the caller can record
  an error.
- Transport failures (network errors, non-200 responses) and unusable
  model output are logged and produce an empty list.
"""

import asyncio
import json
import logging
import re
import secrets
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from testgenr.config import ConfigurationError
from testgenr.models import (
    ConnectionTestResult,
    Credentials,
    EmptyResult,
    ParsedCases,
    ParseFailure,
    ParseResult,
    TestCaseRecord,
)
from testgenr.retry import RetryExhausted, retry_with_backoff
from testgenr.signer import sign
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "anthropic.claude-3-haiku-20240307-v1:0"
ANTHROPIC_VERSION = "bedrock-2023-05-31"
SERVICE_NAME = "bedrock"
MAX_TOKENS = 10000
CONNECTION_TEST_MAX_TOKENS = 10
CONNECTION_TEST_PROMPT = "Test connection"
DEFAULT_TIMEOUT = 60.0

SYSTEM_INSTRUCTION = (
    "You are a helpful coding assistant. Generate test cases in JSON format "
    "with an array of objects containing 'label' field for each test case description."
)
RESPONSE_INSTRUCTION = (
    "Please respond with a JSON object containing a 'result' array where each "
    "item has a 'label' field with the test case description."
)

# "- item" or "12. item"
_LIST_MARKER = re.compile(r"^\s*(?:-|\d+\.)\s*")
_CODE_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n(.*?)\n\s*```\s*$", re.DOTALL)

# Characters of the hex part of a record id
RECORD_ID_LENGTH = 13


class TransportError(Exception):
    """Raised when the model endpoint cannot be reached or answers non-200."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ParseError(Exception):
    """Raised when the model response envelope is not in the expected shape."""

    pass


def new_record_id() -> str:
    """Return a fresh opaque record id such as ``_3f9a0c1d2b4e5``."""
    return "_" + secrets.token_hex(7)[:RECORD_ID_LENGTH]


class _IdSource:
    """Hands out record ids that never repeat within one batch."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def next(self) -> str:
        record_id = new_record_id()
        while record_id in self._seen:
            record_id = new_record_id()
        self._seen.add(record_id)
        return record_id


def endpoint_url(region: str, model_id: str = DEFAULT_MODEL_ID) -> str:
    return f"https://bedrock-runtime.{region}.amazonaws.com/model/{model_id}/invoke"


def build_full_prompt(prompt: str) -> str:
    """Wrap a user prompt with the fixed system and response instructions."""
    return f"{SYSTEM_INSTRUCTION}\n\nHuman: {prompt}\n\n{RESPONSE_INSTRUCTION}\n\nAssistant:"


def build_payload(content: str, max_tokens: int = MAX_TOKENS) -> dict[str, Any]:
    return {
        "anthropic_version": ANTHROPIC_VERSION,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": content}],
    }


def extract_text(data: Any) -> str:
    """Pull the model's text out of an invoke response body.

    Raises:
        ParseError: If the body has no ``content[0].text`` string.
    """
    try:
        text = data["content"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise ParseError(f"Unexpected response shape: {e!r}") from e
    if not isinstance(text, str):
        raise ParseError("Response text is not a string")
    return text


def parse_fallback(text: str, ids: Optional[_IdSource] = None) -> list[TestCaseRecord]:
    """Extract test cases from bulleted or numbered lines.

    Lines starting with ``-`` or ``<digits>.`` become one record each,
    with the marker removed. Other lines are ignored.
    """
    ids = ids or _IdSource()
    records = []
    for line in text.splitlines():
        match = _LIST_MARKER.match(line)
        if not match:
            continue
        label = line[match.end():].strip()
        if label:
            records.append(TestCaseRecord(id=ids.next(), label=label))
    return records


def _records_from_entries(entries: Sequence[Any], ids: _IdSource) -> list[TestCaseRecord]:
    records = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"label": entry}
        if not isinstance(entry, dict):
            continue
        label = entry.get("label")
        if not isinstance(label, str) or not label.strip():
            continue
        extra = {k: v for k, v in entry.items() if k not in ("id", "label")}
        records.append(TestCaseRecord(id=ids.next(), label=label.strip(), extra=extra))
    return records


def parse_model_text(text: str) -> ParseResult:
    """Interpret the model's text as test cases.

    Returns:
        ParsedCases when at least one test case was found, EmptyResult
        when the JSON reply held none, ParseFailure when neither JSON nor
        list lines could be read.
    """
    ids = _IdSource()
    fenced = _CODE_FENCE.match(text)
    candidate = fenced.group(1) if fenced else text

    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        records = parse_fallback(text, ids)
        if records:
            return ParsedCases(records=records, used_fallback=True)
        return ParseFailure(reason="response is neither JSON nor a list of lines")

    entries = parsed.get("result") if isinstance(parsed, dict) else parsed
    if not isinstance(entries, list):
        return EmptyResult(reason="response JSON has no result array")

    records = _records_from_entries(entries, ids)
    if not records:
        return EmptyResult()
    return ParsedCases(records=records)


class BedrockClient:
    """Client for invoking the model and reading back test cases."""

    def __init__(
        self,
        gateway: StorageGateway,
        http_client: Optional[httpx.AsyncClient] = None,
        model_id: str = DEFAULT_MODEL_ID,
        max_tokens: int = MAX_TOKENS,
        max_attempts: int = 3,
        retry_delays: Sequence[float] = (1.0, 2.0),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            gateway: Storage gateway supplying credentials and region.
            http_client: httpx client to send requests with; one is created
                        (and owned) when omitted.
            model_id: Bedrock model identifier.
            max_tokens: Token budget for generation requests.
            max_attempts: Attempts for requests that fail before reaching
                        the model.
            retry_delays: Delays between those attempts.
            sleep: Awaitable sleep used between attempts.
        """
        self.gateway = gateway
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.max_attempts = max_attempts
        self.retry_delays = retry_delays
        self._sleep = sleep
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "BedrockClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False

    async def _post(
        self,
        credentials: Credentials,
        region: str,
        payload: dict[str, Any],
        retry_throttling: bool = True,
    ) -> httpx.Response:
        """Sign and send an invoke request.

        A 429 response is raised as HTTPStatusError (when retry_throttling
        is set) so the retry loop can see it; other responses are returned.
        """
        url = endpoint_url(region, self.model_id)
        body = json.dumps(payload)
        headers = sign("POST", url, body, credentials, region, SERVICE_NAME)

        response = await self.http_client.post(url, content=body.encode("utf-8"), headers=headers)
        if retry_throttling and response.status_code == 429:
            response.raise_for_status()
        return response

    async def generate(self, prompt: str, project_key: str) -> list[TestCaseRecord]:
        """Generate test cases for a prompt using the project's credentials.

        Args:
            prompt: Prompt with the story description filled in.
            project_key: Project whose credentials and region are used.

        Returns:
            Generated records, each with a fresh id. Empty when the call
            failed or the model returned nothing usable.

        Raises:
            ConfigurationError: If the project has no access key or secret key.
        """
        credentials = await self.gateway.get_credentials(project_key)
        if not credentials.is_complete:
            raise ConfigurationError(f"No AWS credentials configured for project {project_key}")
        if credentials.is_temporary and not credentials.session_token:
            logger.warning(
                "Project %s uses temporary credentials but has no session token", project_key
            )
        region = await self.gateway.get_region(project_key)

        payload = build_payload(build_full_prompt(prompt), self.max_tokens)

        try:
            response = await retry_with_backoff(
                self._post,
                max_attempts=self.max_attempts,
                delays=self.retry_delays,
                args=(credentials, region, payload),
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            logger.warning(
                "Bedrock request for project %s failed after %d attempts: %s",
                project_key, e.attempts, e.last_error,
            )
            return []
        except httpx.HTTPError as e:
            logger.warning("Bedrock request for project %s failed: %s", project_key, e)
            return []

        if response.status_code != 200:
            error = TransportError(
                f"Bedrock API error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
            logger.warning("%s for project %s: %s", error, project_key, error.body[:500])
            return []

        try:
            text = extract_text(response.json())
        except (ValueError, ParseError) as e:
            logger.warning("Unreadable Bedrock response for project %s: %s", project_key, e)
            return []

        result = parse_model_text(text)
        if isinstance(result, ParsedCases):
            if result.used_fallback:
                logger.info("Model reply was not JSON; extracted %d list items", len(result.records))
            return result.records
        logger.info("No test cases in model reply for project %s: %s", project_key, result.reason)
        return []

    async def test_connection(
        self, credentials: Credentials, region: str
    ) -> ConnectionTestResult:
        """Send a minimal request to check credentials and model access.

        Never raises; every outcome is reported in the result.
        """
        payload = build_payload(CONNECTION_TEST_PROMPT, CONNECTION_TEST_MAX_TOKENS)
        try:
            response = await self._post(credentials, region, payload, retry_throttling=False)
        except (ConfigurationError, httpx.HTTPError) as e:
            logger.warning("Bedrock connection test failed: %s", e)
            return ConnectionTestResult(
                success=False, message="Connection test failed", error=str(e)
            )

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                data = None
            return ConnectionTestResult(
                success=True, message="AWS Bedrock connection successful", data=data
            )

        logger.warning("Bedrock connection test returned %d", response.status_code)
        return ConnectionTestResult(
            success=False,
            message=f"Connection failed: {response.status_code}",
            error=response.text,
        )
