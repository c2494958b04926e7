"""Data models for the story test-case generator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

# Access keys issued by STS for temporary credentials carry this prefix
TEMPORARY_KEY_PREFIX = "ASIA"

DEFAULT_REGION = "us-east-1"
DEFAULT_LIMIT = 5
MAX_LIMIT = 15
DEFAULT_PROMPT_TEMPLATE = (
    "Write test cases for the following story requirements: {description}"
)
DESCRIPTION_PLACEHOLDER = "{description}"


class GenerationStatus(Enum):
    """Generation status stored per issue."""

    NONE = "none"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GenerationStatus":
        """Map a stored value to a status; unknown or missing values are NONE."""
        if not value:
            return cls.NONE
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


class GenerationOutcome(Enum):
    """How a single trigger event was handled."""

    SKIPPED = "skipped"
    GENERATED = "generated"
    FAILED = "failed"


@dataclass
class Credentials:
    """AWS credentials scoped to a project."""

    access_key_id: Optional[str]
    secret_access_key: Optional[str]
    session_token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @property
    def is_temporary(self) -> bool:
        """Check if the access key was issued for temporary credentials."""
        return bool(self.access_key_id) and self.access_key_id.startswith(
            TEMPORARY_KEY_PREFIX
        )


@dataclass(frozen=True)
class SigningContext:
    """Values derived for a single SigV4 signing operation."""

    method: str
    canonical_uri: str
    host: str
    region: str
    service: str
    amz_date: str
    date_stamp: str
    payload_hash: str


@dataclass
class TestCaseRecord:
    """A single generated or user-entered test case scoped to an issue."""

    __test__ = False  # not a pytest class

    id: str
    label: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored JSON shape."""
        data = dict(self.extra)
        data["id"] = self.id
        data["label"] = self.label
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestCaseRecord":
        extra = {k: v for k, v in data.items() if k not in ("id", "label")}
        return cls(id=str(data["id"]), label=str(data.get("label", "")), extra=extra)


@dataclass
class GenerationRequest:
    """Everything needed to generate test cases for one issue."""

    issue_key: str
    project_key: str
    story_text: str
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    limit: int = DEFAULT_LIMIT

    @property
    def prompt(self) -> str:
        """Prompt with the first description placeholder filled in."""
        return self.prompt_template.replace(
            DESCRIPTION_PLACEHOLDER, self.story_text, 1
        )


@dataclass
class ProjectConfig:
    """Per-project configuration."""

    trigger_status: Optional[str]
    credentials: Credentials
    region: str = DEFAULT_REGION
    limit: int = DEFAULT_LIMIT
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        """Convert to the settings form shape.

        Args:
            redact: Replace secret values with a marker.
        """
        secret = self.credentials.secret_access_key
        token = self.credentials.session_token
        if redact:
            secret = "[REDACTED]" if secret else None
            token = "[REDACTED]" if token else None
        return {
            "triggerStatus": self.trigger_status,
            "accessKey": self.credentials.access_key_id,
            "secretKey": secret,
            "sessionToken": token,
            "region": self.region,
            "limit": self.limit,
            "prompt": self.prompt_template,
        }


@dataclass
class TransitionEvent:
    """Issue transition event as delivered by the issue tracker."""

    issue_id: Optional[str]
    issue_key: Optional[str]
    issue_type: Optional[str]
    project_key: Optional[str]
    statuses: list[str]

    @property
    def from_status(self) -> Optional[str]:
        return self.statuses[0] if len(self.statuses) > 0 else None

    @property
    def to_status(self) -> Optional[str]:
        return self.statuses[1] if len(self.statuses) > 1 else None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TransitionEvent":
        """Build an event from the platform payload.

        Missing fields become None; associatedStatuses that is not a list
        becomes an empty list.
        """
        issue = payload.get("issue") or {}
        fields = issue.get("fields") or {}
        issue_type = (fields.get("issuetype") or {}).get("name")
        project_key = (fields.get("project") or {}).get("key")

        raw_statuses = payload.get("associatedStatuses")
        statuses: list[str] = []
        if isinstance(raw_statuses, list):
            for entry in raw_statuses:
                name = entry.get("name") if isinstance(entry, dict) else None
                statuses.append(name or "")

        issue_id = issue.get("id")
        return cls(
            issue_id=str(issue_id) if issue_id is not None else None,
            issue_key=issue.get("key"),
            issue_type=issue_type,
            project_key=project_key,
            statuses=statuses,
        )


@dataclass
class ParsedCases:
    """Model output parsed into test-case records."""

    records: list[TestCaseRecord]
    used_fallback: bool = False


@dataclass
class EmptyResult:
    """Model output parsed cleanly but contained no test cases."""

    reason: str = "no test cases in response"


@dataclass
class ParseFailure:
    """Model output could not be interpreted at all."""

    reason: str


ParseResult = Union[ParsedCases, EmptyResult, ParseFailure]


@dataclass
class ConnectionTestResult:
    """Structured outcome of a model endpoint connection test."""

    success: bool
    message: str
    error: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            result["error"] = self.error
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class GenerationResult:
    """Outcome of handling one transition event."""

    issue_key: Optional[str]
    outcome: GenerationOutcome
    status: GenerationStatus = GenerationStatus.NONE
    records: list[TestCaseRecord] = field(default_factory=list)
    reason: Optional[str] = None
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
