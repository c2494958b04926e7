"""Jira REST client for workflow statuses and issue descriptions."""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# ADF node types whose text forms one paragraph
_BLOCK_TYPES = {"paragraph", "heading", "codeBlock", "blockquote", "listItem", "tableCell"}


class JiraClientError(Exception):
    """Raised when Jira API calls fail."""

    pass


def adf_to_paragraphs(document: Any) -> list[str]:
    """Flatten an Atlassian Document Format tree into text paragraphs.

    Plain strings (older API versions) are split on blank lines. Empty
    paragraphs are dropped.
    """
    if document is None:
        return []
    if isinstance(document, str):
        return [p.strip() for p in document.split("\n\n") if p.strip()]

    paragraphs: list[str] = []

    def collect_text(node: Any) -> str:
        if not isinstance(node, dict):
            return ""
        if node.get("type") == "text":
            return node.get("text", "")
        if node.get("type") == "hardBreak":
            return "\n"
        return "".join(collect_text(child) for child in node.get("content", []))

    def walk(node: Any) -> None:
        if not isinstance(node, dict):
            return
        children = node.get("content", [])
        if node.get("type") in _BLOCK_TYPES and not any(
            isinstance(c, dict) and c.get("type") in _BLOCK_TYPES for c in children
        ):
            text = collect_text(node).strip()
            if text:
                paragraphs.append(text)
            return
        for child in children:
            walk(child)

    walk(document)
    return paragraphs


class JiraClient:
    """Async client for the Jira Cloud REST API (v3)."""

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Jira client.

        Args:
            base_url: Jira instance URL (e.g., "https://yourcompany.atlassian.net")
            username: Jira user email for authentication
            api_token: Jira API token for authentication
            http_client: httpx client to use; one is created when omitted
        """
        self.jira_url = base_url.rstrip("/")
        if not self.jira_url:
            raise JiraClientError("JIRA_BASE_URL cannot be empty")
        if not username:
            raise JiraClientError("JIRA_USERNAME cannot be empty")
        if not api_token:
            raise JiraClientError("JIRA_API_TOKEN cannot be empty")

        self._auth = httpx.BasicAuth(username, api_token)
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """GET a Jira endpoint and return its JSON body.

        Raises:
            JiraClientError: If the request fails or returns an error status.
        """
        url = f"{self.jira_url}{endpoint}"
        try:
            response = await self.http_client.get(
                url,
                params=params,
                auth=self._auth,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = str(e)
            try:
                body = e.response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("errorMessages"):
                message = "; ".join(body["errorMessages"])
            raise JiraClientError(f"Jira API request failed: {message}") from e
        except httpx.HTTPError as e:
            raise JiraClientError(f"Jira API request failed: {e}") from e

        return response.json() if response.content else {}

    async def get_statuses(self) -> list[dict[str, str]]:
        """Return every workflow status as ``{"name", "id"}``."""
        statuses = await self._get("/rest/api/3/status")
        return [{"name": s.get("name"), "id": s.get("id")} for s in statuses]

    async def get_description(self, issue_id: str) -> list[str]:
        """Return an issue's description as text paragraphs."""
        issue = await self._get(
            f"/rest/api/3/issue/{issue_id}", params={"fields": "description"}
        )
        description = (issue.get("fields") or {}).get("description")
        paragraphs = adf_to_paragraphs(description)
        logger.debug("Issue %s description has %d paragraphs", issue_id, len(paragraphs))
        return paragraphs
