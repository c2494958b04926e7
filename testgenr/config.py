"""Project configuration for the test-case generator.

Settings reach a project from one of two sources:
1. Environment variables (for CI/CD) - takes priority
2. A JSON settings file (for local development)

Environment Variable Format:
    TESTGENR_TRIGGER_STATUS=Ready For Test
    TESTGENR_AWS_ACCESS_KEY=xxx
    TESTGENR_AWS_SECRET_KEY=xxx
    TESTGENR_AWS_SESSION_TOKEN=xxx   (optional, temporary credentials)
    TESTGENR_AWS_REGION=us-east-1    (optional)
    TESTGENR_LIMIT=5                 (optional, 1..15)
    TESTGENR_PROMPT=...{description}...  (optional)

Both sources produce the same settings form used by the project settings
page (triggerStatus, accessKey, secretKey, sessionToken, region, limit,
prompt), which save_config validates and stores. The older field name
promptTemplate is still read as an alias for prompt.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from testgenr.models import (
    DEFAULT_PROMPT_TEMPLATE,
    DEFAULT_REGION,
    DESCRIPTION_PLACEHOLDER,
    Credentials,
    ProjectConfig,
)
from testgenr.storage import StorageGateway

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when project configuration is missing or invalid."""

    pass


# Settings form field -> environment variable
ENV_VARIABLES = {
    "triggerStatus": "TESTGENR_TRIGGER_STATUS",
    "accessKey": "TESTGENR_AWS_ACCESS_KEY",
    "secretKey": "TESTGENR_AWS_SECRET_KEY",
    "sessionToken": "TESTGENR_AWS_SESSION_TOKEN",
    "region": "TESTGENR_AWS_REGION",
    "limit": "TESTGENR_LIMIT",
    "prompt": "TESTGENR_PROMPT",
}

REQUIRED_FIELDS = ["triggerStatus", "accessKey", "secretKey"]


def form_prompt(form: Mapping[str, Any]) -> Optional[str]:
    """Return the prompt template from a form, accepting the old field name."""
    return form.get("prompt") or form.get("promptTemplate")


def load_from_json(config_path: str) -> dict[str, Any]:
    """Load a settings form from a JSON file.

    Args:
        config_path: Path to the settings file.

    Returns:
        The settings form as a dictionary.

    Raises:
        ConfigurationError: If the file doesn't exist, contains invalid
                    JSON, or is not a JSON object.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigurationError(f"Settings file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in settings file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Settings file must contain a JSON object")

    return data


def load_from_env(environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Load a settings form from TESTGENR_* environment variables.

    Only variables that are set appear in the result.
    """
    if environ is None:
        environ = os.environ

    form: dict[str, Any] = {}
    for field, variable in ENV_VARIABLES.items():
        value = environ.get(variable)
        if value:
            form[field] = value
    return form


def has_env_settings(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Check if any TESTGENR_* settings variables exist."""
    if environ is None:
        environ = os.environ
    return any(variable in environ for variable in ENV_VARIABLES.values())


def load_settings(
    config_path: str = "testgenr.json",
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """Load a settings form with environment priority.

    Raises:
        ConfigurationError: If neither source provides any settings.
    """
    form: dict[str, Any] = {}

    if has_env_settings(environ):
        form = load_from_env(environ)
    elif Path(config_path).exists():
        form = load_from_json(config_path)

    if not form:
        raise ConfigurationError(
            "No settings found. Set TESTGENR_* environment variables "
            f"or create {config_path}."
        )

    return form


def validate_form(form: Mapping[str, Any]) -> None:
    """Check a settings form before it is stored.

    Raises:
        ConfigurationError: If a required field is blank or the prompt
                    template has no description placeholder.
    """
    for field in REQUIRED_FIELDS:
        value = form.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"Missing required setting '{field}'")

    template = form_prompt(form)
    if template and DESCRIPTION_PLACEHOLDER not in template:
        raise ConfigurationError(
            f"Prompt template must contain the {DESCRIPTION_PLACEHOLDER} placeholder"
        )


async def get_config(gateway: StorageGateway, project_key: str) -> ProjectConfig:
    """Read the full configuration of a project."""
    return ProjectConfig(
        trigger_status=await gateway.get_trigger_status(project_key),
        credentials=await gateway.get_credentials(project_key),
        region=await gateway.get_region(project_key),
        limit=await gateway.get_limit(project_key),
        prompt_template=await gateway.get_prompt_template(project_key),
    )


async def save_config(
    gateway: StorageGateway,
    project_key: str,
    form: Mapping[str, Any],
) -> ProjectConfig:
    """Validate a settings form and store it for a project.

    Args:
        gateway: Storage gateway.
        project_key: Project to configure.
        form: Settings form (see module docstring for fields).

    Returns:
        The configuration as stored, with defaults applied.

    Raises:
        ConfigurationError: If the form is invalid.
    """
    validate_form(form)

    credentials = Credentials(
        access_key_id=form["accessKey"].strip(),
        secret_access_key=form["secretKey"].strip(),
        session_token=(form.get("sessionToken") or "").strip() or None,
    )
    if credentials.is_temporary and not credentials.session_token:
        logger.warning(
            "Project %s uses temporary credentials without a session token; "
            "model calls will be rejected",
            project_key,
        )

    await gateway.set_trigger_status(project_key, form["triggerStatus"].strip())
    await gateway.set_credentials(project_key, credentials)
    await gateway.set_region(project_key, (form.get("region") or "").strip() or DEFAULT_REGION)
    if form.get("limit") is not None:
        await gateway.set_limit(project_key, form["limit"])
    await gateway.set_prompt_template(
        project_key, form_prompt(form) or DEFAULT_PROMPT_TEMPLATE
    )

    logger.info("Saved configuration for project %s", project_key)
    return await get_config(gateway, project_key)
