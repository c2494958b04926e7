"""Credential lookup through the AWS default provider chain.

Lets an administrator configure a project from the credentials already
available to boto3 (environment, shared config and credentials files,
SSO, instance roles) instead of pasting keys by hand.
"""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError

from testgenr.config import ConfigurationError
from testgenr.models import DEFAULT_REGION, Credentials


def resolve_credentials(profile: Optional[str] = None) -> Credentials:
    """Resolve credentials with boto3.

    Args:
        profile: Named profile to use; the default chain when omitted.

    Returns:
        Frozen credentials, including a session token for temporary ones.

    Raises:
        ConfigurationError: If no credentials can be found.
    """
    try:
        session = boto3.Session(profile_name=profile)
        found = session.get_credentials()
    except BotoCoreError as e:
        raise ConfigurationError(f"Could not load AWS credentials: {e}") from e

    if found is None:
        raise ConfigurationError("No AWS credentials found in the default provider chain")

    frozen = found.get_frozen_credentials()
    return Credentials(
        access_key_id=frozen.access_key,
        secret_access_key=frozen.secret_key,
        session_token=frozen.token,
    )


def resolve_region(profile: Optional[str] = None) -> str:
    """Return the profile's configured region, or the default region."""
    try:
        session = boto3.Session(profile_name=profile)
    except BotoCoreError:
        return DEFAULT_REGION
    return session.region_name or DEFAULT_REGION
