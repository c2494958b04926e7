"""AWS Signature Version 4 signing for model endpoint requests.

Produces the authentication headers for a single HTTP request. The
canonical request layout, header order and key derivation follow the
SigV4 scheme exactly; any deviation yields a signature the service
rejects.

Signed headers are fixed: content-type, host, x-amz-date and, with
temporary credentials, x-amz-security-token. The query string is always
empty.

Nothing here performs I/O. Given a timestamp, every function is
deterministic.
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import quote, urlsplit

from testgenr.config import ConfigurationError
from testgenr.models import Credentials, SigningContext

ALGORITHM = "AWS4-HMAC-SHA256"
DEFAULT_SERVICE = "bedrock"
DEFAULT_CONTENT_TYPE = "application/json"
SCOPE_TERMINATOR = "aws4_request"

# Characters left unencoded in a path segment (RFC 3986 unreserved set)
_UNRESERVED = "-_.~"


def sha256_hex(data: Union[str, bytes]) -> str:
    """Return the lowercase hex SHA-256 digest of data."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    """Return the raw HMAC-SHA256 digest of message under key."""
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def format_amz_date(timestamp: datetime) -> str:
    """Format a timestamp as YYYYMMDDTHHMMSSZ in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime("%Y%m%dT%H%M%SZ")


def canonical_uri(path: str) -> str:
    """Percent-encode each segment of a URL path.

    Slashes separate segments and are kept; everything outside the
    unreserved set is encoded, so ``v1:0`` becomes ``v1%3A0``.
    """
    if not path:
        return "/"
    return "/".join(quote(segment, safe=_UNRESERVED) for segment in path.split("/"))


def derive_signing_key(
    secret_access_key: str,
    date_stamp: str,
    region: str,
    service: str,
) -> bytes:
    """Derive the SigV4 signing key.

    Each HMAC output is fed as raw bytes into the next step.
    """
    k_date = hmac_sha256(("AWS4" + secret_access_key).encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def _signed_header_values(
    context: SigningContext,
    content_type: str,
    session_token: Optional[str],
) -> list[tuple[str, str]]:
    headers = [
        ("content-type", content_type),
        ("host", context.host),
        ("x-amz-date", context.amz_date),
    ]
    if session_token:
        headers.append(("x-amz-security-token", session_token))
    return headers


def build_signing_context(
    method: str,
    url: str,
    body: Union[str, bytes],
    region: str,
    service: str = DEFAULT_SERVICE,
    timestamp: Optional[datetime] = None,
) -> SigningContext:
    """Derive the signing context for a request.

    Args:
        method: HTTP method.
        url: Full request URL; host and path are taken from it.
        body: Serialized request body.
        region: AWS region name.
        service: AWS service name used in the credential scope.
        timestamp: Signing time; defaults to now.

    Returns:
        The SigningContext for this request.
    """
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)

    parts = urlsplit(url)
    amz_date = format_amz_date(timestamp)
    return SigningContext(
        method=method.upper(),
        canonical_uri=canonical_uri(parts.path),
        host=parts.netloc,
        region=region,
        service=service,
        amz_date=amz_date,
        date_stamp=amz_date[:8],
        payload_hash=sha256_hex(body),
    )


def canonical_request(
    context: SigningContext,
    content_type: str = DEFAULT_CONTENT_TYPE,
    session_token: Optional[str] = None,
) -> tuple[str, str]:
    """Build the canonical request.

    Returns:
        Tuple of (canonical_request, signed_headers).
    """
    headers = _signed_header_values(context, content_type, session_token)
    canonical_headers = "".join(f"{name}:{value}\n" for name, value in headers)
    signed_headers = ";".join(name for name, _ in headers)

    request = "\n".join([
        context.method,
        context.canonical_uri,
        "",
        canonical_headers,
        signed_headers,
        context.payload_hash,
    ])
    return request, signed_headers


def credential_scope(context: SigningContext) -> str:
    return f"{context.date_stamp}/{context.region}/{context.service}/{SCOPE_TERMINATOR}"


def string_to_sign(context: SigningContext, canonical: str) -> str:
    """Build the string to sign from the canonical request."""
    return "\n".join([
        ALGORITHM,
        context.amz_date,
        credential_scope(context),
        sha256_hex(canonical),
    ])


def sign(
    method: str,
    url: str,
    body: Union[str, bytes],
    credentials: Credentials,
    region: str,
    service: str = DEFAULT_SERVICE,
    timestamp: Optional[datetime] = None,
    content_type: str = DEFAULT_CONTENT_TYPE,
) -> dict[str, str]:
    """Compute SigV4 authentication headers for a request.

    Args:
        method: HTTP method.
        url: Full request URL.
        body: Serialized request body, exactly as it will be sent.
        credentials: Access key, secret key and optional session token.
        region: AWS region name.
        service: AWS service name.
        timestamp: Signing time; defaults to now.
        content_type: Value of the Content-Type header.

    Returns:
        Headers to send with the request.

    Raises:
        ConfigurationError: If the access key or secret key is missing.
    """
    if not credentials.access_key_id or not credentials.secret_access_key:
        raise ConfigurationError("AWS access key and secret key are required for signing")

    context = build_signing_context(method, url, body, region, service, timestamp)
    token = credentials.session_token or None

    canonical, signed_headers = canonical_request(context, content_type, token)
    to_sign = string_to_sign(context, canonical)
    signing_key = derive_signing_key(
        credentials.secret_access_key, context.date_stamp, region, service
    )
    signature = hmac.new(signing_key, to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    headers = {
        "Authorization": (
            f"{ALGORITHM} Credential={credentials.access_key_id}/{credential_scope(context)}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        ),
        "Content-Type": content_type,
        "X-Amz-Date": context.amz_date,
    }
    if token:
        headers["X-Amz-Security-Token"] = token
    return headers
