"""Tests for the SigV4 signer."""

from datetime import datetime, timedelta, timezone

import pytest
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotoCredentials

from testgenr.config import ConfigurationError
from testgenr.models import Credentials, SigningContext
from testgenr.signer import (
    build_signing_context,
    canonical_request,
    canonical_uri,
    derive_signing_key,
    format_amz_date,
    hmac_sha256,
    sha256_hex,
    sign,
    string_to_sign,
)

# Example credentials from the AWS documentation
EXAMPLE_ACCESS_KEY = "AKIDEXAMPLE"
EXAMPLE_SECRET_KEY = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"

BEDROCK_URL = (
    "https://bedrock-runtime.us-east-1.amazonaws.com"
    "/model/anthropic.claude-3-haiku-20240307-v1:0/invoke"
)
BODY = '{"anthropic_version": "bedrock-2023-05-31", "max_tokens": 10}'
TIMESTAMP = datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(access_key_id=EXAMPLE_ACCESS_KEY, secret_access_key=EXAMPLE_SECRET_KEY)


def botocore_signature(url, body, amz_date, region, service, session_token=None):
    """Compute the signature for the same request with botocore."""
    headers = {"Content-Type": "application/json", "X-Amz-Date": amz_date}
    if session_token:
        headers["X-Amz-Security-Token"] = session_token
    request = AWSRequest(method="POST", url=url, data=body.encode("utf-8"), headers=headers)
    request.context["timestamp"] = amz_date

    auth = SigV4Auth(
        BotoCredentials(EXAMPLE_ACCESS_KEY, EXAMPLE_SECRET_KEY, session_token),
        service,
        region,
    )
    canonical = auth.canonical_request(request)
    return auth.signature(auth.string_to_sign(request, canonical), request)


def signature_from(headers: dict) -> str:
    return headers["Authorization"].rsplit("Signature=", 1)[1]


class TestSigningKey:
    """Tests for the four-step key derivation."""

    def test_published_key_derivation_vector(self):
        """Reproduce the signing key from the AWS key derivation example."""
        key = derive_signing_key(EXAMPLE_SECRET_KEY, "20120215", "us-east-1", "iam")
        assert key.hex() == "f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d"

    def test_key_is_raw_bytes(self):
        """The derived key is a 32-byte digest, not a hex string."""
        key = derive_signing_key(EXAMPLE_SECRET_KEY, "20150830", "us-east-1", "iam")
        assert isinstance(key, bytes)
        assert len(key) == 32

    def test_hex_encoded_intermediate_keys_give_different_result(self):
        """Feeding hex strings between steps must not match the raw chain."""
        k_date = hmac_sha256(("AWS4" + EXAMPLE_SECRET_KEY).encode(), "20150830")
        k_region = hmac_sha256(k_date.hex().encode(), "us-east-1")
        k_service = hmac_sha256(k_region.hex().encode(), "iam")
        wrong = hmac_sha256(k_service.hex().encode(), "aws4_request")

        assert wrong != derive_signing_key(EXAMPLE_SECRET_KEY, "20150830", "us-east-1", "iam")

    def test_published_signature_vector(self):
        """Sign the string from the AWS IAM ListUsers example."""
        to_sign = (
            "AWS4-HMAC-SHA256\n"
            "20150830T123600Z\n"
            "20150830/us-east-1/iam/aws4_request\n"
            "f536975d06c0309214f805bb90ccff089219ecd68b2577efef23edd43b7e1a59"
        )
        key = derive_signing_key(EXAMPLE_SECRET_KEY, "20150830", "us-east-1", "iam")

        import hashlib
        import hmac

        signature = hmac.new(key, to_sign.encode(), hashlib.sha256).hexdigest()
        assert signature == "5d672d79c15b13162d9279b0855cfba6789a8edb4c82c400e06b5924a6f2b5d7"


class TestCanonicalRequest:
    """Tests for canonical request construction."""

    def test_canonical_uri_encodes_colon(self):
        """Colons in path segments are percent-encoded."""
        assert (
            canonical_uri("/model/anthropic.claude-3-haiku-20240307-v1:0/invoke")
            == "/model/anthropic.claude-3-haiku-20240307-v1%3A0/invoke"
        )

    def test_canonical_uri_keeps_unreserved(self):
        """Unreserved characters are left alone."""
        assert canonical_uri("/a-b_c.d~e/") == "/a-b_c.d~e/"

    def test_canonical_uri_empty_path(self):
        """An empty path becomes "/"."""
        assert canonical_uri("") == "/"

    def test_layout_without_session_token(self):
        """Canonical request has method, uri, empty query, headers, names, hash."""
        context = build_signing_context("post", BEDROCK_URL, BODY, "us-east-1", timestamp=TIMESTAMP)
        request, signed_headers = canonical_request(context)

        assert signed_headers == "content-type;host;x-amz-date"
        assert request == (
            "POST\n"
            "/model/anthropic.claude-3-haiku-20240307-v1%3A0/invoke\n"
            "\n"
            "content-type:application/json\n"
            "host:bedrock-runtime.us-east-1.amazonaws.com\n"
            "x-amz-date:20150830T123600Z\n"
            "\n"
            "content-type;host;x-amz-date\n"
            f"{sha256_hex(BODY)}"
        )

    def test_session_token_header_is_last(self):
        """The security token is the last signed header."""
        context = build_signing_context("POST", BEDROCK_URL, BODY, "us-east-1", timestamp=TIMESTAMP)
        request, signed_headers = canonical_request(context, session_token="token-123")

        assert signed_headers == "content-type;host;x-amz-date;x-amz-security-token"
        assert "x-amz-date:20150830T123600Z\nx-amz-security-token:token-123\n\n" in request

    def test_string_to_sign_hashes_canonical_request(self):
        """String to sign for the AWS IAM ListUsers example."""
        context = SigningContext(
            method="GET",
            canonical_uri="/",
            host="iam.amazonaws.com",
            region="us-east-1",
            service="iam",
            amz_date="20150830T123600Z",
            date_stamp="20150830",
            payload_hash=sha256_hex(""),
        )
        canonical = (
            "GET\n"
            "/\n"
            "Action=ListUsers&Version=2010-05-08\n"
            "content-type:application/x-www-form-urlencoded; charset=utf-8\n"
            "host:iam.amazonaws.com\n"
            "x-amz-date:20150830T123600Z\n"
            "\n"
            "content-type;host;x-amz-date\n"
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

        assert string_to_sign(context, canonical) == (
            "AWS4-HMAC-SHA256\n"
            "20150830T123600Z\n"
            "20150830/us-east-1/iam/aws4_request\n"
            "f536975d06c0309214f805bb90ccff089219ecd68b2577efef23edd43b7e1a59"
        )


class TestFormatAmzDate:
    """Tests for timestamp formatting."""

    def test_compact_format(self):
        """Timestamps use the compact basic format."""
        assert format_amz_date(TIMESTAMP) == "20150830T123600Z"

    def test_drops_fraction(self):
        """Fractions of a second are dropped."""
        assert format_amz_date(TIMESTAMP.replace(microsecond=123456)) == "20150830T123600Z"

    def test_converts_to_utc(self):
        """Aware timestamps in other zones are converted to UTC."""
        local = datetime(2015, 8, 30, 14, 36, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_amz_date(local) == "20150830T123600Z"

    def test_naive_taken_as_utc(self):
        """Naive timestamps are read as UTC."""
        assert format_amz_date(datetime(2015, 8, 30, 12, 36, 0)) == "20150830T123600Z"


class TestSign:
    """Tests for the complete signing operation."""

    def test_headers(self, credentials: Credentials):
        """Signing yields content type, date and authorization headers."""
        headers = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)

        assert headers["Content-Type"] == "application/json"
        assert headers["X-Amz-Date"] == "20150830T123600Z"
        assert "X-Amz-Security-Token" not in headers
        assert headers["Authorization"].startswith(
            "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20150830/us-east-1/bedrock/aws4_request, "
            "SignedHeaders=content-type;host;x-amz-date, Signature="
        )
        assert len(signature_from(headers)) == 64

    def test_deterministic(self, credentials: Credentials):
        """Same inputs produce identical headers."""
        first = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)
        second = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)
        assert first == second

    def test_body_changes_signature(self, credentials: Credentials):
        """A different body gives a different signature."""
        first = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)
        second = sign("POST", BEDROCK_URL, BODY + " ", credentials, "us-east-1", timestamp=TIMESTAMP)
        assert signature_from(first) != signature_from(second)

    def test_str_and_bytes_body_sign_the_same(self, credentials: Credentials):
        """Text and bytes bodies sign alike."""
        first = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)
        second = sign("POST", BEDROCK_URL, BODY.encode(), credentials, "us-east-1", timestamp=TIMESTAMP)
        assert first == second

    def test_session_token_header(self):
        """A session token is sent and signed."""
        credentials = Credentials(EXAMPLE_ACCESS_KEY, EXAMPLE_SECRET_KEY, session_token="tok")
        headers = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)

        assert headers["X-Amz-Security-Token"] == "tok"
        assert "SignedHeaders=content-type;host;x-amz-date;x-amz-security-token," in headers["Authorization"]

    def test_matches_botocore(self, credentials: Credentials):
        """The signature equals botocore's for the same request."""
        headers = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1", timestamp=TIMESTAMP)
        expected = botocore_signature(BEDROCK_URL, BODY, "20150830T123600Z", "us-east-1", "bedrock")
        assert signature_from(headers) == expected

    def test_matches_botocore_with_session_token(self):
        """The signature with a token equals botocore's."""
        credentials = Credentials(EXAMPLE_ACCESS_KEY, EXAMPLE_SECRET_KEY, session_token="session-tok")
        url = BEDROCK_URL.replace("us-east-1", "eu-west-1")
        headers = sign("POST", url, BODY, credentials, "eu-west-1", timestamp=TIMESTAMP)
        expected = botocore_signature(
            url, BODY, "20150830T123600Z", "eu-west-1", "bedrock", session_token="session-tok"
        )
        assert signature_from(headers) == expected

    def test_missing_secret_key_fails_fast(self):
        """A missing secret key raises."""
        with pytest.raises(ConfigurationError):
            sign("POST", BEDROCK_URL, BODY, Credentials(EXAMPLE_ACCESS_KEY, None), "us-east-1")

    def test_missing_access_key_fails_fast(self):
        """A blank access key raises."""
        with pytest.raises(ConfigurationError):
            sign("POST", BEDROCK_URL, BODY, Credentials("", EXAMPLE_SECRET_KEY), "us-east-1")

    def test_defaults_to_current_time(self, credentials: Credentials):
        """Without a timestamp the current UTC time is used."""
        before = datetime.now(timezone.utc).strftime("%Y%m%d")
        headers = sign("POST", BEDROCK_URL, BODY, credentials, "us-east-1")
        after = datetime.now(timezone.utc).strftime("%Y%m%d")

        assert headers["X-Amz-Date"][:8] in (before, after)
        assert headers["X-Amz-Date"].endswith("Z")
