"""AWS Signature Version 4 request signing for r2drop.

Implements the SigV4 signing algorithm for both header-based auth
(Authorization header) and query-string auth (presigned URLs), plus an
offline verifier for presigned URLs that re-derives the signature from the
URL itself.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
    - https://developers.cloudflare.com/r2/api/s3/tokens/
"""

from __future__ import annotations

import hmac
import logging
import re
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from r2drop.errors import InvalidPresignRequest
from r2drop.hashing import hmac_sha256, hmac_sha256_hex, sha256_hex

if TYPE_CHECKING:
    from r2drop.config import StorageCredentials

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
DEFAULT_REGION = "auto"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
MAX_PRESIGNED_EXPIRES = 604800  # 7 days in seconds
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

_PRESIGN_REQUIRED = (
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Signature",
)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class SigningContext:
    """Timestamp and scope shared by every part of one signed request.

    Attributes:
        timestamp: UTC signing time, second precision.
        region: Region component of the credential scope.
        service: Service component of the credential scope.
    """

    timestamp: datetime
    region: str = DEFAULT_REGION
    service: str = SERVICE_NAME

    @classmethod
    def now(cls, region: str = DEFAULT_REGION, clock: Clock | None = None) -> SigningContext:
        """Create a context stamped with the current time."""
        ts = (clock or utcnow)()
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(timestamp=ts.astimezone(timezone.utc).replace(microsecond=0), region=region)

    @property
    def amz_date(self) -> str:
        """Full timestamp form, ``YYYYMMDDTHHMMSSZ``."""
        return self.timestamp.strftime(AMZ_DATE_FORMAT)

    @property
    def date_stamp(self) -> str:
        """Date-only form, ``YYYYMMDD``."""
        return self.timestamp.strftime("%Y%m%d")

    @property
    def credential_scope(self) -> str:
        return f"{self.date_stamp}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"


@dataclass(frozen=True)
class CanonicalRequest:
    """The order-normalized form of an HTTP request used as signing input."""

    method: str
    path: str
    canonical_query: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    def to_string(self) -> str:
        # canonical_headers ends with "\n", which yields the blank separator line.
        return "\n".join(
            [
                self.method,
                self.path,
                self.canonical_query,
                self.canonical_headers,
                self.signed_headers,
                self.payload_hash,
            ]
        )


@dataclass(frozen=True)
class AuthorizationValue:
    """A computed SigV4 authorization.

    Attributes:
        algorithm: Always ``AWS4-HMAC-SHA256``.
        credential: ``{access_key_id}/{credential_scope}``.
        signed_headers: Semicolon-joined signed header names.
        signature: 64-character lowercase hex signature.
    """

    algorithm: str
    credential: str
    signed_headers: str
    signature: str

    def to_header(self) -> str:
        """Serialize as an ``Authorization`` header value."""
        return (
            f"{self.algorithm} Credential={self.credential}, "
            f"SignedHeaders={self.signed_headers}, Signature={self.signature}"
        )


# -- Canonical request construction --------------------------------------------


def build_canonical_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    query: Mapping[str, str] | None = None,
    payload_hash: str = EMPTY_SHA256,
) -> CanonicalRequest:
    """Build the canonical request for a set of headers and query parameters.

    Every header passed in is signed. Header names are lower-cased and sorted,
    values are trimmed and inner runs of spaces collapsed.

    Args:
        method: HTTP method.
        path: Unencoded request path (e.g. ``/bucket/my key.txt``).
        headers: Headers to sign, any case, any order.
        query: Query parameters; ``""`` values render as ``name=``.
        payload_hash: SHA-256 hex of the body, or ``UNSIGNED-PAYLOAD``.

    Returns:
        The canonical request.
    """
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in lower_headers:
            lower_headers[lower_name] += "," + _trim_header_value(value)
        else:
            lower_headers[lower_name] = _trim_header_value(value)

    sorted_names = sorted(lower_headers)
    canonical_headers = "".join(f"{name}:{lower_headers[name]}\n" for name in sorted_names)

    return CanonicalRequest(
        method=method.upper(),
        path=uri_encode_path(path),
        canonical_query=canonical_query_string(query or {}),
        canonical_headers=canonical_headers,
        signed_headers=";".join(sorted_names),
        payload_hash=payload_hash,
    )


def build_string_to_sign(context: SigningContext, canonical_request: CanonicalRequest) -> str:
    """Build the string to sign for a canonical request."""
    canonical_hash = sha256_hex(canonical_request.to_string())
    return f"{ALGORITHM}\n{context.amz_date}\n{context.credential_scope}\n{canonical_hash}"


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: Signing region (``auto`` for R2).
        service: Service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac_sha256((KEY_PREFIX + secret_key).encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def _signature(
    credentials: StorageCredentials,
    context: SigningContext,
    canonical_request: CanonicalRequest,
) -> str:
    string_to_sign = build_string_to_sign(context, canonical_request)
    signing_key = derive_signing_key(
        credentials.secret_access_key, context.date_stamp, context.region, context.service
    )
    return hmac_sha256_hex(signing_key, string_to_sign)


# -- Header-based signing ------------------------------------------------------


def sign_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    credentials: StorageCredentials,
    payload_hash: str,
    query: Mapping[str, str] | None = None,
    context: SigningContext | None = None,
) -> AuthorizationValue:
    """Compute the SigV4 authorization for a request.

    The ``x-amz-date`` header, when present, must match ``context``; when
    ``context`` is omitted it is rebuilt from that header so both agree.

    Args:
        method: HTTP method.
        path: Unencoded request path.
        headers: All headers that will be signed and sent.
        credentials: The storage credentials.
        payload_hash: SHA-256 hex of the body.
        query: Query parameters sent with the request.
        context: Signing time and scope.

    Returns:
        The authorization value.
    """
    if context is None:
        amz_date = _header(headers, "x-amz-date")
        if amz_date:
            ts = datetime.strptime(amz_date, AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
            context = SigningContext(timestamp=ts, region=credentials.region)
        else:
            context = SigningContext.now(region=credentials.region)

    canonical_request = build_canonical_request(method, path, headers, query, payload_hash)
    return AuthorizationValue(
        algorithm=ALGORITHM,
        credential=f"{credentials.access_key_id}/{context.credential_scope}",
        signed_headers=canonical_request.signed_headers,
        signature=_signature(credentials, context, canonical_request),
    )


def sign(
    method: str,
    path: str,
    headers: Mapping[str, str],
    credentials: StorageCredentials,
    payload: bytes | str = b"",
    query: Mapping[str, str] | None = None,
    context: SigningContext | None = None,
) -> AuthorizationValue:
    """Like :func:`sign_request`, hashing the raw ``payload`` first."""
    return sign_request(
        method, path, headers, credentials, sha256_hex(payload), query=query, context=context
    )


def build_signed_headers(
    method: str,
    path: str,
    credentials: StorageCredentials,
    payload_hash: str,
    query: Mapping[str, str] | None = None,
    extra_headers: Mapping[str, str] | None = None,
    context: SigningContext | None = None,
) -> dict[str, str]:
    """Return the full header set for a signed request, Authorization included.

    The Host, X-Amz-Date and X-Amz-Content-Sha256 headers all derive from the
    single ``context`` so the signature and the sent headers cannot drift.
    """
    context = context or SigningContext.now(region=credentials.region)
    headers = {
        "Host": credentials.host,
        "X-Amz-Date": context.amz_date,
        "X-Amz-Content-Sha256": payload_hash,
    }
    if extra_headers:
        headers.update(extra_headers)
    authorization = sign_request(
        method, path, headers, credentials, payload_hash, query=query, context=context
    )
    headers["Authorization"] = authorization.to_header()
    return headers


# -- Query-string (presigned) signing ------------------------------------------


def check_presign_expires(expires: int) -> None:
    """Raise InvalidPresignRequest unless ``expires`` is within 1..604800."""
    if expires < 1 or expires > MAX_PRESIGNED_EXPIRES:
        raise InvalidPresignRequest(
            f"X-Amz-Expires must be between 1 and {MAX_PRESIGNED_EXPIRES} seconds."
        )


def presign_query(
    method: str,
    path: str,
    credentials: StorageCredentials,
    expires: int,
    context: SigningContext | None = None,
    query: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Compute the ``X-Amz-*`` query parameters of a presigned URL.

    Only ``host`` is signed and the payload is ``UNSIGNED-PAYLOAD``, so the URL
    can be used without adding headers (e.g. opened in a browser).

    Args:
        method: HTTP method the URL is valid for.
        path: Unencoded request path.
        credentials: The storage credentials.
        expires: Validity in seconds, 1..604800.
        context: Signing time and scope; the window starts at its timestamp.
        query: Extra query parameters to sign alongside the auth parameters.

    Returns:
        All query parameters of the URL, X-Amz-Signature included.

    Raises:
        InvalidPresignRequest: If ``expires`` is out of range.
    """
    check_presign_expires(expires)
    context = context or SigningContext.now(region=credentials.region)

    params = dict(query or {})
    params.update(
        {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{credentials.access_key_id}/{context.credential_scope}",
            "X-Amz-Date": context.amz_date,
            "X-Amz-Expires": str(expires),
            "X-Amz-SignedHeaders": "host",
        }
    )
    canonical_request = build_canonical_request(
        method, path, {"host": credentials.host}, params, UNSIGNED_PAYLOAD
    )
    params["X-Amz-Signature"] = _signature(credentials, context, canonical_request)
    return params


def verify_presigned_url(
    url: str,
    credentials: StorageCredentials,
    method: str = "GET",
    now: datetime | None = None,
) -> bool:
    """Check a presigned URL offline by re-deriving its signature.

    Args:
        url: The full presigned URL.
        credentials: The credentials the URL is expected to be signed with.
        method: The HTTP method the URL is expected to authorize.
        now: Reference time for the expiry check (defaults to now).

    Returns:
        True only if the URL is unexpired and its signature matches the
        exact host, path and query it carries.
    """
    parts = urllib.parse.urlsplit(url)
    params = dict(urllib.parse.parse_qsl(parts.query, keep_blank_values=True))
    if any(name not in params for name in _PRESIGN_REQUIRED):
        return False
    if params["X-Amz-Algorithm"] != ALGORITHM or params["X-Amz-SignedHeaders"] != "host":
        return False

    credential_parts = params["X-Amz-Credential"].split("/")
    if len(credential_parts) != 5 or credential_parts[4] != SCOPE_TERMINATOR:
        return False
    access_key, date_stamp, region, service, _ = credential_parts
    if access_key != credentials.access_key_id:
        return False

    try:
        signed_at = datetime.strptime(params["X-Amz-Date"], AMZ_DATE_FORMAT).replace(
            tzinfo=timezone.utc
        )
        expires = int(params["X-Amz-Expires"])
    except ValueError:
        return False
    if signed_at.strftime("%Y%m%d") != date_stamp:
        return False

    now = now or utcnow()
    if now.timestamp() > signed_at.timestamp() + expires:
        logger.debug("Presigned URL expired at %s", signed_at.timestamp() + expires)
        return False

    provided = params.pop("X-Amz-Signature")
    context = SigningContext(timestamp=signed_at, region=region, service=service)
    canonical_request = build_canonical_request(
        method,
        urllib.parse.unquote(parts.path),
        {"host": parts.netloc},
        params,
        UNSIGNED_PAYLOAD,
    )
    expected = _signature(credentials, context, canonical_request)
    return hmac.compare_digest(expected, provided)


# ---------------------------------------------------------------------------
# Module-level utility functions
# ---------------------------------------------------------------------------


def _header(headers: Mapping[str, str], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return ""


def uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).

    Args:
        s: The string to encode.
        encode_slash: If True (default), '/' is encoded as %2F.

    Returns:
        The URI-encoded string.
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def uri_encode_path(path: str) -> str:
    """URI-encode a path segment by segment, preserving forward slashes."""
    if not path:
        return "/"
    result = "/".join(uri_encode(seg, encode_slash=False) for seg in path.split("/"))
    if not result.startswith("/"):
        result = "/" + result
    return result


def canonical_query_string(params: Mapping[str, str]) -> str:
    """Build the canonical query string from decoded parameters.

    Parameters are sorted by encoded name, then by value. Parameters with no
    value render as ``name=`` (e.g. ``uploads=``).
    """
    encoded = sorted(
        (uri_encode(str(name)), uri_encode(str(value))) for name, value in params.items()
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def wire_query_string(params: Mapping[str, str]) -> str:
    """Build the query string actually sent, in canonical order.

    Valueless markers are sent bare (``?uploads``); the store canonicalizes
    them to ``uploads=`` exactly as the signer does.
    """
    encoded = sorted(
        (uri_encode(str(name)), uri_encode(str(value))) for name, value in params.items()
    )
    return "&".join(f"{name}={value}" if value else name for name, value in encoded)


def _trim_header_value(value: str) -> str:
    """Strip surrounding whitespace and collapse inner runs of spaces."""
    return re.sub(r" +", " ", value.strip())
