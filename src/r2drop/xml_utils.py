"""S3 XML request rendering and response parsing helpers for r2drop."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape as _sax_escape

if TYPE_CHECKING:
    from r2drop.models import UploadPart

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"
_NS = "{" + S3_NAMESPACE + "}"

DEFAULT_CORS_METHODS = ("GET", "PUT", "POST", "DELETE", "HEAD")


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value.

    Args:
        value: The raw string to escape.

    Returns:
        The XML-safe escaped string.
    """
    return _sax_escape(str(value))


# -- Request bodies ------------------------------------------------------------


def render_complete_multipart_upload(parts: Sequence[UploadPart]) -> str:
    """Render a CompleteMultipartUpload request body.

    Parts are emitted sorted ascending by part number whatever order they
    are given in, since concurrent parts finish out of sequence.

    Args:
        parts: The uploaded parts with their ETags.

    Returns:
        An XML string for CompleteMultipartUpload.
    """
    xml_parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CompleteMultipartUpload xmlns="{S3_NAMESPACE}">',
    ]
    for part in sorted(parts, key=lambda p: p.part_number):
        xml_parts.append("<Part>")
        xml_parts.append(f"<PartNumber>{part.part_number}</PartNumber>")
        xml_parts.append(f"<ETag>{_escape_xml(part.etag)}</ETag>")
        xml_parts.append("</Part>")
    xml_parts.append("</CompleteMultipartUpload>")
    return "\n".join(xml_parts)


def render_cors_configuration(
    allowed_origins: Iterable[str],
    allowed_methods: Iterable[str] = DEFAULT_CORS_METHODS,
    allowed_headers: Iterable[str] = ("*",),
    expose_headers: Iterable[str] = ("ETag",),
    max_age_seconds: int = 3000,
) -> str:
    """Render a CORSConfiguration request body with a single rule.

    ETag must be exposed for browsers to read part ETags during multipart
    uploads.

    Returns:
        An XML string for CORSConfiguration.
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CORSConfiguration xmlns="{S3_NAMESPACE}">',
        "<CORSRule>",
    ]
    parts.extend(f"<AllowedOrigin>{_escape_xml(o)}</AllowedOrigin>" for o in allowed_origins)
    parts.extend(f"<AllowedMethod>{_escape_xml(m)}</AllowedMethod>" for m in allowed_methods)
    parts.extend(f"<AllowedHeader>{_escape_xml(h)}</AllowedHeader>" for h in allowed_headers)
    parts.extend(f"<ExposeHeader>{_escape_xml(h)}</ExposeHeader>" for h in expose_headers)
    parts.append(f"<MaxAgeSeconds>{int(max_age_seconds)}</MaxAgeSeconds>")
    parts.append("</CORSRule>")
    parts.append("</CORSConfiguration>")
    return "\n".join(parts)


@dataclass(frozen=True)
class LifecycleRule:
    """One object-expiration rule.

    Attributes:
        id: Rule identifier, unique within the bucket.
        prefix: Key prefix the rule applies to ("" for the whole bucket).
        expiration_days: Delete objects this many days after upload.
        abort_incomplete_days: Abort unfinished multipart uploads after this
            many days, if set.
        enabled: Whether the rule is active.
    """

    id: str
    expiration_days: int | None = None
    prefix: str = ""
    abort_incomplete_days: int | None = None
    enabled: bool = True


def render_lifecycle_configuration(rules: Sequence[LifecycleRule]) -> str:
    """Render a LifecycleConfiguration request body.

    Args:
        rules: The rules to install; replaces any existing configuration.

    Returns:
        An XML string for LifecycleConfiguration.
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<LifecycleConfiguration xmlns="{S3_NAMESPACE}">',
    ]
    for rule in rules:
        parts.append("<Rule>")
        parts.append(f"<ID>{_escape_xml(rule.id)}</ID>")
        parts.append(f"<Filter><Prefix>{_escape_xml(rule.prefix)}</Prefix></Filter>")
        parts.append(f"<Status>{'Enabled' if rule.enabled else 'Disabled'}</Status>")
        if rule.expiration_days is not None:
            parts.append(f"<Expiration><Days>{int(rule.expiration_days)}</Days></Expiration>")
        if rule.abort_incomplete_days is not None:
            parts.append(
                "<AbortIncompleteMultipartUpload>"
                f"<DaysAfterInitiation>{int(rule.abort_incomplete_days)}</DaysAfterInitiation>"
                "</AbortIncompleteMultipartUpload>"
            )
        parts.append("</Rule>")
    parts.append("</LifecycleConfiguration>")
    return "\n".join(parts)


# -- Response parsing ----------------------------------------------------------


def _find_elem(parent: ET.Element, name: str) -> ET.Element | None:
    """Find a child element, trying the S3-namespaced name first, then bare.

    Uses explicit ``is not None`` checks to avoid ElementTree's deprecated
    truth-value testing of elements.
    """
    elem = parent.find(f"{_NS}{name}")
    if elem is not None:
        return elem
    return parent.find(name)


def _parse(body: str) -> ET.Element | None:
    if not body or not body.strip():
        return None
    try:
        return ET.fromstring(body)
    except ET.ParseError:
        return None


def parse_upload_id(body: str) -> str | None:
    """Extract the UploadId from an InitiateMultipartUploadResult body.

    Returns:
        The upload id, or None if the body carries none.
    """
    root = _parse(body)
    if root is None:
        return None
    elem = _find_elem(root, "UploadId")
    if elem is None or not (elem.text or "").strip():
        return None
    return elem.text.strip()


def parse_error(body: str) -> tuple[str, str]:
    """Extract (Code, Message) from an S3 ``<Error>`` body.

    Returns:
        The error code and message, or ("", "") if the body is not an error
        document.
    """
    root = _parse(body)
    if root is None or root.tag.rsplit("}", 1)[-1] != "Error":
        return "", ""
    code = _find_elem(root, "Code")
    message = _find_elem(root, "Message")
    return (
        (code.text or "") if code is not None else "",
        (message.text or "") if message is not None else "",
    )
