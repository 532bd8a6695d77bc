"""Object key naming for uploaded files."""

import re
import secrets
import string
from datetime import datetime, timezone

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_file_name(file_name: str) -> str:
    """Make a file name safe to use as an object key.

    Whitespace runs become hyphens, path separators, shell/Windows-reserved
    characters and control characters are dropped, repeated dots and hyphens
    collapse, and leading/trailing dots and hyphens are trimmed. Non-ASCII
    letters are kept; the key is percent-encoded only on the wire.

    Returns:
        The sanitized name, or ``"unnamed-file"`` if nothing is left.
    """
    name = re.sub(r"\s+", "-", file_name)
    name = _UNSAFE_CHARS.sub("", name)
    name = re.sub(r"\.{2,}", ".", name)
    name = re.sub(r"-{2,}", "-", name)
    name = name.strip(".-")
    return name or "unnamed-file"


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def hashed_file_name(file_name: str, now: datetime | None = None) -> str:
    """Replace a file name with an unguessable, time-ordered one.

    The extension is preserved so browsers still infer the content type,
    e.g. ``report.pdf`` -> ``20261018093000-k3j9x2.pdf``.
    """
    dot = file_name.rfind(".")
    extension = file_name[dot:] if dot != -1 else ""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    return f"{stamp}-{_random_suffix(6)}{extension}"
