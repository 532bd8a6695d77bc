"""Data model types for r2drop uploads.

These dataclasses represent the multipart session state owned by a single
upload call and the result returned to callers.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field


@dataclass
class UploadPart:
    """One uploaded part of a multipart upload.

    Attributes:
        part_number: 1-based part number.
        size: Size of the part in bytes.
        etag: Opaque ETag returned by the store, quotes preserved.
    """

    part_number: int
    size: int
    etag: str = ""


class SessionState(str, enum.Enum):
    """Lifecycle states of a multipart session."""

    INITIATED = "initiated"
    PARTS_IN_FLIGHT = "parts_in_flight"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTING = "aborting"
    ABORTED = "aborted"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.INITIATED: frozenset({SessionState.PARTS_IN_FLIGHT, SessionState.ABORTING}),
    SessionState.PARTS_IN_FLIGHT: frozenset({SessionState.COMPLETING, SessionState.ABORTING}),
    SessionState.COMPLETING: frozenset({SessionState.COMPLETED, SessionState.ABORTING}),
    SessionState.ABORTING: frozenset({SessionState.ABORTED}),
    SessionState.COMPLETED: frozenset(),
    SessionState.ABORTED: frozenset(),
}


@dataclass
class MultipartSession:
    """Server-side multipart upload tracked by one orchestration call.

    Attributes:
        upload_id: The store-assigned upload id.
        key: The object key being assembled.
        parts: Uploaded parts keyed by part number.
        state: Current lifecycle state.
    """

    upload_id: str
    key: str
    parts: dict[int, UploadPart] = field(default_factory=dict)
    state: SessionState = SessionState.INITIATED

    @property
    def terminal(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.ABORTED)

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Invalid session transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def record_part(self, part: UploadPart) -> None:
        self.parts[part.part_number] = part

    def sorted_parts(self) -> list[UploadPart]:
        """Return recorded parts ascending by part number."""
        return [self.parts[n] for n in sorted(self.parts)]


@dataclass
class UploadResult:
    """What a successful upload returns to its caller.

    Attributes:
        file_id: The object key.
        url: Presigned or public download URL.
        size: Uploaded size in bytes.
        multipart: Whether the multipart path was used.
        fingerprint: De-duplication fingerprint of the content.
    """

    file_id: str
    url: str
    size: int = 0
    multipart: bool = False
    fingerprint: str = ""


def plan_parts(total_size: int, part_size: int) -> list[UploadPart]:
    """Split ``total_size`` bytes into parts of ``part_size`` bytes.

    Produces ``ceil(total_size / part_size)`` parts; the last one carries the
    remainder.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    count = math.ceil(total_size / part_size)
    return [
        UploadPart(part_number=i + 1, size=min(part_size, total_size - i * part_size))
        for i in range(count)
    ]
