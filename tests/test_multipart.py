"""Tests for the multipart upload lifecycle and orchestration."""

import logging
import xml.etree.ElementTree as ET

import httpx
import pytest

from conftest import error_response, fail_times, is_part
from r2drop.errors import (
    CompletionError,
    InitiationError,
    PartUploadError,
    TransportError,
)
from r2drop.handlers.multipart import MultipartHandler
from r2drop.models import MultipartSession, SessionState
from r2drop.xml_utils import S3_NAMESPACE

KiB = 1024
NS = "{" + S3_NAMESPACE + "}"


def _payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


def _is_complete(request: httpx.Request) -> bool:
    return request.method == "POST" and "uploadId" in request.url.params


@pytest.fixture
def handler(transport, retry_policy, policy, sleep) -> MultipartHandler:
    return MultipartHandler(transport, retry_policy, policy, sleep=sleep)


class TestInitiate:
    """Tests for MultipartHandler.initiate()."""

    async def test_returns_session(self, handler, store, credentials):
        session = await handler.initiate(credentials, "video.mp4", "video/mp4")
        assert session.upload_id == "upload-1"
        assert session.key == "video.mp4"
        assert session.state == SessionState.INITIATED
        request = store.requests[-1]
        assert request.url.raw_path == b"/uploads/video.mp4?uploads"
        assert request.headers["content-type"] == "video/mp4"
        assert request.content == b""

    async def test_missing_upload_id(self, handler, store, credentials):
        """A 200 without an UploadId is retried, then reported."""

        def no_upload_id(request):
            if "uploads" in request.url.params:
                return httpx.Response(200, text="<InitiateMultipartUploadResult/>")
            return None

        store.faults.append(no_upload_id)
        with pytest.raises(InitiationError, match="Failed to get UploadId from response"):
            await handler.initiate(credentials, "video.mp4")
        assert len(store.calls("POST", "uploads")) == 3

    async def test_transport_failure_wrapped(self, handler, store, credentials):
        store.faults.append(fail_times(10, status=403, code="AccessDenied"))
        with pytest.raises(InitiationError) as exc_info:
            await handler.initiate(credentials, "video.mp4")
        assert isinstance(exc_info.value.__cause__, TransportError)
        assert exc_info.value.__cause__.status == 403


class TestUpload:
    """Tests for MultipartHandler.upload()."""

    async def test_parts_complete_out_of_order(self, handler, store, credentials):
        """25 KiB in 10 KiB parts: 10/10/5, finishing 2,1,3, completed as 1,2,3."""
        data = _payload(25 * KiB)
        store.part_delays = {1: 0.02, 3: 0.04}

        session = await handler.upload(credentials, "movie.mkv", data, len(data))

        assert store.completion_order == [2, 1, 3]
        assert [p.size for p in session.sorted_parts()] == [10 * KiB, 10 * KiB, 5 * KiB]
        root = ET.fromstring(store.completed_bodies[-1])
        numbers = [int(p.find(f"{NS}PartNumber").text) for p in root.findall(f"{NS}Part")]
        assert numbers == [1, 2, 3]
        assert store.objects["movie.mkv"] == data
        assert session.state == SessionState.COMPLETED
        assert store.uploads == {}

    async def test_concurrency_bound(self, handler, store, credentials):
        """Ten parts never run more than three at a time."""
        data = _payload(100 * KiB)
        store.part_delays = {n: 0.005 + 0.001 * (n % 3) for n in range(1, 11)}
        await handler.upload(credentials, "big.bin", data, len(data))
        assert store.max_in_flight == 3
        assert sorted(store.completion_order) == list(range(1, 11))
        assert store.objects["big.bin"] == data

    async def test_part_requests_carry_number_and_upload_id(self, handler, store, credentials):
        data = _payload(15 * KiB)
        await handler.upload(credentials, "a.bin", data, len(data))
        parts = store.calls("PUT", "partNumber")
        assert sorted(r.url.params["partNumber"] for r in parts) == ["1", "2"]
        assert {r.url.params["uploadId"] for r in parts} == {"upload-1"}

    async def test_upload_from_path(self, handler, store, credentials, tmp_path):
        data = _payload(25 * KiB)
        path = tmp_path / "movie.mkv"
        path.write_bytes(data)
        await handler.upload(credentials, "movie.mkv", path, len(data))
        assert store.objects["movie.mkv"] == data

    async def test_weighted_progress(self, handler, credentials):
        data = _payload(25 * KiB)
        seen: list[float] = []
        await handler.upload(credentials, "p.bin", data, len(data), on_progress=seen.append)
        assert seen == sorted(seen)
        assert all(0 <= value <= 100 for value in seen)
        assert seen[-1] == pytest.approx(100)

    async def test_part_retried_independently(self, handler, store, credentials, sleep):
        """A flaky part is retried alone; its siblings are uploaded once."""
        store.faults.append(fail_times(2, match=is_part(2)))
        data = _payload(25 * KiB)
        await handler.upload(credentials, "flaky.bin", data, len(data))
        attempts = [r.url.params["partNumber"] for r in store.calls("PUT", "partNumber")]
        assert attempts.count("1") == 1
        assert attempts.count("2") == 3
        assert attempts.count("3") == 1
        assert sleep.delays == [1.0, 2.0]
        assert store.objects["flaky.bin"] == data


class TestFailureHandling:
    """Tests for abort-on-failure behavior."""

    async def test_failing_part_aborts_once(self, handler, store, credentials):
        """Part 3 of 5 fails every attempt: one abort, part error propagated."""
        store.faults.append(fail_times(100, match=is_part(3)))
        data = _payload(50 * KiB)

        with pytest.raises(PartUploadError) as exc_info:
            await handler.upload(credentials, "broken.bin", data, len(data))

        assert exc_info.value.part_number == 3
        assert isinstance(exc_info.value.__cause__, TransportError)
        assert len(store.calls("DELETE", "uploadId")) == 1
        assert [r for r in store.requests if _is_complete(r)] == []
        assert store.uploads == {}
        assert "broken.bin" not in store.objects

    async def test_missing_etag_fails_part(self, handler, store, credentials):
        store.omit_part_etag = True
        data = _payload(25 * KiB)
        with pytest.raises(PartUploadError):
            await handler.upload(credentials, "noetag.bin", data, len(data))
        assert len(store.calls("DELETE", "uploadId")) == 1

    async def test_completion_error_document_aborts(self, handler, store, credentials):
        """A 200 completion response carrying an <Error> body is a failure."""

        def error_body(request):
            if _is_complete(request):
                return httpx.Response(
                    200, text="<Error><Code>InternalError</Code><Message>x</Message></Error>"
                )
            return None

        store.faults.append(error_body)
        data = _payload(25 * KiB)
        with pytest.raises(CompletionError, match="InternalError"):
            await handler.upload(credentials, "c.bin", data, len(data))
        assert len([r for r in store.requests if _is_complete(r)]) == 3
        assert len(store.calls("DELETE", "uploadId")) == 1
        assert store.uploads == {}

    async def test_completion_rejected(self, handler, store, credentials):
        store.faults.append(
            lambda r: error_response(400, "InvalidPart") if _is_complete(r) else None
        )
        data = _payload(25 * KiB)
        with pytest.raises(CompletionError) as exc_info:
            await handler.upload(credentials, "c.bin", data, len(data))
        assert exc_info.value.__cause__.error_code == "InvalidPart"
        assert len(store.calls("DELETE", "uploadId")) == 1

    async def test_abort_failure_swallowed(self, handler, store, credentials, caplog):
        """A failing abort is logged; the part error still propagates."""
        store.faults.append(fail_times(100, match=is_part(1)))
        store.faults.append(fail_times(100, match=lambda r: r.method == "DELETE"))
        data = _payload(25 * KiB)
        with caplog.at_level(logging.ERROR, logger="r2drop.handlers.multipart"):
            with pytest.raises(PartUploadError):
                await handler.upload(credentials, "x.bin", data, len(data))
        assert len(store.calls("DELETE", "uploadId")) == 3
        assert any("Failed to abort" in r.getMessage() for r in caplog.records)

    async def test_abort_unexpected_exception_swallowed(
        self, handler, store, credentials, caplog
    ):
        """Errors outside the client's own hierarchy never replace the part error."""

        def broken_delete(request: httpx.Request) -> httpx.Response | None:
            if request.method == "DELETE":
                raise RuntimeError("client has been closed")
            return None

        store.faults.append(fail_times(100, match=is_part(2)))
        store.faults.append(broken_delete)
        data = _payload(25 * KiB)
        with caplog.at_level(logging.ERROR, logger="r2drop.handlers.multipart"):
            with pytest.raises(PartUploadError) as exc_info:
                await handler.upload(credentials, "x.bin", data, len(data))
        assert exc_info.value.part_number == 2
        failed = [r for r in caplog.records if "Failed to abort" in r.getMessage()]
        assert failed and failed[0].exc_info is not None

    async def test_abort_leaves_session_aborted_on_unexpected_exception(
        self, handler, store, credentials
    ):
        def broken_delete(request: httpx.Request) -> httpx.Response | None:
            raise RuntimeError("boom")

        store.faults.append(broken_delete)
        session = MultipartSession(
            upload_id="upload-9", key="k", state=SessionState.PARTS_IN_FLIGHT
        )
        await handler.abort(credentials, session)
        assert session.state == SessionState.ABORTED

    async def test_abort_unknown_upload_tolerated(self, handler, store, credentials):
        session = MultipartSession(
            upload_id="gone", key="k", state=SessionState.PARTS_IN_FLIGHT
        )
        await handler.abort(credentials, session)
        assert session.state == SessionState.ABORTED

    async def test_initiation_failure_has_nothing_to_abort(self, handler, store, credentials):
        store.faults.append(fail_times(10, match=lambda r: "uploads" in r.url.params))
        data = _payload(25 * KiB)
        with pytest.raises(InitiationError):
            await handler.upload(credentials, "x.bin", data, len(data))
        assert store.calls("DELETE") == []
        assert store.calls("PUT") == []
