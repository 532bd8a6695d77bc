"""Tests for bucket CORS and lifecycle calls."""

import pytest

from conftest import fail_times
from r2drop.errors import TransportError
from r2drop.handlers.bucket import BucketHandler
from r2drop.xml_utils import LifecycleRule


@pytest.fixture
def handler(transport, retry_policy, sleep) -> BucketHandler:
    return BucketHandler(transport, retry_policy, sleep=sleep)


class TestCors:
    """Tests for put_cors() and get_cors()."""

    async def test_put_then_get(self, handler, store, credentials):
        assert await handler.get_cors(credentials) is False
        await handler.put_cors(credentials, ["https://app.example.com"])
        assert "<AllowedOrigin>https://app.example.com</AllowedOrigin>" in store.cors
        assert await handler.get_cors(credentials) is True

    async def test_put_request_shape(self, handler, store, credentials):
        await handler.put_cors(credentials, ["*"], allowed_methods=("GET",), max_age_seconds=60)
        request = store.calls("PUT", "cors")[0]
        assert request.url.raw_path == b"/uploads?cors"
        assert request.headers["content-type"] == "application/xml"
        assert "<MaxAgeSeconds>60</MaxAgeSeconds>" in store.cors

    async def test_get_server_error_raises(self, handler, store, credentials):
        """Only 404 means 'not configured'; other failures surface."""
        store.faults.append(fail_times(10, status=500))
        with pytest.raises(TransportError) as exc_info:
            await handler.get_cors(credentials)
        assert exc_info.value.status == 500
        assert len(store.calls("GET", "cors")) == 3


class TestLifecycle:
    """Tests for put_lifecycle() and delete_lifecycle()."""

    async def test_put_and_delete(self, handler, store, credentials):
        await handler.put_lifecycle(
            credentials, [LifecycleRule(id="expire", expiration_days=30, abort_incomplete_days=1)]
        )
        assert "<Days>30</Days>" in store.lifecycle
        assert "<DaysAfterInitiation>1</DaysAfterInitiation>" in store.lifecycle
        assert store.calls("PUT", "lifecycle")[0].url.raw_path == b"/uploads?lifecycle"

        await handler.delete_lifecycle(credentials)
        assert store.lifecycle is None
