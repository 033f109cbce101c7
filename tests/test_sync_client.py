"""Tests for the remote API client, against an httpx mock transport."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from fieldsurvey.services.sync import (
    MalformedResponseError,
    RemoteAuthError,
    RemoteClient,
    RemoteError,
    RemoteTimeoutError,
    StaticTokenProvider,
    WardNotFoundError,
)

BASE_URL = "https://survey.example.org/api"
WARD = {
    "id": "w-4",
    "wardNumber": 4,
    "wardAreaCode": 44604,
    "geometry": {"type": "Polygon", "coordinates": [[[85.3, 27.7], [85.31, 27.7], [85.3, 27.7]]]},
}


def make_client(handler, auth=None) -> RemoteClient:
    return RemoteClient(BASE_URL, "v1", auth, timeout=2, transport=httpx.MockTransport(handler))


class Recorder:
    """Transport handler that records requests and replays a fixed response."""

    def __init__(self, status_code: int = 200, **response_kwargs) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.response_kwargs = response_kwargs

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, **self.response_kwargs)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


# ---------------------------------------------------------------------------
# Requests and auth
# ---------------------------------------------------------------------------


class TestRequests:
    @pytest.mark.asyncio
    async def test_bearer_token_and_versioned_url(self):
        handler = Recorder(json=[WARD])
        async with make_client(handler, StaticTokenProvider("secret-token")) as client:
            wards = await client.get_wards()

        request = handler.requests[0]
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert str(request.url) == f"{BASE_URL}/v1/wards"
        assert [w.ward_number for w in wards] == [4]

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        handler = Recorder(json=[])
        async with make_client(handler) as client:
            assert await client.get_wards() == []
        assert "Authorization" not in handler.requests[0].headers

    @pytest.mark.asyncio
    async def test_data_envelope_is_unwrapped(self):
        handler = Recorder(json={"data": WARD})
        async with make_client(handler) as client:
            ward = await client.get_ward(4)
        assert ward.id == "w-4"
        assert ward.ward_area_code == 44604
        assert str(handler.requests[0].url).endswith("/v1/wards/4")

    @pytest.mark.asyncio
    async def test_unauthorized_notifies_token_provider(self):
        auth = MagicMock()
        auth.current_token.return_value = "expired"
        handler = Recorder(401, json={"message": "Token expired"})
        async with make_client(handler, auth) as client:
            with pytest.raises(RemoteAuthError) as exc_info:
                await client.get_wards()
        auth.on_unauthorized.assert_called_once_with()
        assert exc_info.value.status == 401
        assert exc_info.value.message == "Token expired"

    @pytest.mark.asyncio
    async def test_static_provider_drops_rejected_token(self):
        auth = StaticTokenProvider("stale")
        async with make_client(Recorder(401), auth) as client:
            with pytest.raises(RemoteAuthError):
                await client.get_wards()
        assert auth.current_token() is None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_ward_not_found(self):
        async with make_client(Recorder(404, json={"message": "Not found"})) as client:
            with pytest.raises(WardNotFoundError) as exc_info:
                await client.get_ward(99)
        assert exc_info.value.status == 404
        assert str(exc_info.value) == "[404] Ward 99 not found"

    @pytest.mark.asyncio
    async def test_server_error_carries_message_and_field_errors(self):
        body = {"message": "Validation failed", "errors": {"wardNumber": ["Ward is required"]}}
        async with make_client(Recorder(422, json=body)) as client:
            with pytest.raises(RemoteError) as exc_info:
                await client.push({}, None)
        assert exc_info.value.status == 422
        assert exc_info.value.message == "Validation failed"
        assert exc_info.value.errors == {"wardNumber": ["Ward is required"]}

    @pytest.mark.asyncio
    async def test_server_error_without_body(self):
        async with make_client(Recorder(500)) as client:
            with pytest.raises(RemoteError, match=r"\[500\] Something went wrong"):
                await client.get_wards()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async with make_client(Recorder(200, text="<html>maintenance</html>")) as client:
            with pytest.raises(MalformedResponseError):
                await client.get_wards()

    @pytest.mark.asyncio
    async def test_wards_payload_must_be_a_list(self):
        async with make_client(Recorder(200, json={"wards": []})) as client:
            with pytest.raises(MalformedResponseError, match="expected a list"):
                await client.get_wards()

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RemoteTimeoutError, match="timed out after 2s"):
                await client.get_wards()

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RemoteError) as exc_info:
                await client.get_wards()
        assert exc_info.value.status is None


# ---------------------------------------------------------------------------
# Sync RPC
# ---------------------------------------------------------------------------


class TestSyncRpc:
    @pytest.mark.asyncio
    async def test_pull_request_and_response(self):
        handler = Recorder(
            json={"changes": {"wards": {"created": [WARD], "updated": [], "deleted": ["w-9"]}}, "timestamp": 1714550400000}
        )
        async with make_client(handler) as client:
            pulled = await client.pull(1714500000000, 1)

        assert handler.requests[0].method == "POST"
        assert str(handler.requests[0].url).endswith("/v1/sync/pull")
        assert handler.last_json == {"lastPulledAt": 1714500000000, "schemaVersion": 1}
        assert pulled.timestamp == 1714550400000
        assert pulled.changes["wards"].created[0]["wardNumber"] == 4
        assert pulled.changes["wards"].deleted == ["w-9"]

    @pytest.mark.asyncio
    async def test_pull_without_timestamp_is_malformed(self):
        async with make_client(Recorder(json={"changes": {}})) as client:
            with pytest.raises(MalformedResponseError):
                await client.pull(None, 1)

    @pytest.mark.asyncio
    async def test_push_body(self):
        handler = Recorder(200)
        changes = {"survey_responses": {"created": [{"id": "resp-1"}], "updated": [], "deleted": []}}
        async with make_client(handler) as client:
            assert await client.push(changes, None) is None
        assert str(handler.requests[0].url).endswith("/v1/sync/push")
        assert handler.last_json == {"changes": changes, "lastPulledAt": None}
