"""Tests for the RADIUS REST client and control gateway."""

from __future__ import annotations

import json

import httpx
import pytest

from billing_worker.core.errors import DataError, TransientGatewayError
from billing_worker.core.settings import RadiusEndpoint, RadiusSettings
from billing_worker.gateways.radius import RadiusControlGateway, RadiusRestClient, build_clients

USERS = "/rest/user-manage/user"
SESSIONS = "/rest/user-manage/session"


async def _no_sleep(delay):
    return None


def _endpoint(name: str = "main") -> RadiusEndpoint:
    return RadiusEndpoint(name=name, base_url=f"https://{name}.radius.example", username="api", password="secret")


def _client(recorder, name: str = "main", **kwargs) -> RadiusRestClient:
    return RadiusRestClient(_endpoint(name), client=recorder.client(), sleep=_no_sleep, **kwargs)


def _user(user_id="*1", name="juan", group="Fiber-50"):
    return {".id": user_id, "name": name, "group": group, "disabled": "false"}


def _session(session_id="*A", user="juan"):
    return {
        ".id": session_id,
        "user": user,
        "user-address": "10.0.0.5",
        "calling-station-id": "AA:BB:CC:DD:EE:FF",
        "upload": "1024",
        "download": "oops",
    }


class TestRadiusRestClient:
    @pytest.mark.asyncio
    async def test_list_users_and_sessions(self, recorder_factory):
        recorder = recorder_factory(
            {
                f"GET {USERS}": httpx.Response(200, json=[_user(), {"name": ""}]),
                f"GET {SESSIONS}": httpx.Response(200, json=[_session()]),
            }
        )
        client = _client(recorder)

        [user] = await client.list_users()
        [session] = await client.list_sessions()

        assert (user.id, user.name, user.group, user.disabled) == ("*1", "juan", "Fiber-50", False)
        assert session.address == "10.0.0.5"
        assert session.mac_address == "AA:BB:CC:DD:EE:FF"
        assert (session.upload, session.download) == (1024, 0)
        assert recorder.requests[0].headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_find_user_matches_exact_name(self, recorder_factory):
        recorder = recorder_factory({f"GET {USERS}": httpx.Response(200, json=[_user(name="juan2"), _user("*2", "juan")])})
        user = await _client(recorder).find_user("juan")
        assert user.id == "*2"
        assert recorder.requests[0].url.params["name"] == "juan"

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, recorder_factory):
        recorder = recorder_factory(
            {f"GET {USERS}": [httpx.Response(503), httpx.Response(503), httpx.Response(200, json=[_user()])]}
        )
        users = await _client(recorder, max_tries=3).list_users()
        assert len(users) == 1
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_tries(self, recorder_factory):
        recorder = recorder_factory({f"GET {USERS}": httpx.Response(503)})
        with pytest.raises(TransientGatewayError):
            await _client(recorder, max_tries=3).list_users()
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_non_list_body_is_data_error(self, recorder_factory):
        recorder = recorder_factory({f"GET {USERS}": httpx.Response(200, json={"error": "denied"})})
        with pytest.raises(DataError):
            await _client(recorder).list_users()
        assert len(recorder.requests) == 1

    def test_build_clients(self):
        settings = RadiusSettings(endpoints=[_endpoint("a"), _endpoint("b")], max_tries=5, retry_delay_seconds=1)
        clients = build_clients(settings)
        assert [c.endpoint.name for c in clients] == ["a", "b"]
        assert clients[0].max_tries == 5
        assert clients[0].client_options()["verify"] is False


class TestRadiusControlGateway:
    @pytest.mark.asyncio
    async def test_disconnect_moves_group_and_drops_sessions(self, recorder_factory, make_item):
        recorder = recorder_factory(
            {
                f"GET {USERS}": httpx.Response(200, json=[_user()]),
                f"GET {SESSIONS}": httpx.Response(200, json=[_session("*A"), _session("*B")]),
            }
        )
        gateway = RadiusControlGateway([_client(recorder)], disconnected_group="Disconnected")

        result = await gateway.send(make_item("radius", {"username": "juan", "action": "disconnect"}))

        assert result.success is True
        assert result.provider_ref == "main:*1"
        calls = [(r.method, r.url.path) for r in recorder.requests]
        assert ("PATCH", f"{USERS}/*1") in calls
        assert ("DELETE", f"{SESSIONS}/*A") in calls
        assert ("DELETE", f"{SESSIONS}/*B") in calls
        patch = next(r for r in recorder.requests if r.method == "PATCH")
        assert json.loads(patch.content) == {"group": "Disconnected"}

    @pytest.mark.asyncio
    async def test_reconnect_already_in_group_is_noop(self, recorder_factory, make_item):
        recorder = recorder_factory({f"GET {USERS}": httpx.Response(200, json=[_user(group="Fiber-50")])})
        gateway = RadiusControlGateway([_client(recorder)])

        result = await gateway.send(make_item("radius", {"username": "juan", "action": "reconnect", "group": "Fiber-50"}))

        assert result.success is True
        assert [r.method for r in recorder.requests] == ["GET"]

    @pytest.mark.asyncio
    async def test_user_found_on_second_endpoint(self, recorder_factory, make_item):
        first = recorder_factory({f"GET {USERS}": httpx.Response(200, json=[])})
        second = recorder_factory(
            {f"GET {USERS}": httpx.Response(200, json=[_user("*9", group="Disconnected")]), f"GET {SESSIONS}": httpx.Response(200, json=[])}
        )
        gateway = RadiusControlGateway([_client(first, "north"), _client(second, "south")])

        result = await gateway.send(make_item("radius", {"username": "juan", "action": "reconnect", "group": "Fiber-50"}))

        assert result.provider_ref == "south:*9"
        assert any(r.method == "PATCH" for r in second.requests)

    @pytest.mark.asyncio
    async def test_unknown_user_is_permanent(self, recorder_factory, make_item):
        recorder = recorder_factory({f"GET {USERS}": httpx.Response(200, json=[])})
        result = await RadiusControlGateway([_client(recorder)]).send(
            make_item("radius", {"username": "ghost", "action": "disconnect"})
        )
        assert result.permanent is True
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_unknown_user_with_unreachable_endpoint_is_transient(self, recorder_factory, make_item):
        empty = recorder_factory({f"GET {USERS}": httpx.Response(200, json=[])})
        down = recorder_factory({f"GET {USERS}": httpx.Response(503)})
        result = await RadiusControlGateway([_client(empty, "a"), _client(down, "b")]).send(
            make_item("radius", {"username": "juan", "action": "disconnect"})
        )
        assert result.success is False
        assert result.permanent is False

    @pytest.mark.asyncio
    async def test_bad_payloads(self, recorder_factory, make_item):
        gateway = RadiusControlGateway([_client(recorder_factory())])
        unknown = await gateway.send(make_item("radius", {"username": "juan", "action": "suspend"}))
        no_group = await gateway.send(make_item("radius", {"username": "juan", "action": "reconnect"}))
        assert unknown.permanent is True
        assert no_group.permanent is True
