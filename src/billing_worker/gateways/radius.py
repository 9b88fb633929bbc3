"""RADIUS access control over the MikroTik User-Manager REST API.

Two consumers share :class:`RadiusRestClient`:

- the sync source (``sync.radius``) reads users and active sessions;
- :class:`RadiusControlGateway` delivers ``radius`` work items that
  disconnect or reconnect a subscriber.

REST surface used::

    GET    /rest/user-manage/user              [{".id", "name", "group", "disabled"}]
    GET    /rest/user-manage/session           [{".id", "user", "user-address",
                                                 "calling-station-id", "upload", "download"}]
    PATCH  /rest/user-manage/user/{id}         {"group": "..."}
    DELETE /rest/user-manage/session/{id}

Each call is tried up to ``max_tries`` times, ``retry_delay_seconds`` apart.
Several endpoints may be configured; a subscriber lives on one of them.

Radius payload::

    {"username": "juan.dc1001", "action": "disconnect" | "reconnect", "group": "Plan-50Mbps"}
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from billing_worker.core.errors import DataError, PermanentFailure, TransientGatewayError, WorkerError
from billing_worker.core.logging import get_logger
from billing_worker.core.models import WorkItem
from billing_worker.core.settings import RadiusEndpoint, RadiusSettings
from billing_worker.execution.retry import ConstantBackoff, RetryContext

from .base import Gateway, GatewayResult, HttpService, require

logger = get_logger(__name__)

USER_PATH = "/rest/user-manage/user"
SESSION_PATH = "/rest/user-manage/session"


@dataclass(frozen=True)
class RadiusUser:
    id: str
    name: str
    group: str | None = None
    disabled: bool = False


@dataclass(frozen=True)
class RadiusSession:
    id: str
    user: str
    address: str | None = None
    mac_address: str | None = None
    upload: int = 0
    download: int = 0


class RadiusRestClient(HttpService):
    """Basic-auth REST client for one User-Manager endpoint."""

    name = "radius"

    def __init__(
        self,
        endpoint: RadiusEndpoint,
        *,
        timeout: float = 10.0,
        max_tries: int = 3,
        retry_delay_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.endpoint = endpoint
        self.base_url = endpoint.base_url.rstrip("/")
        self.max_tries = max_tries
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def client_options(self) -> dict[str, Any]:
        return {"timeout": self.timeout, "verify": self.endpoint.verify_tls}

    async def call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """One REST call with bounded in-call retries."""
        retry = RetryContext(
            ConstantBackoff(delay=self.retry_delay_seconds, max_retries=self.max_tries),
            on_retry=lambda attempt, error, delay: logger.warning(
                "radius.call_retry",
                endpoint=self.endpoint.name,
                path=path,
                attempt=attempt,
                error=str(error),
            ),
            sleep=self._sleep,
        )
        return await retry.run_async(
            self.request,
            method,
            f"{self.base_url}{path}",
            auth=(self.endpoint.username, self.endpoint.password),
            **kwargs,
        )

    async def _json_list(self, path: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        response = await self.call("GET", path, params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise DataError(f"radius endpoint {self.endpoint.name} returned invalid JSON", cause=e) from e
        if not isinstance(data, list):
            raise DataError(f"radius endpoint {self.endpoint.name} returned {type(data).__name__}, expected list")
        return data

    async def list_users(self) -> list[RadiusUser]:
        return [_to_user(row) for row in await self._json_list(USER_PATH) if row.get("name")]

    async def list_sessions(self) -> list[RadiusSession]:
        return [_to_session(row) for row in await self._json_list(SESSION_PATH) if row.get("user")]

    async def find_user(self, username: str) -> RadiusUser | None:
        rows = await self._json_list(USER_PATH, params={"name": username})
        for row in rows:
            if row.get("name") == username:
                return _to_user(row)
        return None

    async def sessions_for(self, username: str) -> list[RadiusSession]:
        rows = await self._json_list(SESSION_PATH, params={"user": username})
        return [_to_session(row) for row in rows if row.get("user") == username]

    async def set_group(self, user_id: str, group: str) -> None:
        await self.call("PATCH", f"{USER_PATH}/{user_id}", json={"group": group})

    async def remove_session(self, session_id: str) -> None:
        await self.call("DELETE", f"{SESSION_PATH}/{session_id}")


def build_clients(settings: RadiusSettings, **kwargs: Any) -> list[RadiusRestClient]:
    """One client per configured endpoint."""
    return [
        RadiusRestClient(
            endpoint,
            timeout=settings.request_timeout_seconds,
            max_tries=settings.max_tries,
            retry_delay_seconds=settings.retry_delay_seconds,
            **kwargs,
        )
        for endpoint in settings.endpoints
    ]


class RadiusControlGateway(Gateway):
    """Disconnect or reconnect a subscriber.

    Disconnect moves the user to the disconnected group and drops its live
    sessions. Reconnect restores the plan group and drops any session still
    attached under the old group so the router re-authenticates it.
    """

    name = "radius"

    def __init__(self, clients: Sequence[RadiusRestClient], disconnected_group: str = "Disconnected") -> None:
        self.clients = list(clients)
        self.disconnected_group = disconnected_group

    async def _locate(self, username: str) -> tuple[RadiusRestClient, RadiusUser]:
        errors: list[str] = []
        for client in self.clients:
            try:
                user = await client.find_user(username)
            except WorkerError as e:
                if not e.retryable:
                    raise
                errors.append(f"{client.endpoint.name}: {e.message}")
                continue
            if user is not None:
                return client, user
        if errors:
            raise TransientGatewayError(f"could not reach all radius endpoints: {'; '.join(errors)}")
        raise PermanentFailure(f"radius user not found: {username}")

    async def deliver(self, item: WorkItem) -> GatewayResult:
        if not self.clients:
            raise PermanentFailure("no radius endpoints configured")
        username, action = require(item.payload, "username", "action")
        if action == "disconnect":
            target_group = self.disconnected_group
        elif action == "reconnect":
            (target_group,) = require(item.payload, "group")
        else:
            raise DataError(f"unknown radius action: {action!r}")

        client, user = await self._locate(username)
        group_changed = user.group != target_group
        if group_changed:
            await client.set_group(user.id, target_group)

        removed = 0
        if action == "disconnect" or group_changed:
            for session in await client.sessions_for(username):
                await client.remove_session(session.id)
                removed += 1

        logger.info(
            "radius.access_changed",
            username=username,
            action=action,
            endpoint=client.endpoint.name,
            group=target_group,
            group_changed=group_changed,
            sessions_removed=removed,
        )
        return GatewayResult.ok(provider_ref=f"{client.endpoint.name}:{user.id}")


def _to_user(row: dict[str, Any]) -> RadiusUser:
    return RadiusUser(
        id=str(row.get(".id", "")),
        name=str(row["name"]),
        group=row.get("group"),
        disabled=str(row.get("disabled", "false")).lower() == "true",
    )


def _to_session(row: dict[str, Any]) -> RadiusSession:
    return RadiusSession(
        id=str(row.get(".id", "")),
        user=str(row["user"]),
        address=row.get("user-address"),
        mac_address=row.get("calling-station-id"),
        upload=_int(row.get("upload")),
        download=_int(row.get("download")),
    )


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


__all__ = [
    "RadiusControlGateway",
    "RadiusRestClient",
    "RadiusSession",
    "RadiusUser",
    "build_clients",
]
