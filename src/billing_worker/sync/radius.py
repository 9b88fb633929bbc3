"""RADIUS session status as a sync source.

Subjects are billing account numbers; a :class:`SubjectDirectory` maps
each one to its RADIUS username. Users and sessions are read in bulk from
every configured User-Manager endpoint, then each subject is classified:

    ┌───────────────────────────────┬───────────────┬─────────────┐
    │ user group                    │ live session  │ status      │
    ├───────────────────────────────┼───────────────┼─────────────┤
    │ Disconnected /                │ yes           │ Blocked     │
    │ Mikrotik-Group:Disconnected   │ no            │ Inactive    │
    │ any other                     │ yes           │ Online      │
    │                               │ no            │ Offline     │
    │ (user absent)                 │               │ Not Found   │
    └───────────────────────────────┴───────────────┴─────────────┘

Traffic counters move on every poll and are left out of the state, so
they never register as a change.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from billing_worker.core.errors import SyncError, WorkerError
from billing_worker.core.logging import get_logger
from billing_worker.gateways.radius import RadiusRestClient, RadiusSession, RadiusUser

from .engine import SyncSnapshot

logger = get_logger(__name__)

DISCONNECTED_GROUPS = frozenset({"Disconnected", "Mikrotik-Group:Disconnected"})

ONLINE = "Online"
OFFLINE = "Offline"
BLOCKED = "Blocked"
INACTIVE = "Inactive"
NOT_FOUND = "Not Found"


@runtime_checkable
class SubjectDirectory(Protocol):
    """Resolves sync subjects to RADIUS usernames."""

    async def usernames(self) -> dict[str, str]: ...


class StaticSubjectDirectory:
    def __init__(self, mapping: Mapping[str, str]) -> None:
        self.mapping = dict(mapping)

    async def usernames(self) -> dict[str, str]:
        return dict(self.mapping)


class BillingApiSubjectDirectory:
    """Usernames served by the billing backend (``radius_subjects``)."""

    def __init__(self, client: Any) -> None:
        self.client = client

    async def usernames(self) -> dict[str, str]:
        return await self.client.radius_subjects()


def classify(user: RadiusUser | None, session: RadiusSession | None) -> dict[str, Any]:
    """Remote state for one subject."""
    if user is None:
        status = NOT_FOUND
    elif user.group in DISCONNECTED_GROUPS:
        status = BLOCKED if session else INACTIVE
    else:
        status = ONLINE if session else OFFLINE
    return {
        "status": status,
        "group": user.group if user else None,
        "session_id": session.id if session else None,
        "ip_address": session.address if session else None,
        "mac_address": session.mac_address if session else None,
    }


class RadiusSessionSource:
    """Bulk-read users and sessions from every endpoint and classify subjects."""

    name = "radius"

    def __init__(self, clients: Sequence[RadiusRestClient], directory: SubjectDirectory) -> None:
        self.clients = list(clients)
        self.directory = directory

    async def subjects(self) -> list[str]:
        """All subjects the directory knows about."""
        return sorted(await self.directory.usernames())

    async def fetch(self, subjects: list[str]) -> SyncSnapshot:
        if not self.clients:
            raise SyncError("no radius endpoints configured")

        usernames = await self.directory.usernames()
        users: dict[str, RadiusUser] = {}
        sessions: dict[str, RadiusSession] = {}
        unreachable: list[str] = []

        for client in self.clients:
            try:
                endpoint_users = await client.list_users()
                endpoint_sessions = await client.list_sessions()
            except WorkerError as e:
                unreachable.append(client.endpoint.name)
                logger.warning("radius_sync.endpoint_failed", endpoint=client.endpoint.name, error=e.message)
                continue
            for user in endpoint_users:
                users.setdefault(user.name, user)
            for session in endpoint_sessions:
                sessions.setdefault(session.user, session)

        if unreachable and len(unreachable) == len(self.clients):
            raise SyncError(f"all radius endpoints unreachable: {', '.join(unreachable)}")

        snapshot = SyncSnapshot()
        for subject in subjects:
            username = (usernames.get(subject) or "").strip()
            if not username:
                snapshot.failures[subject] = "no radius username on record"
                continue
            user = users.get(username)
            if user is None and unreachable:
                snapshot.failures[subject] = f"user not found on reachable endpoints; unreachable: {', '.join(unreachable)}"
                continue
            snapshot.states[subject] = classify(user, sessions.get(username))

        logger.debug(
            "radius_sync.fetched",
            users=len(users),
            sessions=len(sessions),
            subjects=len(subjects),
            unreachable=unreachable,
        )
        return snapshot


__all__ = [
    "BillingApiSubjectDirectory",
    "DISCONNECTED_GROUPS",
    "RadiusSessionSource",
    "StaticSubjectDirectory",
    "SubjectDirectory",
    "classify",
]
