"""HTTP fixtures for gateway tests."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from billing_worker.core.models import WorkItem, WorkItemKind


class Recorder:
    """MockTransport handler that records requests and replays responses.

    ``routes`` maps ``"METHOD path"`` to a response, an exception, or a list
    of those consumed in order (the last entry repeats).
    """

    def __init__(self, routes: dict[str, object] | None = None, default: httpx.Response | None = None) -> None:
        self.routes = dict(routes or {})
        self.default = default or httpx.Response(200, json={})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.routes.get(f"{request.method} {request.url.path}", self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def json_body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def recorder_factory() -> Callable[..., Recorder]:
    return Recorder


@pytest.fixture
def make_item() -> Callable[..., WorkItem]:
    def _make(kind: WorkItemKind | str, payload: dict, **kwargs) -> WorkItem:
        return WorkItem(id=kwargs.pop("id", "item-1"), kind=WorkItemKind(kind), payload=payload, **kwargs)

    return _make
