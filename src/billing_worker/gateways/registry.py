"""Work item kind → gateway adapter lookup."""

from __future__ import annotations

from collections.abc import Iterator

from billing_worker.core.errors import ConfigError
from billing_worker.core.models import WorkItemKind

from .base import GatewayAdapter


class GatewayRegistry:
    """Adapters keyed by the work item kind they deliver.

    Example:
        >>> registry = GatewayRegistry()
        >>> registry.register(WorkItemKind.SMS, SmsGateway(settings.sms))
        >>> registry.get(WorkItemKind.SMS).name
        'sms'
    """

    def __init__(self, adapters: dict[WorkItemKind, GatewayAdapter] | None = None) -> None:
        self._adapters: dict[WorkItemKind, GatewayAdapter] = {}
        for kind, adapter in (adapters or {}).items():
            self.register(kind, adapter)

    def register(self, kind: WorkItemKind | str, adapter: GatewayAdapter) -> None:
        self._adapters[WorkItemKind(kind)] = adapter

    def get(self, kind: WorkItemKind | str) -> GatewayAdapter:
        try:
            return self._adapters[WorkItemKind(kind)]
        except (KeyError, ValueError):
            raise ConfigError(f"no gateway registered for kind {kind!r}") from None

    def __contains__(self, kind: object) -> bool:
        try:
            return WorkItemKind(kind) in self._adapters
        except ValueError:
            return False

    def __iter__(self) -> Iterator[WorkItemKind]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)


__all__ = ["GatewayRegistry"]
