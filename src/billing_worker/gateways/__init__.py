"""External gateway adapters (SMS, email, payment, RADIUS) and source-of-record clients."""

from .base import Gateway, GatewayAdapter, GatewayResult, HttpGateway, HttpService
from .registry import GatewayRegistry

__all__ = [
    "Gateway",
    "GatewayAdapter",
    "GatewayRegistry",
    "GatewayResult",
    "HttpGateway",
    "HttpService",
]
