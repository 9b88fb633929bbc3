"""Execution primitives: Retry Queue, backoff policies, bounded async fan-out."""

from .async_batch import AsyncBatchExecutor, AsyncBatchItem, AsyncBatchResult
from .retry import ConstantBackoff, ExponentialBackoff, LinearBackoff, RetryContext, RetryStrategy
from .retry_queue import RetryQueue

__all__ = [
    "AsyncBatchExecutor",
    "AsyncBatchItem",
    "AsyncBatchResult",
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "RetryContext",
    "RetryQueue",
    "RetryStrategy",
]
