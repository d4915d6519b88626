"""
Async variants of synchronous operations.

``offload`` turns a blocking method into a coroutine that runs it on the
default thread pool. The wrapper adds no ordering or cancellation semantics:
the synchronous call runs to completion and its result or exception is
delivered once.
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


def offload(method: Callable[..., T]) -> Callable[..., Awaitable[T]]:
    """
    Build the ``*_async`` twin of a synchronous method.

    Usage inside a class body::

        def count(self) -> int: ...
        count_async = offload(count)
    """

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(method, *args, **kwargs)

    wrapper.__name__ = f"{method.__name__}_async"
    wrapper.__qualname__ = f"{method.__qualname__}_async"
    return wrapper
