import asyncio
from collections import OrderedDict
from collections.abc import Awaitable
from functools import wraps


def lru_acache(maxsize: int = 128):
    """
    Caches an async function's return value each time it is called.

    If the maxsize is reached, the least recently used value is removed.

    The decorated function also exposes, for the running event loop:
    - `cached(*args, **kwargs)`: the cached value, or None, without calling the function
    - `evict(*args, **kwargs)`: drop the cached value
    """

    def decorator(func):
        cache: OrderedDict[tuple, Awaitable] = OrderedDict()

        def _key(args: tuple, kwargs: dict) -> tuple:
            # Clients are bound to the loop that created them, keep one per loop
            return (
                id(asyncio.get_running_loop()),
                args,
                frozenset(kwargs.items()),
            )

        @wraps(func)
        async def wrapper(*args, **kwargs) -> Awaitable:
            key = _key(args, kwargs)

            if key in cache:
                cache.move_to_end(key)
                return cache[key]

            value = await func(*args, **kwargs)
            cache[key] = value
            cache.move_to_end(key)

            # Remove the least recently used key if the cache is full
            if len(cache) > maxsize:
                cache.popitem(last=False)

            return value

        def cached(*args, **kwargs):
            return cache.get(_key(args, kwargs))

        def evict(*args, **kwargs) -> None:
            cache.pop(_key(args, kwargs), None)

        wrapper.cached = cached  # pyright: ignore
        wrapper.evict = evict  # pyright: ignore
        return wrapper

    return decorator
