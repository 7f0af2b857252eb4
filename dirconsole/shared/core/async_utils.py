import asyncio
import inspect
from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger()

# Strong references to scheduled async listeners; the loop only keeps weak ones.
_listener_tasks: set["asyncio.Future[Any]"] = set()


async def maybe_await(value: Any) -> Any:
    """Await `value` if it's awaitable, otherwise return it directly."""
    if inspect.isawaitable(value):
        return await value
    return value


def _listener_name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or repr(func)


def _on_listener_done(name: str, future: "asyncio.Future[Any]") -> None:
    _listener_tasks.discard(future)
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(
            "listener_failed",
            listener=name,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )


def call_listener(func: Callable[..., Any] | None, *args: Any) -> Any:
    """Invoke an optional listener; async listeners are scheduled on the running loop.

    Listeners are parent callbacks (``on_error``, ``on_entity_committed`` ...).
    They run inside an event-loop callback, so a coroutine result cannot be
    awaited in place and is handed to ``ensure_future`` instead.

    A listener that raises is logged as ``listener_failed`` and does not
    propagate into the caller's state machine.
    """
    if func is None:
        return None
    name = _listener_name(func)
    try:
        result = func(*args)
    except Exception:
        logger.exception("listener_failed", listener=name)
        return None
    if inspect.isawaitable(result):
        future = asyncio.ensure_future(maybe_await(result))
        _listener_tasks.add(future)
        future.add_done_callback(lambda done: _on_listener_done(name, done))
        return future
    return result


async def drain_listeners() -> None:
    """Wait for every scheduled async listener to finish."""
    while _listener_tasks:
        await asyncio.wait(set(_listener_tasks))
