from collections.abc import Callable
from typing import Any, Optional

import structlog

from dirconsole.shared.core.async_utils import call_listener
from dirconsole.shared.core.exceptions import ConsoleError, as_console_error

logger = structlog.get_logger()


class ErrorSink:
    """
    Uniform failure channel for a widget.

    Every reported error lands in the local `last_error` slot (rendered inline
    by the owner) and is forwarded to the parent callback. Both channels always
    receive it.
    """

    def __init__(
        self,
        on_error: Optional[Callable[[ConsoleError], Any]] = None,
        *,
        owner: str = "widget",
    ):
        self.owner = owner
        self._on_error = on_error
        self._last_error: Optional[ConsoleError] = None

    @property
    def last_error(self) -> Optional[ConsoleError]:
        return self._last_error

    def report(
        self, error: BaseException, message: str = "Unexpected error"
    ) -> ConsoleError:
        typed = as_console_error(error, message)
        self._last_error = typed
        logger.warning(
            "error_surfaced",
            owner=self.owner,
            code=typed.code,
            error=typed.message,
            details=typed.details,
        )
        call_listener(self._on_error, typed)
        return typed

    def clear(self) -> None:
        self._last_error = None

    def render(self) -> str:
        """Inline text for the owner's error area; empty when there is nothing to show."""
        if self._last_error is None:
            return ""
        return f"Error: {self._last_error.message}"
