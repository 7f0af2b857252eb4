import re
import sys
import structlog
import logging
from typing import Any, cast
from dirconsole.shared.core.config import get_settings


_SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
    "authorization",
    "auth",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
}
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_password", "_key")
_BEARER_REGEX = re.compile(r"(?i)bearer\s+[a-z0-9._~+/=-]+")


def _is_sensitive_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    if key_norm in _SENSITIVE_FIELDS:
        return True
    if key_norm.endswith(_SENSITIVE_SUFFIXES):
        return True
    tokens = [t for t in re.split(r"[^a-z0-9]+", key_norm) if t]
    return any(t in _SENSITIVE_FIELDS for t in tokens)


def secret_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Recursively redact credentials from log events.
    The API token is forwarded on every request and must never reach the logs.
    """

    def redact_recursive(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("[REDACTED]" if _is_sensitive_key(k) else redact_recursive(v))
                for k, v in data.items()
            }
        elif isinstance(data, (list, tuple)):
            return [redact_recursive(item) for item in data]
        elif isinstance(data, str):
            return _BEARER_REGEX.sub("Bearer [REDACTED]", data)
        return data

    redacted = redact_recursive(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def setup_logging() -> None:
    settings = get_settings()

    base_processors = [
        structlog.contextvars.merge_contextvars,  # Support async context
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_redactor,  # Redact before rendering
    ]

    if settings.use_json_logs:
        renderer: Any = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
    else:
        renderer = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
    min_level = logging.DEBUG if settings.DEBUG else logging.INFO

    structlog.configure(
        processors=cast(Any, processors),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route httpx/httpcore logging through stderr as well.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )


def audit_log(
    event: str,
    actor: str,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Standardized helper for directory mutations (membership changes, deletions).
    """
    logger = structlog.get_logger("audit")
    logger.info(
        event,
        actor=str(actor),
        metadata=details or {},
    )
