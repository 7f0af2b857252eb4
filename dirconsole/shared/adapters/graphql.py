from __future__ import annotations

from typing import Any

import httpx
import structlog

from dirconsole.shared.core.exceptions import NetworkError

logger = structlog.get_logger()


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _extract_error_messages(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    errors = payload.get("errors")
    if not isinstance(errors, list):
        return []
    messages: list[str] = []
    for item in errors:
        if isinstance(item, dict):
            message = str(item.get("message") or "").strip()
            if message:
                messages.append(message)
        elif isinstance(item, str) and item.strip():
            messages.append(item.strip())
    return messages or ["Unknown GraphQL error"]


class GraphQLClient:
    """
    Minimal GraphQL-over-HTTP transport.

    POSTs `{"query", "variables", "operationName"}` and returns the `data`
    object. Every failure (transport, HTTP status, GraphQL `errors`, malformed
    body) is raised as NetworkError; nothing is retried.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        token: str | None = None,
    ):
        self.url = url
        self._client = client
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            from dirconsole.shared.core.http import get_http_client

            self._client = get_http_client()
        return self._client

    async def execute(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation_name: str,
    ) -> dict[str, Any]:
        body = {
            "query": query,
            "variables": variables or {},
            "operationName": operation_name,
        }
        details = {"operation": operation_name}

        try:
            response = await self._get_client().post(
                self.url, json=body, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning(
                "graphql_request_failed",
                operation=operation_name,
                status_code=status_code,
            )
            raise NetworkError(
                f"{operation_name} failed with status {status_code}",
                details={**details, "status_code": status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "graphql_transport_failed",
                operation=operation_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise NetworkError(
                f"{operation_name} transport error: {exc}", details=details
            ) from exc

        payload = _safe_json(response)
        messages = _extract_error_messages(payload)
        if messages:
            logger.warning(
                "graphql_errors_returned", operation=operation_name, errors=messages
            )
            raise NetworkError(
                f"{operation_name} failed: {'; '.join(messages)}",
                details={**details, "errors": messages},
            )

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise NetworkError(
                f"{operation_name} returned no data", details=details
            )
        return data
