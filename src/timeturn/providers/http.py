from __future__ import annotations

from typing import Any

import httpx

from timeturn.providers.base import ProviderExecutionError, ProviderTimeoutError


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:400]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return response.text.strip()[:400]


async def post_json(
    provider: str,
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    timeout: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers, params=params)
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(
            f"{provider} request timed out after {timeout:.1f}s",
            provider=provider,
            retriable=True,
        ) from exc
    except httpx.RequestError as exc:
        raise ProviderExecutionError(
            f"{provider} request failed: {exc}", provider=provider, retriable=True
        ) from exc

    if response.status_code >= 400:
        raise ProviderExecutionError(
            f"{provider} API error {response.status_code}: {_error_message(response)}",
            provider=provider,
            status_code=response.status_code,
            retriable=response.status_code == 429 or response.status_code >= 500,
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderExecutionError(
            f"{provider} returned a non-JSON response.", provider=provider, retriable=True
        ) from exc
    if not isinstance(data, dict):
        raise ProviderExecutionError(
            f"{provider} returned an unexpected payload.", provider=provider, retriable=True
        )
    return data
