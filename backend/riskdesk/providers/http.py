from __future__ import annotations

import asyncio
import http.client
import json
import socket
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from riskdesk.config.settings import settings


class ProviderError(Exception):
    """An upstream market-data provider could not serve a request."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


def build_url(base_url: str, path: str, params: dict[str, str] | None = None) -> str:
    url = f"{base_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def _default_headers(accept: str) -> dict[str, str]:
    return {"User-Agent": settings.providers.user_agent, "Accept": accept}


def _read(provider: str, url: str, headers: dict[str, str], timeout: float) -> str:
    request = Request(url, headers=headers)
    try:
        with urlopen(request, timeout=timeout) as response:
            return response.read().decode("utf-8")
    except HTTPError as exc:
        status = "rate_limited" if exc.code == 429 else "http_error"
        raise ProviderError(provider, f"{status} {exc.code}", status=exc.code) from exc
    except (URLError, TimeoutError, socket.timeout, OSError, http.client.HTTPException) as exc:
        raise ProviderError(provider, f"unreachable: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ProviderError(provider, "undecodable response body") from exc


async def get_text(provider: str, url: str, *, accept: str = "text/plain,*/*") -> str:
    timeout = settings.providers.request_timeout_seconds
    return await asyncio.to_thread(_read, provider, url, _default_headers(accept), timeout)


async def get_json(provider: str, url: str) -> Any:
    body = await get_text(provider, url, accept="application/json,text/plain,*/*")
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ProviderError(provider, "invalid JSON payload") from exc
