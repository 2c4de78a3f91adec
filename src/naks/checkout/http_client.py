"""HTTP client module.

One :class:`httpx.AsyncClient` is shared by the payment gateways.
"""
from contextvars import ContextVar
from http.cookiejar import Cookie, CookieJar
from typing import Optional

import httpx

http_client_context: ContextVar[Optional[httpx.AsyncClient]] = ContextVar(
    "http_client_context", default=None
)

USER_AGENT = "Naks Yetu Checkout Server 0.1"

CONNECT_TIMEOUT = 10.0
"""Seconds to wait for a gateway connection."""


class NullCookieJar(CookieJar):
    """``CookieJar`` that does not store cookies."""

    def set_cookie(self, cookie: Cookie):
        return


def setup_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Set up the http client.

    Args:
        timeout: Seconds to wait for a gateway response.
    """
    client = httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        cookies=NullCookieJar(),
        timeout=httpx.Timeout(timeout, connect=min(timeout, CONNECT_TIMEOUT)),
    )
    http_client_context.set(client)
    return client


async def shutdown_http_client():
    """Shut down the http client."""
    client = http_client_context.get()
    if client is not None:
        await client.aclose()
        http_client_context.set(None)
