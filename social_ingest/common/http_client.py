"""
Shared HTTP Client Configuration.

Provides standardized HTTP client creation for all upstream sources
(X API, Farcaster registries, the project catalog).

Usage:
    from social_ingest.common.http_client import create_source_client, USER_AGENT_BOT

    async with create_source_client() as client:
        response = await client.get(url)
"""

import httpx
from typing import Optional

from ..config.settings import settings


# Bot identifier - identifies the ingester clearly to upstream APIs
USER_AGENT_BOT = "SocialIngest/0.1 (Project Activity Ingestion)"


def create_source_client(
    user_agent: str = USER_AGENT_BOT,
    timeout: Optional[float] = None,
    max_connections: int = 10,
    max_keepalive: int = 5,
    extra_headers: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client for an upstream source.

    Args:
        user_agent: User-Agent string
        timeout: Request timeout in seconds (default: settings.request_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        extra_headers: Additional headers (auth tokens, content type)
        transport: Custom transport (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {"User-Agent": user_agent}
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.request_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        follow_redirects=True,
        transport=transport,
    )
