"""
Shared HTTP client with connection pooling.

Every outbound HTTP call (Graph API, media downloads, AI vendors over REST)
goes through this client:
- connection reuse
- pooled connections, HTTP/2
- default timeouts
- closed on application shutdown
"""

import httpx
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Global client (singleton)
_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """
    Return the shared client, creating it on first use.

    Returns:
        httpx.AsyncClient with pooling configured
    """
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=30.0,
                write=30.0,
                pool=5.0,
            ),
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
                keepalive_expiry=30.0,
            ),
            http2=True,
            headers={
                "User-Agent": "Incident-Intake/0.1",
            },
            follow_redirects=True,
        )
        logger.info("HTTP client singleton created")

    return _client


async def close_http_client() -> None:
    """Close the shared client. Called on application shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("HTTP client singleton closed")
