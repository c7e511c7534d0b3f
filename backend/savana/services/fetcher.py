"""
Reading Fetcher
===============

Pulls the latest reading for one node from the upstream sensor API.

WHAT THIS DOES:
--------------
1. Sends GET <API_URL>?id_node=<node>&api_key=<key>
2. Checks the HTTP status is 200
3. Checks the body is JSON with `status == "Ok"`
4. Hands back the `data` object for the normalizer

THE API RESPONSE:
----------------
    {
        "status": "Ok",
        "data": {
            "id_node": "N1",
            "waktu": "2025-07-10T08:00:00",
            "data_node": {"temp": 22.5, "rh": 80, "press": 1013.2, "mous": 41, "rain": 0}
        }
    }

One request per call, no retries. A failed poll is reported to the caller
and the next scheduled cycle tries again.
"""

import httpx
import logging
from typing import Optional

from savana.errors import (
    MalformedResponseError,
    TransportError,
    UpstreamHTTPError,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)


# The literal the upstream puts in `status` when the reading is valid
SUCCESS_STATUS = "Ok"


class ReadingFetcher:
    """
    Client for the upstream sensor API.

    HOW TO USE:
    ----------
    fetcher = ReadingFetcher(api_url="https://api.example/node", api_key="...")
    data = await fetcher.fetch("N1")     # the `data` object
    await fetcher.close()

    Every failure is raised as its own error type (TransportError,
    UpstreamHTTPError, MalformedResponseError, UpstreamStatusError).
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        request_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Set up the fetcher.

        Args:
            api_url: Upstream endpoint (query params are added per request)
            api_key: Upstream API key
            request_timeout: Seconds to wait for the upstream (default 30)
            http_client: Pre-built client (tests pass one with a mock transport)
        """
        self.api_url = api_url
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(timeout=request_timeout)

    async def fetch(self, node_id: str) -> dict:
        """
        Get the latest reading payload for one node.

        Args:
            node_id: The node to query

        Returns:
            The `data` object from the response body

        Raises:
            TransportError: network unreachable, DNS failure, timeout
            UpstreamHTTPError: HTTP status other than 200
            MalformedResponseError: body is not a JSON object with a `data` object
            UpstreamStatusError: `status` is missing or not "Ok"
        """
        logger.info(f"[{node_id}] Fetching data from API")

        try:
            response = await self.http_client.get(
                self.api_url,
                params={"id_node": node_id, "api_key": self.api_key},
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request to API timed out for node {node_id}: {e.__class__.__name__}",
                node_id=node_id,
            )
        except httpx.TransportError as e:
            raise TransportError(
                f"Failed to fetch data from API for node {node_id}: {e.__class__.__name__}: {e}",
                node_id=node_id,
            )

        if response.status_code != 200:
            body = response.text[:500]
            raise UpstreamHTTPError(
                f"API returned HTTP {response.status_code} for node {node_id}",
                status_code=response.status_code,
                body=body,
                node_id=node_id,
            )

        try:
            payload = response.json()
        except ValueError:
            raise MalformedResponseError(
                f"Invalid JSON response from API for node {node_id}: {response.text[:200]!r}",
                node_id=node_id,
            )

        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"API response for node {node_id} is not a JSON object",
                node_id=node_id,
            )

        status = payload.get("status")
        if status != SUCCESS_STATUS:
            raise UpstreamStatusError(
                f"API returned status: {status} for node {node_id}",
                upstream_status=None if status is None else str(status),
                node_id=node_id,
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"API response for node {node_id} has no data object",
                node_id=node_id,
            )

        return data

    async def close(self):
        """Close the HTTP client. Called when the server shuts down."""
        await self.http_client.aclose()
