"""Outbound JSON requests with retry/backoff, shared by every provider client."""

import asyncio
import logging

import httpx

import config
from errors import ProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict | None = None,
    json: dict | None = None,
    timeout: float = config.REQUEST_TIMEOUT_S,
    max_retries: int = config.REQUEST_RETRY_MAX,
    backoff: float = 1.0,
) -> dict:
    """Send a request and return the decoded JSON body.

    Rate limiting, 5xx and timeouts are retried with exponential backoff
    (backoff * 2**attempt). Other HTTP errors fail immediately. Raises
    ProviderError once retries are exhausted or the body is not JSON.
    """
    retries = 0
    while True:
        try:
            resp = await client.request(method, url, params=params, json=json, timeout=timeout)
        except httpx.TimeoutException:
            if retries >= max_retries:
                raise ProviderError(f"Timeout calling {url} after {retries + 1} attempts")
            logger.warning("Timeout calling %s, retrying (%d/%d)", url, retries + 1, max_retries)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Transport error calling {url}: {exc}") from exc
        else:
            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError as exc:
                    raise ProviderError(f"Non-JSON response from {url}") from exc
            if resp.status_code not in RETRYABLE_STATUS or retries >= max_retries:
                logger.error("HTTP %d from %s: %s", resp.status_code, url, resp.text[:200])
                raise ProviderError(f"HTTP {resp.status_code} from {url}", status_code=resp.status_code)
            logger.warning("HTTP %d from %s, retrying (%d/%d)", resp.status_code, url, retries + 1, max_retries)

        await asyncio.sleep(backoff * 2 ** retries)
        retries += 1
