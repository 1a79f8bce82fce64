import asyncio
import logging
from typing import Dict, Optional

from aiolimiter import AsyncLimiter
from httpx import AsyncClient, RequestError, Response, TimeoutException

logger = logging.getLogger("hepeco")


async def get_with_retries(
    client: AsyncClient,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    timeout: float = 5.0,
    limiter: Optional[AsyncLimiter] = None,
) -> Optional[Response]:
    """GET ``url``, retrying 429 (honouring ``Retry-After``), 5xx and transport errors.

    Returns the final response, which is either a success or a non-retryable 4xx,
    or ``None`` once ``max_retries`` attempts are used up.
    """
    retries = 0

    while retries < max_retries:
        try:
            if limiter is not None:
                async with limiter:
                    resp = await client.get(url, headers=headers, timeout=timeout)
            else:
                resp = await client.get(url, headers=headers, timeout=timeout)

            if resp.status_code == 429:
                retry_after = float(resp.headers.get("Retry-After", retry_delay))
                logger.warning(f"{url} 429, retrying after {retry_after}s")
                await asyncio.sleep(retry_after)
                retries += 1
                continue
            elif 500 <= resp.status_code < 600:
                logger.warning(f"{url} {resp.status_code}, retrying in {retry_delay}s")
                await asyncio.sleep(retry_delay)
                retries += 1
                continue
            elif 400 <= resp.status_code < 500:
                logger.error(f"{url} {resp.status_code}, non-retryable")

            return resp

        except (RequestError, TimeoutException) as e:
            logger.warning(f"{url} exception {e}, retrying...")
            retries += 1
            await asyncio.sleep(retry_delay)

    logger.error(f"{url} failed after {max_retries} retries")
    return None
