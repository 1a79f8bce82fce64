import asyncio
import csv
import io
import logging
from typing import Dict, List, Optional

import aiofiles
from httpx import AsyncClient

from hepeco_server.config import settings
from hepeco_server.retry import get_with_retries

PAYMENT_FIELDS = ["reference", "amount", "phone", "method", "status", "createdAt", "verifiedAt", "transactionId"]
QUOTE_FIELDS = ["id", "name", "phone", "email", "service", "timelineDays", "budget", "estimatedPrice", "createdAt"]

logger = logging.getLogger("hepeco")


async def fetch_listing(client: AsyncClient, path: str, token: str, max_retries: int = 3, retry_delay: float = 1.0) -> Optional[dict]:
    """GET an admin listing, retrying 429/5xx and transport errors."""
    resp = await get_with_retries(
        client, path, headers={"X-Admin-Token": token}, max_retries=max_retries, retry_delay=retry_delay
    )
    if resp is None or resp.status_code >= 400:
        return None
    return resp.json()


async def write_csv(rows: List[Dict], fields: List[str], filename: str) -> None:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fields, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({f: "" if row.get(f) is None else row.get(f) for f in fields})

    async with aiofiles.open(filename, "w", newline="") as f:
        await f.write(buffer.getvalue())


async def export_all(
    base_url: str,
    token: str,
    payments_file: str = "payments.csv",
    quotes_file: str = "quotes.csv",
    client: Optional[AsyncClient] = None,
) -> Dict[str, int]:
    """Dump admin payments and quotes to CSV files. Returns rows written per file."""
    own_client = client is None
    if own_client:
        client = AsyncClient(base_url=base_url)

    written = {}
    try:
        payments, quotes = await asyncio.gather(
            fetch_listing(client, "/api/admin/payments", token),
            fetch_listing(client, "/api/admin/quotes", token),
        )
    finally:
        if own_client:
            await client.aclose()

    if payments is not None:
        await write_csv(payments["payments"], PAYMENT_FIELDS, payments_file)
        written[payments_file] = len(payments["payments"])
    if quotes is not None:
        await write_csv(quotes["quotes"], QUOTE_FIELDS, quotes_file)
        written[quotes_file] = len(quotes["quotes"])
    return written


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    base_url = f"http://{settings.HOST}:{settings.PORT}"
    written = await export_all(base_url, settings.ADMIN_TOKEN or "")
    for filename, count in written.items():
        logger.info(f"Saved {count} rows to {filename}")


if __name__ == "__main__":
    asyncio.run(main())
