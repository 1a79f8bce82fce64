import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from aiolimiter import AsyncLimiter
from faker import Faker
from httpx import AsyncClient

from hepeco_server.retry import get_with_retries

logger = logging.getLogger("hepeco")


class GatewayStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class GatewayResult:
    status: GatewayStatus
    transaction_id: Optional[str] = None


class PaymentGatewayClient(Protocol):
    async def check_status(self, reference: str) -> GatewayResult: ...


# Provider vocabulary -> our status
_PROVIDER_STATUSES = {
    "successful": GatewayStatus.VERIFIED,
    "success": GatewayStatus.VERIFIED,
    "verified": GatewayStatus.VERIFIED,
    "pending": GatewayStatus.PENDING,
    "processing": GatewayStatus.PENDING,
    "failed": GatewayStatus.FAILED,
    "declined": GatewayStatus.FAILED,
}


def map_provider_status(value: Optional[str]) -> GatewayStatus:
    return _PROVIDER_STATUSES.get((value or "").lower(), GatewayStatus.PENDING)


class SimulatedGatewayClient:
    """Stand-in for a mobile-money API: succeeds with ``success_rate`` after an artificial delay."""

    def __init__(self, success_rate: float = 0.7, delay: float = 1.0, seed: Optional[int] = None):
        self.success_rate = success_rate
        self.delay = delay
        self._random = random.Random(seed)
        self._faker = Faker()
        if seed is not None:
            self._faker.seed_instance(seed)

    async def check_status(self, reference: str) -> GatewayResult:
        # Simulated I/O latency
        if self.delay:
            await asyncio.sleep(self.delay)

        if self._random.random() < self.success_rate:
            transaction_id = self._faker.bothify(text="MP######.####.?#####").upper()
            logger.debug(f"Simulated gateway confirmed {reference} ({transaction_id})")
            return GatewayResult(GatewayStatus.VERIFIED, transaction_id)

        logger.debug(f"Simulated gateway has no funds yet for {reference}")
        return GatewayResult(GatewayStatus.PENDING)


class HttpGatewayClient:
    """Polls a provider status endpoint: ``GET {base_url}/status/{reference}``.

    Retries 429 (honouring ``Retry-After``), 5xx and transport errors up to
    ``max_retries`` times. Other 4xx answers count as failed. When retries run
    out the payment is reported as still pending so the caller can try again.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        max_retries: int = 3,
        max_rps: int = 18,
        retry_delay: float = 1.0,
        client: Optional[AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.limiter = AsyncLimiter(max_rps, 1)
        self._client = client

    async def check_status(self, reference: str) -> GatewayResult:
        if self._client is not None:
            return await self._fetch_status(self._client, reference)
        async with AsyncClient() as client:
            return await self._fetch_status(client, reference)

    async def _fetch_status(self, client: AsyncClient, reference: str) -> GatewayResult:
        resp = await get_with_retries(
            client,
            f"{self.base_url}/status/{reference}",
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            timeout=self.timeout,
            limiter=self.limiter,
        )
        if resp is None:
            logger.error(f"{reference} gateway unreachable, leaving payment pending")
            return GatewayResult(GatewayStatus.PENDING)
        if resp.status_code >= 400:
            return GatewayResult(GatewayStatus.FAILED)

        data = resp.json()
        return GatewayResult(
            map_provider_status(data.get("status")),
            data.get("transactionId") or data.get("transaction_id"),
        )
