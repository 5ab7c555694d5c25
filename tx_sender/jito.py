import asyncio
import random
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union

import aiohttp
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from .config import JITO_TIP_FLOOR_URL, DynamicFee, ExactFee, NoFee
from .exceptions import TipFetchFailedError, wrap_exception
from .logger import get_logger
from .percentile import Percentile

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
TIP_QUOTE_TTL_MS = 60_000
DEFAULT_TIP_FETCH_TIMEOUT = 5.0

JITO_TIP_ACCOUNTS = [
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4bVmkdzGHb67ETqsnjhJZeK",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
]

TIP_FLOOR_FIELDS = {
    Percentile.P25: "landed_tips_25th_percentile",
    Percentile.P50: "landed_tips_50th_percentile",
    Percentile.P75: "landed_tips_75th_percentile",
    Percentile.P95: "landed_tips_95th_percentile",
    Percentile.P99: "landed_tips_99th_percentile",
    Percentile.P50_EMA: "ema_landed_tips_50th_percentile",
}


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def get_random_tip_account() -> Pubkey:
    return Pubkey.from_string(random.choice(JITO_TIP_ACCOUNTS))


def create_tip_instruction(
    payer: Pubkey,
    tip_lamports: int,
    tip_account: Optional[Pubkey] = None
) -> Instruction:
    if tip_account is None:
        tip_account = get_random_tip_account()

    return transfer(
        TransferParams(
            from_pubkey=payer,
            to_pubkey=tip_account,
            lamports=tip_lamports
        )
    )


def tip_from_record(record: Dict[str, Any], percentile: Percentile) -> int:
    """Read the percentile's field (in SOL) from a tip-floor record, in lamports."""
    field_name = TIP_FLOOR_FIELDS[percentile]
    value = record.get(field_name)
    if value is None:
        raise TipFetchFailedError(f"Tip floor response has no {field_name}")
    try:
        return int(Decimal(str(value)) * LAMPORTS_PER_SOL)
    except (InvalidOperation, ValueError) as e:
        raise TipFetchFailedError(f"Invalid {field_name} value: {value!r}") from e


@dataclass
class TipQuoteCache:
    value: Dict[str, Any]
    fetched_at_ms: int

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.fetched_at_ms < ttl_ms


class JitoTipEstimator:
    """
    Tip estimator backed by the Jito tip-floor endpoint.

    The latest quote is cached for ``ttl_ms``. The cache check and refetch run
    under one lock, so concurrent callers inside the window share a single
    request. ``clock`` returns milliseconds and can be replaced in tests.
    """

    def __init__(
        self,
        tip_floor_url: str = JITO_TIP_FLOOR_URL,
        ttl_ms: int = TIP_QUOTE_TTL_MS,
        clock: Optional[Callable[[], int]] = None,
        timeout: float = DEFAULT_TIP_FETCH_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.tip_floor_url = tip_floor_url
        self.ttl_ms = ttl_ms
        self.timeout = timeout
        self._clock = clock or _monotonic_ms
        self._session = session
        self._owns_session = session is None
        self._cache: Optional[TipQuoteCache] = None
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _bind_loop(self):
        # Sessions and locks belong to the loop that created them
        loop = asyncio.get_running_loop()
        if self._loop is loop:
            return
        if self._loop is not None:
            self._lock = asyncio.Lock()
            if self._owns_session:
                self._session = None
        self._loop = loop

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        if not self._owns_session or self._session is None:
            return
        # A session left over from a finished loop cannot be awaited; drop it
        if not self._session.closed and self._loop is asyncio.get_running_loop():
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def cache(self) -> Optional[TipQuoteCache]:
        return self._cache

    def invalidate(self):
        self._cache = None

    async def _fetch_tip_floor(self) -> Dict[str, Any]:
        session = await self._get_session()

        try:
            async with session.get(
                self.tip_floor_url,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if not 200 <= response.status < 300:
                    raise TipFetchFailedError(
                        f"Tip floor request returned HTTP {response.status}",
                        status_code=response.status,
                        url=self.tip_floor_url
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, RuntimeError) as e:
            raise wrap_exception(
                e,
                TipFetchFailedError,
                message=f"Tip floor request failed: {e}",
                url=self.tip_floor_url
            ) from e

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise TipFetchFailedError("Malformed tip floor response", url=self.tip_floor_url)

        return data[0]

    async def get_tip_floor(self) -> Dict[str, Any]:
        self._bind_loop()
        async with self._lock:
            now = self._clock()
            if self._cache is not None and self._cache.is_fresh(now, self.ttl_ms):
                return self._cache.value

            record = await self._fetch_tip_floor()
            self._cache = TipQuoteCache(value=record, fetched_at_ms=now)
            logger.debug(f"Fetched Jito tip floor: {record}")
            return record

    async def estimate_dynamic_tip(self, setting: DynamicFee) -> int:
        try:
            record = await self.get_tip_floor()
            tip = tip_from_record(record, setting.percentile)
        except TipFetchFailedError as e:
            logger.warning(f"Jito tip unavailable, tipping 0: {e}")
            return 0

        if setting.max_cap_lamports is not None:
            tip = min(tip, setting.max_cap_lamports)
        return tip

    async def calculate_tip(self, setting: Union[NoFee, ExactFee, DynamicFee]) -> int:
        if isinstance(setting, NoFee):
            return 0
        if isinstance(setting, ExactFee):
            return setting.amount_lamports
        return await self.estimate_dynamic_tip(setting)


_estimators: Dict[str, JitoTipEstimator] = {}


def get_tip_estimator(tip_floor_url: str = JITO_TIP_FLOOR_URL) -> JitoTipEstimator:
    """Process-wide estimator for ``tip_floor_url``, created on first use."""
    estimator = _estimators.get(tip_floor_url)
    if estimator is None:
        estimator = JitoTipEstimator(tip_floor_url)
        _estimators[tip_floor_url] = estimator
    return estimator


async def close_tip_estimators():
    """Close and forget every process-wide estimator."""
    estimators = list(_estimators.values())
    _estimators.clear()
    for estimator in estimators:
        await estimator.close()
