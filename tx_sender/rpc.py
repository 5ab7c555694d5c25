import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional, Sequence

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.address_lookup_table_account import AddressLookupTable
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import (
    BlockhashNotFoundError,
    RPCError,
    RPCResponseError,
    TxSenderError,
    wrap_exception,
)
from .logger import get_logger
from .message import BlockhashLifetime
from .percentile import Percentile

if TYPE_CHECKING:
    from .config import ConnectionContext

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class SimulationResult:
    success: bool
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None
    error: Optional[str] = None


@dataclass
class SignatureStatus:
    slot: int
    err: Optional[str] = None
    confirmation: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation in ("confirmed", "finalized")


@dataclass
class PrioritizationFee:
    slot: int
    prioritization_fee: int


def _confirmation_level(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    status_str = str(raw).lower()
    for level in ("finalized", "confirmed", "processed"):
        if level in status_str:
            return level
    return None


class RpcAdapter:
    """
    Thin async pass-through to a Solana JSON-RPC node.

    Typed calls go through ``solana.rpc.async_api.AsyncClient``. The two
    prioritization-fee queries are posted as raw JSON-RPC over an ``aiohttp``
    session because the percentile variant is a provider extension. Nothing is
    retried; every failure is raised as ``RPCError``.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: Optional[AsyncClient] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client or AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    @classmethod
    def from_context(cls, connection: "ConnectionContext") -> "RpcAdapter":
        return cls(connection.rpc_url, timeout=connection.request_timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        await self._client.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _rpc_error(self, method: str, exc: Exception) -> TxSenderError:
        if isinstance(exc, TxSenderError):
            return exc
        return wrap_exception(
            exc,
            RPCError,
            message=f"{method} failed: {exc}",
            rpc_endpoint=self.rpc_url,
            method_name=method
        )

    async def _post(self, method: str, params: List[Any]) -> Any:
        session = await self._get_session()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params
        }

        try:
            async with session.post(self.rpc_url, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise RPCError(
                        f"{method} returned HTTP {response.status}",
                        context={"body": body[:200]},
                        rpc_endpoint=self.rpc_url,
                        method_name=method
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise self._rpc_error(method, e) from e

        if not isinstance(data, dict):
            raise RPCError(
                f"{method} returned a malformed response",
                rpc_endpoint=self.rpc_url,
                method_name=method
            )

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RPCResponseError(
                f"{method} error: {message}",
                rpc_endpoint=self.rpc_url,
                method_name=method,
                rpc_error_code=code,
                rpc_error_message=message
            )

        return data.get("result")

    async def get_latest_blockhash(self) -> BlockhashLifetime:
        try:
            response = await self._client.get_latest_blockhash(commitment=Confirmed)
        except Exception as e:
            raise self._rpc_error("getLatestBlockhash", e) from e

        if not response.value:
            raise BlockhashNotFoundError(
                "Failed to get recent blockhash",
                rpc_endpoint=self.rpc_url,
                method_name="getLatestBlockhash"
            )

        logger.debug(f"Fetched blockhash: {response.value.blockhash}")
        return BlockhashLifetime(
            blockhash=response.value.blockhash,
            last_valid_block_height=response.value.last_valid_block_height
        )

    async def simulate_transaction(self, tx: VersionedTransaction) -> SimulationResult:
        try:
            response = await self._client.simulate_transaction(
                tx,
                sig_verify=False,
                commitment=Confirmed
            )
        except Exception as e:
            raise self._rpc_error("simulateTransaction", e) from e

        if not response.value:
            return SimulationResult(success=False, error="Empty simulation response")

        result = response.value
        return SimulationResult(
            success=result.err is None,
            logs=list(result.logs or []),
            units_consumed=result.units_consumed,
            error=str(result.err) if result.err else None
        )

    async def send_raw_transaction(self, raw_tx: bytes, skip_preflight: bool = False) -> Signature:
        opts = TxOpts(
            skip_preflight=skip_preflight,
            preflight_commitment=Confirmed,
            max_retries=0
        )

        try:
            response = await self._client.send_raw_transaction(raw_tx, opts=opts)
        except Exception as e:
            raise self._rpc_error("sendTransaction", e) from e

        if not response.value:
            raise RPCError(
                "Empty response from sendTransaction",
                rpc_endpoint=self.rpc_url,
                method_name="sendTransaction"
            )
        return response.value

    async def get_signature_status(self, signature: Signature) -> Optional[SignatureStatus]:
        try:
            response = await self._client.get_signature_statuses([signature])
        except Exception as e:
            raise self._rpc_error("getSignatureStatuses", e) from e

        if not response.value or response.value[0] is None:
            return None

        status = response.value[0]
        return SignatureStatus(
            slot=status.slot,
            err=str(status.err) if status.err else None,
            confirmation=_confirmation_level(status.confirmation_status)
        )

    async def get_recent_prioritization_fees(
        self,
        accounts: Sequence[Pubkey]
    ) -> List[PrioritizationFee]:
        result = await self._post(
            "getRecentPrioritizationFees",
            [[str(account) for account in accounts]]
        )
        if result is None:
            return []

        fees = []
        try:
            for entry in result:
                fees.append(PrioritizationFee(
                    slot=int(entry.get("slot", 0)),
                    prioritization_fee=int(entry.get("prioritizationFee", 0))
                ))
        except (AttributeError, TypeError, ValueError) as e:
            raise wrap_exception(
                e,
                RPCError,
                message=f"getRecentPrioritizationFees returned a malformed result: {result!r:.200}",
                rpc_endpoint=self.rpc_url,
                method_name="getRecentPrioritizationFees"
            ) from e
        return fees

    async def get_recent_prioritization_fees_percentile(
        self,
        accounts: Sequence[Pubkey],
        percentile: Percentile
    ) -> Any:
        """
        Query the provider-side percentile extension.

        Returns the raw ``result``: either ``{"prioritizationFee": n}`` or a
        per-slot list, depending on the provider.
        """
        return await self._post(
            "getRecentPrioritizationFees",
            [{
                "lockedWritableAccounts": [str(account) for account in accounts],
                "percentile": percentile.basis_points
            }]
        )

    async def get_lookup_table(self, address: Pubkey) -> Optional[List[Pubkey]]:
        try:
            response = await self._client.get_account_info(address, commitment=Confirmed)
        except Exception as e:
            raise self._rpc_error("getAccountInfo", e) from e

        if response.value is None:
            return None

        try:
            table = AddressLookupTable.deserialize(bytes(response.value.data))
        except Exception as e:
            raise wrap_exception(
                e,
                RPCError,
                message=f"Account {address} is not an address lookup table",
                rpc_endpoint=self.rpc_url,
                method_name="getAccountInfo"
            ) from e
        return list(table.addresses)

    async def get_genesis_hash(self) -> str:
        try:
            response = await self._client.get_genesis_hash()
        except Exception as e:
            raise self._rpc_error("getGenesisHash", e) from e
        return str(response.value)


@asynccontextmanager
async def rpc_scope(
    connection: "ConnectionContext",
    rpc: Optional[RpcAdapter] = None
) -> AsyncIterator[RpcAdapter]:
    """Yield ``rpc`` as-is, or an adapter for ``connection`` that is closed on exit."""
    if rpc is not None:
        yield rpc
        return

    adapter = RpcAdapter.from_context(connection)
    try:
        yield adapter
    finally:
        await adapter.close()
