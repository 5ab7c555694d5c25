"""
Shared fixtures for the tx_sender tests.

Every test runs offline: the RPC adapter is replaced by a ``MagicMock`` with
async methods and the Jito tip-floor endpoint by a fake aiohttp session.
"""

import json
from typing import Any, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from tx_sender.config import ConnectionContext, Network, TxSenderConfig, reset_config
from tx_sender.jito import JitoTipEstimator
from tx_sender.message import BlockhashLifetime
from tx_sender.rpc import PrioritizationFee, RpcAdapter, SignatureStatus, SimulationResult

MAINNET_GENESIS_HASH = "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d"


# ==============================================================================
# Helpers
# ==============================================================================

def make_instruction(
    writable: Optional[List[Pubkey]] = None,
    readonly: Optional[List[Pubkey]] = None,
    program_id: Optional[Pubkey] = None,
    data: bytes = b"\x01\x02\x03",
) -> Instruction:
    accounts = [AccountMeta(pubkey=key, is_signer=False, is_writable=True) for key in writable or []]
    accounts += [AccountMeta(pubkey=key, is_signer=False, is_writable=False) for key in readonly or []]
    return Instruction(
        program_id=program_id or Pubkey.new_unique(),
        data=data,
        accounts=accounts,
    )


def signature_of(raw: bytes, skip_preflight: bool = False):
    return VersionedTransaction.from_bytes(raw).signatures[0]


def make_rpc(
    units_consumed: Optional[int] = 50_000,
    fees: Optional[List[int]] = None,
    status: Optional[SignatureStatus] = None,
) -> MagicMock:
    rpc = MagicMock(spec=RpcAdapter)
    rpc.get_latest_blockhash = AsyncMock(
        return_value=BlockhashLifetime(blockhash=Hash.new_unique(), last_valid_block_height=1_000)
    )
    rpc.simulate_transaction = AsyncMock(
        return_value=SimulationResult(success=True, units_consumed=units_consumed)
    )
    rpc.get_recent_prioritization_fees = AsyncMock(
        return_value=[
            PrioritizationFee(slot=slot, prioritization_fee=fee)
            for slot, fee in enumerate(fees or [])
        ]
    )
    rpc.get_recent_prioritization_fees_percentile = AsyncMock(
        return_value={"prioritizationFee": 0}
    )
    rpc.get_lookup_table = AsyncMock(return_value=None)
    rpc.send_raw_transaction = AsyncMock(side_effect=signature_of)
    rpc.get_signature_status = AsyncMock(
        return_value=status or SignatureStatus(slot=1, confirmation="confirmed")
    )
    rpc.get_genesis_hash = AsyncMock(return_value=MAINNET_GENESIS_HASH)
    return rpc


class FakeResponse:

    def __init__(self, status: int = 200, payload: Any = None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def text(self):
        return json.dumps(self._payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class FakeSession:
    """Stands in for ``aiohttp.ClientSession``; the last response repeats."""

    def __init__(self, *responses: FakeResponse):
        self.responses = list(responses)
        self.calls = 0
        self.urls: List[str] = []
        self.closed = False

    def get(self, url, **kwargs):
        self.urls.append(url)
        index = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        return self.responses[index]

    async def close(self):
        self.closed = True


class FakeClock:

    def __init__(self, now_ms: int = 0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int):
        self.now_ms += ms


def tip_floor_payload(**overrides) -> list:
    record = {
        "time": "2024-01-01T00:00:00Z",
        "landed_tips_25th_percentile": 0.000001,
        "landed_tips_50th_percentile": 0.00001,
        "landed_tips_75th_percentile": 0.0001,
        "landed_tips_95th_percentile": 0.001,
        "landed_tips_99th_percentile": 0.01,
        "ema_landed_tips_50th_percentile": 0.00002,
    }
    record.update(overrides)
    return [record]


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture(autouse=True)
def fresh_default_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def connection() -> ConnectionContext:
    return ConnectionContext(rpc_url="http://localhost:8899", network=Network.MAINNET)


@pytest.fixture
def config(connection) -> TxSenderConfig:
    return TxSenderConfig(connection=connection)


@pytest.fixture
def rpc() -> MagicMock:
    return make_rpc()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tip_session() -> FakeSession:
    return FakeSession(FakeResponse(200, tip_floor_payload()))


@pytest.fixture
def tip_estimator(tip_session, clock) -> JitoTipEstimator:
    return JitoTipEstimator(session=tip_session, clock=clock)


@pytest.fixture
def signed_transaction(payer) -> VersionedTransaction:
    ix = transfer(TransferParams(
        from_pubkey=payer.pubkey(),
        to_pubkey=Pubkey.new_unique(),
        lamports=1_000,
    ))
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.new_unique())
    return VersionedTransaction(message, [payer])
