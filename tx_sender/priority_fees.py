"""
Priority fee estimation.

Fees are returned in micro-lamports per compute unit, the unit the
compute-budget price instruction takes. Lamport amounts (exact fees and caps)
are spread over the estimated compute units, so units must be estimated
before this stage runs.
"""

from typing import Any, Iterable, Union

from solders.instruction import Instruction

from .config import ConnectionContext, DynamicFee, ExactFee, NoFee
from .exceptions import RPCError
from .logger import get_logger
from .message import get_writable_accounts
from .percentile import Percentile, select_percentile
from .rpc import RpcAdapter

logger = get_logger(__name__)

MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
RECENT_SLOT_WINDOW = 50


def lamports_to_micro_lamports_per_unit(lamports: int, compute_units: int) -> int:
    if compute_units <= 0:
        raise ValueError(f"compute_units must be positive, got {compute_units}")
    return lamports * MICRO_LAMPORTS_PER_LAMPORT // compute_units


def reduce_percentile_query_result(result: Any) -> int:
    """
    Reduce the percentile query's result to one fee.

    Providers answer either with an aggregate ``{"prioritizationFee": n}`` or
    with per-slot entries; the latter is reduced to the median of the nonzero
    fees across the most recent slots.
    """
    if result is None:
        return 0

    if isinstance(result, dict):
        return int(result.get("prioritizationFee") or 0)

    if isinstance(result, list):
        recent = sorted(result, key=lambda entry: entry.get("slot", 0))[-RECENT_SLOT_WINDOW:]
        return select_percentile(
            (int(entry.get("prioritizationFee") or 0) for entry in recent),
            Percentile.P50
        )

    raise RPCError(
        f"Unexpected prioritization fee result: {type(result).__name__}",
        method_name="getRecentPrioritizationFees"
    )


async def estimate_dynamic_fee(
    setting: DynamicFee,
    instructions: Iterable[Instruction],
    rpc: RpcAdapter,
    connection: ConnectionContext
) -> int:
    accounts = get_writable_accounts(instructions)

    if connection.supports_percentile_query:
        result = await rpc.get_recent_prioritization_fees_percentile(accounts, setting.percentile)
        fee = reduce_percentile_query_result(result)
    else:
        recent = await rpc.get_recent_prioritization_fees(accounts)
        fee = select_percentile((entry.prioritization_fee for entry in recent), setting.percentile)

    logger.debug(
        f"Recent priority fee p{setting.percentile.value} over {len(accounts)} writable accounts: {fee}"
    )
    return fee


async def calculate_priority_fee(
    setting: Union[NoFee, ExactFee, DynamicFee],
    instructions: Iterable[Instruction],
    compute_units: int,
    rpc: RpcAdapter,
    connection: ConnectionContext
) -> int:
    if isinstance(setting, NoFee):
        return 0

    if isinstance(setting, ExactFee):
        return lamports_to_micro_lamports_per_unit(setting.amount_lamports, compute_units)

    fee = await estimate_dynamic_fee(setting, instructions, rpc, connection)

    if setting.max_cap_lamports is not None:
        cap = lamports_to_micro_lamports_per_unit(setting.max_cap_lamports, compute_units)
        if fee > cap:
            logger.debug(f"Priority fee {fee} capped at {cap}")
        fee = min(fee, cap)

    return fee
