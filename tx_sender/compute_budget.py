import math
import struct

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .config import (
    DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER,
    MAX_COMPUTE_UNITS,
    ComputeUnitLimitStrategy,
    ExactComputeUnits,
)
from .exceptions import RPCError, SimulationFailedError
from .logger import get_logger
from .message import TxMessage, prepend_instruction, unsigned_transaction
from .rpc import RpcAdapter

logger = get_logger(__name__)

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


def create_set_compute_unit_limit_instruction(units: int) -> Instruction:
    data = bytes([0x02]) + struct.pack("<I", units)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def create_set_compute_unit_price_instruction(micro_lamports: int) -> Instruction:
    data = bytes([0x03]) + struct.pack("<Q", micro_lamports)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def compute_unit_limit_with_margin(
    units: int,
    margin: float = DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER
) -> int:
    """``ceil(units * margin)`` in plain float arithmetic."""
    return math.ceil(units * margin)


async def estimate_compute_units(rpc: RpcAdapter, message: TxMessage) -> int:
    """
    Simulate ``message`` and return the consumed compute units.

    The message must not yet carry compute-budget instructions. Any simulation
    failure falls back to ``MAX_COMPUTE_UNITS``.
    """
    tx = unsigned_transaction(message)

    try:
        result = await rpc.simulate_transaction(tx)
        if not result.success:
            raise SimulationFailedError(
                f"Simulation failed: {result.error}",
                simulation_logs=result.logs
            )
        if not result.units_consumed:
            raise SimulationFailedError(
                "Simulation returned no compute units",
                simulation_logs=result.logs
            )
    except (RPCError, SimulationFailedError) as e:
        logger.warning(f"Compute unit estimation failed, falling back to {MAX_COMPUTE_UNITS}: {e}")
        return MAX_COMPUTE_UNITS

    logger.debug(f"Simulation consumed {result.units_consumed} compute units")
    return result.units_consumed


async def resolve_compute_units(
    strategy: ComputeUnitLimitStrategy,
    rpc: RpcAdapter,
    message: TxMessage
) -> int:
    if isinstance(strategy, ExactComputeUnits):
        return strategy.units
    return await estimate_compute_units(rpc, message)


def add_compute_budget_instructions(
    message: TxMessage,
    compute_units: int,
    micro_lamports: int,
    margin: float = DEFAULT_COMPUTE_UNIT_MARGIN_MULTIPLIER
) -> TxMessage:
    """Prepend the price (if nonzero) and then the limit, so the limit ends up first."""
    if micro_lamports > 0:
        message = prepend_instruction(
            message,
            create_set_compute_unit_price_instruction(micro_lamports)
        )

    limit = compute_unit_limit_with_margin(compute_units, margin)
    return prepend_instruction(message, create_set_compute_unit_limit_instruction(limit))
