"""
Transaction assembly.

Build order, where each prepend lands in front of the previous one:

1. caller instructions, in caller order
2. lookup-table compression
3. Jito tip transfer (if the tip is nonzero)
4. compute-unit price (if the priority fee is nonzero)
5. compute-unit limit, sized ``ceil(units * margin)``

so the final list reads ``[limit, price?, tip?, ...caller]``.
"""

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .compute_budget import add_compute_budget_instructions, resolve_compute_units
from .config import ConnectionContext, NoFee, TransactionConfig, TxSenderConfig, get_config
from .jito import JitoTipEstimator, create_tip_instruction, get_tip_estimator
from .logger import get_logger
from .lookup_tables import resolve_lookup_tables
from .message import (
    TxMessage,
    compile_message,
    create_message,
    prepend_instruction,
    with_lookup_tables,
)
from .priority_fees import calculate_priority_fee
from .rpc import RpcAdapter, rpc_scope
from .sender import send_transaction
from .signer import SignerLike, as_signer, is_fully_signed, sign_transaction_message

logger = get_logger(__name__)


async def _calculate_tip(
    tx_config: TransactionConfig,
    connection: ConnectionContext,
    tip_estimator: Optional[JitoTipEstimator]
) -> int:
    setting = tx_config.jito_tip
    if isinstance(setting, NoFee):
        return 0

    if not connection.is_mainnet:
        logger.warning(f"Jito tips are only paid on mainnet, skipping tip on {connection.network.value}")
        return 0

    estimator = tip_estimator or get_tip_estimator(tx_config.jito_tip_floor_url)
    return await estimator.calculate_tip(setting)


async def build_transaction_message(
    instructions: Iterable[Instruction],
    fee_payer: SignerLike,
    lookup_table_addresses: Optional[Sequence[Pubkey]] = None,
    *,
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None,
    tip_estimator: Optional[JitoTipEstimator] = None
) -> TxMessage:
    """Assemble the unsigned message with tip and compute-budget instructions."""
    cfg = config or get_config()
    connection = cfg.require_connection()
    tx_config = cfg.transaction
    payer = as_signer(fee_payer)
    caller_instructions = list(instructions)

    async with rpc_scope(connection, rpc) as client:
        lifetime, resolution = await asyncio.gather(
            client.get_latest_blockhash(),
            resolve_lookup_tables(client, lookup_table_addresses)
        )

        message = create_message(payer, lifetime, caller_instructions)
        if resolution.tables:
            message = with_lookup_tables(message, resolution.tables)
            if logger.isEnabledFor(logging.DEBUG):
                compressible = resolution.compressible_accounts(caller_instructions)
                logger.debug(f"{len(compressible)} account(s) compressible via {len(resolution.tables)} lookup table(s)")

        compute_units = await resolve_compute_units(tx_config.compute_unit_limit, client, message)

        tip = await _calculate_tip(tx_config, connection, tip_estimator)
        if tip > 0:
            message = prepend_instruction(message, create_tip_instruction(payer.pubkey, tip))

        priority_fee = await calculate_priority_fee(
            tx_config.priority_fee,
            message.instructions,
            compute_units,
            client,
            connection
        )

    message = add_compute_budget_instructions(
        message,
        compute_units,
        priority_fee,
        tx_config.compute_unit_margin_multiplier
    )

    logger.info(
        f"Built transaction: {len(caller_instructions)} instruction(s), "
        f"{compute_units} CU, priority fee {priority_fee} micro-lamports/CU, tip {tip} lamports"
    )
    return message


async def build_transaction(
    instructions: Iterable[Instruction],
    fee_payer: SignerLike,
    lookup_table_addresses: Optional[Sequence[Pubkey]] = None,
    *,
    signers: Sequence[SignerLike] = (),
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None,
    tip_estimator: Optional[JitoTipEstimator] = None
) -> VersionedTransaction:
    """
    Build and sign a transaction.

    ``fee_payer`` and ``signers`` may be keypairs, bare addresses or
    ``TransactionSigner`` instances. Address-only signers leave their slot
    empty, so the result is partially signed until an external wallet
    countersigns it.
    """
    message = await build_transaction_message(
        instructions,
        fee_payer,
        lookup_table_addresses,
        config=config,
        rpc=rpc,
        tip_estimator=tip_estimator
    )

    compiled = compile_message(message)
    transaction = sign_transaction_message(compiled, [message.fee_payer, *signers])

    if not is_fully_signed(transaction):
        logger.info("Transaction is partially signed")
    return transaction


async def build_and_send_transaction(
    instructions: Iterable[Instruction],
    fee_payer: SignerLike,
    lookup_table_addresses: Optional[Sequence[Pubkey]] = None,
    *,
    signers: Sequence[SignerLike] = (),
    config: Optional[TxSenderConfig] = None,
    rpc: Optional[RpcAdapter] = None,
    tip_estimator: Optional[JitoTipEstimator] = None
) -> Signature:
    transaction = await build_transaction(
        instructions,
        fee_payer,
        lookup_table_addresses,
        signers=signers,
        config=config,
        rpc=rpc,
        tip_estimator=tip_estimator
    )
    return await send_transaction(transaction, config=config, rpc=rpc)
