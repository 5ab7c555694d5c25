"""
The transaction message threaded through the build pipeline.

``TxMessage`` is frozen; every transform returns a new message.
"""

from dataclasses import dataclass, replace
from typing import Iterable, List, Sequence, Tuple

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import TransactionBuildError
from .signer import TransactionSigner


@dataclass(frozen=True)
class BlockhashLifetime:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class TxMessage:
    fee_payer: TransactionSigner
    lifetime: BlockhashLifetime
    instructions: Tuple[Instruction, ...] = ()
    lookup_tables: Tuple[AddressLookupTableAccount, ...] = ()

    @property
    def payer(self) -> Pubkey:
        return self.fee_payer.pubkey


def create_message(
    fee_payer: TransactionSigner,
    lifetime: BlockhashLifetime,
    instructions: Iterable[Instruction] = ()
) -> TxMessage:
    return TxMessage(
        fee_payer=fee_payer,
        lifetime=lifetime,
        instructions=tuple(instructions)
    )


def prepend_instruction(message: TxMessage, instruction: Instruction) -> TxMessage:
    return replace(message, instructions=(instruction,) + message.instructions)


def with_lookup_tables(
    message: TxMessage,
    tables: Sequence[AddressLookupTableAccount]
) -> TxMessage:
    return replace(message, lookup_tables=tuple(tables))


def get_writable_accounts(instructions: Iterable[Instruction]) -> List[Pubkey]:
    """Writable account keys across ``instructions``, first occurrence order."""
    seen = set()
    writable = []
    for ix in instructions:
        for meta in ix.accounts:
            if meta.is_writable and meta.pubkey not in seen:
                seen.add(meta.pubkey)
                writable.append(meta.pubkey)
    return writable


def compile_message(message: TxMessage) -> MessageV0:
    try:
        return MessageV0.try_compile(
            payer=message.payer,
            instructions=list(message.instructions),
            address_lookup_table_accounts=list(message.lookup_tables),
            recent_blockhash=message.lifetime.blockhash
        )
    except Exception as e:
        raise TransactionBuildError(f"Failed to compile transaction message: {e}") from e


def unsigned_transaction(message: TxMessage) -> VersionedTransaction:
    """Compile ``message`` with placeholder signatures, for simulation."""
    compiled = compile_message(message)
    placeholders = [Signature.default()] * compiled.header.num_required_signatures
    return VersionedTransaction.populate(compiled, placeholders)
