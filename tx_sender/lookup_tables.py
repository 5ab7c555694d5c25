import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .logger import get_logger
from .rpc import RpcAdapter

logger = get_logger(__name__)


@dataclass
class LookupTableResolution:
    tables: List[AddressLookupTableAccount] = field(default_factory=list)
    compression_map: Dict[Pubkey, Tuple[Pubkey, int]] = field(default_factory=dict)

    def compressible_accounts(self, instructions: Sequence[Instruction]) -> List[Pubkey]:
        """Non-signer accounts of ``instructions`` that a resolved table can index."""
        found = []
        seen = set()
        invoked = {ix.program_id for ix in instructions}
        for ix in instructions:
            for meta in ix.accounts:
                key = meta.pubkey
                if meta.is_signer or key in invoked or key in seen:
                    continue
                if key in self.compression_map:
                    seen.add(key)
                    found.append(key)
        return found


def build_compression_map(
    tables: Sequence[AddressLookupTableAccount]
) -> Dict[Pubkey, Tuple[Pubkey, int]]:
    """Map each address to the first (table, index) that holds it."""
    compression_map: Dict[Pubkey, Tuple[Pubkey, int]] = {}
    for table in tables:
        for index, address in enumerate(table.addresses):
            compression_map.setdefault(address, (table.key, index))
    return compression_map


async def _fetch_table(rpc: RpcAdapter, address: Pubkey) -> Optional[AddressLookupTableAccount]:
    addresses = await rpc.get_lookup_table(address)
    if addresses is None:
        logger.debug(f"Lookup table {address} not found, skipping")
        return None
    return AddressLookupTableAccount(key=address, addresses=addresses)


async def resolve_lookup_tables(
    rpc: RpcAdapter,
    addresses: Optional[Sequence[Pubkey]] = None
) -> LookupTableResolution:
    """
    Fetch lookup tables concurrently.

    Tables that do not exist are skipped. Duplicate table addresses are
    fetched once. RPC failures propagate.
    """
    unique = list(dict.fromkeys(addresses or []))
    if not unique:
        return LookupTableResolution()

    results = await asyncio.gather(*(_fetch_table(rpc, address) for address in unique))
    tables = [table for table in results if table is not None]

    logger.debug(f"Resolved {len(tables)}/{len(unique)} lookup tables")
    return LookupTableResolution(
        tables=tables,
        compression_map=build_compression_map(tables)
    )
