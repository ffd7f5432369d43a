"""
Token Metadata Resolver

Looks up SPL token name/symbol from the Metaplex Token Metadata account:

    PDA = find_program_address(
        seeds = [b"metadata", METADATA_PROGRAM_ID, mint],
        program_id = METADATA_PROGRAM_ID
    )

Account layout (borsh):
- key (u8)
- update_authority (Pubkey)
- mint (Pubkey)
- name (String, NUL padded)
- symbol (String, NUL padded)
- uri (String, NUL padded)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from solders.pubkey import Pubkey

from ..dlmm.decoder import BorshReader
from ..errors import DecodeMismatch, TransportError


METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
METADATA_SEED = b"metadata"


@dataclass(frozen=True)
class TokenMetadata:
    mint: str
    name: str
    symbol: str


def metadata_pda(mint: str, program_id: str = METADATA_PROGRAM_ID) -> str:
    """Derive the Metaplex metadata account address for a mint."""
    program = Pubkey.from_string(program_id)
    pda, _bump = Pubkey.find_program_address(
        [METADATA_SEED, bytes(program), bytes(Pubkey.from_string(mint))],
        program
    )
    return str(pda)


def parse_metadata(mint: str, data: bytes) -> TokenMetadata:
    """
    Parse name and symbol from raw metadata account data.

    Raises:
        DecodeMismatch: data is too short for the layout.
    """
    reader = BorshReader(data)
    reader.u8()
    reader.skip(64)
    name = reader.string().rstrip("\x00").strip()
    symbol = reader.string().rstrip("\x00").strip()
    return TokenMetadata(mint=mint, name=name, symbol=symbol)


class TokenMetadataResolver:
    """
    Cached mint -> TokenMetadata lookups.

    Usage:
        resolver = TokenMetadataResolver(rpc_transport)
        meta = await resolver.resolve(mint)   # None if unavailable
        label = await resolver.symbol(mint)   # None if unavailable
    """

    def __init__(self, transport):
        self._transport = transport
        self._cache: Dict[str, Optional[TokenMetadata]] = {}
        self._logger = logging.getLogger("TokenMetadata")

    async def resolve(self, mint: str) -> Optional[TokenMetadata]:
        if mint in self._cache:
            return self._cache[mint]

        try:
            data = await self._transport.get_account_data(metadata_pda(mint))
        except TransportError as e:
            # Not cached: a later lookup may succeed
            self._logger.warning(f"Metadata fetch failed for {mint}: {e}")
            return None
        except ValueError as e:
            self._logger.warning(f"Invalid mint {mint}: {e}")
            self._cache[mint] = None
            return None

        if data is None:
            self._logger.debug(f"No metadata account for {mint}")
            self._cache[mint] = None
            return None

        try:
            metadata = parse_metadata(mint, data)
        except DecodeMismatch as e:
            self._logger.warning(f"Unreadable metadata for {mint}: {e}")
            metadata = None

        self._cache[mint] = metadata
        return metadata

    async def symbol(self, mint: Optional[str]) -> Optional[str]:
        if not mint:
            return None
        metadata = await self.resolve(mint)
        if metadata is None or not metadata.symbol:
            return None
        return metadata.symbol
