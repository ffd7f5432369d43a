"""
Unit tests for Metaplex token metadata lookups.
"""

import struct

import base58
import pytest

from lpwatch.errors import DecodeMismatch, TransportUnavailable
from lpwatch.sinks import METADATA_PROGRAM_ID, TokenMetadataResolver, metadata_pda, parse_metadata

from builders import MINT_X, MINT_Y, address


def borsh_string(value: str, padded: int = 0) -> bytes:
    raw = value.encode().ljust(padded, b"\x00")
    return struct.pack("<I", len(raw)) + raw


def metadata_account(mint: str, name: str, symbol: str) -> bytes:
    return (
        bytes([4])
        + base58.b58decode(address(99))
        + base58.b58decode(mint)
        + borsh_string(name, 32)
        + borsh_string(symbol, 10)
        + borsh_string("https://example.com/meta.json", 200)
        + bytes(40)
    )


class FakeAccountTransport:
    """get_account_data keyed by metadata PDA."""

    def __init__(self, accounts=None, errors=0):
        self.accounts = accounts or {}
        self.errors = errors
        self.requests = []

    async def get_account_data(self, address):
        self.requests.append(address)
        if self.errors > 0:
            self.errors -= 1
            raise TransportUnavailable("node down")
        return self.accounts.get(address)


class TestMetadataPda:

    def test_deterministic(self):
        assert metadata_pda(MINT_X) == metadata_pda(MINT_X)

    def test_distinct_per_mint(self):
        assert metadata_pda(MINT_X) != metadata_pda(MINT_Y)

    def test_valid_address(self):
        pda = metadata_pda(MINT_X)
        assert len(base58.b58decode(pda)) == 32
        assert pda != METADATA_PROGRAM_ID

    def test_invalid_mint(self):
        with pytest.raises(ValueError):
            metadata_pda("not-a-mint")


class TestParseMetadata:

    def test_name_and_symbol_unpadded(self):
        meta = parse_metadata(MINT_X, metadata_account(MINT_X, "Wrapped SOL", "SOL"))

        assert meta.mint == MINT_X
        assert meta.name == "Wrapped SOL"
        assert meta.symbol == "SOL"

    def test_truncated_account(self):
        data = metadata_account(MINT_X, "Wrapped SOL", "SOL")[:70]
        with pytest.raises(DecodeMismatch):
            parse_metadata(MINT_X, data)


class TestResolver:

    @pytest.fixture
    def transport(self):
        return FakeAccountTransport({
            metadata_pda(MINT_X): metadata_account(MINT_X, "Wrapped SOL", "SOL"),
        })

    @pytest.mark.asyncio
    async def test_resolve_and_cache(self, transport):
        resolver = TokenMetadataResolver(transport)

        assert await resolver.symbol(MINT_X) == "SOL"
        assert await resolver.symbol(MINT_X) == "SOL"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_account_cached(self, transport):
        resolver = TokenMetadataResolver(transport)

        assert await resolver.resolve(MINT_Y) is None
        assert await resolver.symbol(MINT_Y) is None
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_not_cached(self, transport):
        transport.errors = 1
        resolver = TokenMetadataResolver(transport)

        assert await resolver.symbol(MINT_X) is None
        assert await resolver.symbol(MINT_X) == "SOL"
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_unreadable_account(self):
        transport = FakeAccountTransport({metadata_pda(MINT_X): b"\x04"})
        resolver = TokenMetadataResolver(transport)

        assert await resolver.resolve(MINT_X) is None

    @pytest.mark.asyncio
    async def test_no_mint(self, transport):
        resolver = TokenMetadataResolver(transport)

        assert await resolver.symbol(None) is None
        assert transport.requests == []
