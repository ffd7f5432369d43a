"""
Solana JSON-RPC Transport

Pages a program's transaction history through:
- getSignaturesForAddress (newest-first, walked back to the cursor)
- getTransaction (json encoding, v0 transactions supported)
- getAccountInfo (base64, used for token metadata lookups)

Failures are mapped onto the transport error hierarchy:
- HTTP 429, RPC -32005 / -32429            -> RateLimited
- request timeout                          -> TransportTimeout
- HTTP 5xx, connection errors, node lag    -> TransportUnavailable
- HTTP 404, invalid params, empty history  -> NotFound
- other HTTP 4xx                           -> TransportPermanent
"""

import asyncio
import base64
import logging
from collections import deque
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import base58

from ..errors import (
    NotFound,
    RateLimited,
    TransportError,
    TransportPermanent,
    TransportTimeout,
    TransportUnavailable,
    WatcherError,
)
from ..types import Position, RawInstruction, RawTransaction


# getSignaturesForAddress hard limit per request
SIGNATURE_BATCH = 1000

RATE_LIMIT_CODES = (-32005, -32429)
INVALID_PARAMS_CODES = (-32600, -32601, -32602)


def classify_rpc_error(code: int, message: str) -> TransportError:
    """Map a JSON-RPC error object to a transport error."""
    text = f"RPC error {code}: {message}"
    if code in RATE_LIMIT_CODES:
        return RateLimited(text)
    if code in INVALID_PARAMS_CODES:
        return NotFound(text)
    # Skipped slots, missing blocks, lagging nodes
    return TransportUnavailable(text)


def _raw_instruction(
    ix: Dict[str, Any],
    account_keys: List[str],
    index: int,
    is_inner: bool
) -> RawInstruction:
    program_index = ix.get("programIdIndex", -1)
    program_id = account_keys[program_index] if 0 <= program_index < len(account_keys) else ""
    return RawInstruction(
        program_id=program_id,
        data=base58.b58decode(ix.get("data", "")),
        accounts=tuple(ix.get("accounts", [])),
        index=index,
        is_inner=is_inner,
    )


def parse_transaction(result: Dict[str, Any], signature: str) -> RawTransaction:
    """
    Build a RawTransaction from a getTransaction (encoding=json) result.

    Account keys are the static message keys followed by the v0 loaded
    writable and readonly addresses. Instructions are flattened in execution
    order: each top-level instruction is followed by its inner instructions.
    """
    transaction = result["transaction"]
    message = transaction["message"]
    meta = result.get("meta") or {}

    account_keys = list(message.get("accountKeys", []))
    loaded = meta.get("loadedAddresses") or {}
    account_keys.extend(loaded.get("writable", []))
    account_keys.extend(loaded.get("readonly", []))

    inner_by_parent: Dict[int, List[Dict]] = {}
    for entry in meta.get("innerInstructions") or []:
        inner_by_parent[entry["index"]] = entry.get("instructions", [])

    flat: List[RawInstruction] = []
    for parent_index, ix in enumerate(message.get("instructions", [])):
        flat.append(_raw_instruction(ix, account_keys, len(flat), False))
        for inner in inner_by_parent.get(parent_index, []):
            flat.append(_raw_instruction(inner, account_keys, len(flat), True))

    signatures = transaction.get("signatures") or [signature]
    return RawTransaction(
        signature=signatures[0],
        slot=result["slot"],
        account_keys=tuple(account_keys),
        instructions=tuple(flat),
        block_time=result.get("blockTime"),
        failed=meta.get("err") is not None,
    )


class SolanaRpcTransport:
    """
    Transport over a Solana JSON-RPC endpoint.

    Usage:
        transport = SolanaRpcTransport("https://api.mainnet-beta.solana.com")
        await transport.start()
        newest = await transport.get_newest_position(program_id)
        txs, next_cursor = await transport.get_page(program_id, cursor, 10)
        await transport.stop()
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "finalized",
        request_timeout: float = 30.0,
        max_concurrent_requests: int = 1,
        max_backfill_signatures: int = 10_000
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.request_timeout = request_timeout
        self.max_backfill_signatures = max_backfill_signatures
        self._logger = logging.getLogger("SolanaRpcTransport")

        self._session: Optional[aiohttp.ClientSession] = None
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_requests))
        self._request_id = 0

        # Stats
        self.requests_sent = 0
        self.errors = 0

    async def start(self):
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )

    async def stop(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "SolanaRpcTransport":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # =========================================================================
    # JSON-RPC
    # =========================================================================

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        if self._session is None:
            await self.start()

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        async with self._semaphore:
            self.requests_sent += 1
            try:
                async with self._session.post(
                    self.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"}
                ) as response:
                    if response.status == 429:
                        retry_after = response.headers.get("Retry-After")
                        raise RateLimited(
                            f"{method}: HTTP 429",
                            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
                        )
                    if response.status >= 500:
                        raise TransportUnavailable(f"{method}: HTTP {response.status}")
                    if response.status == 404:
                        raise NotFound(f"{method}: HTTP 404")
                    if response.status != 200:
                        raise TransportPermanent(f"{method}: HTTP {response.status}")
                    data = await response.json(content_type=None)
            except asyncio.TimeoutError:
                self.errors += 1
                raise TransportTimeout(f"{method}: timed out after {self.request_timeout}s")
            except aiohttp.ClientError as e:
                self.errors += 1
                raise TransportUnavailable(f"{method}: {e}")
            except ValueError as e:
                self.errors += 1
                raise TransportUnavailable(f"{method}: invalid JSON response: {e}")
            except TransportError:
                self.errors += 1
                raise

        if not isinstance(data, dict):
            self.errors += 1
            raise TransportUnavailable(f"{method}: malformed response")
        error = data.get("error")
        if error:
            self.errors += 1
            raise classify_rpc_error(error.get("code", 0), error.get("message", ""))
        return data.get("result")

    # =========================================================================
    # Transport contract
    # =========================================================================

    async def get_newest_position(self, program_id: str) -> Position:
        batch = await self._rpc(
            "getSignaturesForAddress",
            [program_id, {"limit": 1, "commitment": self.commitment}]
        )
        if not batch:
            raise NotFound(f"No transactions for program {program_id}")
        try:
            return Position(slot=int(batch[0]["slot"]), signature=str(batch[0]["signature"]))
        except (KeyError, TypeError, ValueError, WatcherError) as e:
            raise TransportUnavailable(f"getSignaturesForAddress: malformed entry: {e!r}")

    async def get_page(
        self,
        program_id: str,
        from_cursor: Optional[Position],
        page_size: int
    ) -> Tuple[List[RawTransaction], Optional[Position]]:
        try:
            entries = await self._oldest_signatures_after(program_id, from_cursor, page_size)
            signatures = [str(entry["signature"]) for entry in entries]
        except (KeyError, TypeError) as e:
            raise TransportUnavailable(f"getSignaturesForAddress: malformed entry: {e!r}")
        if not entries:
            return [], None

        results = await asyncio.gather(*[
            self._get_transaction(signature) for signature in signatures
        ])

        transactions: List[RawTransaction] = []
        for signature, result in zip(signatures, results):
            if result is None:
                # Not yet available at this commitment; stop here and retry next page
                self._logger.debug(f"Transaction {signature} not available yet, truncating page")
                break
            try:
                transactions.append(parse_transaction(result, signature))
            except (KeyError, IndexError, TypeError, ValueError, WatcherError) as e:
                self.errors += 1
                raise TransportUnavailable(
                    f"getTransaction {signature}: malformed result: {e!r}"
                )

        next_cursor = transactions[-1].position if transactions else None
        return transactions, next_cursor

    async def _oldest_signatures_after(
        self,
        program_id: str,
        cursor: Optional[Position],
        page_size: int
    ) -> List[Dict]:
        """
        Walk getSignaturesForAddress back from the newest signature to the
        cursor and return the `page_size` oldest entries, ascending.

        Without a cursor the walk is capped at max_backfill_signatures and
        starts from the oldest signature it reached.
        """
        oldest: deque = deque(maxlen=page_size)
        walked = 0
        before: Optional[str] = None

        while True:
            options: Dict[str, Any] = {"limit": SIGNATURE_BATCH, "commitment": self.commitment}
            if cursor is not None:
                options["until"] = cursor.signature
            if before:
                options["before"] = before

            batch = await self._rpc("getSignaturesForAddress", [program_id, options]) or []
            oldest.extend(batch)
            walked += len(batch)

            if len(batch) < SIGNATURE_BATCH:
                break
            if cursor is None and walked >= self.max_backfill_signatures:
                self._logger.warning(
                    f"Backfill for {program_id} capped at {walked} signatures"
                )
                break
            before = batch[-1]["signature"]

        entries = list(oldest)
        entries.reverse()
        return entries

    async def _get_transaction(self, signature: str) -> Optional[Dict]:
        return await self._rpc(
            "getTransaction",
            [signature, {
                "encoding": "json",
                "commitment": self.commitment,
                "maxSupportedTransactionVersion": 0,
            }]
        )

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account_data(self, address: str) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}]
        )
        value = (result or {}).get("value")
        if not value:
            return None
        return base64.b64decode(value["data"][0])
