"""Human-readable rendering of watchlist matches."""

from typing import List, Optional

from ..types import AddLiquidityPayload, WatchlistMatch


SOLSCAN_TX_URL = "https://solscan.io/tx/"


def short(address: Optional[str], size: int = 6) -> str:
    if not address:
        return "?"
    if len(address) <= size * 2:
        return address
    return f"{address[:size]}...{address[-4:]}"


def _label(symbol: Optional[str], mint: Optional[str], default: str) -> str:
    if symbol:
        return symbol
    return short(mint) if mint else default


def format_match(
    match: WatchlistMatch,
    symbol_x: Optional[str] = None,
    symbol_y: Optional[str] = None
) -> str:
    """Multi-line text message for a match."""
    event = match.event
    payload = event.payload
    label_x = _label(symbol_x, payload.token_x_mint, "X")
    label_y = _label(symbol_y, payload.token_y_mint, "Y")

    lines: List[str] = [
        f"{event.kind.value} (slot {event.slot})",
        f"Pair: {payload.lb_pair}",
        f"Sender: {payload.sender}",
        f"Position: {payload.position}",
    ]

    if isinstance(payload, AddLiquidityPayload):
        lines.append(f"Amount {label_x}: {payload.amounts[0]}")
        lines.append(f"Amount {label_y}: {payload.amounts[1]}")
        if payload.bin_ids:
            lines.append(f"Bins: {min(payload.bin_ids)}..{max(payload.bin_ids)} ({len(payload.bin_ids)})")
    else:
        if payload.amounts is not None:
            lines.append(f"Amount {label_x}: {payload.amounts[0]}")
            lines.append(f"Amount {label_y}: {payload.amounts[1]}")
        if payload.bin_removals:
            bins = [bin_id for bin_id, _ in payload.bin_removals]
            bps = {b for _, b in payload.bin_removals}
            share = f"{bps.pop() / 100:g}%" if len(bps) == 1 else "mixed"
            lines.append(f"Bins: {min(bins)}..{max(bins)} ({len(bins)}), removed {share}")

    if payload.active_bin_id is not None:
        lines.append(f"Active bin: {payload.active_bin_id}")

    lines.append(f"Wallets: {', '.join(short(a) for a in match.matched_addresses)}")
    lines.append(f"Tx: {SOLSCAN_TX_URL}{event.signature}")
    return "\n".join(lines)
