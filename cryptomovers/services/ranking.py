"""Gainer/loser ranking."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from ..types import MarketItem


def rank_movers(items: Sequence[MarketItem], top_n: int) -> Tuple[List[MarketItem], List[MarketItem]]:
    """Return ``(gainers, losers)``, each at most ``top_n`` long.

    Items without a 24h change are dropped. Sorting is stable, so ties keep
    upstream order. Losers are drawn only from items not already ranked as
    gainers, keeping the two lists disjoint when fewer than ``2 * top_n``
    items are available.
    """
    if top_n <= 0:
        return [], []

    ranked = [item for item in items if item.change_24h is not None]
    gainers = sorted(ranked, key=lambda item: item.change_24h, reverse=True)[:top_n]
    taken = {id(item) for item in gainers}
    remaining = [item for item in ranked if id(item) not in taken]
    losers = sorted(remaining, key=lambda item: item.change_24h)[:top_n]
    return gainers, losers


__all__ = ["rank_movers"]
