"""
Merge engine for per-source token result sets.

Records sharing a token address are folded into one merged record:

- price: liquidity-weighted average (equal blend when both sides report no liquidity)
- volume, market cap, transaction count: maximum
- liquidity: sum
- sources: set union
- identity, name, ticker, protocol: kept from the first-seen record

The fold is pairwise and sequential, so with three or more sources sharing a
token the merged price depends slightly on the order of the result sets.
Callers pass result sets in a fixed source order.
"""

from typing import Dict, Iterable, List

from ..api.schemas import MergedTokenRecord, TokenRecord, now_ms


def _seed(token: TokenRecord) -> MergedTokenRecord:
    return MergedTokenRecord(**token.dict())


def combine_into(existing: MergedTokenRecord, incoming: TokenRecord) -> MergedTokenRecord:
    """Fold one additional sighting into a merged record in place."""
    total_liquidity = existing.liquidity_sol + incoming.liquidity_sol
    if total_liquidity > 0:
        existing_weight = existing.liquidity_sol / total_liquidity
        incoming_weight = incoming.liquidity_sol / total_liquidity
    else:
        existing_weight = incoming_weight = 0.5

    existing.price_sol = existing.price_sol * existing_weight + incoming.price_sol * incoming_weight
    existing.volume_sol = max(existing.volume_sol, incoming.volume_sol)
    existing.market_cap_sol = max(existing.market_cap_sol, incoming.market_cap_sol)
    existing.transaction_count = max(existing.transaction_count, incoming.transaction_count)
    existing.liquidity_sol = total_liquidity
    existing.sources = list(dict.fromkeys(existing.sources + incoming.sources))
    # Every write to the same address moves the timestamp forward
    existing.last_updated = max(now_ms(), existing.last_updated + 1)
    return existing


def merge_token_data(source_results: Iterable[List[TokenRecord]]) -> List[MergedTokenRecord]:
    """
    Merge per-source result sets into one record per token address.

    Input records are never mutated. Output keeps first-seen order.
    """
    merged: Dict[str, MergedTokenRecord] = {}

    for tokens in source_results:
        for token in tokens:
            existing = merged.get(token.token_address)
            if existing is None:
                merged[token.token_address] = _seed(token)
            else:
                combine_into(existing, token)

    return list(merged.values())
