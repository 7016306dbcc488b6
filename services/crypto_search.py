# services/crypto_search.py
from __future__ import annotations

from typing import List, Sequence

from schemas.crypto import Asset

SEARCH_RESULT_LIMIT = 20


def matches(asset: Asset, term: str) -> bool:
    symbol = asset.symbol.lower()
    return symbol == term or term in asset.name.lower() or term in symbol


def search_assets(query: str, candidates: Sequence[Asset], limit: int = SEARCH_RESULT_LIMIT) -> List[Asset]:
    """
    Filter `candidates` by a free-text query.

    Match: symbol equals the query, or name / symbol contains it
    (case-insensitive, trimmed). Exact symbol hits come first; within each
    group the candidate order is kept. Capped at `limit`.

    Blank query returns the candidates untouched: restricting to a category
    is the caller's job (pick the candidate set), not the predicate's.
    """
    term = (query or "").strip().lower()
    if not term:
        return list(candidates)

    exact: List[Asset] = []
    partial: List[Asset] = []
    for asset in candidates:
        if not matches(asset, term):
            continue
        if asset.symbol.lower() == term:
            exact.append(asset)
        else:
            partial.append(asset)

    return (exact + partial)[:limit]
