# services/crypto_categories.py
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from schemas.crypto import Ecosystem

# CoinGecko's category filter comes back empty for several ecosystems;
# these hand-picked id lists are queried instead.
CATEGORY_FALLBACK_COINS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "layer-1": (
        "bitcoin", "ethereum", "solana", "cardano", "avalanche-2", "polkadot", "near",
    ),
    "ethereum-ecosystem": (
        "ethereum", "chainlink", "uniswap", "aave", "compound-governance-token",
        "maker", "lido-dao", "the-graph", "1inch", "ens",
    ),
    "solana-ecosystem": (
        "solana", "serum", "raydium", "orca", "marinade", "solend",
        "step-finance", "star-atlas", "phantom", "jupiter-exchange-solana",
    ),
    "stacks-ecosystem": (
        "stacks", "alex-lab", "citycoins", "wrapped-bitcoin", "blockstack",
    ),
    "polygon-ecosystem": (
        "matic-network", "aavegotchi", "quickswap", "polyswarm", "decentral-games", "gains-network",
    ),
    "base-ecosystem": (
        "coinbase-wrapped-staked-eth", "aerodrome-finance", "friend-tech",
    ),
    "optimism-ecosystem": (
        "optimism", "synthetix-network-token", "velodrome-finance", "thales",
    ),
    "aptos-ecosystem": (
        "aptos", "liquid-staking-aptos", "pancakeswap-aptos",
    ),
    "bitcoin-ecosystem": (
        "bitcoin", "wrapped-bitcoin", "bitcoin-cash", "bitcoin-sv", "dogecoin", "litecoin", "ordinals",
    ),
    "decentralized-finance-defi": (
        "uniswap", "aave", "compound-governance-token", "maker", "curve-dao-token", "sushiswap", "yearn-finance",
    ),
    "smart-contract-platform": (
        "ethereum", "binancecoin", "solana", "cardano", "avalanche-2", "polkadot", "near",
    ),
    "binance-smart-chain": (
        "binancecoin", "pancakeswap-token", "trust-wallet-token", "venus", "bakerytoken", "beefy-finance",
    ),
})

# Chip order shown by the widget: Stacks pinned first, then roughly by TVL.
ECOSYSTEMS: Tuple[Ecosystem, ...] = (
    Ecosystem(id="stacks", name="Stacks", color="#FC6432", category="stacks-ecosystem"),
    Ecosystem(id="ethereum", name="Ethereum", color="#627EEA", category="ethereum-ecosystem"),
    Ecosystem(id="bnb", name="BNB Chain", color="#F3BA2F", category="binance-smart-chain"),
    Ecosystem(id="solana", name="Solana", color="#9945FF", category="solana-ecosystem"),
    Ecosystem(id="polygon", name="Polygon", color="#8247E5", category="polygon-ecosystem"),
    Ecosystem(id="base", name="Base", color="#0052FF", category="base-ecosystem"),
    Ecosystem(id="optimism", name="Optimism", color="#FF0420", category="optimism-ecosystem"),
    Ecosystem(id="aptos", name="Aptos", color="#00D4AA", category="aptos-ecosystem"),
    Ecosystem(id="bitcoin", name="Bitcoin", color="#F7931A", category="bitcoin-ecosystem"),
)


def category_for_ecosystem(ecosystem_id: str) -> Optional[str]:
    eid = (ecosystem_id or "").strip().lower()
    for eco in ECOSYSTEMS:
        if eco.id == eid:
            return eco.category
    return None
