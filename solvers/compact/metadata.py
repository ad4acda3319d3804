"""Arbiter table and ABI for The Compact."""

SOURCE_URL = "https://the-compact-allocator-api.vercel.app/api/compacts/?filled=false"

DEFAULT_METADATA = {
    "protocol_name": "The Compact",
    "adapters": [
        {"address": "0x088470910056221862d18fF2e65ffaeC96ec6dA4", "chain_name": "ethereum"},
        {"address": "0x57F0638d4fba79DB978c4eE1B73d469ea21014b2", "chain_name": "optimism"},
        {"address": "0x43b60b47764B6460c96349A1B414214BBa7F22c9", "chain_name": "base"},
    ],
}

_COMPACT = {
    "components": [
        {"name": "arbiter", "type": "address"},
        {"name": "sponsor", "type": "address"},
        {"name": "nonce", "type": "uint256"},
        {"name": "expires", "type": "uint256"},
        {"name": "id", "type": "uint256"},
        {"name": "amount", "type": "uint256"},
    ],
    "name": "compact",
    "type": "tuple",
}

_INTENT = {
    "components": [
        {"name": "token", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "fee", "type": "uint256"},
        {"name": "chainId", "type": "uint32"},
        {"name": "recipient", "type": "address"},
    ],
    "name": "intent",
    "type": "tuple",
}

HYPERLANE_ARBITER_ABI = [
    {
        "inputs": [
            {"name": "claimChain", "type": "uint32"},
            _COMPACT,
            _INTENT,
            {"name": "allocatorSignature", "type": "bytes"},
            {"name": "sponsorSignature", "type": "bytes"},
        ],
        "name": "fill",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]
