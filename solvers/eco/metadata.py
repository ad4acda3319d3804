"""Contract ABIs used by the Eco integration."""

PROTOCOL_NAME = "Eco"

INTENT_SOURCE_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "_hash", "type": "bytes32"},
            {"indexed": False, "name": "_creator", "type": "address"},
            {"indexed": False, "name": "_destinationChain", "type": "uint256"},
            {"indexed": False, "name": "_targets", "type": "address[]"},
            {"indexed": False, "name": "_data", "type": "bytes[]"},
            {"indexed": False, "name": "_rewardTokens", "type": "address[]"},
            {"indexed": False, "name": "_rewardAmounts", "type": "uint256[]"},
            {"indexed": False, "name": "_expiryTime", "type": "uint256"},
            {"indexed": False, "name": "nonce", "type": "bytes32"},
            {"indexed": False, "name": "_prover", "type": "address"},
        ],
        "name": "IntentCreated",
        "type": "event",
    },
    {
        "inputs": [{"name": "_hash", "type": "bytes32"}],
        "name": "withdrawRewards",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ECO_ADAPTER_ABI = [
    {
        "inputs": [
            {"name": "_sourceChainID", "type": "uint256"},
            {"name": "_intentHashes", "type": "bytes32[]"},
            {"name": "_claimants", "type": "address[]"},
            {"name": "_prover", "type": "address"},
        ],
        "name": "fetchFee",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_sourceChainID", "type": "uint256"},
            {"name": "_targets", "type": "address[]"},
            {"name": "_data", "type": "bytes[]"},
            {"name": "_expiryTime", "type": "uint256"},
            {"name": "_nonce", "type": "bytes32"},
            {"name": "_claimant", "type": "address"},
            {"name": "_expectedHash", "type": "bytes32"},
            {"name": "_prover", "type": "address"},
        ],
        "name": "fulfillHyperInstant",
        "outputs": [{"name": "", "type": "bytes[]"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

# ERC-20 transfer(address,uint256)
TRANSFER_SELECTOR = bytes.fromhex("a9059cbb")
