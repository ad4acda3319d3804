"""Hyperlane7683 ABI fragments and constants."""

PROTOCOL_NAME = "Hyperlane7683"

# keccak of the order data type string the settlers expect
ORDER_DATA_TYPE = "0x08d75650babf4de09c9273d48ef647876057ed91d4323f8a2e3ebc2cd8a63b5e"

_OUTPUT = [
    {"name": "token", "type": "bytes32"},
    {"name": "amount", "type": "uint256"},
    {"name": "recipient", "type": "bytes32"},
    {"name": "chainId", "type": "uint32"},
]

_RESOLVED_ORDER = {
    "components": [
        {"name": "user", "type": "address"},
        {"name": "originChainId", "type": "uint256"},
        {"name": "openDeadline", "type": "uint32"},
        {"name": "fillDeadline", "type": "uint32"},
        {"name": "orderId", "type": "bytes32"},
        {"components": _OUTPUT, "name": "maxSpent", "type": "tuple[]"},
        {"components": _OUTPUT, "name": "minReceived", "type": "tuple[]"},
        {
            "components": [
                {"name": "destinationChainId", "type": "uint32"},
                {"name": "destinationSettler", "type": "bytes32"},
                {"name": "originData", "type": "bytes"},
            ],
            "name": "fillInstructions",
            "type": "tuple[]",
        },
    ],
    "indexed": False,
    "name": "resolvedOrder",
    "type": "tuple",
}

HYPERLANE7683_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "orderId", "type": "bytes32"},
            _RESOLVED_ORDER,
        ],
        "name": "Open",
        "type": "event",
    },
    {
        "inputs": [{"name": "orderId", "type": "bytes32"}],
        "name": "orderStatus",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_destinationDomain", "type": "uint32"}],
        "name": "quoteGasPayment",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {
                "components": [
                    {"name": "fillDeadline", "type": "uint32"},
                    {"name": "orderDataType", "type": "bytes32"},
                    {"name": "orderData", "type": "bytes"},
                ],
                "name": "_orders",
                "type": "tuple[]",
            }
        ],
        "name": "refund",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]
