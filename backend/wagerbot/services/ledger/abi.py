"""ABI fragments for the contract functions the gateway calls."""


def _fn(name, inputs, outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


BETTING_ABI = [
    _fn(
        "tokens",
        [("tokenId", "bytes32")],
        [("symbol", "string"), ("priceFeed", "address"), ("decimals", "uint8"), ("isActive", "bool")],
    ),
    _fn(
        "bets",
        [("betId", "uint256")],
        [
            ("id", "uint256"),
            ("tokenId", "bytes32"),
            ("startPrice", "int256"),
            ("endPrice", "int256"),
            ("startTime", "uint256"),
            ("endTime", "uint256"),
            ("totalPoolHigher", "uint256"),
            ("totalPoolLower", "uint256"),
            ("status", "uint8"),
        ],
    ),
    _fn("currentBetId", [], [("", "uint256")]),
    _fn("getBetParticipants", [("betId", "uint256")], [("", "address[]")]),
    _fn(
        "userBets",
        [("betId", "uint256"), ("user", "address")],
        [("amount", "uint256"), ("direction", "uint8"), ("claimed", "bool")],
    ),
    _fn(
        "calculatePotentialReward",
        [("betId", "uint256"), ("user", "address")],
        [("", "uint256")],
    ),
    _fn("createBet", [("tokenId", "bytes32")], mutability="nonpayable"),
    _fn("resolveBet", [("betId", "uint256")], mutability="nonpayable"),
    _fn("placeBet", [("betId", "uint256"), ("direction", "uint8")], mutability="payable"),
    _fn("claimReward", [("betId", "uint256")], mutability="nonpayable"),
]

PARTICIPATION_NFT_ABI = [
    _fn("mint", [("to", "address"), ("tokenId", "uint256")], mutability="nonpayable"),
]
