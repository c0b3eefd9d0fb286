"""
Unit Tests: Ledger Gateway

Test cases:
- Contract tuple decoding
- Outcome classification on price ties
- Receipt normalization
- Read retries on transport errors, revert mapping
- Writes: nonce serialisation, receipt status, timeout and submission errors
- Lookups of earlier submissions by tx hash
- Operator and endpoint requirements
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import aiohttp
import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from wagerbot.services.ledger import (
    BetRecord,
    BetStatus,
    Direction,
    LedgerClient,
    LedgerConfig,
    LedgerConfigError,
    LedgerNetworkError,
    LedgerRevertError,
    LedgerTimeoutError,
    ParticipantBet,
    ReceiptStatus,
    TokenInfo,
    TransactionReceipt,
    create_ledger_client,
    token_id_for,
    winning_direction,
)
from wagerbot.storage import generate_wallet

ADDRESS = Web3.to_checksum_address("0x" + "12" * 20)


def test_winning_direction_tie_goes_lower() -> None:
    assert winning_direction(100, 101) == Direction.HIGHER
    assert winning_direction(100, 100) == Direction.LOWER
    assert winning_direction(100, 99) == Direction.LOWER


def test_direction_parse() -> None:
    assert Direction.parse("higher") == Direction.HIGHER
    assert Direction.parse(" LOWER ") == Direction.LOWER
    assert int(Direction.LOWER) == 1
    with pytest.raises(ValueError):
        Direction.parse("sideways")


def test_token_id_is_keccak_of_symbol() -> None:
    assert token_id_for("ETH") == bytes(Web3.keccak(text="ETH"))
    assert len(token_id_for("BTC")) == 32


def test_bet_record_from_contract() -> None:
    token_id = token_id_for("ETH")
    bet = BetRecord.from_contract(
        (4, token_id, 250_000_000_000, 0, 1_000, 1_300, 10**18, 2 * 10**18, 0)
    )

    assert bet.id == 4
    assert bet.token_id == token_id
    assert bet.status == BetStatus.ACTIVE
    assert bet.is_active
    assert not bet.is_expired(1_299)
    assert bet.is_expired(1_300)
    assert bet.seconds_left(1_250) == 50
    assert bet.seconds_left(2_000) == 0
    assert bet.total_pool_lower == 2 * 10**18


def test_participant_and_token_from_contract() -> None:
    stake = ParticipantBet.from_contract(3, ADDRESS, (10**17, 1, True))
    assert stake.direction == Direction.LOWER
    assert stake.claimed
    assert stake.has_stake

    empty = ParticipantBet.from_contract(3, ADDRESS, (0, 0, False))
    assert not empty.has_stake

    token = TokenInfo.from_contract(("ETH", ADDRESS, 8, True))
    assert token.symbol == "ETH"
    assert token.decimals == 8
    assert token.is_active


def test_receipt_from_web3() -> None:
    ok = TransactionReceipt.from_web3(
        {"transactionHash": b"\x01" * 32, "status": 1, "blockNumber": 7, "gasUsed": 21000}
    )
    assert ok.tx_hash == "0x" + "01" * 32
    assert ok.succeeded
    assert ok.block_number == 7

    failed = TransactionReceipt.from_web3({"transactionHash": "0xabc", "status": 0})
    assert failed.status == ReceiptStatus.FAILED
    assert not failed.succeeded


def test_read_retries_transport_errors() -> None:
    client = LedgerClient(LedgerConfig(max_retries=3, retry_backoff_seconds=0))
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise aiohttp.ClientConnectionError("connection reset")
        return 7

    assert asyncio.run(client._read("currentBetId", flaky)) == 7
    assert len(calls) == 3


def test_read_gives_up_after_max_retries() -> None:
    client = LedgerClient(LedgerConfig(max_retries=2, retry_backoff_seconds=0))
    calls = []

    async def down():
        calls.append(1)
        raise asyncio.TimeoutError()

    with pytest.raises(LedgerNetworkError):
        asyncio.run(client._read("bets", down))
    assert len(calls) == 2


def test_read_maps_revert_without_retry() -> None:
    client = LedgerClient(LedgerConfig(max_retries=3, retry_backoff_seconds=0))
    calls = []

    async def revert():
        calls.append(1)
        raise ContractLogicError("execution reverted: Bet does not exist")

    with pytest.raises(LedgerRevertError):
        asyncio.run(client._read("bets", revert))
    assert len(calls) == 1


def test_operator_required_for_administrative_writes() -> None:
    client = LedgerClient(LedgerConfig())
    assert client.operator is None

    with pytest.raises(LedgerConfigError):
        asyncio.run(client.resolve_bet(1))


def test_operator_loaded_from_private_key() -> None:
    wallet = generate_wallet("operator")
    client = create_ledger_client(
        rpc_url="http://localhost:8545",
        contract_address=ADDRESS,
        operator_private_key=wallet.private_key,
    )

    assert client.operator.address == wallet.address
    assert client.config.rpc_url == "http://localhost:8545"


def test_connect_requires_endpoint_and_contract() -> None:
    async def run(config: LedgerConfig) -> None:
        async with LedgerClient(config):
            pass

    with pytest.raises(LedgerConfigError):
        asyncio.run(run(LedgerConfig(contract_address=ADDRESS)))
    with pytest.raises(LedgerConfigError):
        asyncio.run(run(LedgerConfig(rpc_url="http://localhost:8545")))


class StubEth:
    """Stands in for ``AsyncWeb3.eth`` on the write path."""

    def __init__(self, status=1, send_error=None, wait_error=None):
        self.status = status
        self.send_error = send_error
        self.wait_error = wait_error
        self.base_nonce = 5
        self.sent = []
        self.send_attempts = 0
        self.receipts = {}
        self.pool = set()

    async def get_transaction_count(self, address, block_identifier):
        await asyncio.sleep(0)
        return self.base_nonce + len(self.sent)

    async def send_raw_transaction(self, raw):
        self.send_attempts += 1
        if self.send_error:
            raise self.send_error
        await asyncio.sleep(0)
        self.sent.append(raw)
        return bytes([len(self.sent)]) * 32

    async def wait_for_transaction_receipt(self, tx_hash, timeout, poll_latency):
        if self.wait_error:
            raise self.wait_error
        return {"transactionHash": tx_hash, "status": self.status, "blockNumber": 9}

    async def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.receipts[tx_hash]

    async def get_transaction(self, tx_hash):
        if tx_hash not in self.pool:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return {"hash": tx_hash}


class StubCall:
    def __init__(self):
        self.built = []

    async def build_transaction(self, params):
        self.built.append(dict(params))
        return {**params, "to": ADDRESS, "data": "0x"}


def stub_signer():
    def sign_transaction(tx):
        return SimpleNamespace(raw_transaction=b"signed-%d" % tx["nonce"])

    return SimpleNamespace(address=ADDRESS, sign_transaction=sign_transaction)


def stub_client(eth: StubEth) -> LedgerClient:
    client = LedgerClient(LedgerConfig(chain_id=84532, receipt_timeout_seconds=5))
    client._w3 = SimpleNamespace(eth=eth)
    return client


def test_transact_returns_successful_receipt() -> None:
    eth = StubEth()
    call = StubCall()

    receipt = asyncio.run(stub_client(eth)._transact("claimReward", call, stub_signer(), gas=21000))

    assert receipt.succeeded
    assert receipt.tx_hash == Web3.to_hex(bytes([1]) * 32)
    assert receipt.block_number == 9
    assert call.built == [{"from": ADDRESS, "gas": 21000, "chainId": 84532, "nonce": 5}]
    assert eth.sent == [b"signed-5"]


def test_transact_passes_value() -> None:
    call = StubCall()

    asyncio.run(stub_client(StubEth())._transact("placeBet", call, stub_signer(), gas=1, value=10))

    assert call.built[0]["value"] == 10


def test_failed_receipt_is_returned_not_raised() -> None:
    eth = StubEth(status=0)

    receipt = asyncio.run(stub_client(eth)._transact("mint", StubCall(), stub_signer(), gas=1))

    assert receipt.status == ReceiptStatus.FAILED
    assert not receipt.succeeded
    assert eth.send_attempts == 1


def test_unconfirmed_write_raises_timeout_with_hash() -> None:
    eth = StubEth(wait_error=TimeExhausted("not mined"))

    with pytest.raises(LedgerTimeoutError) as exc_info:
        asyncio.run(stub_client(eth)._transact("resolveBet", StubCall(), stub_signer(), gas=1))

    assert exc_info.value.tx_hash == Web3.to_hex(bytes([1]) * 32)
    assert eth.send_attempts == 1


@pytest.mark.parametrize(
    "error,expected",
    [
        (ContractLogicError("execution reverted: Bet not active"), LedgerRevertError),
        (aiohttp.ClientConnectionError("connection reset"), LedgerNetworkError),
    ],
)
def test_submission_errors_are_mapped_without_resubmitting(error, expected) -> None:
    eth = StubEth(send_error=error)

    with pytest.raises(expected) as exc_info:
        asyncio.run(stub_client(eth)._transact("claimReward", StubCall(), stub_signer(), gas=1))

    assert exc_info.value.tx_hash is None
    assert eth.send_attempts == 1


def test_concurrent_writes_from_one_signer_get_distinct_nonces() -> None:
    eth = StubEth()
    call = StubCall()
    client = stub_client(eth)
    signer = stub_signer()

    async def run() -> None:
        await asyncio.gather(
            *(client._transact("mint", call, signer, gas=1) for _ in range(3))
        )

    asyncio.run(run())

    assert sorted(params["nonce"] for params in call.built) == [5, 6, 7]
    assert sorted(eth.sent) == [b"signed-5", b"signed-6", b"signed-7"]


def test_claim_reward_uses_claim_gas_and_user_signer() -> None:
    eth = StubEth()
    call = StubCall()
    client = stub_client(eth)
    client._betting = SimpleNamespace(
        functions=SimpleNamespace(claimReward=lambda bet_id: call)
    )

    receipt = asyncio.run(client.claim_reward(3, stub_signer()))

    assert receipt.succeeded
    assert call.built[0]["gas"] == client.config.claim_gas
    assert call.built[0]["from"] == ADDRESS


def test_receipt_lookup_by_hash() -> None:
    eth = StubEth()
    mined = "0x" + "0a" * 32
    pending = "0x" + "0b" * 32
    eth.receipts[mined] = {"transactionHash": mined, "status": 1, "blockNumber": 3}
    eth.pool.update({mined, pending})
    client = stub_client(eth)

    async def run() -> None:
        receipt = await client.read_receipt(mined)
        assert receipt.succeeded
        assert receipt.block_number == 3

        assert await client.read_receipt(pending) is None
        assert await client.transaction_known(pending)
        assert not await client.transaction_known("0x" + "0c" * 32)

    asyncio.run(run())
