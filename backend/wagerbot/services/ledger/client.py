from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from .abi import BETTING_ABI, PARTICIPATION_NFT_ABI
from .config import LedgerConfig
from .exceptions import (
    LedgerConfigError,
    LedgerError,
    LedgerNetworkError,
    LedgerRevertError,
    LedgerTimeoutError,
)
from .models import (
    BetRecord,
    Direction,
    ParticipantBet,
    TokenInfo,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


def token_id_for(symbol: str) -> bytes:
    """bytes32 token id used by the contract: keccak256 of the symbol."""
    return bytes(Web3.keccak(text=symbol))


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


class LedgerClient:
    def __init__(
        self,
        config: LedgerConfig | None = None,
        operator_private_key: str | None = None,
    ):
        self.config = config or LedgerConfig()
        self._w3: AsyncWeb3 | None = None
        self._betting: Any = None
        self._nft: Any = None
        self._chain_id: int | None = self.config.chain_id
        self._nonce_locks: dict[str, asyncio.Lock] = {}

        if operator_private_key:
            self.operator: LocalAccount | None = Account.from_key(operator_private_key)
        else:
            self.operator = None

        logger.info(
            f"Initialized LedgerClient (operator="
            f"{self.operator.address if self.operator else 'disabled'})"
        )

    async def __aenter__(self) -> LedgerClient:
        if not self.config.rpc_url:
            raise LedgerConfigError("rpc_url is required")
        if not self.config.contract_address:
            raise LedgerConfigError("contract_address is required")

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                self.config.rpc_url, request_kwargs={"timeout": timeout}
            )
        )
        self._betting = self._w3.eth.contract(
            address=checksum(self.config.contract_address), abi=BETTING_ABI
        )
        if self.config.nft_contract_address:
            self._nft = self._w3.eth.contract(
                address=checksum(self.config.nft_contract_address),
                abi=PARTICIPATION_NFT_ABI,
            )

        if self._chain_id is None:
            self._chain_id = await self._read("eth_chainId", lambda: self.w3.eth.chain_id)
        logger.info(f"Connected to ledger (chain_id={self._chain_id})")
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._w3:
            await self._w3.provider.disconnect()
            self._w3 = None
            logger.info("Closed LedgerClient")

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise RuntimeError("LedgerClient must be used as async context manager")
        return self._w3

    def _require_operator(self) -> LocalAccount:
        if self.operator is None:
            raise LedgerConfigError("Operator key required for administrative writes")
        return self.operator

    def _require_nft(self) -> Any:
        if self._nft is None:
            raise LedgerConfigError("nft_contract_address is required for minting")
        return self._nft

    async def _read(self, name: str, call: Callable[[], Awaitable[T]]) -> T:
        retry_count = 0
        last_error: Exception | None = None

        while retry_count < self.config.max_retries:
            try:
                return await call()
            except ContractLogicError as e:
                raise LedgerRevertError(f"{name} reverted: {e}") from e
            except _TRANSPORT_ERRORS as e:
                last_error = e
                retry_count += 1
                if retry_count < self.config.max_retries:
                    wait_time = self.config.retry_backoff_seconds * 2 ** (retry_count - 1)
                    logger.warning(f"{name} failed ({e!r}), retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
            except Web3Exception as e:
                raise LedgerError(f"{name} failed: {e}") from e

        raise LedgerNetworkError(
            f"{name} failed after {retry_count} retries: {last_error!r}"
        )

    async def _transact(
        self,
        name: str,
        fn_call: Any,
        signer: LocalAccount,
        gas: int,
        value: int = 0,
    ) -> TransactionReceipt:
        """Sign, submit and wait for the receipt. Never resubmits."""
        address = signer.address
        lock = self._nonce_locks.setdefault(address, asyncio.Lock())
        params: dict[str, Any] = {
            "from": address,
            "gas": gas,
            "chainId": self._chain_id,
        }
        if value:
            params["value"] = value

        try:
            async with lock:
                params["nonce"] = await self.w3.eth.get_transaction_count(address, "pending")
                tx = await fn_call.build_transaction(params)
                signed = signer.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise LedgerRevertError(f"{name} rejected: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise LedgerNetworkError(f"{name} submission failed: {e!r}") from e
        except Web3Exception as e:
            raise LedgerError(f"{name} submission failed: {e}") from e

        hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Submitted {name} tx {hash_hex} from {address}")

        try:
            raw_receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.config.receipt_timeout_seconds,
                poll_latency=self.config.receipt_poll_seconds,
            )
        except TimeExhausted as e:
            raise LedgerTimeoutError(
                f"{name} not confirmed within {self.config.receipt_timeout_seconds}s",
                tx_hash=hash_hex,
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise LedgerNetworkError(
                f"{name} confirmation failed: {e!r}", tx_hash=hash_hex
            ) from e

        receipt = TransactionReceipt.from_web3(raw_receipt)
        if receipt.succeeded:
            logger.info(f"{name} confirmed in block {receipt.block_number}")
        else:
            logger.warning(f"{name} tx {hash_hex} failed on-chain")
        return receipt

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_token(self, token_id: bytes) -> TokenInfo:
        values = await self._read(
            "tokens", lambda: self._betting.functions.tokens(token_id).call()
        )
        return TokenInfo.from_contract(values)

    async def read_bet(self, bet_id: int) -> BetRecord:
        values = await self._read(
            "bets", lambda: self._betting.functions.bets(bet_id).call()
        )
        return BetRecord.from_contract(values)

    async def read_current_bet_id(self) -> int:
        value = await self._read(
            "currentBetId", lambda: self._betting.functions.currentBetId().call()
        )
        return int(value)

    async def read_participants(self, bet_id: int) -> list[str]:
        addresses = await self._read(
            "getBetParticipants",
            lambda: self._betting.functions.getBetParticipants(bet_id).call(),
        )
        return [checksum(a) for a in addresses]

    async def read_participant_bet(self, bet_id: int, address: str) -> ParticipantBet:
        address = checksum(address)
        values = await self._read(
            "userBets", lambda: self._betting.functions.userBets(bet_id, address).call()
        )
        return ParticipantBet.from_contract(bet_id, address, values)

    async def read_potential_reward(self, bet_id: int, address: str) -> int:
        address = checksum(address)
        value = await self._read(
            "calculatePotentialReward",
            lambda: self._betting.functions.calculatePotentialReward(bet_id, address).call(),
        )
        return int(value)

    async def read_balance(self, address: str) -> int:
        return await self._read(
            "eth_getBalance", lambda: self.w3.eth.get_balance(checksum(address))
        )

    async def read_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        """Receipt of an earlier submission, None while it is not mined."""

        async def call() -> Any:
            try:
                return await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        raw_receipt = await self._read("eth_getTransactionReceipt", call)
        return TransactionReceipt.from_web3(raw_receipt) if raw_receipt else None

    async def transaction_known(self, tx_hash: str) -> bool:
        """False once the node has dropped the transaction from its pool."""

        async def call() -> bool:
            try:
                await self.w3.eth.get_transaction(tx_hash)
                return True
            except TransactionNotFound:
                return False

        return await self._read("eth_getTransactionByHash", call)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_bet(self, token_id: bytes) -> TransactionReceipt:
        operator = self._require_operator()
        return await self._transact(
            "createBet",
            self._betting.functions.createBet(token_id),
            operator,
            self.config.create_bet_gas,
        )

    async def resolve_bet(self, bet_id: int) -> TransactionReceipt:
        operator = self._require_operator()
        return await self._transact(
            "resolveBet",
            self._betting.functions.resolveBet(bet_id),
            operator,
            self.config.resolve_gas,
        )

    async def place_bet(
        self,
        bet_id: int,
        direction: Direction,
        stake_wei: int,
        signer: LocalAccount,
    ) -> TransactionReceipt:
        return await self._transact(
            "placeBet",
            self._betting.functions.placeBet(bet_id, int(direction)),
            signer,
            self.config.place_bet_gas,
            value=stake_wei,
        )

    async def claim_reward(self, bet_id: int, signer: LocalAccount) -> TransactionReceipt:
        return await self._transact(
            "claimReward",
            self._betting.functions.claimReward(bet_id),
            signer,
            self.config.claim_gas,
        )

    async def mint_participation_token(
        self, recipient: str, sequence: int
    ) -> TransactionReceipt:
        operator = self._require_operator()
        return await self._transact(
            "mint",
            self._require_nft().functions.mint(checksum(recipient), sequence),
            operator,
            self.config.mint_gas,
        )


def create_ledger_client(
    rpc_url: str | None = None,
    contract_address: str | None = None,
    operator_private_key: str | None = None,
    config: LedgerConfig | None = None,
) -> LedgerClient:
    """Create a LedgerClient instance."""
    config = config or LedgerConfig()
    if rpc_url:
        config.rpc_url = rpc_url
    if contract_address:
        config.contract_address = contract_address
    return LedgerClient(config=config, operator_private_key=operator_private_key)
