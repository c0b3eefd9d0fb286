from pydantic import BaseModel


class LedgerConfig(BaseModel):
    """Configuration for the ledger gateway."""

    rpc_url: str = ""
    contract_address: str = ""
    nft_contract_address: str = ""
    chain_id: int | None = None
    request_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 120.0
    receipt_poll_seconds: float = 2.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0

    create_bet_gas: int = 500_000
    resolve_gas: int = 5_000_000
    place_bet_gas: int = 5_000_000
    claim_gas: int = 5_000_000
    mint_gas: int = 5_000_000
