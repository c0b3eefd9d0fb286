"""Ledger gateway exceptions."""


class LedgerError(Exception):
    """Base exception for ledger gateway errors."""

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class LedgerNetworkError(LedgerError):
    """Node unreachable or transport failure."""

    pass


class LedgerTimeoutError(LedgerError):
    """Receipt confirmation did not arrive within the wait budget."""

    pass


class LedgerRevertError(LedgerError):
    """Contract rejected the call."""

    pass


class LedgerConfigError(LedgerError):
    """Missing endpoint, contract address or operator key."""

    pass
