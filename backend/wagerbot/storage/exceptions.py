"""Storage layer exceptions."""


class StorageError(Exception):
    """Base storage exception."""

    pass


class WalletNotFoundError(StorageError):
    """No custodial wallet exists for the requested identity."""

    pass
