"""Settlement notifier exceptions.

Only raised while the notifier is being set up. Delivery problems are
reported through ``NotificationResult`` instead.
"""


class NotifierError(Exception):
    """Base notifier exception."""

    pass


class NotifierAuthError(NotifierError):
    """Bot token rejected by Telegram."""

    pass


class NotifierConfigError(NotifierError):
    """Bot token missing."""

    pass


class NotifierConnectionError(NotifierError):
    """Telegram unreachable while connecting."""

    pass
