"""External service clients: ledger gateway and Telegram notifications."""
